from typing import Optional

from pydantic_settings import BaseSettings

DEFAULT_AUTH_SECRET = "dev-secret-change-me-0123456789abcdef"


class Settings(BaseSettings):
    auth_secret: str = DEFAULT_AUTH_SECRET
    session_ttl_hours: int = 24

    # auto | redis | file | memory
    storage_backend: str = "auto"
    # file | memory
    fallback_backend: str = "file"
    redis_url: Optional[str] = None
    redis_socket_timeout: float = 1.0
    data_dir: str = "data"

    attachments_enabled: bool = True
    chat_enabled: bool = True
    google_generative_ai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    chat_timeout_seconds: float = 30.0

    cors_origins: str = "*"
    log_level: str = "INFO"
    website_dir: Optional[str] = None

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"

    @property
    def chat_api_key(self) -> Optional[str]:
        return self.google_generative_ai_api_key or self.gemini_api_key


def get_settings() -> Settings:
    return Settings()
