from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

# Requests are permissive so that missing fields reach the service layer and
# come back as the same {success: false, error} shape as every other 400.


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class AttachmentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    size: Optional[int] = None
    data: Optional[str] = None
    uploaded_at: Optional[str] = Field(default=None, alias="uploadedAt")


class EntryCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    token: Optional[str] = None
    attachments: Optional[List[AttachmentIn]] = None


class EntryUpdate(EntryCreate):
    id: Optional[str] = None


class EntryDelete(BaseModel):
    id: Optional[str] = None
    token: Optional[str] = None


class ChatRequest(BaseModel):
    message: Optional[str] = None
    token: Optional[str] = None


class UserOut(BaseModel):
    id: str
    username: str
    name: str
    role: str


class LoginResponse(BaseModel):
    success: bool
    token: str
    user: UserOut


class VerifyResponse(BaseModel):
    success: bool
    user: UserOut


class EntryResponse(BaseModel):
    success: bool
    entry: Dict[str, Any]
    message: str = "Entry operation successful"


class EntriesListResponse(BaseModel):
    success: bool
    entries: List[Dict[str, Any]]
    count: int
    lastModified: Optional[str] = None
    storage: str
    isGlobal: bool


class MessageResponse(BaseModel):
    success: bool
    message: str


class ChatStatusResponse(BaseModel):
    enabled: bool
    message: str


class ChatResponse(BaseModel):
    success: bool
    response: str
