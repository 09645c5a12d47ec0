from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class Attachment:
    """A file embedded in a note. ``data`` holds the base64 transport encoding."""

    def __init__(self, id: str, filename: str, mime_type: str, size: int, data: str, uploaded_at: str):
        self.id = id
        self.filename = filename
        self.mime_type = mime_type
        self.size = size
        self.data = data
        self.uploaded_at = uploaded_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "mimeType": self.mime_type,
            "size": self.size,
            "data": self.data,
            "uploadedAt": self.uploaded_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Attachment":
        return cls(
            raw["id"],
            raw.get("filename", ""),
            raw.get("mimeType", "application/octet-stream"),
            int(raw.get("size", 0)),
            raw.get("data", ""),
            raw.get("uploadedAt", ""),
        )


class Note:
    """Represents a single note object."""

    def __init__(self, id: str, user_id: str, title: str, content: str, created_at: str, updated_at: str,
                 attachments: Optional[List[Attachment]] = None):
        self.id = id
        self.user_id = user_id
        self.title = title
        self.content = content
        self.created_at = created_at
        self.updated_at = updated_at
        self.attachments = attachments or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert note to its stored and wire representation."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "userId": self.user_id,
            "attachments": [a.to_dict() for a in self.attachments],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Note":
        return cls(
            raw["id"],
            raw["userId"],
            raw.get("title", ""),
            raw.get("content", ""),
            raw.get("createdAt", ""),
            raw.get("updatedAt", ""),
            [Attachment.from_dict(a) for a in raw.get("attachments") or []],
        )


@dataclass(frozen=True)
class User:
    id: str
    username: str
    password_hash: str
    role: str
    name: str

    def public(self) -> Dict[str, str]:
        return {"id": self.id, "username": self.username, "name": self.name, "role": self.role}


@dataclass(frozen=True)
class Session:
    user_id: str
    username: str
    role: str
    name: str
    expires_at: int


class AuthError(Exception):
    """Custom exception for authentication errors."""
    pass


class ValidationError(ValueError):
    """Request payload failed validation."""
    pass


class NotFoundError(Exception):
    """Note does not exist for the requesting user."""
    pass


class StorageError(Exception):
    """Every configured storage backend failed."""
    pass


class ChatError(Exception):
    def __init__(self, message: str, status_code: int = 503):
        super().__init__(message)
        self.status_code = status_code
