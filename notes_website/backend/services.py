import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .domain import Attachment, AuthError, ChatError, Note, NotFoundError, Session, User, ValidationError
from .models import AttachmentIn
from .sessions import SessionCodec
from .storage import Storage
from .users import authenticate, find_by_id
from .utils import make_id, time_now

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 5000
MAX_ATTACHMENTS = 5
MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024


class AuthService:
    """Handles login and session validation against the static user directory."""

    def __init__(self, codec: SessionCodec):
        self.codec = codec

    def login(self, username: Optional[str], password: Optional[str]) -> Tuple[str, User]:
        if not username or not password:
            raise ValidationError("Username and password are required")
        user = authenticate(username, password)
        if not user:
            raise AuthError("Invalid credentials")
        logger.info("User %s (%s) logged in", user.username, user.name)
        return self.codec.issue(user), user

    def session(self, token: Optional[str]) -> Session:
        if not token:
            raise AuthError("Authentication required")
        session = self.codec.verify(token)
        if not session:
            raise AuthError("Invalid or expired token")
        return session

    def verify(self, token: Optional[str]) -> User:
        """Resolve a token to its user; NotFoundError if the user no longer exists."""
        session = self.session(token)
        user = find_by_id(session.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


def _decode_attachment_data(data: str) -> Tuple[str, int]:
    # Browsers hand over FileReader data URLs; keep only the payload.
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Attachment data must be base64 encoded")
    return data, len(raw)


def validate_entry(title: Any, content: Any) -> Tuple[str, str]:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required and must be a non-empty string")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content is required and must be a non-empty string")
    title, content = title.strip(), content.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be {MAX_TITLE_LENGTH} characters or less")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be {MAX_CONTENT_LENGTH} characters or less")
    return title, content


def validate_attachments(items: Optional[List[AttachmentIn]]) -> Optional[List[Attachment]]:
    """Turn request attachments into domain attachments; None means "not supplied"."""
    if items is None:
        return None
    if len(items) > MAX_ATTACHMENTS:
        raise ValidationError(f"A note can have at most {MAX_ATTACHMENTS} attachments")

    attachments = []
    for item in items:
        if not item.filename or not item.filename.strip():
            raise ValidationError("Attachment filename is required")
        if not item.data:
            raise ValidationError(f"Attachment {item.filename} has no data")
        if not item.mime_type or not item.mime_type.strip():
            raise ValidationError("Attachment mime type is required")
        data, size = _decode_attachment_data(item.data)
        if size > MAX_ATTACHMENT_BYTES:
            raise ValidationError(f"Attachment {item.filename} exceeds the 5MB limit")
        attachments.append(Attachment(
            item.id or make_id("att"),
            item.filename.strip(),
            item.mime_type.strip(),
            size,
            data,
            item.uploaded_at or time_now(),
        ))
    return attachments


class NotesService:
    """Authenticated, ownership-scoped note operations.

    Every call authenticates first, then validates, then touches storage.
    """

    def __init__(self, store: Storage, auth: AuthService, attachments_enabled: bool = True):
        self.store = store
        self.auth = auth
        self.attachments_enabled = attachments_enabled

    def _attachments(self, items: Optional[List[AttachmentIn]]) -> Optional[List[Attachment]]:
        if items and not self.attachments_enabled:
            raise ValidationError("Attachments are not enabled")
        return validate_attachments(items)

    def list_notes(self, token: Optional[str]) -> Dict[str, Any]:
        session = self.auth.session(token)
        notes, last_modified = self.store.collection(session.user_id)
        info = self.store.info()
        return {
            "entries": [n.to_dict() for n in notes],
            "count": len(notes),
            "lastModified": last_modified or time_now(),
            "storage": info["storage"],
            "isGlobal": info["isGlobal"],
        }

    def get_note(self, token: Optional[str], note_id: Optional[str]) -> Note:
        session = self.auth.session(token)
        note = self.store.get(session.user_id, note_id or "")
        if not note:
            raise NotFoundError("Entry not found")
        return note

    def add_note(self, token: Optional[str], title: Any, content: Any,
                 attachments: Optional[List[AttachmentIn]] = None) -> Note:
        session = self.auth.session(token)
        title, content = validate_entry(title, content)
        files = self._attachments(attachments)
        note = self.store.create(session.user_id, title, content, files)
        logger.info("User %s created entry %s", session.username, note.id)
        return note

    def update_note(self, token: Optional[str], note_id: Any, title: Any, content: Any,
                    attachments: Optional[List[AttachmentIn]] = None) -> Note:
        session = self.auth.session(token)
        if not isinstance(note_id, str) or not note_id.strip():
            raise ValidationError("Valid ID is required")
        title, content = validate_entry(title, content)
        files = self._attachments(attachments)
        note = self.store.update(session.user_id, note_id, title, content, files)
        if not note:
            raise NotFoundError("Entry not found")
        logger.info("User %s updated entry %s", session.username, note.id)
        return note

    def delete_note(self, token: Optional[str], note_id: Any) -> None:
        session = self.auth.session(token)
        if not isinstance(note_id, str) or not note_id.strip():
            raise ValidationError("Valid ID is required")
        if not self.store.delete(session.user_id, note_id):
            raise NotFoundError("Entry not found")
        logger.info("User %s deleted entry %s", session.username, note_id)


GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

PROMPT = (
    "You are a helpful AI assistant for a personal notes application. "
    "The user {name} is asking: {message}\n\n"
    "Please provide a helpful, concise response. If they're asking about note-taking, "
    "organization, or productivity, provide specific advice. Keep responses under 200 "
    "words unless more detail is specifically requested."
)


class ChatService:
    """Relays questions to Gemini when an API key is configured."""

    def __init__(self, auth: AuthService, api_key: Optional[str], model: str = "gemini-1.5-flash",
                 enabled: bool = True, timeout: float = 30.0, http: Optional[requests.Session] = None):
        self.auth = auth
        self.api_key = api_key
        self.model = model
        self.feature_enabled = enabled
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def enabled(self) -> bool:
        return self.feature_enabled and bool(self.api_key)

    def status(self) -> Dict[str, Any]:
        if self.enabled:
            return {"enabled": True, "message": "AI chat is available"}
        if not self.feature_enabled:
            return {"enabled": False, "message": "AI chat is disabled"}
        return {
            "enabled": False,
            "message": "AI chat requires GOOGLE_GENERATIVE_AI_API_KEY or GEMINI_API_KEY environment variable",
        }

    def ask(self, token: Optional[str], message: Any) -> str:
        session = self.auth.session(token)
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        if not self.enabled:
            raise ChatError("AI chat is not configured. Please add GOOGLE_GENERATIVE_AI_API_KEY "
                            "or GEMINI_API_KEY to environment variables.", 503)

        logger.info("AI chat request from user %s", session.username)
        try:
            res = self.http.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": PROMPT.format(name=session.name, message=message)}]}],
                    "generationConfig": {"maxOutputTokens": 300},
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("AI chat upstream error: %s", e)
            raise ChatError("AI service temporarily unavailable. Please try again later.", 503)

        if res.status_code == 429:
            raise ChatError("API quota exceeded. Please try again later.", 429)
        if res.status_code in (401, 403) or (res.status_code == 400 and "API key" in res.text):
            raise ChatError("Invalid API key. Please check your GOOGLE_GENERATIVE_AI_API_KEY "
                            "or GEMINI_API_KEY configuration.", 503)
        if res.status_code != 200:
            logger.warning("AI chat upstream returned %s", res.status_code)
            raise ChatError("AI service temporarily unavailable. Please try again later.", 503)

        try:
            text = res.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise ChatError("AI service temporarily unavailable. Please try again later.", 503)
        return text
