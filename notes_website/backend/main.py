import logging
import os
from typing import Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import DEFAULT_AUTH_SECRET, Settings, get_settings
from .domain import AuthError, ChatError, NotFoundError
from .logs import setup_logging
from .models import (
    ChatRequest, ChatResponse, ChatStatusResponse, EntriesListResponse, EntryCreate, EntryDelete,
    EntryResponse, EntryUpdate, LoginRequest, LoginResponse, MessageResponse, TokenRequest, VerifyResponse,
)
from .services import AuthService, ChatService, NotesService
from .sessions import SessionCodec
from .storage import Storage, build_storage
from .utils import time_now

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
WEBSITE_DIR = os.path.join(BASE_DIR, "..", "website")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

router = APIRouter()


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_notes(request: Request) -> NotesService:
    return request.app.state.notes


def get_chat(request: Request) -> ChatService:
    return request.app.state.chat


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Accept ``Authorization: Bearer <token>`` as well as a bare token."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return authorization.strip()


def _internal_error(what: str, e: Exception) -> HTTPException:
    logger.exception("%s error: %s", what, e)
    return HTTPException(status_code=500, detail="Internal server error")


@router.get("/")
async def read_root(request: Request):
    index_path = os.path.join(request.app.state.website_dir, "index.html")
    if os.path.exists(index_path):
        return FileResponse(index_path)
    return {"message": "Notes API is running", "version": request.app.version}


@router.get("/health")
async def health_check(request: Request):
    return {"status": "healthy", "timestamp": time_now(), "storage": request.app.state.storage.info()}


@router.post("/auth/login", response_model=LoginResponse)
def login(creds: LoginRequest, auth: AuthService = Depends(get_auth)):
    try:
        token, user = auth.login(creds.username, creds.password)
        return LoginResponse(success=True, token=token, user=user.public())
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise _internal_error("Login", e)


@router.post("/auth/verify", response_model=VerifyResponse)
def verify(body: TokenRequest, auth: AuthService = Depends(get_auth)):
    if not body.token:
        raise HTTPException(status_code=400, detail="Token is required")
    try:
        user = auth.verify(body.token)
        return VerifyResponse(success=True, user=user.public())
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Token verification", e)


@router.get("/content", response_model=EntriesListResponse)
def list_entries(
    response: Response,
    token: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    notes: NotesService = Depends(get_notes),
):
    response.headers.update(NO_CACHE_HEADERS)
    try:
        listing = notes.list_notes(token or bearer_token(authorization))
        return EntriesListResponse(success=True, **listing)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except Exception as e:
        raise _internal_error("List entries", e)


@router.get("/content/{entry_id}", response_model=EntryResponse)
def get_entry(
    entry_id: str,
    token: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    notes: NotesService = Depends(get_notes),
):
    try:
        note = notes.get_note(token or bearer_token(authorization), entry_id)
        return EntryResponse(success=True, entry=note.to_dict(), message="Entry retrieved successfully")
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Get entry", e)


@router.post("/content", response_model=EntryResponse)
def create_entry(
    body: Optional[EntryCreate] = Body(None),
    authorization: Optional[str] = Header(None),
    notes: NotesService = Depends(get_notes),
):
    body = body or EntryCreate()
    try:
        note = notes.add_note(body.token or bearer_token(authorization), body.title, body.content,
                              body.attachments)
        return EntryResponse(success=True, entry=note.to_dict(), message="Entry created successfully")
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise _internal_error("Create entry", e)


@router.put("/content", response_model=EntryResponse)
def update_entry(
    body: Optional[EntryUpdate] = Body(None),
    authorization: Optional[str] = Header(None),
    notes: NotesService = Depends(get_notes),
):
    body = body or EntryUpdate()
    try:
        note = notes.update_note(body.token or bearer_token(authorization), body.id, body.title,
                                 body.content, body.attachments)
        return EntryResponse(success=True, entry=note.to_dict(), message="Entry updated successfully")
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Update entry", e)


@router.delete("/content", response_model=MessageResponse)
def delete_entry(
    body: Optional[EntryDelete] = Body(None),
    authorization: Optional[str] = Header(None),
    notes: NotesService = Depends(get_notes),
):
    body = body or EntryDelete()
    try:
        notes.delete_note(body.token or bearer_token(authorization), body.id)
        return MessageResponse(success=True, message="Entry deleted successfully")
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise _internal_error("Delete entry", e)


@router.get("/chat/enabled", response_model=ChatStatusResponse)
def chat_enabled(chat: ChatService = Depends(get_chat)):
    return ChatStatusResponse(**chat.status())


@router.post("/chat", response_model=ChatResponse)
def chat_message(
    body: Optional[ChatRequest] = Body(None),
    authorization: Optional[str] = Header(None),
    chat: ChatService = Depends(get_chat),
):
    body = body or ChatRequest()
    try:
        return ChatResponse(success=True, response=chat.ask(body.token or bearer_token(authorization),
                                                            body.message))
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise _internal_error("Chat", e)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors and errors[0].get("type") == "json_invalid":
        message = "Invalid JSON in request body"
    elif errors:
        loc = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"Invalid field {loc}: {errors[0].get('msg')}" if loc else str(errors[0].get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse({"success": False, "error": message}, status_code=400)


def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None,
               chat_http=None) -> FastAPI:
    """Build the API with its own service instances."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Notes API", description="Personal notes with per-user storage", version="1.0.0")

    origins = [o.strip() for o in (settings.cors_origins or "").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    website_dir = settings.website_dir or WEBSITE_DIR
    if os.path.exists(website_dir):
        app.mount("/static", StaticFiles(directory=website_dir), name="static")

    if settings.auth_secret == DEFAULT_AUTH_SECRET:
        logger.warning("AUTH_SECRET is not set; session tokens are signed with the built-in development key")
    store = storage or build_storage(settings)
    auth = AuthService(SessionCodec(settings.auth_secret, settings.session_ttl_hours))
    app.state.settings = settings
    app.state.website_dir = website_dir
    app.state.storage = store
    app.state.auth = auth
    app.state.notes = NotesService(store, auth, settings.attachments_enabled)
    app.state.chat = ChatService(auth, settings.chat_api_key, settings.gemini_model,
                                 settings.chat_enabled, settings.chat_timeout_seconds, chat_http)

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Notes API starting up (storage=%s, global=%s, chat=%s)",
                    store.name, store.is_global, app.state.chat.enabled)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
