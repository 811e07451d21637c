import asyncio
import json
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Cookie, Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

load_dotenv()

from feednana.config import configure_logging, get_settings  # noqa: E402
from feednana.db import get_db, init_db  # noqa: E402
from feednana.exceptions import AuthenticationError, NotFoundError, RecaptchaError  # noqa: E402
from feednana.models.upload_models import (  # noqa: E402
    AlbumOut,
    AnonIdentity,
    AuthResult,
    BrowseFilter,
    BrowseResult,
    CommentOut,
    CommentRequest,
    CompleteUploadRequest,
    FileOut,
    FileUploadResult,
    InitiateUploadRequest,
    LoginRequest,
    RegisterRequest,
    UploadUrls,
    VoteRequest,
)
from feednana.redis_client import make_redis  # noqa: E402
from feednana.services.auth_service import AuthService  # noqa: E402
from feednana.services.cleanup_service import CleanupService  # noqa: E402
from feednana.services.content_service import ContentService  # noqa: E402
from feednana.services.event_bus import TOPICS, EventBus  # noqa: E402
from feednana.services.recaptcha_service import RecaptchaService  # noqa: E402
from feednana.services.session_service import SessionService, verify_jwt  # noqa: E402
from feednana.services.storage_service import StorageService  # noqa: E402
from feednana.services.thumbnail_service import ThumbnailService  # noqa: E402
from feednana.services.upload_service import UploadService  # noqa: E402

logger = logging.getLogger(__name__)

ANON_COOKIE = "anon_session"


@lru_cache
def get_redis():
    return make_redis(get_settings())


@lru_cache
def get_storage() -> StorageService:
    return StorageService(get_settings())


@lru_cache
def get_event_bus() -> EventBus:
    return EventBus(get_redis())


@lru_cache
def get_recaptcha_service() -> RecaptchaService:
    return RecaptchaService(get_settings())


@lru_cache
def get_content_service() -> ContentService:
    return ContentService(get_event_bus())


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService(get_settings())


@lru_cache
def get_session_service() -> SessionService:
    return SessionService(get_redis(), get_settings())


@lru_cache
def get_upload_service() -> UploadService:
    settings = get_settings()
    storage = get_storage()
    return UploadService(
        storage=storage,
        thumbnails=ThumbnailService(storage, settings),
        redis_client=get_redis(),
        recaptcha=get_recaptcha_service(),
        event_bus=get_event_bus(),
        content=get_content_service(),
        settings=settings,
    )


def get_current_user_id(authorization: Optional[str] = Header(None)) -> Optional[int]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return verify_jwt(authorization.split(" ", 1)[1], get_settings())


def get_anon_identity(
    response: Response,
    anon_session: Optional[str] = Cookie(None),
    sessions: SessionService = Depends(get_session_service),
) -> AnonIdentity:
    if not anon_session:
        anon_session = sessions.new_session_id()
        response.set_cookie(ANON_COOKIE, anon_session, httponly=True, samesite="lax")
    return sessions.ensure_anon_identity(anon_session)


async def _require_recaptcha(recaptcha: RecaptchaService, token: Optional[str]):
    if recaptcha.required and not await recaptcha.verify(token):
        raise RecaptchaError("reCAPTCHA validation failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    init_db()
    cleanup_service = CleanupService(get_storage(), get_redis(), get_settings())
    cleanup_task = asyncio.create_task(cleanup_service.start_cleanup_scheduler())

    yield

    # Shutdown
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass


app = FastAPI(title="Feednana", lifespan=lifespan)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.post("/upload/initiate", response_model=List[UploadUrls])
async def initiate_upload(
    request: InitiateUploadRequest,
    upload_service: UploadService = Depends(get_upload_service),
):
    """Reserve storage keys, open multipart uploads and presign every part URL"""
    try:
        return await upload_service.initiate_upload(request.files, request.recaptcha_token)
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/upload/complete", response_model=FileUploadResult)
async def complete_upload(
    request: CompleteUploadRequest,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(get_current_user_id),
    anon: AnonIdentity = Depends(get_anon_identity),
    upload_service: UploadService = Depends(get_upload_service),
):
    """Stitch the uploaded parts and create the File (and Album) rows"""
    try:
        return await upload_service.complete_upload(
            db,
            request.uploads,
            anon,
            name=request.name,
            manifesto=request.manifesto,
            disable_comments=request.disable_comments,
            unlisted=request.unlisted,
            anonymous=request.anonymous,
            user_id=user_id,
        )
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/files/count")
def total_file_count(
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service),
):
    return {"count": content.total_file_count(db)}


@app.get("/browse", response_model=BrowseResult)
def browse(
    page: int = 1,
    limit: int = 49,
    filter: BrowseFilter = BrowseFilter.ALL,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service),
):
    """Newest public files and albums, one page at a time"""
    return content.browse(db, page=page, limit=limit, filter=filter)


@app.get("/files/{file_id}", response_model=FileOut)
def get_file(
    file_id: int,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service),
):
    try:
        return content.file_out(db, content.get_file(db, file_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/albums/{album_id}", response_model=AlbumOut)
def get_album(
    album_id: int,
    db: Session = Depends(get_db),
    content: ContentService = Depends(get_content_service),
):
    try:
        return content.album_out(db, content.get_album(db, album_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/votes")
def vote(
    request: VoteRequest,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(get_current_user_id),
    content: ContentService = Depends(get_content_service),
):
    try:
        content.vote(db, user_id, request.flavor, request.content_id, request.vote)
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "karma": content.karma(db, request.flavor, request.content_id),
        "userVote": content.user_vote(db, user_id, request.flavor, request.content_id),
    }


@app.post("/comments", response_model=CommentOut)
async def create_comment(
    request: CommentRequest,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(get_current_user_id),
    anon: AnonIdentity = Depends(get_anon_identity),
    content: ContentService = Depends(get_content_service),
    recaptcha: RecaptchaService = Depends(get_recaptcha_service),
):
    try:
        await _require_recaptcha(recaptcha, request.recaptcha_token)
        return content.create_comment(
            db,
            request.flavor,
            request.content_id,
            request.text,
            anon,
            replies_to=request.replies_to,
            user_id=None if request.anonymous else user_id,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/events/{topic}")
async def stream_events(topic: str, event_bus: EventBus = Depends(get_event_bus)):
    """Server-sent events for one topic; the subscription lives as long as the connection"""
    if topic not in TOPICS:
        raise HTTPException(status_code=404, detail="Unknown topic")

    async def event_stream():
        async for payload in event_bus.subscribe(topic):
            yield f"event: {topic}\ndata: {json.dumps(payload)}\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.post("/register", response_model=AuthResult)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    recaptcha: RecaptchaService = Depends(get_recaptcha_service),
):
    try:
        await _require_recaptcha(recaptcha, request.recaptcha_token)
        return auth.register(db, request.username, request.display_name, request.email, request.password)
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/login", response_model=AuthResult)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    recaptcha: RecaptchaService = Depends(get_recaptcha_service),
):
    try:
        await _require_recaptcha(recaptcha, request.recaptcha_token)
        return auth.login(db, request.username, request.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))
