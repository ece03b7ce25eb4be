import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.middleware.sessions import SessionMiddleware

from .analysis import BillAnalysis
from .config import Settings, get_settings
from .dependencies import (
    get_history_store,
    get_llm_client,
    get_session_context,
    require_history_store,
    require_user,
)
from .errors import (
    ClientInputError,
    GuestLimitExceeded,
    MediGuardError,
    NotFoundError,
    StorageError,
    UpstreamFailure,
)
from .history import HistoryStore
from .processor import BillSubmission, BillUpload, analyze_submission, submission_from_form, submission_from_json
from .session import AuthUser, SessionContext, display_name

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="MediGuard Bill Analysis API")

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Guest usage lives in the signed session cookie
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret, same_site="lax")


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    full_name: str = Field(alias="fullName", min_length=1, max_length=200)


@app.exception_handler(MediGuardError)
async def handle_mediguard_error(request: Request, exc: MediGuardError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.detail or exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body."})


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def read_upload(value) -> Optional[BillUpload]:
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    return BillUpload(filename=value.filename or "upload", content_type=value.content_type, data=data)


async def read_submission(request: Request, settings: Settings) -> BillSubmission:
    """Build a submission from either a JSON body or a multipart form."""
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
        try:
            form = await request.form()
        except (MultiPartException, ValueError) as e:
            raise ClientInputError("Invalid form data.") from e
        return submission_from_form(
            form.get("billText"),
            await read_upload(form.get("billImage")),
            user_question=form.get("userQuestion"),
            insurance_provider=form.get("insuranceProvider"),
            max_upload_bytes=settings.max_upload_bytes,
        )

    try:
        body = await request.json()
    except ValueError as e:
        raise ClientInputError("Invalid JSON body.") from e
    return submission_from_json(body)


def save_to_history(
    store: Optional[HistoryStore], user: AuthUser, analysis: BillAnalysis, insurance_provider: str
) -> None:
    """Persist a signed-in user's result. A failed save never fails the analysis."""
    if store is None:
        logger.warning("Supabase is not configured, analysis not saved")
        return
    try:
        store.save_analysis(user.id, analysis, insurance_provider or None)
    except StorageError as e:
        logger.error(f"Failed to save analysis: {e.detail}")


@app.post("/api/analyze-bill")
async def analyze_bill(
    request: Request,
    llm: OpenAI = Depends(get_llm_client),
    session: SessionContext = Depends(get_session_context),
    store: Optional[HistoryStore] = Depends(get_history_store),
    settings: Settings = Depends(get_settings),
):
    """Analyze a bill sent as JSON text or as a multipart image/PDF upload."""
    if session.guest_limit_reached():
        logger.info("Guest analysis limit reached")
        raise GuestLimitExceeded()

    submission = await read_submission(request, settings)
    kind = "file" if submission.bill_file is not None else "text"
    logger.info(f"Analyzing {kind} submission (guest={session.is_guest})")

    try:
        analysis = await run_in_threadpool(analyze_submission, llm, submission, settings)
    except MediGuardError:
        raise
    except Exception as e:
        logger.exception("Analyze bill error")
        raise UpstreamFailure(f"Unexpected error: {type(e).__name__}") from e

    if session.user is not None:
        await run_in_threadpool(save_to_history, store, session.user, analysis, submission.insurance_provider)
    else:
        session.record_guest_analysis(request.session)

    logger.info(f"Analysis complete: {analysis.issues_found} issue(s), ${analysis.potential_savings:,.2f} potential savings")
    return {"analysis": analysis.to_dict()}


@app.get("/api/history")
async def list_history(user: AuthUser = Depends(require_user), store: HistoryStore = Depends(require_history_store)):
    """Saved analyses for the signed-in user, newest first."""
    items = await run_in_threadpool(store.list_analyses, user.id)
    return {"history": [item.to_dict() for item in items]}


@app.get("/api/history/{analysis_id}")
async def get_history_item(
    analysis_id: str,
    user: AuthUser = Depends(require_user),
    store: HistoryStore = Depends(require_history_store),
):
    item = await run_in_threadpool(store.get_analysis, user.id, analysis_id)
    if item is None:
        raise NotFoundError("Analysis not found.")
    return {"item": item.to_dict()}


@app.get("/api/profile")
async def get_profile(user: AuthUser = Depends(require_user), store: HistoryStore = Depends(require_history_store)):
    profile = await run_in_threadpool(store.ensure_profile, user)
    return {"profile": profile.to_dict(), "displayName": display_name(user, profile.full_name)}


@app.put("/api/profile")
async def update_profile(
    update: ProfileUpdate,
    user: AuthUser = Depends(require_user),
    store: HistoryStore = Depends(require_history_store),
):
    profile = await run_in_threadpool(store.upsert_profile, user.id, update.full_name)
    return {"profile": profile.to_dict(), "displayName": display_name(user, profile.full_name)}


@app.get("/api/guest-usage")
async def guest_usage(session: SessionContext = Depends(get_session_context)):
    """How many free analyses the current guest session has left."""
    return {"isGuest": session.is_guest, **session.guest_summary()}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
