import logging
import os
from functools import lru_cache

from fastapi import FastAPI, Depends, HTTPException, Request, BackgroundTasks, Path
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings, Settings
from .conversions import MetaConversionsSink
from .models import RequestContext, SpinTiming, Submission
from .prizes import PrizeTable, load_table
from .schemas import SpinStartResponse, SpinStatusResponse, RegisterRequest, RegisterResponse
from .schemas import SaveEmailRequest, SaveEmailResponse
from .schemas import PrizesResponse, PrizeSegmentOut, EnvCheckResponse
from .session import SessionRegistry, SpinSession, LeadSink, TrackingSink
from .session import IllegalTransition, RegistrationValidationError, PersistenceError
from .sheets import GoogleSheetsLeadSink
from .utils import request_context, utcnow

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Spin Wheel API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_origin_regex=settings.allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_registry = SessionRegistry()


def get_settings() -> Settings:
    return settings

def get_registry() -> SessionRegistry:
    return _registry

@lru_cache
def get_prize_table() -> PrizeTable:
    return load_table(settings.prize_segments)

@lru_cache
def get_lead_sink() -> LeadSink:
    return GoogleSheetsLeadSink.from_settings(settings)

@lru_cache
def get_tracking_sink() -> TrackingSink:
    return MetaConversionsSink.from_settings(settings)

def get_timing(s: Settings = Depends(get_settings)) -> SpinTiming:
    return SpinTiming(
        min_revolutions=s.spin_min_revolutions,
        spin_duration_seconds=s.spin_duration_seconds,
        settle_delay_seconds=s.spin_settle_seconds,
    )

def get_session(
    session_id: str = Path(..., min_length=1),
    registry: SessionRegistry = Depends(get_registry),
) -> SpinSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Spin session not found")
    return session


def _error(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "code": code, **extra})

@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), "HTTP_ERROR")

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return _error(400, "Validation error", "VALIDATION_ERROR", errors=jsonable_encoder(exc.errors()))

@app.exception_handler(RegistrationValidationError)
async def registration_exc_handler(request: Request, exc: RegistrationValidationError):
    return _error(400, "Invalid email format", "VALIDATION_ERROR")

@app.exception_handler(IllegalTransition)
async def transition_exc_handler(request: Request, exc: IllegalTransition):
    return _error(409, str(exc), "ILLEGAL_TRANSITION")

@app.exception_handler(PersistenceError)
async def persistence_exc_handler(request: Request, exc: PersistenceError):
    return _error(500, "Failed to save email to Google Sheets", "PERSISTENCE_ERROR")


def _status(session: SpinSession) -> SpinStatusResponse:
    return SpinStatusResponse(
        session_id=session.id,
        phase=session.phase.value,
        is_spinning=session.is_spinning,
        terminal_angle=session.terminal_angle,
        prize_amount=session.prize_amount,
    )


@app.get("/health")
def health():
    return {"ok": True}

@app.get("/api/prizes", response_model=PrizesResponse)
def prizes(table: PrizeTable = Depends(get_prize_table)):
    return PrizesResponse(
        amounts=table.amounts(),
        segments=[PrizeSegmentOut(**s.model_dump()) for s in table.segments],
        probabilities=table.probabilities(),
    )


@app.post("/api/spin", response_model=SpinStartResponse)
async def start_spin(
    registry: SessionRegistry = Depends(get_registry),
    table: PrizeTable = Depends(get_prize_table),
    timing: SpinTiming = Depends(get_timing),
):
    session = registry.create(table=table, timing=timing)
    angle = session.start_spin()
    # the wheel resolves itself even if the browser never reports back
    session.schedule_completion()
    return SpinStartResponse(
        session_id=session.id,
        phase=session.phase.value,
        terminal_angle=angle,
        min_revolutions=timing.min_revolutions,
        spin_duration_seconds=timing.spin_duration_seconds,
        settle_delay_seconds=timing.settle_delay_seconds,
    )

@app.get("/api/spin/{session_id}", response_model=SpinStatusResponse)
async def spin_status(session: SpinSession = Depends(get_session)):
    return _status(session)

@app.post("/api/spin/{session_id}/complete", response_model=SpinStatusResponse)
async def complete_spin(session: SpinSession = Depends(get_session)):
    # browser reports the animation finished; repeated reports are harmless
    session.stop_spin()
    session.complete_spin()
    return _status(session)

@app.delete("/api/spin/{session_id}")
async def discard_spin(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not registry.discard(session_id):
        raise HTTPException(status_code=404, detail="Spin session not found")
    return {"ok": True}

@app.post("/api/spin/{session_id}/register", response_model=RegisterResponse)
async def register(
    payload: RegisterRequest,
    request: Request,
    session: SpinSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
    lead_sink: LeadSink = Depends(get_lead_sink),
    tracking_sink: TrackingSink = Depends(get_tracking_sink),
):
    submission = await session.register(
        payload.email,
        lead_sink,
        tracking_sink,
        context=request_context(request),
        birthday=payload.birthday,
    )
    # registered sessions are terminal; tracking tasks keep running on the loop
    registry.forget(session.id)
    return RegisterResponse(
        success=True,
        message="Email saved successfully",
        prize_amount=submission.prize_amount,
    )


async def _track_quietly(sink: TrackingSink, email: str, prize_amount: int, context: RequestContext):
    try:
        result = await sink.track(email, prize_amount, context)
    except Exception as exc:  # noqa: BLE001
        logger.warning("conversion tracking failed for save-email: %s", exc)
        return
    logger.info("conversion tracking lead=%s purchase=%s", result.lead_sent, result.purchase_sent)

@app.post("/api/save-email", response_model=SaveEmailResponse)
async def save_email(
    payload: SaveEmailRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    lead_sink: LeadSink = Depends(get_lead_sink),
    tracking_sink: TrackingSink = Depends(get_tracking_sink),
):
    context = request_context(request)
    submission = Submission(
        email=payload.email,
        prize_amount=payload.prize_amount,
        timestamp=utcnow(),
        client_ip=context.client_ip,
        user_agent=context.user_agent,
        birthday=payload.birthday,
    )
    # tracking is independent of the sheet write and never affects the response
    background_tasks.add_task(_track_quietly, tracking_sink, submission.email, submission.prize_amount, context)

    try:
        saved = await run_in_threadpool(lead_sink.save, submission)
    except Exception:
        logger.exception("lead sink raised for save-email")
        saved = False

    if not saved:
        return JSONResponse(
            status_code=500,
            content={"message": "Failed to save email to Google Sheets", "code": "PERSISTENCE_ERROR"},
            background=background_tasks,
        )
    return SaveEmailResponse(success=True, message="Email saved successfully")


def _preview(value: str, n: int) -> str:
    return f"{value[:n]}..." if value else "missing"

@app.get("/api/test-env", response_model=EnvCheckResponse)
def test_env(s: Settings = Depends(get_settings)):
    return EnvCheckResponse(
        status="Environment check",
        has_google_sheets_id=bool(s.google_sheets_id),
        has_google_project_id=bool(s.google_project_id),
        has_google_private_key_id=bool(s.google_private_key_id),
        has_google_private_key=bool(s.google_private_key or s.google_private_key_base64),
        has_google_client_email=bool(s.google_client_email),
        has_google_client_id=bool(s.google_client_id),
        has_meta_pixel_id=bool(s.meta_pixel_id),
        has_meta_access_token=bool(s.meta_access_token),
        sheets_id_length=len(s.google_sheets_id),
        project_id_preview=_preview(s.google_project_id, 10),
        client_email_preview=_preview(s.google_client_email, 20),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spinwheel.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
