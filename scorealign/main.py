"""Score alignment FastAPI application."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from fractions import Fraction
from typing import Annotated, Optional

import structlog
import uvicorn
from fastapi import Body, Depends, FastAPI, Path, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from scorealign import __version__
from scorealign.config import settings
from scorealign.core.errors import (
    ArtifactWriteError,
    FatalInitError,
    IntegrityError,
    InvalidTransitionError,
    MalformedNoteError,
    MissingAudioError,
    PluginDispatchError,
)
from scorealign.core.fraction import parse_fraction
from scorealign.schemas.api import (
    AlignmentStarted,
    AudioRequest,
    HealthResponse,
    MeiBuildRequest,
    MoveOnsetRequest,
    PartialAlignmentRequest,
    SessionResponse,
    TimelineBuildRequest,
    TimelineBuildResponse,
)
from scorealign.schemas.timeline import ScoreTimeline
from scorealign.services.artifacts import load_score_timeline, write_score_artifacts
from scorealign.services.plugins import (
    AlignmentTransformCache,
    HttpAlignmentPlugin,
    PluginDescriptor,
    PluginRegistry,
)
from scorealign.services.session import AlignmentSession
from scorealign.services.timeline_builder import ScoreTimelineBuilder
from scorealign.services.timemap_reader import TimemapReader

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

ALIGNER_SERVICE_ID = "aligner-service"

ScoreId = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$", max_length=128)]


def build_registry(executor: ThreadPoolExecutor) -> PluginRegistry:
    """Registry holding the HTTP aligner service plugin."""
    plugin = HttpAlignmentPlugin(
        base_url=settings.aligner_service_url,
        executor=executor,
        timeout=settings.request_timeout,
        health_timeout=settings.aligner_health_timeout,
        output=settings.alignment_output,
    )
    registry = PluginRegistry()
    registry.register(
        PluginDescriptor(
            identifier=ALIGNER_SERVICE_ID,
            output=settings.alignment_output,
            name="Score aligner service",
        ),
        lambda: plugin,
    )
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        "Starting score alignment service",
        version=settings.service_version,
        aligner_service_url=settings.aligner_service_url,
    )

    executor = ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="alignment")
    registry = build_registry(executor)
    cache = AlignmentTransformCache(registry, output=settings.alignment_output)
    app.state.cache = cache
    app.state.session = AlignmentSession(
        registry,
        cache=cache,
        transform_id=settings.alignment_transform_id,
        loop=asyncio.get_running_loop(),
    )
    logger.info("Alignment session ready", transforms=[d.identifier for d in cache.list_available()])

    yield

    logger.info("Shutting down score alignment service")
    executor.shutdown(wait=False)
    plugin = registry.create(ALIGNER_SERVICE_ID)
    if plugin is not None:
        await plugin.close()


app = FastAPI(
    title="Score Alignment Service",
    description="Build exact score timelines and align them against recorded performances",
    version=settings.service_version,
    lifespan=lifespan,
)


def get_session(request: Request) -> AlignmentSession:
    return request.app.state.session


def get_builder() -> ScoreTimelineBuilder:
    return ScoreTimelineBuilder(
        max_denominator=settings.max_fraction_denominator,
        min_pitch=settings.min_pitch,
        max_pitch=settings.max_pitch,
        default_meter=settings.default_meter,
    )


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": {"error": error, "message": message}})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    logger.warning("Validation error", path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(PluginDispatchError)
async def plugin_dispatch_exception_handler(request: Request, exc: PluginDispatchError):
    logger.error("Alignment could not be started", path=request.url.path, error=str(exc))
    return _error(status.HTTP_502_BAD_GATEWAY, "plugin_dispatch", str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_exception_handler(request: Request, exc: InvalidTransitionError):
    logger.warning("Invalid session transition", path=request.url.path, error=str(exc))
    return _error(status.HTTP_409_CONFLICT, "invalid_transition", str(exc))


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    logger.error("Alignment does not match score", path=request.url.path, label=exc.label)
    return _error(status.HTTP_409_CONFLICT, "integrity", str(exc))


@app.exception_handler(MissingAudioError)
async def missing_audio_exception_handler(request: Request, exc: MissingAudioError):
    return _error(status.HTTP_409_CONFLICT, "missing_audio", str(exc))


@app.exception_handler(MalformedNoteError)
async def malformed_exception_handler(request: Request, exc: MalformedNoteError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "malformed", str(exc))


@app.exception_handler(FatalInitError)
async def fatal_init_exception_handler(request: Request, exc: FatalInitError):
    logger.error("Engraving toolkit failure", path=request.url.path, error=str(exc))
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "fatal_init", str(exc))


@app.exception_handler(ArtifactWriteError)
async def artifact_write_exception_handler(request: Request, exc: ArtifactWriteError):
    logger.error("Score artifacts not written", path=request.url.path, error=str(exc))
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "artifact_write", str(exc))


@app.exception_handler(FileNotFoundError)
async def not_found_exception_handler(request: Request, exc: FileNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


def snapshot(session: AlignmentSession) -> SessionResponse:
    displayed = session.displayed
    return SessionResponse(
        state=session.state.value,
        score_id=session.score_id,
        audio_id=session.audio_id,
        sample_rate=session.sample_rate,
        displayed=displayed.all() if displayed is not None else [],
        tempo=session.tempo_curve,
        entries=session.entries.entries,
        integrity_error=session.integrity_error,
    )


def _persist(score_id: str, timeline: ScoreTimeline) -> TimelineBuildResponse:
    directory = settings.get_score_directory() / score_id
    write_score_artifacts(directory, score_id, timeline)
    logger.info(
        "Score timeline persisted",
        score_id=score_id,
        events=len(timeline.events),
        skipped=len(timeline.skipped_notes),
    )
    return TimelineBuildResponse(
        score_id=score_id,
        note_count=len(timeline.onsets()),
        event_count=len(timeline.events),
        meter_changes=timeline.meter_changes,
        has_pickup=timeline.has_pickup,
        skipped_notes=timeline.skipped_notes,
    )


def _optional_fraction(value: Optional[str]) -> Optional[Fraction]:
    return parse_fraction(value) if value is not None else None


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    cache: AlignmentTransformCache = request.app.state.cache
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=__version__,
        alignment_transforms=[d.identifier for d in cache.list_available()],
    )


# Scores


@app.post("/scores/{score_id}/timeline", response_model=TimelineBuildResponse)
def build_timeline(
    body: TimelineBuildRequest,
    score_id: ScoreId,
    builder: ScoreTimelineBuilder = Depends(get_builder),
):
    """Build a score timeline from timemap records and persist its artifacts."""
    timeline = builder.build(body.records, has_pickup=body.has_pickup)
    return _persist(score_id, timeline)


@app.post("/scores/{score_id}/mei", response_model=TimelineBuildResponse)
def build_timeline_from_mei(
    body: MeiBuildRequest,
    score_id: ScoreId,
    builder: ScoreTimelineBuilder = Depends(get_builder),
):
    """Read an MEI document with Verovio, then build and persist its timeline."""
    reader = TimemapReader(resource_path=settings.verovio_resource_path)
    records = reader.read_data(body.mei)
    timeline = builder.build(records, has_pickup=body.has_pickup)
    return _persist(score_id, timeline)


# Session


@app.get("/session", response_model=SessionResponse)
async def get_session_state(session: AlignmentSession = Depends(get_session)):
    return snapshot(session)


@app.post("/session/audio", response_model=SessionResponse)
async def set_audio(body: AudioRequest, session: AlignmentSession = Depends(get_session)):
    session.set_audio(body.audio_id, body.sample_rate)
    return snapshot(session)


@app.delete("/session/audio", response_model=SessionResponse)
async def unset_audio(session: AlignmentSession = Depends(get_session)):
    session.unset_audio()
    return snapshot(session)


@app.post("/session/score/{score_id}", response_model=SessionResponse)
async def set_score(score_id: ScoreId, session: AlignmentSession = Depends(get_session)):
    """Load a previously built score into the session."""
    timeline = load_score_timeline(settings.get_score_directory() / score_id, score_id)
    session.set_score(score_id, timeline)
    logger.info("Session score loaded", score_id=score_id, labels=len(session.entries))
    return snapshot(session)


@app.post("/session/alignment", response_model=AlignmentStarted, status_code=status.HTTP_202_ACCEPTED)
async def begin_alignment(
    body: Optional[PartialAlignmentRequest] = Body(default=None),
    session: AlignmentSession = Depends(get_session),
):
    """Start aligning the whole score, or the given part of it."""
    if body is None:
        model_id = await session.begin_checked_alignment()
    else:
        model_id = await session.begin_checked_alignment(
            _optional_fraction(body.score_start),
            _optional_fraction(body.score_end),
            body.audio_frame_start,
            body.audio_frame_end,
        )
    logger.info("Alignment started", model_id=model_id)
    return AlignmentStarted(model_id=model_id, state=session.state.value)


@app.post("/session/alignment/accept", response_model=SessionResponse)
async def accept_alignment(session: AlignmentSession = Depends(get_session)):
    session.accept_alignment()
    return snapshot(session)


@app.post("/session/alignment/reject", response_model=SessionResponse)
async def reject_alignment(session: AlignmentSession = Depends(get_session)):
    session.reject_alignment()
    return snapshot(session)


@app.post("/session/onsets", response_model=SessionResponse)
async def move_onset(body: MoveOnsetRequest, session: AlignmentSession = Depends(get_session)):
    """Move the accepted onset of a score label to another frame."""
    session.move_onset(body.label, body.frame)
    return snapshot(session)


@app.get("/session/alignment.csv", response_class=PlainTextResponse)
async def export_alignment(session: AlignmentSession = Depends(get_session)):
    return PlainTextResponse(session.export_alignment_text(), media_type="text/csv")


@app.post("/session/alignment.csv", response_model=SessionResponse)
async def import_alignment(request: Request, session: AlignmentSession = Depends(get_session)):
    """Replace the accepted alignment with CSV sent as the request body."""
    text = (await request.body()).decode("utf-8")
    session.import_alignment_text(text)
    return snapshot(session)


if __name__ == "__main__":
    uvicorn.run(
        "scorealign.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
