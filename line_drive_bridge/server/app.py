"""FastAPI application receiving LINE webhooks.

WHY: LINE delivers events by POSTing to a public URL and expects a quick
200 regardless of what the receiver does with them; a slow or non-200
answer makes the platform retry and eventually disable the webhook.
FastAPI gives request handling, background tasks, and OpenAPI docs.

HOW: POST /webhook reads the raw body, verifies the signature, parses and
schema-validates the JSON, then schedules MessageBridge.handle_events()
as a background task and answers immediately. POST /voice-webhook does
the same for the voice bot with VoiceTranscriber. The bridge and the
transcriber are created once at startup (lifespan) and reached through
dependencies, so tests can swap them via app.dependency_overrides.

RULES:
- Webhook POSTs always answer 200 with {message, receivedEvents, timestamp}
- Bad signature (unless ALLOW_UNSIGNED_WEBHOOKS), bad JSON, or a body that
  fails the schema → no events are processed
- Missing credentials at startup disable the affected endpoint's processing
  but never stop the server
- /debug/logs answers 404 unless ENABLE_DEBUG_ENDPOINTS is set
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, List, Optional

import jsonschema
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request

from line_drive_bridge import __version__
from line_drive_bridge.config import (
    ALLOW_UNSIGNED_WEBHOOKS,
    DEBUG_LOG_CAPACITY,
    ENABLE_DEBUG_ENDPOINTS,
    LINE_CHANNEL_SECRET,
    LOCAL_STORAGE_DIR,
    SIGNATURE_HEADER,
    STORAGE_BACKEND,
    VOICE_LINE_CHANNEL_SECRET,
    load_drive_credentials,
    load_voice_channel_access_token,
)
from line_drive_bridge.core.bridge import MessageBridge
from line_drive_bridge.core.models import WebhookEvent
from line_drive_bridge.core.signature import verify
from line_drive_bridge.line.client import LineClient
from line_drive_bridge.server.logbuffer import LogBuffer, install_buffer_handler
from line_drive_bridge.server.models import (
    EndpointStatusResponse,
    ErrorResponse,
    HealthResponse,
    LogClearResponse,
    LogEntry,
    LogListResponse,
    WebhookResponse,
)
from line_drive_bridge.storage.drive import GoogleDriveStorage
from line_drive_bridge.storage.local import LocalFileStorage
from line_drive_bridge.transcription.client import SonioxClient
from line_drive_bridge.transcription.service import VoiceTranscriber
from line_drive_bridge.transcription.summary import SummaryClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

WEBHOOK_SCHEMA = json.loads(
    Path(__file__).with_name("webhook_schema.json").read_text(encoding="utf-8")
)
_validator = jsonschema.Draft202012Validator(WEBHOOK_SCHEMA)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


async def _open_bridge(stack: AsyncExitStack) -> MessageBridge:
    if STORAGE_BACKEND == "local":
        storage = await stack.enter_async_context(LocalFileStorage(LOCAL_STORAGE_DIR))
        root_id = storage.root_id
    elif STORAGE_BACKEND == "drive":
        credentials = load_drive_credentials()
        storage = await stack.enter_async_context(GoogleDriveStorage(credentials))
        root_id = credentials.root_folder_id
    else:
        raise ValueError("Unknown STORAGE_BACKEND {!r}; use 'drive' or 'local'".format(STORAGE_BACKEND))
    line = await stack.enter_async_context(LineClient())
    return MessageBridge(storage, root_id, line=line)


async def _open_transcriber(stack: AsyncExitStack) -> VoiceTranscriber:
    line = await stack.enter_async_context(
        LineClient(channel_access_token=load_voice_channel_access_token())
    )
    try:
        speech = await stack.enter_async_context(SonioxClient())
    except ValueError as exc:
        logger.warning("Voice transcription has no speech API key: %s", exc)
        speech = None
    try:
        summarizer = await stack.enter_async_context(SummaryClient())
    except ValueError as exc:
        logger.info("Transcript summaries disabled: %s", exc)
        summarizer = None
    return VoiceTranscriber(line, speech, summarizer=summarizer)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the storage, LINE and speech clients for the app's lifetime."""
    async with AsyncExitStack() as stack:
        try:
            app.state.bridge = await _open_bridge(stack)
        except ValueError as exc:
            logger.error("Archive webhook disabled: %s", exc)
            app.state.bridge = None
        try:
            app.state.transcriber = await _open_transcriber(stack)
        except ValueError as exc:
            logger.warning("Voice webhook disabled: %s", exc)
            app.state.transcriber = None
        yield


app = FastAPI(
    lifespan=lifespan,
    title="LINE to Google Drive Bridge",
    description=(
        "Receives LINE Messaging API webhooks and archives text messages and "
        "attachments into Google Drive, one folder per conversation and day. "
        "A separate voice webhook transcribes audio messages and replies with the text."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.log_buffer = LogBuffer(DEBUG_LOG_CAPACITY)
install_buffer_handler(app.state.log_buffer, "line_drive_bridge")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_bridge(request: Request) -> Optional[MessageBridge]:
    return getattr(request.app.state, "bridge", None)


def get_transcriber(request: Request) -> Optional[VoiceTranscriber]:
    return getattr(request.app.state, "transcriber", None)


def get_log_buffer(request: Request) -> LogBuffer:
    return request.app.state.log_buffer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _reply(message: str, received: int = 0) -> WebhookResponse:
    return WebhookResponse(message=message, received_events=received, timestamp=_now_iso())


def parse_webhook_body(raw_body: bytes) -> List[WebhookEvent]:
    """Decode, validate and parse a webhook body.

    RULES:
    - Raises ValueError for invalid JSON (json.JSONDecodeError is a ValueError)
    - Raises jsonschema.ValidationError when the envelope is malformed
    """
    body = json.loads(raw_body.decode("utf-8"))
    _validator.validate(body)
    return [WebhookEvent.from_dict(item) for item in body["events"]]


async def _accept(
    request: Request,
    secret: str,
    endpoint: str,
) -> tuple[Optional[WebhookResponse], List[WebhookEvent]]:
    """Run the shared checks; return (early response, events)."""
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not verify(raw_body, signature, secret):
        if not ALLOW_UNSIGNED_WEBHOOKS:
            logger.warning("%s: rejected request with missing or invalid signature", endpoint)
            return _reply("Invalid signature"), []
        logger.warning("%s: signature check failed; processing anyway (ALLOW_UNSIGNED_WEBHOOKS)", endpoint)

    try:
        events = parse_webhook_body(raw_body)
    except ValueError as exc:
        logger.warning("%s: invalid JSON body: %s", endpoint, exc)
        return _reply("Invalid JSON"), []
    except jsonschema.ValidationError as exc:
        logger.warning("%s: malformed webhook body: %s", endpoint, exc.message)
        return _reply("Invalid payload"), []

    return None, events


async def _run_bridge(bridge: MessageBridge, events: List[WebhookEvent]) -> None:
    try:
        await bridge.handle_events(events)
    except Exception:
        logger.exception("Webhook batch failed")


async def _run_transcriber(transcriber: VoiceTranscriber, events: List[WebhookEvent]) -> None:
    try:
        await transcriber.handle_events(events)
    except Exception:
        logger.exception("Voice webhook batch failed")


# ---------------------------------------------------------------------------
# Endpoints: Archive webhook
# ---------------------------------------------------------------------------


@app.get(
    "/webhook",
    response_model=EndpointStatusResponse,
    tags=["webhook"],
    summary="Webhook status",
    description="Static status answer, used when registering the webhook URL.",
)
async def webhook_status() -> EndpointStatusResponse:
    return EndpointStatusResponse(message="LINE webhook endpoint", status="OK", timestamp=_now_iso())


@app.post(
    "/webhook",
    response_model=WebhookResponse,
    tags=["webhook"],
    summary="Receive LINE events",
    description=(
        "Verifies the x-line-signature header, validates the body and schedules "
        "archiving of every event. Always answers 200."
    ),
)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    bridge: Annotated[Optional[MessageBridge], Depends(get_bridge)],
) -> WebhookResponse:
    early, events = await _accept(request, LINE_CHANNEL_SECRET, "webhook")
    if early is not None:
        return early

    if not events:
        return _reply("OK")
    if bridge is None:
        logger.error("Dropping %d event(s): archive bridge is not configured", len(events))
        return _reply("Not configured")

    logger.info("Accepted %d event(s)", len(events))
    background_tasks.add_task(_run_bridge, bridge, events)
    return _reply("OK", len(events))


# ---------------------------------------------------------------------------
# Endpoints: Voice webhook
# ---------------------------------------------------------------------------


@app.get(
    "/voice-webhook",
    response_model=EndpointStatusResponse,
    tags=["voice"],
    summary="Voice webhook status",
)
async def voice_webhook_status() -> EndpointStatusResponse:
    return EndpointStatusResponse(message="LINE voice transcription webhook", status="OK", timestamp=_now_iso())


@app.post(
    "/voice-webhook",
    response_model=WebhookResponse,
    tags=["voice"],
    summary="Receive LINE voice bot events",
    description="Same envelope rules as /webhook; audio messages are transcribed and replied to.",
)
async def receive_voice_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    transcriber: Annotated[Optional[VoiceTranscriber], Depends(get_transcriber)],
) -> WebhookResponse:
    early, events = await _accept(request, VOICE_LINE_CHANNEL_SECRET, "voice-webhook")
    if early is not None:
        return early

    if not events:
        return _reply("OK")
    if transcriber is None:
        logger.error("Dropping %d voice event(s): transcriber is not configured", len(events))
        return _reply("Not configured")

    background_tasks.add_task(_run_transcriber, transcriber, events)
    return _reply("OK", len(events))


# ---------------------------------------------------------------------------
# Endpoints: Health and debug
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check for load balancers and orchestrators.",
)
async def health_check(
    bridge: Annotated[Optional[MessageBridge], Depends(get_bridge)],
    transcriber: Annotated[Optional[VoiceTranscriber], Depends(get_transcriber)],
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        storage_configured=bridge is not None,
        voice_configured=transcriber is not None,
    )


def _require_debug() -> None:
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not Found")


@app.get(
    "/debug/logs",
    response_model=LogListResponse,
    tags=["debug"],
    summary="Recent log records",
    responses={404: {"model": ErrorResponse, "description": "Debug endpoints disabled"}},
)
async def list_logs(
    log_buffer: Annotated[LogBuffer, Depends(get_log_buffer)],
) -> LogListResponse:
    _require_debug()
    return LogListResponse(
        capacity=log_buffer.capacity,
        entries=[LogEntry(**entry) for entry in log_buffer.entries()],
    )


@app.delete(
    "/debug/logs",
    response_model=LogClearResponse,
    tags=["debug"],
    summary="Clear buffered log records",
    responses={404: {"model": ErrorResponse, "description": "Debug endpoints disabled"}},
)
async def clear_logs(
    log_buffer: Annotated[LogBuffer, Depends(get_log_buffer)],
) -> LogClearResponse:
    _require_debug()
    return LogClearResponse(cleared=log_buffer.clear())


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Serve the app with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
