import logging
from contextlib import asynccontextmanager
from functools import lru_cache, partial
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from twilio.twiml.messaging_response import MessagingResponse

from autoreply.config import Settings, get_settings
from autoreply.errors import AutoReplyError, DispatchError, MalformedInput
from autoreply.handler import WebhookHandler
from autoreply.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from autoreply.messaging import TwilioMessenger
from autoreply.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from autoreply.schemas import (
    ErrorResponse,
    HealthResponse,
    InboundMessage,
    IndexResponse,
    SendMessageError,
    SendMessageRequest,
    SendMessageResponse,
)
from autoreply.sheets import SheetsLogStore
from autoreply.utils import local_now, verify_twilio_signature


# Fails fast when ACCOUNT_SID / AUTH_TOKEN are missing
settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache()
def get_store() -> SheetsLogStore:
    """Process-wide log store; its client and sheet name are resolved lazily."""
    return SheetsLogStore.from_settings(get_settings())


@lru_cache()
def get_messenger() -> TwilioMessenger:
    return TwilioMessenger.from_settings(get_settings())


def get_handler(
    store: SheetsLogStore = Depends(get_store),
    messenger: TwilioMessenger = Depends(get_messenger),
    settings: Settings = Depends(get_settings),
) -> WebhookHandler:
    return WebhookHandler(
        store=store,
        reply_text=settings.REPLY_MESSAGE,
        messenger=messenger,
        reply_via_api=settings.REPLY_MODE == "api",
        default_from=settings.DEFAULT_FROM,
        clock=partial(local_now, settings.TIMEZONE),
    )


def prepare_store(store: SheetsLogStore) -> None:
    """
    Connect to Google Sheets and make sure the header row exists.

    Failures are logged and swallowed: without the sheet the service
    still replies, it just cannot log or deduplicate.
    """
    try:
        store.ensure_ready()
    except AutoReplyError as e:
        logger.error(f"Google Sheets initialization failed, but server will continue: {e}")
        logger.error("Messages will still be replied to, but won't be logged to Google Sheets.")
        return
    store.resolve_target_sheet()
    store.ensure_header_row()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: connect to Google Sheets and ensure the header row
    """
    store = app.dependency_overrides.get(get_store, get_store)()
    await run_in_threadpool(prepare_store, store)
    yield


app = FastAPI(
    title="WhatsApp Auto-Responder",
    description="Replies once to each new WhatsApp sender and logs every message to Google Sheets",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def _twiml(twiml: MessagingResponse) -> Response:
    return Response(content=str(twiml), media_type="text/xml")


async def _read_payload(request: Request) -> dict:
    """Twilio posts form data; JSON bodies are accepted for manual testing."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError (non UTF-8 body)
            raise MalformedInput(f"Invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedInput("JSON payload must be an object")
        return payload

    try:
        form = await request.form()
    except (MultiPartException, StarletteHTTPException) as e:
        raise MalformedInput(f"Unparsable form body: {getattr(e, 'detail', None) or e}") from e
    return dict(form)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe - always ok once the app is running."""
    return HealthResponse(status="ok")


@app.get("/", response_model=IndexResponse)
async def index(request: Request) -> IndexResponse:
    """Describe the service and the webhook URL to paste into the Twilio Console."""
    protocol = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or "your-domain.com"

    return IndexResponse(
        message="Twilio WhatsApp Server",
        endpoints={
            "POST /send-message": "Send a WhatsApp message",
            "POST /webhook": "Twilio webhook for incoming messages",
            "GET /health": "Health check",
        },
        webhookUrl=f"{protocol}://{host}/webhook",
        status="Server is running! Configure this webhook URL in Twilio Console.",
    )


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_class=Response,
    responses={
        200: {"content": {"text/xml": {}}, "description": "TwiML reply (empty if no reply)"},
        403: {"model": ErrorResponse, "description": "Invalid signature"},
    },
)
async def webhook(
    request: Request,
    x_twilio_signature: Annotated[Optional[str], Header(alias="X-Twilio-Signature")] = None,
    handler: WebhookHandler = Depends(get_handler),
    settings: Settings = Depends(get_settings),
) -> Response:
    """
    Handle an incoming WhatsApp message.

    - New sender: reply with the canned message (TwiML or Messages API)
    - Known sender: no reply
    - Always: append a row to the log sheet (best effort)

    Always answers 200 with TwiML so Twilio never retries or times out,
    except for requests failing signature validation.
    """
    try:
        payload = await _read_payload(request)

        if settings.VALIDATE_TWILIO_SIGNATURE:
            url = f"{settings.PUBLIC_URL.rstrip('/')}/webhook" if settings.PUBLIC_URL else str(request.url)
            if not verify_twilio_signature(settings.AUTH_TOKEN, url, payload, x_twilio_signature):
                logger.error("Invalid Twilio signature")
                record_webhook_outcome("invalid_signature")
                log_webhook_data(request, result="invalid_signature")
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid signature")

        message = InboundMessage.from_payload(payload)
    except MalformedInput as e:
        logger.warning(f"Malformed webhook payload: {e}")
        record_webhook_outcome("malformed")
        log_webhook_data(request, result="malformed")
        return _twiml(MessagingResponse())

    twiml = MessagingResponse()
    try:
        result = await run_in_threadpool(handler.handle, message)
    except Exception:
        logger.exception(f"Error processing webhook from {message.from_number}")
        record_webhook_outcome("error")
        log_webhook_data(request, sender=message.from_number, result="error")
        return _twiml(MessagingResponse())

    if result.reply:
        twiml.message(result.reply)

    outcome = "replied" if result.replied else "suppressed"
    record_webhook_outcome(outcome)
    log_webhook_data(
        request,
        sender=message.from_number,
        replied=result.replied,
        logged=result.logged,
        result=outcome,
    )
    return _twiml(twiml)


# =============================================================================
# Send Message Route
# =============================================================================

@app.post(
    "/send-message",
    response_model=SendMessageResponse,
    responses={500: {"model": SendMessageError}},
)
async def send_message(
    payload: Optional[SendMessageRequest] = None,
    messenger: TwilioMessenger = Depends(get_messenger),
    settings: Settings = Depends(get_settings),
):
    """
    Send a templated WhatsApp message.

    Every field is optional and falls back to the DEFAULT_TO, DEFAULT_FROM,
    CONTENT_SID and CONTENT_VARIABLES settings.
    """
    payload = payload or SendMessageRequest()
    to = payload.to or settings.DEFAULT_TO
    from_number = payload.from_number or settings.DEFAULT_FROM

    if not to:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=SendMessageError(error="No destination: pass 'to' or set DEFAULT_TO").model_dump(),
        )

    try:
        sid = await run_in_threadpool(
            messenger.send,
            to=to,
            from_=from_number,
            content_sid=payload.content_sid or settings.CONTENT_SID,
            content_variables=payload.content_variables or settings.CONTENT_VARIABLES,
        )
    except DispatchError as e:
        logger.error(f"Error sending message: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=SendMessageError(error=str(e)).model_dump(),
        )

    return SendMessageResponse(message_sid=sid)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
