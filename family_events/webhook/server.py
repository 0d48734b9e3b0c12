"""FastAPI server: SMS and Gmail reply webhooks, OAuth administration, family and approval APIs."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from family_events.config import (
    SCHEDULER_ENABLED,
    SCHEDULER_INTERVAL_SECONDS,
    SMS_WEBHOOK_URL,
    TWILIO_AUTH_TOKEN,
    TWILIO_VERIFY_SIGNATURE,
)
from family_events.db import init_db
from family_events.errors import (
    EventNotFoundError,
    MalformedPushError,
    PushVerificationError,
    UserNotFoundError,
)
from family_events.scheduler.timeouts import run_periodic
from family_events.services import Services, build_services
from family_events.utils.logger import get_logger
from family_events.webhook.approval_routes import router as approvals_router
from family_events.webhook.family_routes import router as family_router
from family_events.webhook.family_routes import set_members
from family_events.webhook.models import InboundSms
from family_events.webhook.oauth_routes import router as oauth_router
from family_events.webhook.security import verify_twilio_signature
from family_events.webhook.sms_listener import handle_inbound_sms

logger = get_logger("family_events.webhook.server")

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _twiml_response(status_code: int = 200) -> Response:
    return Response(content=EMPTY_TWIML, status_code=status_code, media_type="application/xml")


def _install_services(app: FastAPI, services: Services) -> None:
    app.state.services = services
    app.state.credentials = services.credentials
    app.state.notifier = services.notifier
    app.state.email_listener = services.email_listener
    app.state.processed_cache = services.cache
    set_members(app, services.notifier.members)


async def _shutdown_tasks(app: FastAPI) -> None:
    """Cancel the scheduler task, then close provider HTTP clients."""
    task: Optional[asyncio.Task[Any]] = getattr(app.state, "_scheduler_task", None)
    if task is not None and not task.done():
        task.cancel()
        try:
            await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("webhook.lifespan.shutdown_timeout", timeout=10.0)
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()


@asynccontextmanager
async def _lifespan(app: FastAPI, start_scheduler: bool, interval_seconds: int):
    init_db()
    app.state._scheduler_task = None
    if start_scheduler:
        app.state._scheduler_task = asyncio.create_task(run_periodic(app.state.notifier, interval_seconds))
    logger.info("webhook.lifespan.started", scheduler=start_scheduler)
    yield
    await _shutdown_tasks(app)
    logger.info("webhook.lifespan.stopped")


def create_app(
    services: Optional[Services] = None,
    start_scheduler: bool = SCHEDULER_ENABLED,
    scheduler_interval_seconds: int = SCHEDULER_INTERVAL_SECONDS,
    verify_sms_signature: bool = TWILIO_VERIFY_SIGNATURE,
    twilio_auth_token: str = TWILIO_AUTH_TOKEN,
) -> FastAPI:
    """Create the FastAPI app. Components not supplied in ``services`` are built from configuration."""
    app = FastAPI(
        title="Family Event Approvals",
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, start_scheduler, scheduler_interval_seconds),
    )
    _install_services(app, services or build_services())

    app.include_router(oauth_router)
    app.include_router(family_router)
    app.include_router(approvals_router)

    @app.exception_handler(EventNotFoundError)
    @app.exception_handler(UserNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook/sms")
    async def sms_webhook(request: Request) -> Response:
        """Twilio inbound message webhook. Always answers with an empty TwiML document."""
        form = await request.form()
        params = {k: str(v) for k, v in form.items()}
        if verify_sms_signature:
            url = SMS_WEBHOOK_URL or str(request.url)
            if not verify_twilio_signature(
                twilio_auth_token, url, params, request.headers.get("X-Twilio-Signature")
            ):
                raise HTTPException(status_code=403, detail="Invalid signature")
        try:
            sms = InboundSms.model_validate(params)
        except ValueError:
            logger.warning("webhook.sms.malformed", fields=sorted(params))
            return _twiml_response(status_code=400)
        await handle_inbound_sms(
            request.app.state.notifier,
            request.app.state.processed_cache,
            sms.from_,
            sms.body,
            sms.message_sid,
        )
        return _twiml_response()

    @app.post("/webhook/gmail/notifications")
    async def gmail_notifications(request: Request) -> dict[str, Any]:
        """Gmail watch push via Pub/Sub: 401 on failed verification, 400 on a malformed body."""
        listener = request.app.state.email_listener
        try:
            body = await request.json()
        except ValueError:
            body = None
        try:
            result = await listener.handle_push(request.headers.get("Authorization"), body)
        except PushVerificationError as e:
            logger.warning("webhook.gmail.push_rejected", error=str(e))
            raise HTTPException(status_code=401, detail="Unauthorized") from e
        except MalformedPushError as e:
            logger.warning("webhook.gmail.push_malformed", error=str(e))
            raise HTTPException(status_code=400, detail="Malformed push") from e
        return {"status": result.status, "messages": len(result.messages)}

    return app
