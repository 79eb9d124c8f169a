"""
SeekerEats Relay API

FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from relayapi.config import Settings, settings as default_settings
from relayapi.logging_config import get_logger
from relayapi.sentry_config import configure_sentry
from relayapi.middleware.logging import LoggingMiddleware
from relayapi.routes.metrics import router as metrics_router

# Import route modules
from relayapi.routes.relay import router as relay_router
from relayapi.routes.twilio import router as twilio_router

from relayapi.dependencies.auth import TwilioSignatureError, twilio_signature_error_handler
from relayapi.errors import ConfigurationError, register_exception_handlers
from relayapi.services.call_gateway import CallGateway
from relayapi.services.call_store import CallStore, create_call_store
from relayapi.services.dispatch_client import DispatchClient

logger = get_logger(component="main")

ENDPOINTS = {
    "health": "GET /health",
    "metrics": "GET /metrics",
    "quote": "POST /relay/delivery",
    "acceptQuote": "POST /relay/delivery/{id}/accept",
    "deliveryStatus": "GET /relay/delivery/{id}",
    "phoneCall": "POST /relay/order-call",
    "callStatus": "GET /relay/order-call/{call_sid}/status",
    "config": "GET /relay/config",
    "twiml": "POST /twilio/twiml",
    "orderResponse": "POST /twilio/order-response",
    "callStatusCallback": "POST /twilio/status",
}


def create_app(
    settings: Settings | None = None,
    *,
    dispatch_client: DispatchClient | None = None,
    call_gateway: CallGateway | None = None,
    call_store: CallStore | None = None,
) -> FastAPI:
    """
    Build the relay application.

    Collaborators that are not passed in are built from settings when the
    application starts; missing or malformed configuration stops startup.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = settings.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        store = call_store or create_call_store(settings)
        await store.initialize()
        dispatch = dispatch_client or DispatchClient.from_settings(settings)
        gateway = call_gateway or CallGateway.from_settings(settings, store)

        app.state.settings = settings
        app.state.call_store = store
        app.state.dispatch_client = dispatch
        app.state.call_gateway = gateway

        logger.info(
            "relay_started",
            environment=settings.ENVIRONMENT,
            developer_id=settings.DOORDASH_DEVELOPER_ID[:8] + "...",
            phone_calls_enabled=settings.ENABLE_PHONE_CALLS,
        )
        try:
            yield
        finally:
            # Only close what this lifespan created
            if dispatch_client is None:
                await dispatch.close()
            if call_gateway is None:
                await gateway.close()
            if call_store is None:
                await store.close()
            logger.info("relay_stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Relay between the ordering client, DoorDash Drive and Twilio order calls",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.add_exception_handler(TwilioSignatureError, twilio_signature_error_handler)

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)

    # Protected relay routes
    app.include_router(relay_router)

    # Twilio webhooks (no shared secret)
    app.include_router(twilio_router)

    @app.get("/")
    async def root():
        """API info."""
        return {
            "api": settings.APP_NAME,
            "status": "online",
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": ENDPOINTS,
            "note": "All /relay endpoints require X-Relay-Secret header",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


def build_default_app() -> FastAPI:
    configure_sentry()
    return create_app()


app = build_default_app()
