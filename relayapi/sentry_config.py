"""
Sentry configuration for error tracking.

Captures unhandled exceptions and degraded webhook turns.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from relayapi.config import Settings, settings as default_settings
from relayapi.logging_config import get_logger

logger = get_logger(component="sentry")

# Keys whose values must never leave the process
_SCRUBBED_HEADERS = {"x-relay-secret", "authorization", "x-twilio-signature"}


def configure_sentry(settings: Settings | None = None):
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN to be set.
    """
    settings = settings or default_settings
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.info("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=scrub_secrets,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def scrub_secrets(event, hint):
    """Drop the relay secret and bearer credentials from request headers."""
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for key in list(headers):
            if key.lower() in _SCRUBBED_HEADERS:
                headers[key] = "[Filtered]"
    return event


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)

