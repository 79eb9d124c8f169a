"""
Authentication dependencies for FastAPI.

/relay/* routes require the shared X-Relay-Secret header. Twilio
webhooks are optionally checked against X-Twilio-Signature.
"""
import base64
import hashlib
import hmac
from typing import Mapping

from fastapi import Depends, Request, Response, status

from relayapi.config import Settings
from relayapi.dependencies.services import get_settings
from relayapi.errors import AuthError
from relayapi.logging_config import get_logger
from relayapi.services.voice_script import empty_response

logger = get_logger(component="auth")

RELAY_SECRET_HEADER = "X-Relay-Secret"
TWILIO_SIGNATURE_HEADER = "X-Twilio-Signature"


async def require_relay_secret(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Dependency that requires the shared relay secret.

    Raises AuthError (401) when the header is missing or wrong.

    Usage:
        router = APIRouter(dependencies=[Depends(require_relay_secret)])
    """
    provided = request.headers.get(RELAY_SECRET_HEADER)

    if not provided:
        raise AuthError(f"Missing {RELAY_SECRET_HEADER} header")

    if not settings.RELAY_SECRET or not hmac.compare_digest(
        provided.encode(), settings.RELAY_SECRET.encode()
    ):
        logger.warning("invalid_relay_secret", path=request.url.path)
        raise AuthError(f"Invalid {RELAY_SECRET_HEADER}")


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """HMAC-SHA1 over the full URL followed by the sorted POST params, base64."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def public_url(request: Request, base_url: str) -> str:
    """The URL Twilio requested, rebuilt from the configured public base."""
    url = f"{base_url.rstrip('/')}{request.url.path}" if base_url else str(request.url).split("?")[0]
    if request.url.query:
        url += f"?{request.url.query}"
    return url


class TwilioSignatureError(Exception):
    """Webhook signature did not validate."""


async def verify_twilio_signature(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Dependency validating Twilio webhook signatures.

    A no-op unless TWILIO_VALIDATE_SIGNATURES is enabled.
    """
    if not settings.TWILIO_VALIDATE_SIGNATURES:
        return

    signature = request.headers.get(TWILIO_SIGNATURE_HEADER, "")
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    expected = compute_twilio_signature(
        settings.TWILIO_AUTH_TOKEN,
        public_url(request, settings.BASE_URL),
        params,
    )

    if not signature or not hmac.compare_digest(expected, signature):
        logger.warning("invalid_twilio_signature", path=request.url.path)
        raise TwilioSignatureError()


async def twilio_signature_error_handler(request: Request, exc: TwilioSignatureError) -> Response:
    """Answer with 403 and an empty TwiML document."""
    return Response(
        content=empty_response(),
        status_code=status.HTTP_403_FORBIDDEN,
        media_type="text/xml",
    )
