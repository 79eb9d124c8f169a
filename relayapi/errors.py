"""
Relay error taxonomy and FastAPI exception handlers.

Every error leaves the relay as {"error": ..., "message": ...}.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relayapi.logging_config import get_logger
from relayapi.routes.metrics import track_upstream_error
from relayapi.sentry_config import capture_exception

logger = get_logger(component="errors")


class RelayError(Exception):
    """Base class for errors surfaced to relay clients."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(RelayError):
    """Missing or malformed required field."""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bad Request"


class AuthError(RelayError):
    """Missing or incorrect shared secret."""
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class NotFoundError(RelayError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class UpstreamError(RelayError):
    """
    The dispatch partner or telephony provider failed.

    Carries the provider name and the upstream HTTP status (None for
    timeouts and transport errors).
    """

    def __init__(self, message: str, provider: str, upstream_status: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status


class InternalError(RelayError):
    pass


class ServiceUnavailableError(RelayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"


class ConfigurationError(Exception):
    """Raised at startup when required configuration is missing or malformed."""


def missing_fields_error(missing: list[str]) -> ValidationError:
    return ValidationError(f"Missing required fields: {', '.join(missing)}")


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        track_upstream_error(exc.provider)
        logger.error(
            "upstream_error",
            path=request.url.path,
            provider=exc.provider,
            upstream_status=exc.upstream_status,
            message=exc.message,
        )
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status_code=exc.status_code,
            message=exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        if loc:
            fields.append(".".join(loc))
    message = f"Invalid fields: {', '.join(fields)}" if fields else "Invalid request body"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationError(message).to_dict(),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        body = NotFoundError(f"Route {request.method} {request.url.path} not found").to_dict()
    else:
        body = {"error": "HTTP Error", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=request.url.path, exc_info=exc)
    capture_exception(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=InternalError("An unexpected error occurred").to_dict(),
    )


def register_exception_handlers(app: FastAPI):
    """Attach the relay's error rendering to an application."""
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
