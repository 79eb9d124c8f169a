"""
DoorDash Drive client.

Quote -> accept -> track. Each call signs a fresh credential and the
partner's body is returned with a normalized `status` field.
"""
import uuid
from typing import Any
from urllib.parse import quote

import httpx

from relayapi.config import Settings
from relayapi.errors import UpstreamError, ValidationError, missing_fields_error
from relayapi.logging_config import get_logger
from relayapi.services.credential_service import CredentialBuilder

logger = get_logger(component="dispatch_client")

PROVIDER = "doordash"

QUOTE_REQUIRED_FIELDS = [
    "pickup_address",
    "pickup_business_name",
    "pickup_phone_number",
    "dropoff_address",
    "dropoff_business_name",
    "dropoff_phone_number",
    "order_value",
]

QUOTE_OPTIONAL_FIELDS = ["pickup_instructions", "dropoff_instructions"]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def build_quote_payload(body: dict[str, Any]) -> dict[str, Any]:
    """
    Validate a quote request and shape the partner payload.

    Assigns a random external_delivery_id when the caller did not supply
    one. Empty optional instructions are dropped.

    Raises:
        ValidationError: listing exactly the missing required fields, or
            describing a malformed order_value
    """
    missing = [field for field in QUOTE_REQUIRED_FIELDS if _is_blank(body.get(field))]
    if missing:
        raise missing_fields_error(missing)

    order_value = body["order_value"]
    if isinstance(order_value, bool) or not isinstance(order_value, int) or order_value <= 0:
        raise ValidationError("order_value must be a positive integer (minor currency units)")

    external_delivery_id = body.get("external_delivery_id")
    if _is_blank(external_delivery_id):
        external_delivery_id = str(uuid.uuid4())

    payload = {"external_delivery_id": str(external_delivery_id)}
    for field in QUOTE_REQUIRED_FIELDS:
        payload[field] = body[field]
    for field in QUOTE_OPTIONAL_FIELDS:
        if not _is_blank(body.get(field)):
            payload[field] = body[field]
    return payload


def _upstream_message(response: httpx.Response) -> str:
    """Pull the partner's error text out of a failed response."""
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        for key in ("message", "error", "reason"):
            if data.get(key):
                return str(data[key])
    return f"DoorDash API error: {response.status_code}"


class DispatchClient:
    """Async client for the DoorDash Drive v2 API."""

    def __init__(
        self,
        credentials: CredentialBuilder,
        base_url: str = "https://openapi.doordash.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.credentials = credentials
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchClient":
        credentials = CredentialBuilder(
            developer_id=settings.DOORDASH_DEVELOPER_ID,
            key_id=settings.DOORDASH_KEY_ID,
            signing_secret=settings.DOORDASH_SIGNING_SECRET,
        )
        return cls(
            credentials,
            base_url=settings.DOORDASH_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict[str, Any]:
        credential = self.credentials.build()
        headers = {"Authorization": credential.authorization_header}
        if json is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("doordash_timeout", method=method, path=path)
            raise UpstreamError(f"DoorDash request timed out: {e}", provider=PROVIDER) from e
        except httpx.RequestError as e:
            logger.error("doordash_request_failed", method=method, path=path, error=str(e))
            raise UpstreamError(f"DoorDash request failed: {e}", provider=PROVIDER) from e

        if response.is_error:
            message = _upstream_message(response)
            logger.error(
                "doordash_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:2000],
            )
            raise UpstreamError(message, provider=PROVIDER, upstream_status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("DoorDash returned a non-JSON body", provider=PROVIDER,
                                upstream_status=response.status_code) from e
        if not isinstance(data, dict):
            raise UpstreamError("DoorDash returned an unexpected body", provider=PROVIDER,
                                upstream_status=response.status_code)
        return data

    async def get_quote(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Request a delivery quote.

        Args:
            payload: output of build_quote_payload

        Returns:
            Partner quote body plus `status` mirrored from delivery_status
        """
        log = logger.bind(external_delivery_id=payload.get("external_delivery_id"))
        data = await self._request("POST", "/drive/v2/quotes", json=payload)
        log.info("quote_received", fee=data.get("fee"), delivery_status=data.get("delivery_status"))
        return {**data, "status": data.get("delivery_status")}

    async def accept_quote(self, external_delivery_id: str, tip: int | None = None) -> dict[str, Any]:
        """
        Commit a quote into a delivery.

        Must be called while the quote is still valid. The tip is only
        forwarded when given.
        """
        body = {"tip": tip} if tip is not None else {}
        data = await self._request(
            "POST",
            f"/drive/v2/quotes/{quote(external_delivery_id, safe='')}/accept",
            json=body,
        )
        logger.info(
            "quote_accepted",
            external_delivery_id=external_delivery_id,
            delivery_status=data.get("delivery_status"),
        )
        return {**data, "status": data.get("delivery_status") or "created"}

    async def get_delivery(self, external_delivery_id: str) -> dict[str, Any]:
        """Fetch current delivery status. Read-only."""
        data = await self._request("GET", f"/drive/v2/deliveries/{quote(external_delivery_id, safe='')}")
        return {
            **data,
            "external_delivery_id": data.get("external_delivery_id", external_delivery_id),
            "status": data.get("delivery_status") or "unknown",
        }
