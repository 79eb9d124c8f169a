"""
Twilio call gateway.

Places order calls and merges live provider status with the relay's
stored correlation data.
"""
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote

import httpx

from relayapi.config import Settings
from relayapi.errors import UpstreamError
from relayapi.logging_config import get_logger
from relayapi.models.call_record import CallRecord, CallStatus
from relayapi.services.call_session import CallSession
from relayapi.services.call_store import CallStore

logger = get_logger(component="call_gateway")

PROVIDER = "twilio"

TWIML_PATH = "/twilio/twiml"
STATUS_CALLBACK_PATH = "/twilio/status"

# Provider statuses that end a call, mapped to the relay's call status
TERMINAL_PROVIDER_STATUSES: dict[str, CallStatus] = {
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.FAILED,
    "no-answer": CallStatus.FAILED,
    "failed": CallStatus.FAILED,
    "canceled": CallStatus.FAILED,
}


def compose_order_message(order_details: str, dropoff_address: str | None = None) -> str:
    """Text spoken to the restaurant."""
    message = f"Hello, you have a new order. {order_details.strip()}"
    if not message.endswith((".", "!", "?")):
        message += "."
    if dropoff_address:
        message += f" The order will be delivered to {dropoff_address.strip()}."
    return message


def _parse_twilio_time(value: str | None) -> str | None:
    """Twilio uses RFC 2822 dates; hand them back as ISO 8601."""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).isoformat()
    except (TypeError, ValueError):
        return value


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Twilio API error: {response.status_code}"


class CallGateway:
    """Async client for the Twilio Calls resource."""

    def __init__(
        self,
        store: CallStore,
        account_sid: str,
        auth_token: str,
        from_number: str,
        public_base_url: str,
        api_base_url: str = "https://api.twilio.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.store = store
        self.account_sid = account_sid
        self.from_number = from_number
        self.public_base_url = public_base_url
        self._client = http_client or httpx.AsyncClient(
            base_url=api_base_url,
            auth=(account_sid, auth_token),
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, store: CallStore) -> "CallGateway":
        return cls(
            store,
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
            public_base_url=settings.BASE_URL,
            api_base_url=settings.TWILIO_API_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    async def close(self):
        await self._client.aclose()

    @property
    def _calls_path(self) -> str:
        return f"/2010-04-01/Accounts/{self.account_sid}/Calls"

    async def _send(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("twilio_timeout", method=method, path=path)
            raise UpstreamError(f"Twilio request timed out: {e}", provider=PROVIDER) from e
        except httpx.RequestError as e:
            logger.error("twilio_request_failed", method=method, path=path, error=str(e))
            raise UpstreamError(f"Twilio request failed: {e}", provider=PROVIDER) from e

        if response.is_error:
            logger.error(
                "twilio_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:2000],
            )
            raise UpstreamError(_error_message(response), provider=PROVIDER,
                                upstream_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Twilio returned a non-JSON body", provider=PROVIDER,
                                upstream_status=response.status_code) from e

    async def place_call(
        self,
        phone_number: str,
        message: str,
        delivery_id: str | None = None,
        order_details: str | None = None,
    ) -> CallRecord:
        """
        Place an order call.

        The record is stored only after Twilio accepts the call and issues
        a SID.
        """
        session = CallSession(message=message, delivery_id=delivery_id)
        form = {
            "To": phone_number,
            "From": self.from_number,
            "Url": session.url(self.public_base_url, TWIML_PATH),
            "Method": "POST",
            "StatusCallback": session.url(self.public_base_url, STATUS_CALLBACK_PATH),
            "StatusCallbackMethod": "POST",
            "StatusCallbackEvent": "completed",
        }

        log = logger.bind(delivery_id=delivery_id, to=phone_number)
        log.info("placing_call")
        data = await self._send("POST", f"{self._calls_path}.json", data=form)

        call_sid = data.get("sid")
        if not call_sid:
            raise UpstreamError("Twilio did not return a call SID", provider=PROVIDER)

        record = CallRecord(
            call_sid=call_sid,
            phone_number=phone_number,
            delivery_id=delivery_id,
            order_details=order_details or message,
            status=CallStatus.INITIATED,
        )
        await self.store.put(record)
        log.info("call_initiated", call_sid=call_sid, provider_status=data.get("status"))
        return record

    async def record_provider_status(self, call_sid: str, provider_status: str | None) -> CallRecord | None:
        """
        Apply a Twilio status callback.

        Only a call still marked initiated moves to completed/failed; a
        recorded accept or reject is kept.
        """
        status = TERMINAL_PROVIDER_STATUSES.get((provider_status or "").lower())
        if status is None:
            return await self.store.get(call_sid)

        record = await self.store.update_status(call_sid, status, expected=[CallStatus.INITIATED])
        logger.info(
            "call_status_callback",
            call_sid=call_sid,
            provider_status=provider_status,
            status=record.status.value if record else None,
        )
        return record

    async def fetch_call(self, call_sid: str) -> dict[str, Any]:
        """Live call resource from Twilio."""
        return await self._send("GET", f"{self._calls_path}/{quote(call_sid, safe='')}.json")

    async def get_call_status(self, call_sid: str) -> dict[str, Any]:
        """
        Live provider status merged with local correlation data.

        An unknown call_sid is not an error: correlation fields come back
        empty and the provider status is reported as is.
        """
        live = await self.fetch_call(call_sid)
        record = await self.store.get(call_sid)
        provider_status = live.get("status")

        if record is not None:
            status = record.status.value
        else:
            status = provider_status

        duration = live.get("duration")
        return {
            "call_sid": call_sid,
            "status": status,
            "provider_status": provider_status,
            "phone_number": record.phone_number if record else None,
            "delivery_id": record.delivery_id if record else None,
            "duration": int(duration) if duration not in (None, "") else None,
            "created_at": (
                record.created_at.isoformat() if record
                else _parse_twilio_time(live.get("date_created"))
            ),
            "end_time": _parse_twilio_time(live.get("end_time")),
            "response_time": _iso(record.response_time) if record else None,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
