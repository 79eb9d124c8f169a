"""
Pytest configuration and fixtures.

DoorDash and Twilio are replaced by in-process fakes mounted on
httpx.MockTransport; the relay itself runs through ASGITransport with its
lifespan entered.
"""
import base64
import json
import re
import uuid
from urllib.parse import parse_qs

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from relayapi.config import Settings
from relayapi.main import create_app
from relayapi.services.call_gateway import CallGateway
from relayapi.services.call_store import MemoryCallStore
from relayapi.services.credential_service import CredentialBuilder
from relayapi.services.dispatch_client import DispatchClient

RELAY_SECRET = "test-relay-secret"
SIGNING_KEY = b"doordash-signing-key-for-tests-0123456789"
ACCOUNT_SID = "ACtest0000000000000000000000000000"
BASE_URL = "https://relay.example.com"


class FakeDoorDash:
    """Minimal DoorDash Drive v2: quotes, accept, deliveries."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.quotes: dict[str, dict] = {}
        self.accepted: dict[str, dict] = {}
        self.fail_with: tuple[int, dict] | None = None
        self.accept_status: str | None = None  # None: omit delivery_status on accept

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        path = request.url.path
        if request.method == "POST" and path == "/drive/v2/quotes":
            body = json.loads(request.content)
            quote = {
                **body,
                "delivery_status": "quote",
                "fee": 975,
                "currency": "USD",
                "pickup_time_estimated": "2026-10-19T18:10:00Z",
                "dropoff_time_estimated": "2026-10-19T18:40:00Z",
            }
            self.quotes[body["external_delivery_id"]] = quote
            return httpx.Response(200, json=quote)

        match = re.fullmatch(r"/drive/v2/quotes/([^/]+)/accept", path)
        if request.method == "POST" and match:
            quote = self.quotes.get(match.group(1))
            if quote is None:
                return httpx.Response(404, json={"code": "not_found", "message": "Quote not found"})
            delivery = {k: v for k, v in quote.items() if k != "delivery_status"}
            delivery["tracking_url"] = f"https://track.example.com/{match.group(1)}"
            if self.accept_status:
                delivery["delivery_status"] = self.accept_status
            body = json.loads(request.content or b"{}")
            if "tip" in body:
                delivery["tip"] = body["tip"]
            self.accepted[match.group(1)] = delivery
            return httpx.Response(200, json=delivery)

        match = re.fullmatch(r"/drive/v2/deliveries/([^/]+)", path)
        if request.method == "GET" and match:
            delivery = self.accepted.get(match.group(1))
            if delivery is None:
                return httpx.Response(404, json={"code": "not_found", "message": "Delivery not found"})
            return httpx.Response(200, json={**delivery, "delivery_status": "enroute_to_pickup"})

        return httpx.Response(404, json={"message": "unknown route"})


class FakeTwilio:
    """Minimal Twilio Calls resource."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.calls: dict[str, dict] = {}
        self.fail_with: tuple[int, dict] | None = None

    @property
    def calls_path(self) -> str:
        return f"/2010-04-01/Accounts/{ACCOUNT_SID}/Calls"

    def add_provider_call(self, sid: str, status: str = "completed", **fields) -> dict:
        """A call Twilio knows about but the relay never stored."""
        call = {
            "sid": sid,
            "status": status,
            "date_created": "Mon, 19 Oct 2026 12:00:00 +0000",
            "end_time": "Mon, 19 Oct 2026 12:01:05 +0000",
            "duration": "65",
            **fields,
        }
        self.calls[sid] = call
        return call

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        path = request.url.path
        if request.method == "POST" and path == f"{self.calls_path}.json":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            sid = "CA" + uuid.uuid4().hex
            call = {
                "sid": sid,
                "status": "queued",
                "to": form["To"],
                "from": form["From"],
                "date_created": "Mon, 19 Oct 2026 12:00:00 +0000",
                "end_time": None,
                "duration": None,
            }
            self.calls[sid] = call
            return httpx.Response(201, json=call)

        match = re.fullmatch(rf"{self.calls_path}/([^/]+)\.json", path)
        if request.method == "GET" and match:
            call = self.calls.get(match.group(1))
            if call is None:
                return httpx.Response(404, json={"code": 20404, "message": "The requested resource was not found", "status": 404})
            return httpx.Response(200, json=call)

        return httpx.Response(404, json={"message": "unknown route"})


@pytest.fixture
def signing_key() -> bytes:
    return SIGNING_KEY


@pytest.fixture
def signing_secret() -> str:
    return base64.urlsafe_b64encode(SIGNING_KEY).decode().rstrip("=")


@pytest.fixture
def settings(signing_secret) -> Settings:
    return Settings(
        _env_file=None,
        RELAY_SECRET=RELAY_SECRET,
        DOORDASH_DEVELOPER_ID="dev-1234-5678",
        DOORDASH_KEY_ID="key-abcd",
        DOORDASH_SIGNING_SECRET=signing_secret,
        TWILIO_ACCOUNT_SID=ACCOUNT_SID,
        TWILIO_AUTH_TOKEN="twilio-auth-token",
        TWILIO_PHONE_NUMBER="+15550000000",
        TEST_PHONE_NUMBER="+15551112222",
        BASE_URL=BASE_URL,
        CALL_STORE_BACKEND="memory",
        ENABLE_PHONE_CALLS=True,
    )


@pytest.fixture
def fake_doordash() -> FakeDoorDash:
    return FakeDoorDash()


@pytest.fixture
def fake_twilio() -> FakeTwilio:
    return FakeTwilio()


@pytest.fixture
def credentials(settings) -> CredentialBuilder:
    return CredentialBuilder(
        developer_id=settings.DOORDASH_DEVELOPER_ID,
        key_id=settings.DOORDASH_KEY_ID,
        signing_secret=settings.DOORDASH_SIGNING_SECRET,
    )


@pytest.fixture
def dispatch_client(credentials, fake_doordash) -> DispatchClient:
    http_client = httpx.AsyncClient(
        base_url="https://openapi.doordash.com",
        transport=httpx.MockTransport(fake_doordash),
    )
    return DispatchClient(credentials, http_client=http_client)


@pytest.fixture
def call_store() -> MemoryCallStore:
    return MemoryCallStore()


@pytest.fixture
def call_gateway(settings, call_store, fake_twilio) -> CallGateway:
    http_client = httpx.AsyncClient(
        base_url="https://api.twilio.com",
        transport=httpx.MockTransport(fake_twilio),
    )
    return CallGateway(
        call_store,
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_PHONE_NUMBER,
        public_base_url=settings.BASE_URL,
        http_client=http_client,
    )


@pytest.fixture
def app(settings, dispatch_client, call_gateway, call_store):
    return create_app(
        settings,
        dispatch_client=dispatch_client,
        call_gateway=call_gateway,
        call_store=call_store,
    )


@pytest.fixture
async def client(app):
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as c:
            yield c


@pytest.fixture
def auth_headers() -> dict:
    return {"X-Relay-Secret": RELAY_SECRET}


@pytest.fixture
def quote_body() -> dict:
    return {
        "pickup_address": "901 Market Street 6th Floor San Francisco, CA 94103",
        "pickup_business_name": "Wells Fargo SF Downtown",
        "pickup_phone_number": "+16505555555",
        "pickup_instructions": "Enter gate code 1234 on the callbox.",
        "dropoff_address": "901 Market Street 6th Floor San Francisco, CA 94103",
        "dropoff_business_name": "Wells Fargo SF Downtown",
        "dropoff_phone_number": "+16505555555",
        "order_value": 1999,
    }
