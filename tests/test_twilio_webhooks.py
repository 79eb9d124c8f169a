"""
Twilio webhook tests.

Drives the call the way Twilio would: place it through the relay, follow
the Url from the placement form, then follow the Gather action.
"""
from urllib.parse import parse_qs, urlsplit
from xml.etree import ElementTree as ET

import pytest
from httpx import ASGITransport, AsyncClient

from relayapi.dependencies.auth import compute_twilio_signature
from relayapi.main import create_app
from relayapi.models.call_record import CallStatus
from relayapi.services.call_session import CallSession
from relayapi.services.call_store import MemoryCallStore
from relayapi.services.ivr import (
    ACCEPTED_MESSAGE,
    ENDED_MESSAGE,
    NO_MESSAGE_APOLOGY,
    REJECTED_MESSAGE,
)


def relative(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


def parse(response) -> ET.Element:
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/xml")
    return ET.fromstring(response.content)


@pytest.fixture
async def placed_call(client, auth_headers, fake_twilio):
    """Place a call; returns the SID and the twiml and status paths Twilio was given."""
    response = await client.post(
        "/relay/order-call",
        json={"phone_number": "+15551112222", "order_details": "2x Pad Thai & rice", "delivery_id": "D-5"},
        headers=auth_headers,
    )
    form = parse_qs(fake_twilio.requests[0].content.decode())
    return response.json()["call_sid"], relative(form["Url"][0]), relative(form["StatusCallback"][0])


async def answer(client, placed_call):
    """Fetch the opening script and return it with the Gather action path."""
    call_sid, twiml_path, _ = placed_call
    response = await client.post(twiml_path, data={"CallSid": call_sid, "CallStatus": "in-progress"})
    root = parse(response)
    return response, relative(root.find("Gather").get("action"))


async def test_opening_script(client, placed_call):
    call_sid, twiml_path, _ = placed_call

    response = await client.post(twiml_path, data={"CallSid": call_sid})
    root = parse(response)

    gather = root.find("Gather")
    assert gather.get("numDigits") == "1"
    assert gather.find("Say").text == "Hello, you have a new order. 2x Pad Thai & rice."
    action = CallSession.from_query({k: v[0] for k, v in parse_qs(urlsplit(gather.get("action")).query).items()})
    assert action.call_sid == call_sid
    assert action.delivery_id == "D-5"


async def test_opening_script_without_message(client):
    root = parse(await client.post("/twilio/twiml", data={"CallSid": "CA1"}))

    assert root.find("Say").text == NO_MESSAGE_APOLOGY
    assert root.find("Hangup") is not None


async def test_press_1_accepts(client, auth_headers, placed_call, call_store):
    call_sid = placed_call[0]
    _, action = await answer(client, placed_call)

    root = parse(await client.post(action, data={"Digits": "1", "CallSid": call_sid}))

    assert root.find("Say").text == ACCEPTED_MESSAGE
    record = await call_store.get(call_sid)
    assert record.status == CallStatus.ACCEPTED
    assert record.response_time is not None

    polled = await client.get(f"/relay/order-call/{call_sid}/status", headers=auth_headers)
    assert polled.json()["status"] == "accepted"
    assert polled.json()["response_time"] is not None


async def test_press_2_rejects(client, placed_call, call_store):
    call_sid = placed_call[0]
    _, action = await answer(client, placed_call)

    root = parse(await client.post(action, data={"Digits": "2", "CallSid": call_sid}))

    assert root.find("Say").text == REJECTED_MESSAGE
    assert (await call_store.get(call_sid)).status == CallStatus.REJECTED


async def test_press_3_repeats_opening_script(client, placed_call, call_store):
    call_sid = placed_call[0]
    opening, action = await answer(client, placed_call)

    repeated = await client.post(action, data={"Digits": "3", "CallSid": call_sid})

    assert repeated.status_code == 200
    assert repeated.text == opening.text
    assert (await call_store.get(call_sid)).status == CallStatus.INITIATED


@pytest.mark.parametrize("form", [{"Digits": "7"}, {"Digits": ""}, {}])
async def test_other_input_leaves_status(client, placed_call, call_store, form):
    call_sid = placed_call[0]
    _, action = await answer(client, placed_call)

    root = parse(await client.post(action, data={**form, "CallSid": call_sid}))

    assert root.find("Say").text == ENDED_MESSAGE
    record = await call_store.get(call_sid)
    assert record.status == CallStatus.INITIATED
    assert record.response_time is None


async def test_replayed_webhook_keeps_first_answer(client, placed_call, call_store):
    call_sid = placed_call[0]
    _, action = await answer(client, placed_call)

    await client.post(action, data={"Digits": "1", "CallSid": call_sid})
    first = await call_store.get(call_sid)
    root = parse(await client.post(action, data={"Digits": "2", "CallSid": call_sid}))

    assert root.find("Say").text == ACCEPTED_MESSAGE
    assert await call_store.get(call_sid) == first


async def test_keypress_for_unknown_call(client):
    query = CallSession(message="Hello", call_sid="CAghost").to_query()

    response = await client.post(f"/twilio/order-response?{query}", data={"Digits": "1"})

    assert parse(response).find("Say").text == ENDED_MESSAGE


async def test_fault_degrades_to_apology(settings, dispatch_client, call_gateway):
    class BrokenStore(MemoryCallStore):
        async def get(self, call_sid):
            raise RuntimeError("store offline")

    app = create_app(settings, dispatch_client=dispatch_client, call_gateway=call_gateway, call_store=BrokenStore())
    query = CallSession(message="Hello", call_sid="CA1").to_query()

    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
            response = await client.post(f"/twilio/order-response?{query}", data={"Digits": "1", "CallSid": "CA1"})

    root = parse(response)
    assert "an error occurred" in root.find("Say").text
    assert root.find("Hangup") is not None


# ============================================
# Status callback
# ============================================

async def test_unanswered_call_is_marked_failed(client, placed_call, call_store):
    call_sid, _, status_path = placed_call

    response = await client.post(status_path, data={"CallSid": call_sid, "CallStatus": "no-answer"})

    assert len(parse(response)) == 0
    assert (await call_store.get(call_sid)).status == CallStatus.FAILED


async def test_completed_call_keeps_answer(client, placed_call, call_store):
    call_sid, _, status_path = placed_call
    _, action = await answer(client, placed_call)
    await client.post(action, data={"Digits": "2", "CallSid": call_sid})

    await client.post(status_path, data={"CallSid": call_sid, "CallStatus": "completed"})

    assert (await call_store.get(call_sid)).status == CallStatus.REJECTED


async def test_status_callback_without_sid(client):
    response = await client.post("/twilio/status", data={"CallStatus": "completed"})
    assert len(parse(response)) == 0


# ============================================
# Signature validation
# ============================================

async def test_unsigned_webhook_rejected_when_validation_enabled(client, settings):
    settings.TWILIO_VALIDATE_SIGNATURES = True

    response = await client.post("/twilio/twiml?v=1&message=Hello", data={"CallSid": "CA1"})

    assert response.status_code == 403
    assert response.headers["content-type"].startswith("text/xml")
    assert len(ET.fromstring(response.content)) == 0


async def test_signed_webhook_accepted(client, settings):
    settings.TWILIO_VALIDATE_SIGNATURES = True
    session = CallSession(message="Hello order", call_sid="CA1")
    form = {"CallSid": "CA1", "AccountSid": settings.TWILIO_ACCOUNT_SID, "CallStatus": "in-progress"}
    signature = compute_twilio_signature(
        settings.TWILIO_AUTH_TOKEN,
        session.url(settings.BASE_URL, "/twilio/twiml"),
        form,
    )

    response = await client.post(
        f"/twilio/twiml?{session.to_query()}",
        data=form,
        headers={"X-Twilio-Signature": signature},
    )

    assert parse(response).find("Gather/Say").text == "Hello order"


async def test_tampered_params_fail_signature(client, settings):
    settings.TWILIO_VALIDATE_SIGNATURES = True
    session = CallSession(message="Hello order", call_sid="CA1")
    signature = compute_twilio_signature(
        settings.TWILIO_AUTH_TOKEN,
        session.url(settings.BASE_URL, "/twilio/order-response"),
        {"CallSid": "CA1", "Digits": "2"},
    )

    response = await client.post(
        f"/twilio/order-response?{session.to_query()}",
        data={"CallSid": "CA1", "Digits": "1"},
        headers={"X-Twilio-Signature": signature},
    )

    assert response.status_code == 403
