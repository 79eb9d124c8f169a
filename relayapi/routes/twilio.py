"""
Twilio webhook routes.

Twilio renders whatever document it is given, so these routes always
answer 200 with TwiML; internal faults degrade to an apology script.
"""
from fastapi import APIRouter, Depends, Form, Request, Response

from relayapi.dependencies.auth import verify_twilio_signature
from relayapi.dependencies.services import get_call_gateway, get_ivr
from relayapi.logging_config import get_logger
from relayapi.routes.metrics import track_ivr_turn
from relayapi.sentry_config import capture_exception
from relayapi.services.call_gateway import CallGateway
from relayapi.services.call_session import CallSession
from relayapi.services.ivr import IVRStateMachine, apology_script
from relayapi.services.voice_script import empty_response

logger = get_logger(component="twilio_routes")

router = APIRouter(
    prefix="/twilio",
    tags=["twilio"],
    dependencies=[Depends(verify_twilio_signature)],
)


def twiml_response(script: str) -> Response:
    return Response(content=script, media_type="text/xml")


def session_from_request(request: Request, call_sid: str | None) -> CallSession:
    """Decode the session from the query string; Twilio's CallSid fills a missing SID."""
    return CallSession.from_query(request.query_params).with_call_sid(call_sid)


@router.post("/twiml")
async def render_twiml(
    request: Request,
    call_sid: str | None = Form(None, alias="CallSid"),
    ivr: IVRStateMachine = Depends(get_ivr),
):
    """
    Initial order-call script.

    Plays the order inside a one-digit Gather whose action points at
    /twilio/order-response with the same session.
    """
    try:
        session = session_from_request(request, call_sid)
        script = ivr.initial_script(session)
    except Exception as e:
        logger.error("twiml_render_failed", call_sid=call_sid, exc_info=e)
        capture_exception(e)
        script = apology_script()
    return twiml_response(script)


@router.post("/order-response")
async def order_response(
    request: Request,
    digits: str | None = Form(None, alias="Digits"),
    call_sid: str | None = Form(None, alias="CallSid"),
    ivr: IVRStateMachine = Depends(get_ivr),
):
    """
    Handle the restaurant's keypress.

    1 accepts, 2 declines, 3 repeats the order; anything else ends the
    call without changing the recorded status.
    """
    try:
        session = session_from_request(request, call_sid)
        turn = await ivr.respond(session, digits)
        track_ivr_turn(turn.state.value)
        script = turn.script
    except Exception as e:
        logger.error("order_response_failed", call_sid=call_sid, digits=digits, exc_info=e)
        capture_exception(e)
        track_ivr_turn("error")
        script = apology_script()
    return twiml_response(script)


@router.post("/status")
async def call_status_callback(
    request: Request,
    call_sid: str | None = Form(None, alias="CallSid"),
    call_status: str | None = Form(None, alias="CallStatus"),
    gateway: CallGateway = Depends(get_call_gateway),
):
    """Provider status callback; records completed/failed for unanswered calls."""
    session = session_from_request(request, call_sid)
    if session.call_sid:
        try:
            await gateway.record_provider_status(session.call_sid, call_status)
        except Exception as e:
            logger.error("status_callback_failed", call_sid=session.call_sid, exc_info=e)
            capture_exception(e)
    return twiml_response(empty_response())
