"""
Relay API routes.

Delivery quote/accept/track against DoorDash and order calls through
Twilio. Every route requires the X-Relay-Secret header.
"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, StrictInt

from relayapi.config import Settings
from relayapi.dependencies.auth import require_relay_secret
from relayapi.dependencies.services import get_call_gateway, get_dispatch_client, get_settings
from relayapi.errors import ServiceUnavailableError, UpstreamError, missing_fields_error
from relayapi.logging_config import get_logger
from relayapi.routes.metrics import track_accept, track_order_call, track_quote
from relayapi.services.call_gateway import CallGateway, compose_order_message
from relayapi.services.dispatch_client import DispatchClient, build_quote_payload

logger = get_logger(component="relay_routes")

router = APIRouter(
    prefix="/relay",
    tags=["relay"],
    dependencies=[Depends(require_relay_secret)],
)


# Pydantic models for request/response
class QuoteRequest(BaseModel):
    """
    Request model for a delivery quote.

    Every field is optional here so the route can report exactly which
    required ones are missing.
    """
    model_config = ConfigDict(extra="ignore")

    external_delivery_id: str | None = None
    pickup_address: str | None = None
    pickup_business_name: str | None = None
    pickup_phone_number: str | None = None
    pickup_instructions: str | None = None
    dropoff_address: str | None = None
    dropoff_business_name: str | None = None
    dropoff_phone_number: str | None = None
    dropoff_instructions: str | None = None
    order_value: StrictInt | None = None


class AcceptRequest(BaseModel):
    """Request model for accepting a quote."""
    tip: int | None = None


class OrderCallRequest(BaseModel):
    """Request model for placing an order call."""
    phone_number: str | None = None
    order_details: str | None = None
    delivery_id: str | None = None
    dropoff_address: str | None = None


class OrderCallResponse(BaseModel):
    call_sid: str
    status: str
    phone_number: str
    delivery_id: str | None = None


class CallStatusResponse(BaseModel):
    """Response model for a call status poll."""
    call_sid: str
    status: str | None = None
    provider_status: str | None = None
    phone_number: str | None = None
    delivery_id: str | None = None
    duration: int | None = None
    created_at: str | None = None
    end_time: str | None = None
    response_time: str | None = None


class ConfigResponse(BaseModel):
    test_phone_number: str | None = None


@router.post("/delivery")
async def create_quote(
    request: QuoteRequest,
    client: DispatchClient = Depends(get_dispatch_client),
):
    """
    Get a delivery quote to check if delivery is serviceable.

    Generates external_delivery_id when the caller did not send one; the
    same id is used to accept and track the delivery.
    """
    payload = build_quote_payload(request.model_dump(exclude_none=True))

    try:
        quote = await client.get_quote(payload)
    except UpstreamError:
        track_quote("error")
        raise

    track_quote("success")
    return quote


@router.get("/delivery/{external_delivery_id}")
async def get_delivery(
    external_delivery_id: str,
    client: DispatchClient = Depends(get_dispatch_client),
):
    """Get delivery status."""
    return await client.get_delivery(external_delivery_id)


@router.post("/delivery/{external_delivery_id}/accept", status_code=status.HTTP_201_CREATED)
async def accept_quote(
    external_delivery_id: str,
    request: AcceptRequest | None = None,
    client: DispatchClient = Depends(get_dispatch_client),
):
    """Accept a delivery quote to create the actual delivery."""
    tip = request.tip if request else None

    try:
        delivery = await client.accept_quote(external_delivery_id, tip=tip)
    except UpstreamError:
        track_accept("error")
        raise

    track_accept("success")
    return delivery


@router.post("/order-call", response_model=OrderCallResponse)
async def place_order_call(
    request: OrderCallRequest,
    gateway: CallGateway = Depends(get_call_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Call the restaurant with the order.

    The restaurant hears the order and answers on the keypad; poll
    /relay/order-call/{call_sid}/status for the outcome.
    """
    missing = [
        field for field in ("phone_number", "order_details")
        if not (getattr(request, field) or "").strip()
    ]
    if missing:
        raise missing_fields_error(missing)

    if not settings.ENABLE_PHONE_CALLS:
        raise ServiceUnavailableError("Phone calls are disabled")

    message = compose_order_message(request.order_details, request.dropoff_address)

    try:
        record = await gateway.place_call(
            phone_number=request.phone_number.strip(),
            message=message,
            delivery_id=request.delivery_id,
            order_details=request.order_details,
        )
    except UpstreamError:
        track_order_call("error")
        raise

    track_order_call("success")
    return OrderCallResponse(
        call_sid=record.call_sid,
        status=record.status.value,
        phone_number=record.phone_number,
        delivery_id=record.delivery_id,
    )


@router.get("/order-call/{call_sid}/status", response_model=CallStatusResponse)
async def get_order_call_status(
    call_sid: str,
    gateway: CallGateway = Depends(get_call_gateway),
):
    """Poll an order call; unknown SIDs still report the provider status."""
    return await gateway.get_call_status(call_sid)


@router.get("/config", response_model=ConfigResponse)
async def get_client_config(settings: Settings = Depends(get_settings)):
    """Client bootstrap configuration."""
    return ConfigResponse(test_phone_number=settings.TEST_PHONE_NUMBER)
