"""
Order-call IVR state machine.

Each Twilio webhook turn is a pure step: (current state, keypress) ->
(next state, optional status write, next script). The current state is
derived from the stored CallRecord; the session travels in the URL.
"""
import enum
from dataclasses import dataclass

from relayapi.logging_config import get_logger
from relayapi.models.call_record import CallRecord, CallStatus, utcnow
from relayapi.services.call_session import CallSession
from relayapi.services.call_store import CallStore
from relayapi.services.voice_script import Gather, Pause, Say, VoiceScript

logger = get_logger(component="ivr")

ORDER_RESPONSE_PATH = "/twilio/order-response"

PROMPT = "Press 1 to accept this order. Press 2 to decline. Press 3 to repeat this message."
NO_RESPONSE = "We did not receive a response. Goodbye."
ACCEPTED_MESSAGE = "Thank you. The order has been accepted. Goodbye."
REJECTED_MESSAGE = "The order has been declined. Goodbye."
ENDED_MESSAGE = "Goodbye."
NO_MESSAGE_APOLOGY = "An error occurred. No message provided."
FAULT_APOLOGY = "We're sorry, an error occurred. Goodbye."


class IVRState(str, enum.Enum):
    AWAITING_INPUT = "awaiting_input"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"


class IVRInput(str, enum.Enum):
    ACCEPT = "1"
    REJECT = "2"
    REPEAT = "3"
    NO_INPUT = ""
    OTHER = "other"

    @classmethod
    def parse(cls, digits: str | None) -> "IVRInput":
        digits = (digits or "").strip()
        if not digits:
            return cls.NO_INPUT
        if digits in (cls.ACCEPT.value, cls.REJECT.value, cls.REPEAT.value):
            return cls(digits)
        return cls.OTHER


@dataclass(frozen=True)
class Transition:
    next_state: IVRState
    record_status: CallStatus | None = None


def _terminal(state: IVRState) -> dict:
    # A recorded answer ignores every further keypress
    return {(state, key): Transition(state) for key in IVRInput}


TRANSITIONS: dict[tuple[IVRState, IVRInput], Transition] = {
    (IVRState.AWAITING_INPUT, IVRInput.ACCEPT): Transition(IVRState.ACCEPTED, CallStatus.ACCEPTED),
    (IVRState.AWAITING_INPUT, IVRInput.REJECT): Transition(IVRState.REJECTED, CallStatus.REJECTED),
    (IVRState.AWAITING_INPUT, IVRInput.REPEAT): Transition(IVRState.AWAITING_INPUT),
    (IVRState.AWAITING_INPUT, IVRInput.NO_INPUT): Transition(IVRState.ENDED),
    (IVRState.AWAITING_INPUT, IVRInput.OTHER): Transition(IVRState.ENDED),
    **_terminal(IVRState.ACCEPTED),
    **_terminal(IVRState.REJECTED),
}


ANSWERED_STATES = frozenset({IVRState.ACCEPTED, IVRState.REJECTED})


def state_for(record: CallRecord | None) -> IVRState:
    """Current IVR state as implied by the stored call."""
    if record is not None and record.status == CallStatus.ACCEPTED:
        return IVRState.ACCEPTED
    if record is not None and record.status == CallStatus.REJECTED:
        return IVRState.REJECTED
    return IVRState.AWAITING_INPUT


def apology_script(text: str = FAULT_APOLOGY) -> str:
    return VoiceScript().say(text).hangup().render()


@dataclass
class IVRTurn:
    """Outcome of one webhook turn."""
    state: IVRState
    script: str
    record: CallRecord | None = None
    status_written: bool = False


class IVRStateMachine:
    """Renders scripts and applies keypresses to the call store."""

    def __init__(self, store: CallStore, base_url: str):
        self.store = store
        self.base_url = base_url

    def awaiting_script(self, session: CallSession) -> str:
        if not session.message:
            return apology_script(NO_MESSAGE_APOLOGY)

        gather = Gather(
            action=session.url(self.base_url, ORDER_RESPONSE_PATH),
            children=[Say(session.message), Pause(1), Say(PROMPT)],
        )
        return VoiceScript().add(gather).say(NO_RESPONSE).render()

    def script_for(self, state: IVRState, session: CallSession) -> str:
        if state == IVRState.AWAITING_INPUT:
            return self.awaiting_script(session)
        if state == IVRState.ACCEPTED:
            return VoiceScript().say(ACCEPTED_MESSAGE).hangup().render()
        if state == IVRState.REJECTED:
            return VoiceScript().say(REJECTED_MESSAGE).hangup().render()
        return VoiceScript().say(ENDED_MESSAGE).hangup().render()

    def initial_script(self, session: CallSession) -> str:
        """Script played when the call connects."""
        return self.awaiting_script(session)

    async def respond(self, session: CallSession, digits: str | None) -> IVRTurn:
        """
        Apply one keypress.

        Replayed input is harmless: once a call is accepted or rejected
        the table maps every input back to the same state with no write.
        """
        key = IVRInput.parse(digits)
        record = await self.store.get(session.call_sid) if session.call_sid else None
        current = state_for(record)
        transition = TRANSITIONS[(current, key)]

        log = logger.bind(
            call_sid=session.call_sid,
            delivery_id=session.delivery_id,
            current_state=current.value,
            next_state=transition.next_state.value,
            key=key.name,
        )

        next_state = transition.next_state
        written = False
        if transition.record_status is not None:
            if record is None:
                log.warning("ivr_response_for_unknown_call")
            else:
                updated = await self.store.update_status(
                    session.call_sid,
                    transition.record_status,
                    response_time=utcnow(),
                    expected=[CallStatus.INITIATED],
                )
                written = updated is not None and updated.status == transition.record_status
                record = updated or record

            if not written:
                # Never confirm an answer that was not recorded
                answered = state_for(record)
                next_state = answered if answered in ANSWERED_STATES else IVRState.ENDED

        log.info("ivr_turn", status_written=written, final_state=next_state.value)
        return IVRTurn(
            state=next_state,
            script=self.script_for(next_state, session),
            record=record,
            status_written=written,
        )
