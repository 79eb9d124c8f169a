"""
Call session context carried through Twilio callback URLs.

Twilio keeps no application state between webhook turns, so every
callback URL carries the session as an encoded query string.
"""
from dataclasses import dataclass, replace
from typing import Mapping
from urllib.parse import urlencode

SESSION_VERSION = 1


@dataclass(frozen=True)
class CallSession:
    """Correlation data for one order call."""
    message: str | None = None
    delivery_id: str | None = None
    call_sid: str | None = None
    version: int = SESSION_VERSION

    def with_call_sid(self, call_sid: str | None) -> "CallSession":
        if not call_sid or call_sid == self.call_sid:
            return self
        return replace(self, call_sid=call_sid)

    def to_query(self) -> str:
        """Encode as a query string; empty values are omitted."""
        params = {"v": str(self.version)}
        for name in ("message", "delivery_id", "call_sid"):
            value = getattr(self, name)
            if value:
                params[name] = value
        return urlencode(params)

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "CallSession":
        """
        Decode from already-parsed query parameters.

        Unknown keys are ignored; a missing or garbled version is read as
        the current one.
        """
        try:
            version = int(params.get("v") or SESSION_VERSION)
        except ValueError:
            version = SESSION_VERSION
        return cls(
            message=params.get("message") or None,
            delivery_id=params.get("delivery_id") or None,
            call_sid=params.get("call_sid") or None,
            version=version,
        )

    def url(self, base_url: str, path: str) -> str:
        return f"{base_url.rstrip('/')}{path}?{self.to_query()}"
