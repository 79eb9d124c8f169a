"""
Call record model.

The relay's local view of an in-flight order call, keyed by the
provider-issued call SID.
"""
import enum
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, Text, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from relayapi.models.base import Base, TimestampMixin


class CallStatus(str, enum.Enum):
    """Call status enum."""
    INITIATED = "initiated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class CallRecord:
    """Value object shared by every call store backend."""
    call_sid: str
    phone_number: str
    delivery_id: str | None = None
    order_details: str | None = None
    status: CallStatus = CallStatus.INITIATED
    created_at: datetime = field(default_factory=utcnow)
    response_time: datetime | None = None

    def with_status(self, status: CallStatus, response_time: datetime | None = None) -> "CallRecord":
        return replace(self, status=status, response_time=response_time or self.response_time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["response_time"] = self.response_time.isoformat() if self.response_time else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallRecord":
        response_time = data.get("response_time")
        return cls(
            call_sid=data["call_sid"],
            phone_number=data["phone_number"],
            delivery_id=data.get("delivery_id"),
            order_details=data.get("order_details"),
            status=CallStatus(data.get("status", CallStatus.INITIATED.value)),
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
            response_time=as_utc(datetime.fromisoformat(response_time)) if response_time else None,
        )


class CallRecordModel(Base, TimestampMixin):
    """
    Durable row behind SQLCallStore.

    delivery_id is a nullable, non-unique correlation field, not a
    foreign key.
    """
    __tablename__ = "call_records"

    call_sid: Mapped[str] = mapped_column(String(64), primary_key=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    order_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus, native_enum=False,
                values_callable=lambda e: [member.value for member in e]),
        nullable=False,
        default=CallStatus.INITIATED
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    response_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_record(self) -> CallRecord:
        return CallRecord(
            call_sid=self.call_sid,
            phone_number=self.phone_number,
            delivery_id=self.delivery_id,
            order_details=self.order_details,
            status=CallStatus(self.status),
            created_at=as_utc(self.created_at),
            response_time=as_utc(self.response_time),
        )

    def __repr__(self):
        return f"<CallRecordModel(call_sid={self.call_sid}, status={self.status})>"
