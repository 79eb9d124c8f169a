"""
Call store: keyed get/put/update_status over CallRecord.

SQLCallStore is the durable default. RedisCallStore shares state across
instances without a relational database. MemoryCallStore lives for the
process only and is meant for tests and local development.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

import redis.asyncio as redis
from redis.exceptions import WatchError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from relayapi.config import Settings
from relayapi.database import build_engine
from relayapi.errors import ConfigurationError
from relayapi.logging_config import get_logger
from relayapi.models.base import Base
from relayapi.models.call_record import CallRecord, CallRecordModel, CallStatus

logger = get_logger(component="call_store")


class CallStore(ABC):
    """Keyed store of CallRecords."""

    async def initialize(self):
        """Prepare backing storage. Called once at startup."""

    async def close(self):
        """Release connections."""

    @abstractmethod
    async def get(self, call_sid: str) -> CallRecord | None:
        ...

    @abstractmethod
    async def put(self, record: CallRecord) -> CallRecord:
        """Insert or replace the record for record.call_sid."""

    @abstractmethod
    async def update_status(
        self,
        call_sid: str,
        status: CallStatus,
        response_time: datetime | None = None,
        expected: Iterable[CallStatus] | None = None,
    ) -> CallRecord | None:
        """
        Compare-and-set the status of a call.

        When `expected` is given, the write happens only if the current
        status is one of them.

        Returns:
            The stored record after the call (unchanged if the guard
            rejected the write), or None for an unknown call_sid
        """


def _allowed(current: CallStatus, expected: Iterable[CallStatus] | None) -> bool:
    return expected is None or current in set(expected)


class MemoryCallStore(CallStore):
    """Process-lifetime dict store."""

    def __init__(self):
        self._records: dict[str, CallRecord] = {}

    async def get(self, call_sid: str) -> CallRecord | None:
        return self._records.get(call_sid)

    async def put(self, record: CallRecord) -> CallRecord:
        self._records[record.call_sid] = record
        return record

    async def update_status(self, call_sid, status, response_time=None, expected=None):
        record = self._records.get(call_sid)
        if record is None:
            return None
        if not _allowed(record.status, expected):
            return record
        updated = record.with_status(status, response_time)
        self._records[call_sid] = updated
        return updated


class SQLCallStore(CallStore):
    """SQLAlchemy-backed store (table call_records)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], engine: AsyncEngine | None = None):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SQLCallStore":
        engine = build_engine(database_url)
        return cls(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), engine=engine)

    async def initialize(self):
        if self._engine is None:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        if self._engine is not None:
            await self._engine.dispose()

    async def get(self, call_sid: str) -> CallRecord | None:
        async with self._session_factory() as db:
            stmt = select(CallRecordModel).where(CallRecordModel.call_sid == call_sid)
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return row.to_record() if row else None

    async def put(self, record: CallRecord) -> CallRecord:
        async with self._session_factory() as db:
            await db.merge(CallRecordModel(
                call_sid=record.call_sid,
                phone_number=record.phone_number,
                delivery_id=record.delivery_id,
                order_details=record.order_details,
                status=record.status,
                created_at=record.created_at,
                response_time=record.response_time,
            ))
            await db.commit()
        return record

    async def update_status(self, call_sid, status, response_time=None, expected=None):
        values = {"status": status}
        if response_time is not None:
            values["response_time"] = response_time

        stmt = update(CallRecordModel).where(CallRecordModel.call_sid == call_sid)
        if expected is not None:
            stmt = stmt.where(CallRecordModel.status.in_(list(expected)))

        async with self._session_factory() as db:
            await db.execute(stmt.values(**values))
            await db.commit()
        return await self.get(call_sid)


class RedisCallStore(CallStore):
    """One JSON document per call under call:<sid>."""

    KEY_PREFIX = "call:"

    def __init__(self, client: redis.Redis, ttl_seconds: int | None = 7 * 24 * 3600):
        self._redis = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisCallStore":
        return cls(redis.from_url(redis_url, decode_responses=True))

    def _key(self, call_sid: str) -> str:
        return f"{self.KEY_PREFIX}{call_sid}"

    async def close(self):
        await self._redis.aclose()

    async def get(self, call_sid: str) -> CallRecord | None:
        raw = await self._redis.get(self._key(call_sid))
        return CallRecord.from_dict(json.loads(raw)) if raw else None

    async def put(self, record: CallRecord) -> CallRecord:
        await self._redis.set(self._key(record.call_sid), json.dumps(record.to_dict()), ex=self.ttl_seconds)
        return record

    async def update_status(self, call_sid, status, response_time=None, expected=None):
        key = self._key(call_sid)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return None
                    record = CallRecord.from_dict(json.loads(raw))
                    if not _allowed(record.status, expected):
                        return record
                    updated = record.with_status(status, response_time)
                    pipe.multi()
                    pipe.set(key, json.dumps(updated.to_dict()), keepttl=True)
                    await pipe.execute()
                    return updated
                except WatchError:
                    # Another writer touched the key; re-read and retry
                    continue


def create_call_store(settings: Settings) -> CallStore:
    """Build the configured backend."""
    backend = settings.CALL_STORE_BACKEND.lower()
    logger.info("call_store_selected", backend=backend)

    if backend == "sql":
        return SQLCallStore.from_url(settings.DATABASE_URL)
    if backend == "redis":
        return RedisCallStore.from_url(settings.REDIS_URL)
    if backend == "memory":
        return MemoryCallStore()
    raise ConfigurationError(f"Unknown CALL_STORE_BACKEND: {settings.CALL_STORE_BACKEND}")
