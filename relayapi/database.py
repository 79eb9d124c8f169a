"""
Database engine.

Backs the durable call store and create_tables.py.
"""
from sqlalchemy.ext.asyncio import create_async_engine

from relayapi.config import settings


def build_engine(database_url: str, echo: bool = False):
    """Create an async engine for the given URL."""
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)
