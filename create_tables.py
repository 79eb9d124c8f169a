"""
Script to create the call store tables.

Creates every table defined in the models.
Run this after starting PostgreSQL, or use `alembic upgrade head`.
"""
import asyncio
from relayapi.database import engine
from relayapi.models.base import Base
from relayapi.models.call_record import CallRecordModel  # noqa: F401  registers the table


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
