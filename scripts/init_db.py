"""Script to initialize the database without running migrations."""

import asyncio

from sqlalchemy import text

from app.database import engine
from app.models import metadata


async def init_db() -> None:
    """Initialize the database by creating the scheduling tables."""
    async with engine.begin() as conn:
        # gen_random_uuid() lives in pgcrypto
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
