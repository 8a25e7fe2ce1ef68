"""Initialize database tables.

Usage:
    python -m scripts.init_db
"""
import asyncio

from app.config import settings
from app.database import engine, init_db


async def init():
    """Create all tables."""
    print(f"Creating database tables on {settings.DATABASE_URL.split('@')[-1]}...")
    await init_db()
    await engine.dispose()
    print("Database tables created successfully!")


if __name__ == "__main__":
    asyncio.run(init())
