"""
Seed the supported payment platforms into the database.

Usage:
    python scripts/seed_platforms.py

Idempotent: existing platforms are left untouched except for the
webhook_only flag, which is refreshed from the defaults below.
"""
import asyncio
import logging

from sqlalchemy import select

from src.database import async_session_factory
from src.models.platform import Platform

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLATFORMS = [
    {"slug": "stripe", "name": "Stripe", "webhook_only": False},
    {"slug": "hotmart", "name": "Hotmart", "webhook_only": True},
    {"slug": "cartpanda", "name": "Cartpanda", "webhook_only": True},
]


async def seed():
    async with async_session_factory() as db:
        for spec in PLATFORMS:
            result = await db.execute(select(Platform).where(Platform.slug == spec["slug"]))
            platform = result.scalar_one_or_none()
            if platform:
                platform.webhook_only = spec["webhook_only"]
                logger.info("Platform %s already exists (id=%s). Skipping.", spec["slug"], platform.id)
                continue
            platform = Platform(is_enabled=True, **spec)
            db.add(platform)
            await db.flush()
            logger.info("Seeded platform: %s (id=%s)", platform.slug, platform.id)
        await db.commit()


if __name__ == "__main__":
    asyncio.run(seed())
