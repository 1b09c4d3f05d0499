import asyncio
import logging

from app.core.settings import settings
from app.db.base import Base
from app.db.session import engine
from app import models  # noqa: F401 - registers tables on Base.metadata

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Create portal tables when running without migrations (local development only).
    """
    if not settings.auto_create_tables:
        logger.info("Skipping table creation; AUTO_CREATE_TABLES is disabled")
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Portal tables ensured")


if __name__ == "__main__":
    asyncio.run(init_db())
