import asyncio
import logging
import os

from sqlalchemy import text

from database import AsyncSessionLocal, Base, engine
# Import models so Base.metadata is populated
import models  # noqa: F401
from storage import SqlStorage, seed_sample_data, seeding_enabled

logger = logging.getLogger("create_tables")


async def main(seed: bool = False) -> None:
    logger.info("[schema] Creating tables...")
    async with engine.begin() as conn:
        # Optional: Postgres schema sanity
        if engine.url.get_backend_name().startswith("postgresql"):
            await conn.execute(text("SELECT 1"))
        await conn.run_sync(Base.metadata.create_all)
    if seed:
        await seed_sample_data(SqlStorage(AsyncSessionLocal))
    logger.info("[schema] Done.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    # Helpful reminder if user forgot env vars
    if not os.getenv("DB_HOST"):
        logger.info("[schema] Note: DB_HOST not set; database.py will use SQLite fallback.")
    asyncio.run(main(seed=seeding_enabled()))
