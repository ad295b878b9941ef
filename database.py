import logging
import os
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from dotenv import load_dotenv

from utils import env_flag

logger = logging.getLogger(__name__)

# ✅ Load environment variables from .env file
load_dotenv()

# ✅ Read database connection details from environment (PostgreSQL)
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")  # PostgreSQL default port
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")

# ✅ Prefer Postgres when all required vars are present; otherwise fall back to SQLite
use_postgres = all([DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD])

if use_postgres:
    DATABASE_URL = f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    logger.info("[DB] Using PostgreSQL via asyncpg (env vars detected)")
else:
    # Fallback SQLite database next to this file (dev/test convenience)
    base_dir = Path(__file__).resolve().parent
    sqlite_path = base_dir / "warfarin.db"
    DATABASE_URL = f"sqlite+aiosqlite:///{sqlite_path.as_posix()}"
    logger.info("[DB] Using SQLite fallback at %s (Postgres env not set)", sqlite_path)

# ✅ Create async SQLAlchemy engine
engine = create_async_engine(DATABASE_URL, echo=env_flag("DB_ECHO"))

# ✅ Configure async session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False
)

# ✅ Base class for SQLAlchemy models
Base = declarative_base()

