# pricewatch/database.py
import logging
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from pricewatch.config import settings
from pricewatch.models.base import Base
from pricewatch.models.exchange_price import ExchangePrice  # noqa: F401 (registers table)

logger = logging.getLogger(__name__)

# ==== ASYNC ENGINE ====
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=1800
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False
)

# ==== INITIALIZATION ====
async def init_db():
    """
    Verify database connectivity.

    NOTE: Tables are created via Alembic migrations, not here.
    """
    async with engine.begin() as conn:
        result = await conn.execute(text("SELECT 1"))
        if result.scalar() != 1:
            logger.error("❌ Database connection test failed")
            raise RuntimeError("Database connection test failed")
    logger.info("✅ Database connection verified")

async def create_tables(target: AsyncEngine = None):
    """Create all tables directly. Used for SQLite/dev setups without Alembic."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
