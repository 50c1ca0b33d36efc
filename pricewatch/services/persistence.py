# pricewatch/services/persistence.py

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from pricewatch.core.errors import PriceRecordNotFound, StorageError
from pricewatch.database import AsyncSessionLocal
from pricewatch.models.exchange_price import ExchangePrice

logger = logging.getLogger(__name__)


def day_from_millis(observed_at_ms: int) -> date:
    """Truncate an epoch-millis timestamp to its UTC calendar day."""
    return datetime.fromtimestamp(observed_at_ms / 1000, tz=timezone.utc).date()


class PricePersistenceService:
    """
    Durable store for daily price records.

    Contract: at most one live row per (symbol, exchange, day). upsert_price
    resolves conflicts in the database (last write wins), which is the only
    thing keeping overlapping monitor passes from duplicating a day.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise StorageError(f"Upsert not supported for dialect '{dialect}'")

    async def upsert_price(self, symbol: str, exchange: str, price: Decimal, observed_at_ms: int) -> date:
        """
        Insert today's record or overwrite price/observed_at_ms of the existing one.
        Returns the UTC day the record was filed under.
        """
        day = day_from_millis(observed_at_ms)
        now = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            try:
                insert = self._insert_for(session)
                stmt = insert(ExchangePrice).values(
                    symbol=symbol,
                    exchange=exchange,
                    price=price,
                    observed_at_ms=observed_at_ms,
                    day=day,
                    created_at=now,
                    updated_at=now,
                )
                # created_at of the original row is preserved
                stmt = stmt.on_conflict_do_update(
                    index_elements=['symbol', 'exchange', 'day'],
                    set_={
                        "price": stmt.excluded.price,
                        "observed_at_ms": stmt.excluded.observed_at_ms,
                        "updated_at": stmt.excluded.updated_at,
                    }
                )
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to upsert price {symbol}@{exchange} for {day}: {e}")
                raise StorageError(f"Failed to upsert price for {symbol} on {exchange}") from e

        logger.debug(f"Upserted {symbol}@{exchange} {day}: {price}")
        return day

    async def get_latest(self, symbol: str, exchange: str) -> ExchangePrice:
        """Most recently observed live record for the pair."""
        async with self._session_factory() as session:
            try:
                stmt = (
                    select(ExchangePrice)
                    .where(
                        ExchangePrice.symbol == symbol,
                        ExchangePrice.exchange == exchange,
                        ExchangePrice.deleted_at.is_(None),
                    )
                    .order_by(ExchangePrice.observed_at_ms.desc())
                    .limit(1)
                )
                result = await session.execute(stmt)
                record = result.scalars().first()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to load latest price for {symbol} on {exchange}") from e

        if record is None:
            logger.debug(f"No price record for {symbol}@{exchange}")
            raise PriceRecordNotFound(symbol, exchange)
        logger.debug(f"Latest price record: {record.to_dict()}")
        return record

    async def get_average_price(
        self,
        symbol: str,
        exchange: str,
        days: int,
        today: Optional[date] = None,
    ) -> Decimal:
        """
        Mean of daily prices with day >= today - days (UTC).

        Returns Decimal("0") when nothing matches; callers must treat that as
        "no average" rather than a price. Relies on one row per day; a second
        row for the same day would be counted twice.
        """
        today = today or datetime.now(timezone.utc).date()
        since = today - timedelta(days=days)

        async with self._session_factory() as session:
            try:
                stmt = select(func.avg(ExchangePrice.price)).where(
                    ExchangePrice.symbol == symbol,
                    ExchangePrice.exchange == exchange,
                    ExchangePrice.day >= since,
                    ExchangePrice.deleted_at.is_(None),
                )
                avg = (await session.execute(stmt)).scalar()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to average prices for {symbol} on {exchange}") from e

        if avg is None:
            return Decimal("0")
        return Decimal(str(avg))
