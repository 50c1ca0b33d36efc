# pricewatch/models/exchange_price.py

from sqlalchemy import Column, String, Numeric, Date, DateTime, BigInteger, Integer, Index, UniqueConstraint
from pricewatch.models.base import Base

class ExchangePrice(Base):
    """
    Daily price record: one row per (symbol, exchange, UTC day).

    Every write goes through PricePersistenceService.upsert_price. The unique
    key below is what keeps overlapping monitor passes from producing
    duplicate daily rows, so do not insert into this table any other way.
    """
    __tablename__ = "exchange_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False)    # e.g. "BTCUSDT"
    exchange = Column(String(20), nullable=False)  # e.g. "BINANCE"
    price = Column(Numeric(20, 8), nullable=False)
    observed_at_ms = Column(BigInteger, nullable=False, index=True)
    day = Column(Date, nullable=False)  # UTC day of observed_at_ms

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint('symbol', 'exchange', 'day', name='uq_exchange_prices_symbol_exchange_day'),
        Index('idx_exchange_prices_symbol_exchange', 'symbol', 'exchange'),
    )

    def to_dict(self):
        return {
            "symbol": self.symbol,
            "exchange": self.exchange,
            "price": self.price,
            "observed_at_ms": self.observed_at_ms,
            "day": self.day,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
