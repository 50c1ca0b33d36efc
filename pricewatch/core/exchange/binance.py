# pricewatch/core/exchange/binance.py

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from pricewatch.core.errors import ProtocolError, RemoteError, UnsupportedIntervalError
from pricewatch.core.exchange.base import (
    SETTLEMENT_CURRENCY,
    Kline,
    Ticker,
    build_http_client,
    fetch_json,
    ms_to_datetime,
    parse_decimal,
    rank_tickers,
)

logger = logging.getLogger(__name__)

BINANCE_API_URL = "https://api.binance.com/api/v3"

# Binance spot accepts these interval tokens verbatim
BINANCE_INTERVALS = {
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
}


class BinanceClient:
    """
    Binance spot market data (public endpoints only).

    Native symbols are identical to canonical ones (BTCUSDT).
    """

    name = "BINANCE"

    def __init__(
        self,
        base_url: str = BINANCE_API_URL,
        timeout: float = 60.0,
        proxy_url: Optional[str] = None,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = retry_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self.client = client or build_http_client(timeout, proxy_url)

    async def close(self):
        await self.client.aclose()

    # ==========================================
    # SYMBOL TRANSLATION
    # ==========================================

    def to_native(self, symbol: str) -> str:
        return symbol.upper()

    def to_canonical(self, native_symbol: str) -> str:
        return native_symbol.upper()

    # ==========================================
    # MARKET DATA
    # ==========================================

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        data = await fetch_json(
            self.client,
            f"{self.base_url}{path}",
            exchange=self.name,
            params=params,
            attempts=self.retry_attempts,
            wait_seconds=self.retry_wait_seconds,
        )
        # Binance reports some failures as {"code": -1121, "msg": "..."}
        if isinstance(data, dict) and isinstance(data.get("code"), int) and data["code"] < 0:
            raise RemoteError(
                f"BINANCE API error {data['code']}: {data.get('msg', 'unknown error')}",
                self.name,
                code=str(data["code"]),
            )
        return data

    async def get_latest_price(self, symbol: str) -> Decimal:
        """Endpoint: /api/v3/ticker/price"""
        data = await self._get("/ticker/price", {"symbol": self.to_native(symbol)})
        if not isinstance(data, dict) or "price" not in data:
            raise ProtocolError(f"BINANCE: unexpected ticker/price payload for {symbol}", self.name)
        return parse_decimal(data["price"], "price", self.name)

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[Kline]:
        """
        Endpoint: /api/v3/klines
        Binance rows: [openTime, open, high, low, close, volume, closeTime, ...]
        Already oldest first.
        """
        if interval not in BINANCE_INTERVALS:
            raise UnsupportedIntervalError(interval, self.name)

        data = await self._get(
            "/klines",
            {"symbol": self.to_native(symbol), "interval": interval, "limit": limit},
        )
        if not isinstance(data, list):
            raise ProtocolError(f"BINANCE: klines payload is not a list ({type(data).__name__})", self.name)

        klines: List[Kline] = []
        for row in data:
            if not isinstance(row, list) or len(row) < 7:
                raise ProtocolError(f"BINANCE: malformed kline row: {row!r}", self.name)
            klines.append(Kline(
                open_time=ms_to_datetime(row[0], "openTime", self.name),
                open=parse_decimal(row[1], "open", self.name),
                high=parse_decimal(row[2], "high", self.name),
                low=parse_decimal(row[3], "low", self.name),
                close=parse_decimal(row[4], "close", self.name),
                volume=parse_decimal(row[5], "volume", self.name),
                close_time=ms_to_datetime(row[6], "closeTime", self.name),
            ))
        return klines[-limit:] if limit > 0 else []

    async def get_top_volume_tickers(self, limit: int) -> List[Ticker]:
        """Endpoint: /api/v3/ticker/24hr (all symbols), ranked by base-asset volume."""
        data = await self._get("/ticker/24hr")
        if not isinstance(data, list):
            raise ProtocolError(f"BINANCE: ticker/24hr payload is not a list ({type(data).__name__})", self.name)

        tickers: List[Ticker] = []
        for raw in data:
            symbol = raw.get("symbol", "") if isinstance(raw, dict) else ""
            if not isinstance(symbol, str) or not symbol.endswith(SETTLEMENT_CURRENCY) or symbol == SETTLEMENT_CURRENCY:
                continue
            try:
                price = parse_decimal(raw.get("lastPrice"), "lastPrice", self.name)
                volume = parse_decimal(raw.get("volume"), "volume", self.name)
            except ProtocolError as e:
                logger.warning(f"Skipping Binance ticker {symbol}: {e}")
                continue
            tickers.append(Ticker(symbol=self.to_canonical(symbol), last_price=price, volume=volume))

        return rank_tickers(tickers, limit)
