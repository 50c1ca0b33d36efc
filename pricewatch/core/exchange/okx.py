# pricewatch/core/exchange/okx.py

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

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

OKX_API_URL = "https://www.okx.com/api/v5/market"

# canonical interval -> (OKX bar, bucket length)
OKX_INTERVALS: Dict[str, Tuple[str, timedelta]] = {
    "1m": ("1m", timedelta(minutes=1)),
    "3m": ("3m", timedelta(minutes=3)),
    "5m": ("5m", timedelta(minutes=5)),
    "15m": ("15m", timedelta(minutes=15)),
    "30m": ("30m", timedelta(minutes=30)),
    "1h": ("1H", timedelta(hours=1)),
    "2h": ("2H", timedelta(hours=2)),
    "4h": ("4H", timedelta(hours=4)),
    "6h": ("6H", timedelta(hours=6)),
    "12h": ("12H", timedelta(hours=12)),
    "1d": ("1D", timedelta(days=1)),
    "1w": ("1W", timedelta(weeks=1)),
}


class OKXClient:
    """
    OKX spot market data (public endpoints only).

    Native instrument ids look like BTC-USDT; canonical symbols drop the dash.
    Every OKX response is wrapped as {"code": "0", "msg": "", "data": [...]}.
    """

    name = "OKEX"

    def __init__(
        self,
        base_url: str = OKX_API_URL,
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
        symbol = symbol.upper()
        if "-" in symbol:
            return symbol
        if symbol.endswith(SETTLEMENT_CURRENCY) and len(symbol) > len(SETTLEMENT_CURRENCY):
            return f"{symbol[:-len(SETTLEMENT_CURRENCY)]}-{SETTLEMENT_CURRENCY}"
        return symbol

    def to_canonical(self, native_symbol: str) -> str:
        return native_symbol.upper().replace("-", "")

    # ==========================================
    # MARKET DATA
    # ==========================================

    async def _get_data(self, path: str, params: Dict[str, Any]) -> List[Any]:
        payload = await fetch_json(
            self.client,
            f"{self.base_url}{path}",
            exchange=self.name,
            params=params,
            attempts=self.retry_attempts,
            wait_seconds=self.retry_wait_seconds,
        )
        if not isinstance(payload, dict):
            raise ProtocolError(f"OKEX: unexpected payload type {type(payload).__name__}", self.name)

        code = str(payload.get("code"))
        if code != "0":
            raise RemoteError(
                f"OKEX API error {code}: {payload.get('msg') or 'unknown error'}",
                self.name,
                code=code,
            )

        data = payload.get("data")
        if not isinstance(data, list):
            raise ProtocolError(f"OKEX: 'data' is not a list ({type(data).__name__})", self.name)
        return data

    async def get_latest_price(self, symbol: str) -> Decimal:
        """Endpoint: /api/v5/market/ticker"""
        inst_id = self.to_native(symbol)
        data = await self._get_data("/ticker", {"instId": inst_id})
        if not data:
            raise RemoteError(f"OKEX returned no ticker for {inst_id}", self.name)
        row = data[0]
        if not isinstance(row, dict):
            raise ProtocolError(f"OKEX: malformed ticker row for {inst_id}", self.name)
        return parse_decimal(row.get("last"), "last", self.name)

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[Kline]:
        """
        Endpoint: /api/v5/market/candles
        OKX rows: [ts, o, h, l, c, vol, volCcy, volCcyQuote, confirm], newest first.
        """
        if interval not in OKX_INTERVALS:
            raise UnsupportedIntervalError(interval, self.name)
        bar, span = OKX_INTERVALS[interval]

        inst_id = self.to_native(symbol)
        data = await self._get_data("/candles", {"instId": inst_id, "bar": bar, "limit": str(limit)})

        klines: List[Kline] = []
        for row in data:
            if not isinstance(row, list) or len(row) < 6:
                raise ProtocolError(f"OKEX: malformed candle row: {row!r}", self.name)
            open_time = ms_to_datetime(row[0], "ts", self.name)
            klines.append(Kline(
                open_time=open_time,
                open=parse_decimal(row[1], "o", self.name),
                high=parse_decimal(row[2], "h", self.name),
                low=parse_decimal(row[3], "l", self.name),
                close=parse_decimal(row[4], "c", self.name),
                volume=parse_decimal(row[5], "vol", self.name),
                # OKX only reports the bucket open; close follows Binance's convention
                close_time=open_time + span - timedelta(milliseconds=1),
            ))

        klines.sort(key=lambda k: k.open_time)
        return klines[-limit:] if limit > 0 else []

    async def get_top_volume_tickers(self, limit: int) -> List[Ticker]:
        """Endpoint: /api/v5/market/tickers?instType=SPOT, ranked by volCcy24h."""
        data = await self._get_data("/tickers", {"instType": "SPOT"})

        tickers: List[Ticker] = []
        for raw in data:
            inst_id = raw.get("instId", "") if isinstance(raw, dict) else ""
            if not isinstance(inst_id, str):
                continue
            parts = inst_id.split("-")
            if len(parts) != 2 or not parts[0] or parts[1] != SETTLEMENT_CURRENCY:
                continue
            try:
                price = parse_decimal(raw.get("last"), "last", self.name)
                volume = parse_decimal(raw.get("volCcy24h"), "volCcy24h", self.name)
            except ProtocolError as e:
                logger.warning(f"Skipping OKX ticker {inst_id}: {e}")
                continue
            tickers.append(Ticker(symbol=self.to_canonical(inst_id), last_price=price, volume=volume))

        return rank_tickers(tickers, limit)
