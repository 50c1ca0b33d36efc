# pricewatch/core/exchange/base.py

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from pricewatch.core.errors import NetworkError, ProtocolError, RemoteError
from pricewatch.utils.metrics import exchange_request_failures_total

logger = logging.getLogger(__name__)

# Only pairs settled in this currency are ranked
SETTLEMENT_CURRENCY = "USDT"


@dataclass(frozen=True)
class Kline:
    """One candlestick bucket. Times are timezone-aware UTC."""
    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    close_time: datetime


@dataclass(frozen=True)
class Ticker:
    symbol: str  # canonical form, e.g. BTCUSDT
    last_price: Decimal
    volume: Decimal  # 24h


class ExchangeClient(Protocol):
    """
    Capability set every exchange integration provides.

    Symbols crossing this interface are canonical (BTCUSDT); each
    implementation translates to its native form internally.
    """
    name: str

    async def get_latest_price(self, symbol: str) -> Decimal: ...

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[Kline]: ...

    async def get_top_volume_tickers(self, limit: int) -> List[Ticker]: ...

    def to_native(self, symbol: str) -> str: ...

    def to_canonical(self, native_symbol: str) -> str: ...

    async def close(self) -> None: ...


# ==========================================
# SHARED HTTP HELPERS
# ==========================================

def build_http_client(timeout: float, proxy_url: Optional[str] = None) -> httpx.AsyncClient:
    kwargs: Dict[str, Any] = {
        "timeout": timeout,
        "headers": {"Accept": "application/json"},
        "limits": httpx.Limits(max_keepalive_connections=10, max_connections=20),
    }
    if proxy_url:
        kwargs["proxy"] = proxy_url
    return httpx.AsyncClient(**kwargs)


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    exchange: str,
    params: Optional[Dict[str, Any]] = None,
    attempts: int = 1,
    wait_seconds: float = 0.0,
) -> Any:
    """
    GET a JSON document, mapping failures onto the exchange error taxonomy.

    Only NetworkError is retried; remote and protocol errors are final.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(NetworkError),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await _get_json(client, url, exchange, params)


async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    exchange: str,
    params: Optional[Dict[str, Any]],
) -> Any:
    try:
        resp = await client.get(url, params=params)
    except httpx.TransportError as e:
        exchange_request_failures_total.labels(exchange=exchange, kind="network").inc()
        logger.warning(f"{exchange} request failed: {url} ({e!r})")
        raise NetworkError(f"{exchange} request to {url} failed: {e!r}", exchange) from e

    if not resp.is_success:
        exchange_request_failures_total.labels(exchange=exchange, kind="remote").inc()
        code, msg = _error_detail(resp)
        raise RemoteError(
            f"{exchange} API returned HTTP {resp.status_code}: {msg or resp.reason_phrase}",
            exchange,
            status_code=resp.status_code,
            code=code,
        )

    try:
        return resp.json()
    except ValueError as e:
        exchange_request_failures_total.labels(exchange=exchange, kind="protocol").inc()
        raise ProtocolError(f"{exchange} returned a non-JSON body from {url}", exchange) from e


def _error_detail(resp: httpx.Response):
    """Best-effort (code, msg) extraction from an error response."""
    try:
        data = resp.json()
    except ValueError:
        return None, None
    if not isinstance(data, dict):
        return None, None
    code = data.get("code")
    return (str(code) if code is not None else None), data.get("msg")


# ==========================================
# PARSING HELPERS
# ==========================================

def parse_decimal(value: Any, field: str, exchange: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ProtocolError(f"{exchange}: field '{field}' is not numeric: {value!r}", exchange) from e
    if not result.is_finite():
        raise ProtocolError(f"{exchange}: field '{field}' is not finite: {value!r}", exchange)
    return result


def ms_to_datetime(value: Any, field: str, exchange: str) -> datetime:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise ProtocolError(f"{exchange}: field '{field}' is not an epoch-millis value: {value!r}", exchange) from e


def rank_tickers(tickers: List[Ticker], limit: int) -> List[Ticker]:
    """Highest 24h volume first, truncated to limit."""
    if limit <= 0:
        return []
    return sorted(tickers, key=lambda t: t.volume, reverse=True)[:limit]
