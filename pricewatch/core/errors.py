# pricewatch/core/errors.py
"""
Error taxonomy for the price monitor.

Per-symbol and per-exchange failures are caught and logged by the
PriceMonitorService. Only MonitorCancelledError escapes a pass.
"""
from typing import Optional


class PriceWatchError(Exception):
    """Base class for every error raised by pricewatch."""


# ==========================================
# EXCHANGE ERRORS
# ==========================================

class ExchangeError(PriceWatchError):
    def __init__(self, message: str, exchange: str = ""):
        super().__init__(message)
        self.exchange = exchange


class NetworkError(ExchangeError):
    """Transport-level failure (connect, read, timeout)."""


class ProtocolError(ExchangeError):
    """Response body could not be parsed into the expected shape."""


class RemoteError(ExchangeError):
    """Exchange answered with a non-success status or an error code in its payload."""

    def __init__(
        self,
        message: str,
        exchange: str = "",
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, exchange)
        self.status_code = status_code
        self.code = code


class UnsupportedIntervalError(ExchangeError):
    def __init__(self, interval: str, exchange: str = ""):
        super().__init__(f"Unsupported kline interval for {exchange or 'exchange'}: {interval}", exchange)
        self.interval = interval


# ==========================================
# STORAGE / DELIVERY / LIFECYCLE
# ==========================================

class StorageError(PriceWatchError):
    pass


class PriceRecordNotFound(PriceWatchError):
    """No price history yet for (symbol, exchange). Not fatal."""

    def __init__(self, symbol: str, exchange: str):
        super().__init__(f"No price record for {symbol} on {exchange}")
        self.symbol = symbol
        self.exchange = exchange


class DeliveryError(PriceWatchError):
    pass


class MonitorCancelledError(PriceWatchError):
    """The monitoring pass was stopped by a shutdown request."""
