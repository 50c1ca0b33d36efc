# pricewatch/core/exchange/registry.py

from typing import Dict

from pricewatch.config import Settings
from pricewatch.core.exchange.base import ExchangeClient
from pricewatch.core.exchange.binance import BinanceClient
from pricewatch.core.exchange.okx import OKXClient


def build_exchange_clients(settings: Settings) -> Dict[str, ExchangeClient]:
    """
    Exchange name -> client, built once at startup.
    Insertion order is the order exchanges are scanned in each pass.
    """
    shared = dict(
        timeout=settings.EXCHANGE_HTTP_TIMEOUT_SECONDS,
        proxy_url=settings.HTTP_PROXY_URL,
        retry_attempts=settings.EXCHANGE_RETRY_ATTEMPTS,
        retry_wait_seconds=settings.EXCHANGE_RETRY_WAIT_SECONDS,
    )
    binance = BinanceClient(base_url=settings.BINANCE_BASE_URL, **shared)
    okx = OKXClient(base_url=settings.OKX_BASE_URL, **shared)
    return {binance.name: binance, okx.name: okx}
