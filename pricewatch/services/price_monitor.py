# pricewatch/services/price_monitor.py

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from pricewatch.core.errors import DeliveryError, MonitorCancelledError, PriceWatchError
from pricewatch.core.exchange.base import ExchangeClient
from pricewatch.services.notifier import WebhookNotifier
from pricewatch.services.persistence import PricePersistenceService
from pricewatch.utils.metrics import alerts_total, monitor_run_duration_seconds, symbols_processed_total

logger = logging.getLogger(__name__)

# Trailing window used for the average: 30 daily candles
KLINE_INTERVAL = "1d"
KLINE_LIMIT = 30

ALERT_TITLE = "Price drop alert"


@dataclass(frozen=True)
class PriceDropAlert:
    symbol: str
    exchange: str
    latest_price: Decimal
    average_price: Decimal
    drop_percentage: Decimal
    threshold: Decimal
    window: int = KLINE_LIMIT

    def to_markdown(self) -> str:
        return (
            f"### {self.symbol} ({self.exchange}) price drop alert\n\n"
            f"- **Latest price**: {self.latest_price:.4f}\n"
            f"- **{self.window}-day average**: {self.average_price:.4f}\n"
            f"- **Drop**: {self.drop_percentage:.2f}% (threshold: {self.threshold * 100:.2f}%)\n"
            f"- **Source**: top-volume scan"
        )


@dataclass
class MonitorPassSummary:
    exchanges_scanned: int = 0
    exchanges_skipped: int = 0
    symbols_processed: int = 0
    symbols_skipped: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0


class PriceMonitorService:
    """
    One monitoring pass across all configured exchanges.

    For every top-volume symbol: store today's price, average the last 30
    daily closes, alert when the price sits more than `default_threshold`
    below that average. Exchanges and symbols are processed sequentially;
    the inter-symbol delay keeps us under exchange rate limits.

    Failures are contained per exchange / per symbol. The only error that
    leaves run_monitor is MonitorCancelledError.
    """

    def __init__(
        self,
        store: PricePersistenceService,
        exchange_clients: Dict[str, ExchangeClient],
        notifier: WebhookNotifier,
        default_threshold: float = 0.20,
        top_n_symbols: int = 10,
        api_request_delay: float = 0.0,
    ):
        self.store = store
        self.exchange_clients = exchange_clients
        self.notifier = notifier
        self.default_threshold = Decimal(str(default_threshold))
        self.top_n_symbols = top_n_symbols
        self.api_request_delay = api_request_delay  # seconds

    async def run_monitor(self, stop_event: Optional[asyncio.Event] = None) -> MonitorPassSummary:
        stop_event = stop_event or asyncio.Event()
        summary = MonitorPassSummary()
        started = time.monotonic()
        logger.info("🔍 Starting price monitor run for top symbols")

        try:
            for exchange_name, client in self.exchange_clients.items():
                logger.info(f"Fetching top {self.top_n_symbols} symbols for {exchange_name}")
                try:
                    tickers = await client.get_top_volume_tickers(self.top_n_symbols)
                except PriceWatchError as e:
                    logger.error(f"Failed to get top volume tickers for {exchange_name}: {e}")
                    summary.exchanges_skipped += 1
                    continue
                except Exception:
                    logger.exception(f"Unexpected error fetching top volume tickers for {exchange_name}")
                    summary.exchanges_skipped += 1
                    continue

                if not tickers:
                    logger.warning(f"No top tickers returned by {exchange_name}")
                    summary.exchanges_skipped += 1
                    continue

                summary.exchanges_scanned += 1
                for i, ticker in enumerate(tickers):
                    if stop_event.is_set():
                        logger.info(f"Stop requested, aborting price monitor run at {exchange_name}")
                        raise MonitorCancelledError("Price monitor run cancelled")

                    try:
                        await self._process_symbol(client, exchange_name, ticker.symbol, summary)
                    except MonitorCancelledError:
                        raise
                    except Exception:
                        logger.exception(f"Unexpected error processing {ticker.symbol}@{exchange_name}")
                        symbols_processed_total.labels(exchange=exchange_name, outcome="crashed").inc()
                        summary.symbols_skipped += 1

                    if self.api_request_delay > 0 and i < len(tickers) - 1:
                        await self._pause(stop_event)
        finally:
            monitor_run_duration_seconds.observe(time.monotonic() - started)

        logger.info(
            f"✅ Price monitor run finished: {summary.symbols_processed} symbols checked, "
            f"{summary.symbols_skipped} skipped, {summary.alerts_sent} alerts sent, "
            f"{summary.alerts_failed} alerts failed"
        )
        return summary

    async def _process_symbol(self, client: ExchangeClient, exchange_name: str, symbol: str, summary: MonitorPassSummary):
        # 1. Latest price -> daily record
        try:
            latest_price = await self.fetch_and_store_price(client, symbol, exchange_name)
        except PriceWatchError as e:
            logger.error(f"Failed to fetch and store latest price for {symbol}@{exchange_name}: {e}")
            symbols_processed_total.labels(exchange=exchange_name, outcome="price_failed").inc()
            summary.symbols_skipped += 1
            return

        # 2. Trailing candles
        try:
            klines = await client.get_klines(symbol, KLINE_INTERVAL, KLINE_LIMIT)
        except PriceWatchError as e:
            logger.error(f"Failed to get klines for {symbol}@{exchange_name}: {e}")
            symbols_processed_total.labels(exchange=exchange_name, outcome="klines_failed").inc()
            summary.symbols_skipped += 1
            return

        if not klines:
            logger.warning(f"No klines data for {symbol}@{exchange_name}")
            symbols_processed_total.labels(exchange=exchange_name, outcome="no_klines").inc()
            summary.symbols_skipped += 1
            return

        # 3. Average + threshold
        average_price = self.calculate_average_price([k.close for k in klines])
        symbols_processed_total.labels(exchange=exchange_name, outcome="ok").inc()
        summary.symbols_processed += 1

        alert = self.evaluate_drop(symbol, exchange_name, latest_price, average_price)
        if alert is None:
            return

        logger.warning(
            f"📉 {symbol}@{exchange_name} is {alert.drop_percentage:.2f}% below its "
            f"{KLINE_LIMIT}-day average ({latest_price} vs {average_price:.4f})",
            extra={'extra_fields': {
                'symbol': symbol,
                'exchange': exchange_name,
                'latest_price': str(latest_price),
                'average_price': str(average_price),
                'drop_percentage': str(alert.drop_percentage),
            }}
        )
        try:
            await self.notifier.send_alert(ALERT_TITLE, alert.to_markdown())
            alerts_total.labels(exchange=exchange_name, status="sent").inc()
            summary.alerts_sent += 1
        except DeliveryError as e:
            logger.error(f"Failed to deliver price drop alert for {symbol}@{exchange_name}: {e}")
            alerts_total.labels(exchange=exchange_name, status="failed").inc()
            summary.alerts_failed += 1

    async def fetch_and_store_price(self, client: ExchangeClient, symbol: str, exchange_name: str) -> Decimal:
        """Fetch the latest price and file it under today's (UTC) record."""
        price = await client.get_latest_price(symbol)
        observed_at_ms = int(time.time() * 1000)
        await self.store.upsert_price(symbol, exchange_name, price, observed_at_ms)
        return price

    @staticmethod
    def calculate_average_price(prices: List[Decimal]) -> Decimal:
        if not prices:
            return Decimal("0")
        return sum(prices, Decimal("0")) / len(prices)

    def evaluate_drop(
        self,
        symbol: str,
        exchange_name: str,
        latest_price: Decimal,
        average_price: Decimal,
    ) -> Optional[PriceDropAlert]:
        """Returns an alert when latest_price < average * (1 - threshold); 0 average means no data."""
        if average_price <= 0:
            return None
        if latest_price >= average_price * (1 - self.default_threshold):
            return None

        drop_percentage = (1 - latest_price / average_price) * 100
        return PriceDropAlert(
            symbol=symbol,
            exchange=exchange_name,
            latest_price=latest_price,
            average_price=average_price,
            drop_percentage=drop_percentage,
            threshold=self.default_threshold,
        )

    async def _pause(self, stop_event: asyncio.Event):
        """Inter-symbol throttle that wakes early on a stop request."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.api_request_delay)
        except asyncio.TimeoutError:
            return
        logger.info("Stop requested during inter-symbol delay")
        raise MonitorCancelledError("Price monitor run cancelled")
