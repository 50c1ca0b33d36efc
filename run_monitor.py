import argparse
import asyncio
import logging
import signal
import sys

from pricewatch.config import settings
from pricewatch.database import engine, init_db
from pricewatch.utils.logging import setup_logging
from pricewatch.utils.metrics import start_metrics_server
from pricewatch.core.exchange.registry import build_exchange_clients
from pricewatch.services.notifier import WebhookNotifier
from pricewatch.services.persistence import PricePersistenceService
from pricewatch.services.price_monitor import PriceMonitorService
from pricewatch.lifecycle.runner import MonitorRunner

# Initialize Structured Logging
logger = setup_logging(settings.effective_log_level, settings.LOG_DIR)

async def close_resources(resources):
    logger.info("Closing Resources...")
    for name, res in resources.items():
        try:
            await res.close()
            logger.info(f"✅ {name} closed.")
        except Exception as e:
            logger.error(f"❌ Failed to close {name}: {e}")
    await engine.dispose()
    logger.info("✅ Database engine disposed")

async def main(run_once: bool = False):
    logger.info(f"🚀 Starting {settings.PROJECT_NAME} {settings.VERSION} [Env: {settings.ENVIRONMENT.value}]")

    # 1. Database
    logger.info("Connecting to Database...")
    await init_db()

    # 2. Metrics endpoint
    if settings.METRICS_ENABLED:
        start_metrics_server(settings.METRICS_PORT)

    # 3. Exchanges, alerts, storage
    exchange_clients = build_exchange_clients(settings)
    notifier = WebhookNotifier(settings.NOTIFIER_WEBHOOK_URL, timeout=settings.NOTIFIER_TIMEOUT_SECONDS)
    store = PricePersistenceService()

    monitor = PriceMonitorService(
        store=store,
        exchange_clients=exchange_clients,
        notifier=notifier,
        default_threshold=settings.PRICE_MONITOR_DEFAULT_THRESHOLD,
        top_n_symbols=settings.PRICE_MONITOR_TOP_N_SYMBOLS,
        api_request_delay=settings.api_request_delay_seconds,
    )

    # 4. Runner
    runner = MonitorRunner(
        monitor,
        interval_seconds=settings.PRICE_MONITOR_INTERVAL_SECONDS,
        run_timeout_seconds=settings.PRICE_MONITOR_TIMEOUT_SECONDS,
    )

    resources = {**{f"{name} client": c for name, c in exchange_clients.items()}, "Notifier": notifier}

    loop = asyncio.get_running_loop()
    for signame in ('SIGINT', 'SIGTERM'):
        try:
            loop.add_signal_handler(getattr(signal, signame), runner.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    logger.info(f"🎯 Exchanges: {', '.join(exchange_clients)}")
    logger.info(f"📊 Top {settings.PRICE_MONITOR_TOP_N_SYMBOLS} symbols, threshold {settings.PRICE_MONITOR_DEFAULT_THRESHOLD:.0%}")
    logger.info("=" * 60)

    try:
        if run_once:
            await runner.run_once()
        else:
            await runner.start()
    finally:
        await close_resources(resources)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Crypto price drop monitor")
    parser.add_argument("--once", action="store_true", help="run a single monitoring pass and exit")
    return parser.parse_args(argv)

if __name__ == "__main__":
    args = parse_args()
    if sys.platform == 'win32':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    try:
        asyncio.run(main(run_once=args.once))
    except KeyboardInterrupt:
        pass
