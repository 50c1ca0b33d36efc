# pricewatch/utils/metrics.py
"""
Prometheus metrics for the price monitor.
Exposed by run_monitor.py when METRICS_ENABLED is set.
"""
import logging
from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

# ============================================
# 1. MONITOR PASS METRICS
# ============================================

monitor_runs_total = Counter(
    'pricewatch_monitor_runs_total',
    'Monitoring passes by outcome',
    ['outcome']  # success / cancelled / timeout / error / crash
)

monitor_run_duration_seconds = Histogram(
    'pricewatch_monitor_run_duration_seconds',
    'Wall time of one monitoring pass',
    buckets=[1, 5, 15, 30, 60, 120, 240, 480]
)

symbols_processed_total = Counter(
    'pricewatch_symbols_processed_total',
    'Symbols handled per exchange by outcome',
    ['exchange', 'outcome']  # ok / price_failed / klines_failed / no_klines / crashed
)

# ============================================
# 2. ALERT METRICS
# ============================================

alerts_total = Counter(
    'pricewatch_alerts_total',
    'Price drop alerts by delivery status',
    ['exchange', 'status']  # sent / failed
)

# ============================================
# 3. EXCHANGE METRICS
# ============================================

exchange_request_failures_total = Counter(
    'pricewatch_exchange_request_failures_total',
    'Failed exchange HTTP requests by kind',
    ['exchange', 'kind']  # network / remote / protocol
)


def start_metrics_server(port: int):
    start_http_server(port)
    logger.info(f"📈 Prometheus metrics exposed on :{port}/metrics")
