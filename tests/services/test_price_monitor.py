import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from pricewatch.core.errors import (
    DeliveryError,
    MonitorCancelledError,
    NetworkError,
    RemoteError,
    StorageError,
)
from pricewatch.services.price_monitor import (
    ALERT_TITLE,
    KLINE_INTERVAL,
    KLINE_LIMIT,
    PriceDropAlert,
    PriceMonitorService,
)

FLAT_100 = [100] * 30

def make_service(store, clients, notifier, **kwargs):
    return PriceMonitorService(
        store=store,
        exchange_clients={c.name: c for c in clients},
        notifier=notifier,
        **kwargs,
    )

# --- THRESHOLD ---
@pytest.mark.asyncio
async def test_drop_beyond_threshold_sends_alert(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    client.get_klines.assert_awaited_once_with("BTCUSDT", KLINE_INTERVAL, KLINE_LIMIT)
    mock_store.upsert_price.assert_awaited_once()
    args = mock_store.upsert_price.await_args.args
    assert args[:3] == ("BTCUSDT", "BINANCE", Decimal("79"))
    assert isinstance(args[3], int)

    mock_notifier.send_alert.assert_awaited_once()
    title, body = mock_notifier.send_alert.await_args.args
    assert title == ALERT_TITLE
    assert "BTCUSDT (BINANCE)" in body
    assert "21.00%" in body
    assert summary.alerts_sent == 1
    assert summary.symbols_processed == 1

@pytest.mark.asyncio
async def test_drop_within_threshold_is_silent(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 85}, {"BTCUSDT": FLAT_100})
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    mock_store.upsert_price.assert_awaited_once()
    mock_notifier.send_alert.assert_not_awaited()
    assert summary.alerts_sent == 0

@pytest.mark.asyncio
async def test_drop_exactly_at_threshold_is_silent(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 80}, {"BTCUSDT": FLAT_100})
    service = make_service(mock_store, [client], mock_notifier)

    await service.run_monitor()

    mock_notifier.send_alert.assert_not_awaited()

@pytest.mark.asyncio
async def test_custom_threshold(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("OKEX", ["ETHUSDT"], {"ETHUSDT": 94}, {"ETHUSDT": FLAT_100})
    service = make_service(mock_store, [client], mock_notifier, default_threshold=0.05)

    await service.run_monitor()

    mock_notifier.send_alert.assert_awaited_once()

def test_evaluate_drop_zero_average_means_no_alert(mock_store, mock_notifier):
    service = make_service(mock_store, [], mock_notifier)
    assert service.evaluate_drop("BTCUSDT", "BINANCE", Decimal("1"), Decimal("0")) is None

def test_calculate_average_price():
    prices = [Decimal("90"), Decimal("100"), Decimal("110")]
    assert PriceMonitorService.calculate_average_price(prices) == Decimal("100")
    assert PriceMonitorService.calculate_average_price([]) == Decimal("0")

def test_alert_markdown_contents():
    alert = PriceDropAlert(
        symbol="SOLUSDT",
        exchange="OKEX",
        latest_price=Decimal("75"),
        average_price=Decimal("100"),
        drop_percentage=Decimal("25"),
        threshold=Decimal("0.2"),
    )
    text = alert.to_markdown()

    assert text.startswith("### SOLUSDT (OKEX) price drop alert")
    assert "75.0000" in text
    assert "100.0000" in text
    assert "25.00% (threshold: 20.00%)" in text
    assert "top-volume scan" in text

# --- FAILURE ISOLATION ---
@pytest.mark.asyncio
async def test_empty_klines_skips_symbol_and_continues(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory(
        "BINANCE",
        ["BTCUSDT", "ETHUSDT"],
        {"BTCUSDT": 50, "ETHUSDT": 70},
        {"ETHUSDT": FLAT_100},  # no candles for BTCUSDT
    )
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    assert mock_store.upsert_price.await_count == 2
    mock_notifier.send_alert.assert_awaited_once()
    assert "ETHUSDT" in mock_notifier.send_alert.await_args.args[1]
    assert summary.symbols_skipped == 1
    assert summary.symbols_processed == 1

@pytest.mark.asyncio
async def test_ticker_failure_skips_only_that_exchange(mock_store, mock_notifier, exchange_client_factory):
    binance = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    binance.get_top_volume_tickers.side_effect = NetworkError("connection reset", "BINANCE")
    okx = exchange_client_factory("OKEX", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    service = make_service(mock_store, [binance, okx], mock_notifier)

    summary = await service.run_monitor()

    binance.get_latest_price.assert_not_awaited()
    mock_store.upsert_price.assert_awaited_once()
    assert mock_store.upsert_price.await_args.args[1] == "OKEX"
    mock_notifier.send_alert.assert_awaited_once()
    assert summary.exchanges_skipped == 1
    assert summary.exchanges_scanned == 1

@pytest.mark.asyncio
async def test_price_failure_skips_symbol(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory(
        "BINANCE", ["BTCUSDT", "ETHUSDT"], {"ETHUSDT": 100}, {"BTCUSDT": FLAT_100, "ETHUSDT": FLAT_100}
    )

    def latest(symbol):
        if symbol == "BTCUSDT":
            raise RemoteError("invalid symbol", "BINANCE", status_code=400, code="-1121")
        return Decimal("100")

    client.get_latest_price.side_effect = latest
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    mock_store.upsert_price.assert_awaited_once()
    client.get_klines.assert_awaited_once_with("ETHUSDT", KLINE_INTERVAL, KLINE_LIMIT)
    assert summary.symbols_skipped == 1

@pytest.mark.asyncio
async def test_storage_failure_skips_symbol(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    mock_store.upsert_price.side_effect = StorageError("db down")
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    client.get_klines.assert_not_awaited()
    mock_notifier.send_alert.assert_not_awaited()
    assert summary.symbols_skipped == 1

@pytest.mark.asyncio
async def test_delivery_failure_does_not_stop_pass(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory(
        "BINANCE",
        ["BTCUSDT", "ETHUSDT"],
        {"BTCUSDT": 50, "ETHUSDT": 50},
        {"BTCUSDT": FLAT_100, "ETHUSDT": FLAT_100},
    )
    mock_notifier.send_alert.side_effect = [DeliveryError("HTTP 500"), None]
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    assert mock_notifier.send_alert.await_count == 2
    assert summary.alerts_failed == 1
    assert summary.alerts_sent == 1

@pytest.mark.asyncio
async def test_no_tickers_skips_exchange(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("OKEX", [], {}, {})
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    mock_store.upsert_price.assert_not_awaited()
    assert summary.exchanges_skipped == 1

# --- THROTTLING & CANCELLATION ---
@pytest.mark.asyncio
async def test_delay_between_symbols_not_after_last(mock_store, mock_notifier, exchange_client_factory):
    binance = exchange_client_factory(
        "BINANCE", ["A1USDT", "A2USDT", "A3USDT"], {"A1USDT": 1, "A2USDT": 1, "A3USDT": 1}, {}
    )
    okx = exchange_client_factory("OKEX", ["B1USDT", "B2USDT"], {"B1USDT": 1, "B2USDT": 1}, {})
    service = make_service(mock_store, [binance, okx], mock_notifier, api_request_delay=0.2)

    with patch.object(service, "_pause", new=AsyncMock()) as pause:
        await service.run_monitor()

    assert pause.await_count == 3

@pytest.mark.asyncio
async def test_top_n_is_passed_to_exchange(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", [], {}, {})
    service = make_service(mock_store, [client], mock_notifier, top_n_symbols=5)

    await service.run_monitor()

    client.get_top_volume_tickers.assert_awaited_once_with(5)

@pytest.mark.asyncio
async def test_stop_before_next_symbol_keeps_completed_work(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory(
        "BINANCE", ["BTCUSDT", "ETHUSDT"], {"BTCUSDT": 100, "ETHUSDT": 100}, {"BTCUSDT": FLAT_100}
    )
    stop_event = asyncio.Event()

    def upsert(*args):
        stop_event.set()

    mock_store.upsert_price.side_effect = upsert
    service = make_service(mock_store, [client], mock_notifier)

    with pytest.raises(MonitorCancelledError):
        await service.run_monitor(stop_event)

    mock_store.upsert_price.assert_awaited_once()
    assert mock_store.upsert_price.await_args.args[0] == "BTCUSDT"
    assert client.get_latest_price.await_count == 1

@pytest.mark.asyncio
async def test_stop_during_delay_interrupts_wait(mock_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory(
        "BINANCE", ["BTCUSDT", "ETHUSDT"], {"BTCUSDT": 100, "ETHUSDT": 100}, {"BTCUSDT": FLAT_100}
    )
    service = make_service(mock_store, [client], mock_notifier, api_request_delay=30)
    stop_event = asyncio.Event()

    async def request_stop():
        await asyncio.sleep(0.05)
        stop_event.set()

    stopper = asyncio.create_task(request_stop())
    with pytest.raises(MonitorCancelledError):
        await asyncio.wait_for(service.run_monitor(stop_event), timeout=5)
    await stopper

    assert client.get_latest_price.await_count == 1

@pytest.mark.asyncio
async def test_pause_returns_after_delay(mock_store, mock_notifier):
    service = make_service(mock_store, [], mock_notifier, api_request_delay=0.01)
    await service._pause(asyncio.Event())

# --- WITH REAL STORAGE ---
@pytest.mark.asyncio
async def test_repeated_passes_keep_one_row_per_day(price_store, mock_notifier, exchange_client_factory):
    client = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 100}, {"BTCUSDT": FLAT_100})
    service = make_service(price_store, [client], mock_notifier)

    await service.run_monitor()
    client.get_latest_price.side_effect = lambda symbol: Decimal("101")
    await service.run_monitor()

    record = await price_store.get_latest("BTCUSDT", "BINANCE")
    assert record.price == Decimal("101")
    avg = await price_store.get_average_price("BTCUSDT", "BINANCE", 30)
    assert avg == Decimal("101")

# --- UNEXPECTED ERRORS ---
@pytest.mark.asyncio
async def test_unexpected_ticker_error_still_scans_next_exchange(mock_store, mock_notifier, exchange_client_factory):
    binance = exchange_client_factory("BINANCE", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    binance.get_top_volume_tickers.side_effect = AttributeError("'NoneType' object has no attribute 'endswith'")
    okx = exchange_client_factory("OKEX", ["BTCUSDT"], {"BTCUSDT": 79}, {"BTCUSDT": FLAT_100})
    service = make_service(mock_store, [binance, okx], mock_notifier)

    summary = await service.run_monitor()

    mock_notifier.send_alert.assert_awaited_once()
    assert "BTCUSDT (OKEX)" in mock_notifier.send_alert.await_args.args[1]
    assert summary.exchanges_skipped == 1
    assert summary.alerts_sent == 1

@pytest.mark.asyncio
async def test_unexpected_symbol_error_still_processes_next_symbol(
    mock_store, mock_notifier, exchange_client_factory, klines_factory
):
    client = exchange_client_factory(
        "BINANCE",
        ["BTCUSDT", "ETHUSDT"],
        {"BTCUSDT": 79, "ETHUSDT": 79},
        {"BTCUSDT": FLAT_100, "ETHUSDT": FLAT_100},
    )

    def klines(symbol, interval, limit):
        if symbol == "BTCUSDT":
            raise ValueError("year 3170843 is out of range")
        return klines_factory(FLAT_100)

    client.get_klines.side_effect = klines
    service = make_service(mock_store, [client], mock_notifier)

    summary = await service.run_monitor()

    mock_notifier.send_alert.assert_awaited_once()
    assert "ETHUSDT" in mock_notifier.send_alert.await_args.args[1]
    assert summary.symbols_skipped == 1
    assert summary.symbols_processed == 1
