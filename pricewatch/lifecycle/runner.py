# pricewatch/lifecycle/runner.py

import asyncio
import logging
import time
from typing import Optional, Set

from pricewatch.core.errors import MonitorCancelledError, PriceWatchError
from pricewatch.services.price_monitor import MonitorPassSummary, PriceMonitorService
from pricewatch.utils.metrics import monitor_runs_total

logger = logging.getLogger(__name__)

class MonitorRunner:
    """
    Fires PriceMonitorService.run_monitor on a fixed cadence.

    Ticks are spaced `interval_seconds` apart from tick start, whatever the
    pass duration. Each pass runs in its own task, so a pass that overruns
    its interval can overlap the next one; the store's upsert keeps that safe.

    Every pass is bounded by `run_timeout_seconds` and receives the runner's
    stop event as its cooperative cancellation token. Nothing raised inside a
    pass can stop the schedule.
    """

    def __init__(
        self,
        monitor: PriceMonitorService,
        interval_seconds: float = 300.0,
        run_timeout_seconds: float = 240.0,
        job_name: str = "price_monitor",
    ):
        self.monitor = monitor
        self.interval = interval_seconds
        self.run_timeout = run_timeout_seconds
        self.job_name = job_name

        self.running = False
        self.ticks = 0
        self._stop_event = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()

    async def start(self):
        """Main loop. Returns after stop() once in-flight passes have finished."""
        logger.info(f"⏱️ Runner '{self.job_name}' starting (every {self.interval:.0f}s, timeout {self.run_timeout:.0f}s)")
        self.running = True

        try:
            while not self._stop_event.is_set():
                self.ticks += 1
                task = asyncio.create_task(self.run_once(), name=f"{self.job_name}-{self.ticks}")
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    continue
        finally:
            if self._in_flight:
                logger.info(f"Waiting for {len(self._in_flight)} in-flight pass(es) to finish")
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            self.running = False
            logger.info(f"🛑 Runner '{self.job_name}' stopped after {self.ticks} tick(s)")

    def stop(self):
        """Stop accepting ticks; in-flight passes see the stop event before their next symbol."""
        if not self._stop_event.is_set():
            logger.info(f"Stop requested for runner '{self.job_name}'")
        self._stop_event.set()

    async def run_once(self) -> Optional[MonitorPassSummary]:
        """One bounded pass. Never raises."""
        started = time.monotonic()
        try:
            summary = await asyncio.wait_for(
                self.monitor.run_monitor(self._stop_event),
                timeout=self.run_timeout,
            )
        except asyncio.TimeoutError:
            monitor_runs_total.labels(outcome="timeout").inc()
            logger.error(f"[{self.job_name}] pass exceeded its {self.run_timeout:.0f}s timeout")
        except MonitorCancelledError:
            monitor_runs_total.labels(outcome="cancelled").inc()
            logger.info(f"[{self.job_name}] pass cancelled by shutdown")
        except PriceWatchError as e:
            monitor_runs_total.labels(outcome="error").inc()
            logger.error(f"[{self.job_name}] pass failed: {e}")
        except Exception as e:
            monitor_runs_total.labels(outcome="crash").inc()
            logger.exception(f"[{self.job_name}] pass crashed: {e!r}")
        else:
            monitor_runs_total.labels(outcome="success").inc()
            logger.info(f"[{self.job_name}] pass completed in {time.monotonic() - started:.1f}s")
            return summary
        return None
