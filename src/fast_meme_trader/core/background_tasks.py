"""
MonitoringLoop - Periodic exit monitoring.

Runs TradingService.monitor_once() on a fixed interval as a background
task. A failing cycle is logged and the loop carries on; stop() returns
promptly, even mid-wait.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from fast_meme_trader.execution import TradingService

logger = logging.getLogger(__name__)


@dataclass
class MonitorConfig:
    """Configuration for the monitoring loop."""

    interval_seconds: float = 10.0

    # Log a position status summary every N cycles (0 disables)
    status_every_cycles: int = 6


class MonitoringLoop:
    """
    Drives the monitoring cycle in the background.

    Usage:
        loop = MonitoringLoop(service, MonitorConfig(interval_seconds=10))
        await loop.start()
        # ... bot runs ...
        await loop.stop()
    """

    def __init__(
        self,
        service: "TradingService",
        config: Optional[MonitorConfig] = None,
        on_exit: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialize the monitoring loop.

        Args:
            service: TradingService to drive
            config: Loop configuration
            on_exit: Optional callback for each exit line reported by a cycle
        """
        self._service = service
        self._config = config or MonitorConfig()
        self._on_exit = on_exit

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._cycles = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        """Completed monitoring cycles."""
        return self._cycles

    async def start(self) -> None:
        """Start the loop."""
        if self._running:
            logger.warning("MonitoringLoop already running")
            return

        logger.info(f"Starting monitoring loop (interval={self._config.interval_seconds}s)")
        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="monitor")

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        if not self._running:
            return

        logger.info("Stopping monitoring loop...")
        self._running = False
        self._stop_event.set()

        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        logger.info("Monitoring loop stopped")

    async def run_cycle(self) -> List[str]:
        """Run one monitoring cycle and report its exits."""
        exits = await self._service.monitor_once()
        self._cycles += 1

        for line in exits:
            logger.info(line)
            if self._on_exit is not None:
                self._on_exit(line)

        every = self._config.status_every_cycles
        if every and self._cycles % every == 0:
            await self._log_status()

        return exits

    async def _log_status(self) -> None:
        positions = await self._service.list_positions()
        if not positions:
            return
        for position, status in positions:
            logger.info(f"{position.token_id[:8]} ({position.strategy.label}): {status}")
        logger.info(str(await self._service.get_performance_stats()))

    async def _run(self) -> None:
        interval = self._config.interval_seconds

        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in monitoring cycle: {e}")

            # Wait for interval or stop
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break  # Stop requested
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break
