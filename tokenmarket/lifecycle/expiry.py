"""Local rental countdown."""

import asyncio

import structlog

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.lifecycle.types import LapseCallback
from tokenmarket.registry.asset_registry import AssetRegistry

logger: Logger = structlog.get_logger()


class RentalExpiryMonitor:
    """
    Ticks the registry's rental countdowns once per interval.

    Ticks never contact the ledger and never change commercial state. Tokens
    whose countdown reaches zero are handed to `on_rental_lapsed`, which is
    expected to request an authoritative refresh.

    Background tasks:
    - Tick loop: runs until stop(), for the lifetime of the registry
    """

    __slots__ = (
        "_registry",
        "_interval",
        "_on_rental_lapsed",
        "_task",
        "_running",
        "ticks",
    )

    def __init__(
        self,
        registry: AssetRegistry,
        interval: float | None = None,
        on_rental_lapsed: LapseCallback | None = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            registry: Registry whose rental countdowns are ticked
            interval: Seconds between ticks (default: settings.TICK_INTERVAL)
            on_rental_lapsed: Optional callback for tokens that reached zero
        """
        self._registry = registry
        self._interval = interval if interval is not None else settings.TICK_INTERVAL
        self._on_rental_lapsed = on_rental_lapsed

        self._task: asyncio.Task | None = None
        self._running = False
        self.ticks = 0

        if self._interval <= 0:
            raise ValueError("interval must be positive")

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("RentalExpiryMonitor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._tick_loop(), name="rental-expiry-tick")
        logger.info(f"RentalExpiryMonitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Cancel the tick loop and wait for it to finish."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"RentalExpiryMonitor stopped after {self.ticks} ticks")

    def tick(self) -> list[int]:
        """Advance every active rental countdown by one second."""
        self.ticks += 1
        return self._registry.tick_rentals(1)

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._interval

        while self._running:
            try:
                # Sleep to an absolute deadline so the countdown does not drift
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                next_tick += self._interval

                if not self._running or self._registry.is_closed:
                    break

                lapsed = self.tick()
                if lapsed:
                    self._handle_lapsed(lapsed)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Expiry tick error: {e}", exc_info=True)

    def _handle_lapsed(self, token_ids: list[int]) -> None:
        logger.info(f"Rental countdown reached zero for tokens {token_ids}")

        if self._on_rental_lapsed is None:
            return

        try:
            self._on_rental_lapsed(token_ids)
        except Exception as e:
            logger.error(f"on_rental_lapsed callback error: {e}")
