"""Registry refresh coordination."""

import asyncio
import time

import structlog

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.ledger.types import TokenTransferred
from tokenmarket.lifecycle.types import MIN_REFRESH_DELAY, RENTAL_END_GRACE, RefreshStats
from tokenmarket.registry.asset_registry import AssetRegistry
from tokenmarket.registry.fetcher import AssetSnapshotFetcher, Clock, FetchResult

logger: Logger = structlog.get_logger()


class RegistryRefresher:
    """
    Runs fetch -> normalize -> replace cycles for one owner's registry.

    At most one cycle is in flight. Requests arriving while a cycle runs are
    coalesced into a single follow-up cycle, so every caller observes ledger
    state at least as new as its request and snapshots are never applied out
    of order.

    Background tasks:
    - Poll loop: periodic refresh, brought forward to the earliest cached
      rental end so lapsed rentals are finalized promptly
    """

    __slots__ = (
        "_registry",
        "_fetcher",
        "_owner",
        "_interval",
        "_clock",
        "_waiters",
        "_driver",
        "_poll_task",
        "_running",
        "stats",
    )

    def __init__(
        self,
        registry: AssetRegistry,
        fetcher: AssetSnapshotFetcher,
        owner: str,
        interval: float | None = None,
        clock: Clock = time.time,
    ) -> None:
        """
        Initialize refresher.

        Args:
            registry: Registry to replace snapshots in
            fetcher: Snapshot fetcher for the ledger
            owner: Account whose assets are tracked
            interval: Seconds between periodic refreshes, 0 disables polling
                (default: settings.REFRESH_INTERVAL)
            clock: Wall clock in unix seconds
        """
        self._registry = registry
        self._fetcher = fetcher
        self._owner = owner
        self._interval = interval if interval is not None else settings.REFRESH_INTERVAL
        self._clock = clock

        self._waiters: list[asyncio.Future[FetchResult]] = []
        self._driver: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._running = False

        self.stats = RefreshStats()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        """Whether a refresh cycle is currently running"""
        return self._driver is not None and not self._driver.done()

    async def start(self) -> None:
        """Start periodic polling (if enabled)."""
        if self._running:
            logger.warning("RegistryRefresher already running")
            return

        self._running = True

        if self._interval > 0:
            self._poll_task = asyncio.create_task(
                self._poll_loop(), name="registry-poll"
            )

        logger.info(f"RegistryRefresher started for {self._owner}")

    async def stop(self) -> None:
        """Stop polling and abandon any in-flight cycle."""
        if not self._running and not self.in_flight:
            return

        self._running = False

        for task in (self._poll_task, self._driver):
            if task:
                task.cancel()

        for task in (self._poll_task, self._driver):
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._poll_task = None
        self._driver = None

        for waiter in self._waiters:
            waiter.cancel()
        self._waiters.clear()

        logger.info(
            f"RegistryRefresher stopped. Cycles: {self.stats.cycles_completed} "
            f"completed, {self.stats.cycles_failed} failed, "
            f"{self.stats.coalesced} requests coalesced"
        )

    async def refresh(self) -> FetchResult:
        """
        Request a refresh and wait for the cycle that serves it.

        Raises:
            GatewayError: If the cycle serving this request failed
        """
        waiter = self._enqueue()
        return await waiter

    def request(self) -> None:
        """Request a refresh without waiting for it."""
        waiter = self._enqueue()
        waiter.add_done_callback(_consume_result)

    async def on_token_transferred(self, event: TokenTransferred) -> None:
        """Unsolicited refresh trigger for ledger transfer notifications."""
        self.request()

    def on_rental_lapsed(self, token_ids: list[int]) -> None:
        self.request()

    def _enqueue(self) -> asyncio.Future[FetchResult]:
        self.stats.requested += 1

        waiter: asyncio.Future[FetchResult] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)

        if not self.in_flight:
            self._driver = asyncio.create_task(
                self._drive(), name="registry-refresh"
            )

        return waiter

    async def _drive(self) -> None:
        """Serve queued requests one cycle at a time until none remain."""
        while self._waiters:
            waiters, self._waiters = self._waiters, []
            self.stats.cycles_started += 1

            try:
                result = await self._fetcher.fetch(self._owner)

            except asyncio.CancelledError:
                for waiter in waiters:
                    waiter.cancel()
                raise

            except Exception as e:
                self.stats.cycles_failed += 1
                logger.error(f"Refresh for {self._owner} failed: {e}")
                for waiter in waiters:
                    if not waiter.done():
                        waiter.set_exception(e)
                continue

            applied = self._registry.replace_all(result.records)

            if applied:
                self.stats.cycles_completed += 1
            else:
                self.stats.cycles_discarded += 1

            self.stats.partial_failures += len(result.failures)
            self.stats.last_duration = result.elapsed

            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(result)

    def next_delay(self) -> float:
        """Seconds until the next periodic refresh should run."""
        delay = self._interval

        next_end = self._registry.next_rental_end()
        if next_end is not None:
            until_end = next_end - self._clock() + RENTAL_END_GRACE
            delay = min(delay, until_end)

        return max(MIN_REFRESH_DELAY, delay)

    async def _poll_loop(self) -> None:
        """Background task: Periodic refresh."""
        # A snapshot loaded before start is not fetched again straight away
        if self.stats.cycles_completed:
            try:
                await asyncio.sleep(self.next_delay())
            except asyncio.CancelledError:
                return

        while self._running:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Poll refresh error: {e}")

            try:
                await asyncio.sleep(self.next_delay())
            except asyncio.CancelledError:
                break


def _consume_result(future: asyncio.Future) -> None:
    # Failures of fire-and-forget refreshes are already logged by the driver
    if not future.cancelled():
        future.exception()
