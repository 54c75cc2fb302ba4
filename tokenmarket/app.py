import time
from typing import Any

import structlog

from tokenmarket.commands.dispatcher import CommandDispatcher
from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import GatewayError
from tokenmarket.ledger.events import LedgerEventListener
from tokenmarket.ledger.gateway import LedgerGateway
from tokenmarket.ledger.transport import HTTPLedgerTransport
from tokenmarket.ledger.types import LedgerTransport
from tokenmarket.ledger.units import is_address
from tokenmarket.lifecycle.expiry import RentalExpiryMonitor
from tokenmarket.lifecycle.refresher import RegistryRefresher
from tokenmarket.metadata.client import MetadataClient
from tokenmarket.registry.asset_registry import AssetRegistry
from tokenmarket.registry.fetcher import AssetSnapshotFetcher, Clock

logger: Logger = structlog.getLogger(__name__)


class TokenMarket:
    """
    Main application orchestrator.

    Wires gateway -> fetcher -> refresher -> registry, plus the expiry monitor,
    the command dispatcher and the optional ledger event listener, with proper
    startup/shutdown order.
    """

    __slots__ = (
        "_account",
        "_transport",
        "_metadata",
        "_events_url",
        "_tick_interval",
        "_refresh_interval",
        "_clock",
        "_concurrency",
        "_gateway",
        "_registry",
        "_fetcher",
        "_refresher",
        "_monitor",
        "_dispatcher",
        "_listener",
        "_running",
    )

    def __init__(
        self,
        account: str | None = None,
        transport: LedgerTransport | None = None,
        metadata: MetadataClient | None = None,
        events_url: str | None = None,
        tick_interval: float | None = None,
        refresh_interval: float | None = None,
        clock: Clock = time.time,
        concurrency: int | None = None,
    ) -> None:
        """Initialise application

        Args:
            account: Connected account (default: settings.ACCOUNT)
            transport: Ledger transport (default: HTTPLedgerTransport)
            metadata: Metadata store client (default: MetadataClient)
            events_url: Ledger event websocket, "" disables
                (default: settings.LEDGER_EVENTS_URL)
            tick_interval: Countdown period in seconds
            refresh_interval: Periodic refresh period, 0 disables
            clock: Wall clock in unix seconds
            concurrency: Max assets fetched concurrently
        """
        self._account = account if account is not None else settings.ACCOUNT
        self._validate_account(self._account)

        self._transport = transport
        self._metadata = metadata
        self._events_url = (
            events_url if events_url is not None else settings.LEDGER_EVENTS_URL
        )
        self._tick_interval = tick_interval
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._concurrency = concurrency

        # Components (initialised on start)
        self._gateway: LedgerGateway | None = None
        self._registry: AssetRegistry | None = None
        self._fetcher: AssetSnapshotFetcher | None = None
        self._refresher: RegistryRefresher | None = None
        self._monitor: RentalExpiryMonitor | None = None
        self._dispatcher: CommandDispatcher | None = None
        self._listener: LedgerEventListener | None = None

        self._running = False

    @staticmethod
    def _validate_account(account: str) -> None:
        if not is_address(account):
            raise ValueError(f"A valid account address is required, got {account!r}")

    @property
    def account(self) -> str:
        return self._account

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registry(self) -> AssetRegistry:
        if self._registry is None:
            raise RuntimeError("TokenMarket is not started")
        return self._registry

    @property
    def dispatcher(self) -> CommandDispatcher:
        if self._dispatcher is None:
            raise RuntimeError("TokenMarket is not started")
        return self._dispatcher

    @property
    def refresher(self) -> RegistryRefresher:
        if self._refresher is None:
            raise RuntimeError("TokenMarket is not started")
        return self._refresher

    @property
    def monitor(self) -> RentalExpiryMonitor:
        if self._monitor is None:
            raise RuntimeError("TokenMarket is not started")
        return self._monitor

    async def __aenter__(self) -> "TokenMarket":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """
        Start all components in correct order.

        Any failure tears down the components already started before the
        error is re-raised, so no timer or session is leaked.
        """
        if self._running:
            logger.warning("Application already running")
            return

        logger.info(f"Starting TokenMarket for {self._account}...")

        try:
            # 1. Ledger gateway
            self._gateway = LedgerGateway(self._transport or HTTPLedgerTransport())
            logger.info("✓ LedgerGateway initialised")

            # 2. AssetRegistry
            self._registry = AssetRegistry(owner=self._account)
            logger.info("✓ AssetRegistry initialised")

            # 3. Fetcher + refresher
            self._fetcher = AssetSnapshotFetcher(
                self._gateway, clock=self._clock, concurrency=self._concurrency
            )
            self._refresher = RegistryRefresher(
                registry=self._registry,
                fetcher=self._fetcher,
                owner=self._account,
                interval=self._refresh_interval,
                clock=self._clock,
            )
            logger.info("✓ RegistryRefresher created")

            # 4. Command dispatcher
            if self._metadata is None:
                self._metadata = MetadataClient()
            self._dispatcher = CommandDispatcher(
                gateway=self._gateway,
                registry=self._registry,
                account=self._account,
                refresh=self._refresher.refresh,
                metadata=self._metadata,
            )
            logger.info("✓ CommandDispatcher initialised")

            # 5. Initial snapshot
            try:
                await self._refresher.refresh()
                logger.info(f"✓ Initial snapshot loaded ({len(self._registry)} assets)")
            except GatewayError as e:
                logger.warning(f"Initial snapshot failed, will retry on poll: {e}")

            # 6. Background refresh
            await self._refresher.start()
            logger.info("✓ RegistryRefresher started")

            # 7. Countdown
            self._monitor = RentalExpiryMonitor(
                self._registry,
                interval=self._tick_interval,
                on_rental_lapsed=self._refresher.on_rental_lapsed,
            )
            await self._monitor.start()
            logger.info("✓ RentalExpiryMonitor started")

            # 8. Ledger events (optional)
            if self._events_url:
                self._listener = LedgerEventListener(
                    url=self._events_url,
                    contract_address=settings.CONTRACT_ADDRESS,
                    on_transfer=self._refresher.on_token_transferred,
                )
                await self._listener.start()
                logger.info(f"✓ LedgerEventListener started on {self._events_url}")

            self._running = True
            logger.info("✓ TokenMarket started successfully!")

        except BaseException as e:
            logger.error(f"X Application startup failed: {e}")
            await self._teardown()
            raise

    async def stop(self) -> None:
        if not self._running:
            logger.warning("Application not running")
            return

        logger.info("Stopping TokenMarket...")
        await self._teardown()
        logger.info("✓ TokenMarket stopped")

    async def _teardown(self) -> None:
        """Release every component that exists; safe after partial start."""
        self._running = False

        # Close first so any late response is discarded
        if self._registry:
            self._registry.close()

        if self._listener:
            await self._listener.stop()
            self._listener = None

        if self._monitor:
            await self._monitor.stop()

        if self._refresher:
            await self._refresher.stop()

        if self._metadata:
            await self._metadata.close()

        if self._gateway:
            await self._gateway.close()

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"running": self._running, "account": self._account}

        if self._registry:
            stats["registry"] = self._registry.stats()

        if self._refresher:
            refresh = self._refresher.stats
            stats["refresh"] = {
                "requested": refresh.requested,
                "cycles_started": refresh.cycles_started,
                "cycles_completed": refresh.cycles_completed,
                "cycles_failed": refresh.cycles_failed,
                "coalesced": refresh.coalesced,
                "partial_failures": refresh.partial_failures,
                "last_duration": refresh.last_duration,
            }

        if self._monitor:
            stats["ticks"] = self._monitor.ticks

        if self._dispatcher:
            stats["pending_commands"] = len(self._dispatcher.pending)

        if self._listener:
            stats["events_received"] = self._listener.events_received

        return stats
