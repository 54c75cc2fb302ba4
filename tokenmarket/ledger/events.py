import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import msgspec
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedOK

from tokenmarket.core.logging import Logger
from tokenmarket.ledger.types import TokenTransferred

INITIAL_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 30.0
PING_INTERVAL = 10.0
PING_TIMEOUT = 30.0
TRANSFER_EVENT = "TokenTransferred"

logger: Logger = structlog.get_logger()

TransferCallback = Callable[[TokenTransferred], Awaitable[None]]


class EventEnvelope(msgspec.Struct, frozen=True):
    event: str = ""
    return_values: dict[str, Any] = msgspec.field(
        default_factory=dict, name="returnValues"
    )


_envelope_decoder = msgspec.json.Decoder(EventEnvelope)


def parse_transfer_event(data: bytes | str) -> TokenTransferred | None:
    """Decode a relay event frame; returns None for other event types."""
    envelope = _envelope_decoder.decode(data)
    if envelope.event != TRANSFER_EVENT:
        return None

    return msgspec.convert(envelope.return_values, type=TokenTransferred, strict=False)


class LedgerEventListener:
    """
    Optional push channel for TokenTransferred notifications.

    Nothing depends on it for correctness; it only shortens the time until
    the next refresh. Lifecycle mirrors a managed websocket connection:
        1. Create with url and callback
        2. start() spawns the reconnecting receive loop
        3. stop() cancels it and closes the socket
    """

    __slots__ = (
        "_url",
        "_contract",
        "_on_transfer",
        "_ws",
        "_stop_event",
        "_receive_task",
        "_reconnect_delay",
        "events_received",
        "reconnect_count",
    )

    def __init__(
        self,
        url: str,
        contract_address: str,
        on_transfer: TransferCallback,
    ) -> None:
        self._url = url
        self._contract = contract_address
        self._on_transfer = on_transfer

        self._ws: ClientConnection | None = None
        self._stop_event = asyncio.Event()
        self._receive_task: asyncio.Task[None] | None = None
        self._reconnect_delay = INITIAL_RECONNECT_DELAY

        self.events_received = 0
        self.reconnect_count = 0

    @property
    def is_running(self) -> bool:
        return self._receive_task is not None and not self._receive_task.done()

    async def start(self) -> None:
        if self.is_running:
            return

        self._stop_event.clear()
        self._receive_task = asyncio.create_task(
            self._connection_loop(),
            name="ledger-events-recv",
        )

    async def stop(self) -> None:
        self._stop_event.set()

        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None

    async def _connection_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._connect_and_run()

            except asyncio.CancelledError:
                break

            except Exception as e:
                logger.warning(f"Ledger event stream error: {e}", exc_info=True)

            if self._stop_event.is_set():
                break

            self.reconnect_count += 1
            logger.info(
                f"Ledger event stream reconnecting in {self._reconnect_delay:.1f}s "
                f"(attempt {self.reconnect_count})"
            )

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._reconnect_delay,
                )
                break
            except asyncio.TimeoutError:
                pass

            self._reconnect_delay = min(self._reconnect_delay * 2, MAX_RECONNECT_DELAY)

    async def _connect_and_run(self) -> None:
        async with connect(
            uri=self._url,
            ping_interval=PING_INTERVAL,
            ping_timeout=PING_TIMEOUT,
        ) as ws:
            self._ws = ws
            await ws.send(
                json.dumps(
                    {
                        "type": "subscribe",
                        "event": TRANSFER_EVENT,
                        "address": self._contract,
                    }
                )
            )
            self._reconnect_delay = INITIAL_RECONNECT_DELAY
            logger.debug(f"Subscribed to {TRANSFER_EVENT} on {self._url}")

            await self._receive_events(ws)

    async def _receive_events(self, ws: ClientConnection) -> None:
        try:
            while not self._stop_event.is_set():
                message = await ws.recv(decode=False)
                await self.handle_message(message)

        except ConnectionClosedOK:
            return

    async def handle_message(self, message: bytes | str) -> None:
        try:
            event = parse_transfer_event(message)
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            logger.warning(f"Ignoring malformed ledger event: {e}")
            return

        if event is None:
            return

        self.events_received += 1
        logger.info(
            f"Token {event.token_id} transferred "
            f"{event.from_address} -> {event.to_address}"
        )

        try:
            await self._on_transfer(event)
        except Exception as e:
            logger.error(f"on_transfer callback error: {e}", exc_info=True)
