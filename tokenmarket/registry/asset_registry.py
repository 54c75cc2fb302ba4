import time
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import FrozenSet

import structlog
from sortedcontainers import SortedDict

from tokenmarket.core.logging import Logger
from tokenmarket.market.state import Rented, StateKind
from tokenmarket.registry.asset_record import AssetRecord

logger: Logger = structlog.get_logger()


class RegistryEvent(StrEnum):
    REPLACED = "replaced"
    TICKED = "ticked"
    CLOSED = "closed"


RegistryListener = Callable[[RegistryEvent], None]


class AssetRegistry:
    """
    Client-side cache of normalized asset records.

    Exactly two write paths exist:
        - replace_all(): whole-snapshot replacement by the refresh pipeline
        - tick_rentals(): in-place time_left countdown by the expiry monitor

    Both are synchronous, so on a single event loop readers never observe a
    half-applied update and no lock is needed.

    Provides multi-index access:
        - By token_id
        - By state kind
        - By rental end time (for scheduling the next authoritative refresh)
    """

    def __init__(self, owner: str = "") -> None:
        self.owner = owner

        # Primary storage, in ledger token order
        self._records: dict[int, AssetRecord] = {}

        # Secondary indices
        self._by_kind: dict[StateKind, set[int]] = {kind: set() for kind in StateKind}

        # Rental end index: end_time -> token_ids
        self._by_rental_end: SortedDict[int, set[int]] = SortedDict()

        self._listeners: list[RegistryListener] = []
        self._closed = False
        self._version = 0
        self.last_replaced_at = 0.0

    # -------------------------------
    # Read-only operations
    # -------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._records

    @property
    def version(self) -> int:
        """Incremented on every snapshot replacement"""
        return self._version

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get(self, token_id: int) -> AssetRecord | None:
        return self._records.get(token_id)

    def records(self) -> list[AssetRecord]:
        return list(self._records.values())

    def get_by_kind(self, kind: StateKind) -> FrozenSet[int]:
        return frozenset(self._by_kind.get(kind, set()))

    def next_rental_end(self) -> int | None:
        """Earliest rental end timestamp among cached rentals."""
        if not self._by_rental_end:
            return None
        end_time, _ = self._by_rental_end.peekitem(0)
        return end_time

    def stats(self) -> dict[str, int | float]:
        stats: dict[str, int | float] = {
            "total": len(self._records),
            "version": self._version,
            "last_replaced_at": self.last_replaced_at,
        }
        for kind in StateKind:
            stats[kind.name.lower()] = len(self._by_kind[kind])
        stats["stale"] = sum(1 for record in self._records.values() if record.stale)
        return stats

    # -------------------------------
    # Subscriptions
    # -------------------------------

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: RegistryEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Registry listener error on {event}: {e}", exc_info=True)

    # ---------------------------
    # Mutation operations
    # ---------------------------

    def replace_all(self, records: Iterable[AssetRecord]) -> bool:
        """
        Replace the whole snapshot as one unit.

        Returns False (and changes nothing) once the registry is closed, so a
        refresh finishing after teardown is discarded.
        """
        if self._closed:
            logger.debug("Discarding snapshot for closed registry")
            return False

        new_records: dict[int, AssetRecord] = {}
        by_kind: dict[StateKind, set[int]] = {kind: set() for kind in StateKind}
        by_rental_end: SortedDict[int, set[int]] = SortedDict()

        for record in records:
            new_records[record.token_id] = record
            by_kind[record.kind].add(record.token_id)

            if isinstance(record.state, Rented):
                end_time = record.state.end_time
                if end_time not in by_rental_end:
                    by_rental_end[end_time] = set()
                by_rental_end[end_time].add(record.token_id)

        self._records = new_records
        self._by_kind = by_kind
        self._by_rental_end = by_rental_end
        self._version += 1
        self.last_replaced_at = time.time()

        self._notify(RegistryEvent.REPLACED)
        return True

    def tick_rentals(self, seconds: int = 1) -> list[int]:
        """
        Count down time_left of every Rented record, floored at zero.

        Never changes state and never suspends. Returns the token_ids whose
        countdown reached zero on this tick.
        """
        if self._closed:
            return []

        lapsed: list[int] = []

        for token_id in sorted(self._by_kind[StateKind.RENTED]):
            record = self._records.get(token_id)
            if record is None or record.time_left <= 0:
                continue

            record.time_left = max(0, record.time_left - seconds)
            if record.time_left == 0:
                lapsed.append(token_id)

        self._notify(RegistryEvent.TICKED)
        return lapsed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notify(RegistryEvent.CLOSED)
        self._listeners.clear()
