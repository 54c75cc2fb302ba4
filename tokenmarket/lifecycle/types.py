"""Type definitions for registry lifecycle management."""

from collections.abc import Callable
from dataclasses import dataclass

# Callback signature: (token_ids whose rental countdown reached zero) -> None
LapseCallback = Callable[[list[int]], None]


# Configuration constants
MIN_REFRESH_DELAY = 1.0  # Never poll faster than this
RENTAL_END_GRACE = 1.0  # Seconds after a rental end before refreshing


@dataclass(slots=True)
class RefreshStats:
    """Refresh pipeline metrics."""

    requested: int = 0
    cycles_started: int = 0
    cycles_completed: int = 0
    cycles_failed: int = 0
    cycles_discarded: int = 0
    partial_failures: int = 0
    last_duration: float = 0.0

    @property
    def coalesced(self) -> int:
        """Requests served by a cycle another request started."""
        return max(0, self.requested - self.cycles_started)

    @property
    def success_rate(self) -> float:
        """
        Fraction of started cycles that completed.

        Returns 1.0 when no cycles were started.
        """
        if self.cycles_started > 0:
            return self.cycles_completed / self.cycles_started
        return 1.0
