"""Registry lifecycle: local rental countdown and refresh coordination."""

from tokenmarket.lifecycle.expiry import RentalExpiryMonitor
from tokenmarket.lifecycle.refresher import RegistryRefresher
from tokenmarket.lifecycle.types import (
    MIN_REFRESH_DELAY,
    RENTAL_END_GRACE,
    LapseCallback,
    RefreshStats,
)

__all__ = [
    "RentalExpiryMonitor",
    "RegistryRefresher",
    "RefreshStats",
    "LapseCallback",
    "MIN_REFRESH_DELAY",
    "RENTAL_END_GRACE",
]
