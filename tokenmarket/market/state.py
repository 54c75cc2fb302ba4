"""
Commercial state of an asset as a closed set of variants.

Every cached asset holds exactly one of Idle, ForSale, ForRent, Rented or
InAuction. normalize() is the only way raw ledger fields become a state, so
combinations the ledger may transiently report (e.g. rented and listed for
sale) are not representable in the cache.

Priority when several raw flags are set at once:
    Rented > InAuction > ForRent > ForSale > Idle
"""

from enum import IntEnum
from typing import ClassVar, Final

import msgspec

from tokenmarket.ledger.types import RawCommercialFields

# A zero price means "not offered", never "free"
UNSET: Final[int] = 0


class StateKind(IntEnum):
    IDLE = 0
    FOR_SALE = 1
    FOR_RENT = 2
    RENTED = 3
    IN_AUCTION = 4


class Idle(msgspec.Struct, frozen=True):
    kind: ClassVar[StateKind] = StateKind.IDLE


class ForSale(msgspec.Struct, frozen=True):
    kind: ClassVar[StateKind] = StateKind.FOR_SALE

    price: int  # wei


class ForRent(msgspec.Struct, frozen=True):
    kind: ClassVar[StateKind] = StateKind.FOR_RENT

    price: int  # wei
    duration: int  # seconds, 0 = not set


class Rented(msgspec.Struct, frozen=True):
    kind: ClassVar[StateKind] = StateKind.RENTED

    renter: str
    end_time: int  # unix seconds


class InAuction(msgspec.Struct, frozen=True):
    kind: ClassVar[StateKind] = StateKind.IN_AUCTION

    end_time: int  # unix seconds
    highest_bid: int | None = None  # wei, None = no bids yet


CommercialState = Idle | ForSale | ForRent | Rented | InAuction

# States in which the asset must not be transferred
TRANSFER_BLOCKING: Final[frozenset[StateKind]] = frozenset(
    {StateKind.RENTED, StateKind.IN_AUCTION}
)


def rental_time_left(fields: RawCommercialFields, now: float) -> int:
    """Whole seconds until the rental ends, floored at zero."""
    if not fields.is_rented:
        return 0
    return max(0, int(fields.rental_end_time - now))


def normalize(fields: RawCommercialFields, now: float) -> CommercialState:
    """Map raw ledger fields to exactly one commercial state.

    A rental whose end time has passed is not reported as Rented; it falls
    through to the lower priority states until the ledger finalizes it.
    """
    if fields.is_rented and rental_time_left(fields, now) > 0:
        return Rented(renter=fields.renter or "", end_time=fields.rental_end_time)

    if fields.auction_active:
        return InAuction(
            end_time=fields.auction_end_time,
            highest_bid=fields.highest_bid if fields.highest_bid > UNSET else None,
        )

    if fields.rental_price > UNSET:
        return ForRent(price=fields.rental_price, duration=fields.rental_duration)

    if fields.sale_price > UNSET:
        return ForSale(price=fields.sale_price)

    return Idle()


def blocks_transfer(state: CommercialState) -> bool:
    return state.kind in TRANSFER_BLOCKING
