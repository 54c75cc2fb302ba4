"""
Ledger payload definitions using msgspec.

Key patterns:
- msgspec.Struct with field renames matching the contract ABI names
- Frozen structs; ledger reads are immutable snapshots
- All amounts are integer wei, all timestamps are unix seconds
"""

from typing import Any, Final, Protocol

import msgspec

ZERO_ADDRESS: Final[str] = "0x" + "0" * 40


class AssetData(msgspec.Struct, frozen=True):
    """Static asset fields as returned by getAsset"""

    name: str
    description: str
    metadata_uri: str = msgspec.field(default="", name="metadataURI")


class Trait(msgspec.Struct, frozen=True):
    """Single (trait name, trait value) pair"""

    trait_type: str = msgspec.field(name="traitType")
    value: str


class AuctionInfo(msgspec.Struct, frozen=True):
    """Auction fields as returned by the auctions mapping"""

    active: bool = False
    end_time: int = msgspec.field(default=0, name="endTime")
    highest_bid: int = msgspec.field(default=0, name="highestBid")
    highest_bidder: str = msgspec.field(default=ZERO_ADDRESS, name="highestBidder")


class RawCommercialFields(msgspec.Struct, frozen=True, kw_only=True):
    """Every ledger field that feeds commercial state normalization"""

    sale_price: int = 0
    rental_price: int = 0
    rental_duration: int = 0
    is_rented: bool = False
    renter: str | None = None
    rental_end_time: int = 0
    auction_active: bool = False
    auction_end_time: int = 0
    highest_bid: int = 0


class TokenTransferred(msgspec.Struct, frozen=True):
    """TokenTransferred event payload"""

    token_id: int = msgspec.field(name="tokenId")
    from_address: str = msgspec.field(default=ZERO_ADDRESS, name="from")
    to_address: str = msgspec.field(default=ZERO_ADDRESS, name="to")


class LedgerTransport(Protocol):
    """Raw access to the deployed contract.

    call() performs a read-only contract call and returns the decoded JSON
    result. send() submits a transaction from `sender`, optionally carrying a
    payment in wei, and returns the transaction hash.
    """

    async def call(self, function: str, *args: Any) -> Any: ...

    async def send(
        self, function: str, *args: Any, sender: str, value: int = 0
    ) -> str: ...

    async def close(self) -> None: ...
