"""In-memory test doubles for the ledger and the wall clock."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from tokenmarket.ledger.types import ZERO_ADDRESS, AssetData
from tokenmarket.ledger.units import WEI_PER_ETHER
from tokenmarket.market.state import Rented
from tokenmarket.registry.asset_record import AssetRecord

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


def ether(amount: float | str) -> int:
    """Exact wei for readable test amounts"""
    return int(Decimal(str(amount)) * WEI_PER_ETHER)


class LedgerRevert(Exception):
    """Simulated contract revert."""

    pass


class FakeClock:
    """Controllable unix clock shared by the fake ledger and the fetcher."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeToken:
    owner: str
    name: str = "Asset"
    description: str = "An asset"
    metadata_uri: str = "http://localhost:3001/metadata/1.json"
    attributes: list[tuple[str, str]] = field(default_factory=list)
    sale_price: int = 0
    rental_price: int = 0
    rental_duration: int = 0
    renter: str | None = None
    rental_end: int = 0
    auction_active: bool = False
    auction_end: int = 0
    highest_bid: int = 0
    highest_bidder: str = ZERO_ADDRESS


class FakeLedger:
    """
    LedgerTransport simulating the marketplace contract.

    Faults can be injected per (function, token_id) to make a single read or
    write fail; every call and write is recorded for assertions.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.tokens: dict[int, FakeToken] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.writes: list[tuple[str, tuple[Any, ...], str, int]] = []
        self.faults: dict[tuple[str, int | None], Exception] = {}
        self.closed = False
        self._tx = 0

    # -------------------------------
    # Test helpers
    # -------------------------------

    def mint(self, token_id: int, owner: str, **fields: Any) -> FakeToken:
        token = FakeToken(owner=owner, **fields)
        self.tokens[token_id] = token
        return token

    def fail(
        self,
        function: str,
        token_id: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.faults[(function, token_id)] = error or ConnectionError(
            f"node unavailable for {function}"
        )

    def heal(self) -> None:
        self.faults.clear()

    def write_functions(self) -> list[str]:
        return [write[0] for write in self.writes]

    # -------------------------------
    # LedgerTransport
    # -------------------------------

    async def call(self, function: str, *args: Any) -> Any:
        self.calls.append((function, args))
        self._check_fault(function, args)

        if function == "getTokensByOwner":
            (account,) = args
            return [
                token_id
                for token_id, token in sorted(self.tokens.items())
                if token.owner.lower() == account.lower()
            ]

        token = self._token(args[0])

        match function:
            case "getAsset":
                return {
                    "name": token.name,
                    "description": token.description,
                    "metadataURI": token.metadata_uri,
                }
            case "getAttributes":
                return [
                    {"traitType": trait_type, "value": value}
                    for trait_type, value in token.attributes
                ]
            case "isRented":
                return token.renter is not None
            case "getRenter":
                return token.renter or ZERO_ADDRESS
            case "getRentalEndTime":
                return token.rental_end
            case "salePrices":
                return str(token.sale_price)
            case "rentalPrices":
                return str(token.rental_price)
            case "rentalDurations":
                return token.rental_duration
            case "auctions":
                return {
                    "active": token.auction_active,
                    "endTime": token.auction_end,
                    "highestBid": str(token.highest_bid),
                    "highestBidder": token.highest_bidder,
                }

        raise LedgerRevert(f"unknown function {function}")

    async def send(
        self, function: str, *args: Any, sender: str, value: int = 0
    ) -> str:
        self._check_fault(function, args)
        self.writes.append((function, args, sender, value))
        handler = getattr(self, f"_tx_{function}", None)
        if handler is None:
            raise LedgerRevert(f"unknown function {function}")

        handler(*args, sender=sender, value=value)

        self._tx += 1
        return f"0x{self._tx:064x}"

    async def close(self) -> None:
        self.closed = True

    # -------------------------------
    # Contract semantics
    # -------------------------------

    def _tx_createAssetWithMetadata(
        self, name, description, metadata_uri, trait_names, trait_values, *, sender, value
    ) -> None:
        token_id = max(self.tokens, default=0) + 1
        self.mint(
            token_id,
            sender,
            name=name,
            description=description,
            metadata_uri=metadata_uri,
            attributes=list(zip(trait_names, trait_values)),
        )

    def _tx_setSalePrice(self, token_id, amount, *, sender, value) -> None:
        token = self._owned(token_id, sender)
        token.sale_price = amount

    def _tx_confirmPurchase(self, token_id, *, sender, value) -> None:
        token = self._token(token_id)
        self._require(token.sale_price > 0, "not for sale")
        self._require(value >= token.sale_price, "insufficient payment")
        self._require(token.renter is None, "token is rented")
        token.owner = sender
        token.sale_price = 0

    def _tx_setRentalPrice(self, token_id, amount, *, sender, value) -> None:
        token = self._owned(token_id, sender)
        token.rental_price = amount

    def _tx_setRentalDuration(self, token_id, seconds, *, sender, value) -> None:
        token = self._owned(token_id, sender)
        token.rental_duration = seconds

    def _tx_confirmRent(self, token_id, *, sender, value) -> None:
        token = self._token(token_id)
        self._require(token.rental_price > 0, "not for rent")
        self._require(token.renter is None, "already rented")
        self._require(value >= token.rental_price, "insufficient payment")
        token.renter = sender
        token.rental_end = int(self.clock()) + token.rental_duration
        token.rental_price = 0

    def _tx_endRental(self, token_id, *, sender, value) -> None:
        token = self._token(token_id)
        self._require(token.renter is not None, "not rented")
        self._require(self.clock() >= token.rental_end, "rental not over")
        token.renter = None
        token.rental_end = 0

    def _tx_createAuction(self, token_id, duration, *, sender, value) -> None:
        token = self._owned(token_id, sender)
        self._require(not token.auction_active, "auction already active")
        token.auction_active = True
        token.auction_end = int(self.clock()) + duration
        token.highest_bid = 0
        token.highest_bidder = ZERO_ADDRESS

    def _tx_placeBid(self, token_id, *, sender, value) -> None:
        token = self._token(token_id)
        self._require(token.auction_active, "no auction")
        self._require(value > token.highest_bid, "bid too low")
        token.highest_bid = value
        token.highest_bidder = sender

    def _tx_endAuction(self, token_id, *, sender, value) -> None:
        token = self._token(token_id)
        self._require(token.auction_active, "no auction")
        token.auction_active = False
        if token.highest_bidder != ZERO_ADDRESS:
            token.owner = token.highest_bidder

    def _tx_safeTransferFrom(self, from_address, to_address, token_id, *, sender, value) -> None:
        token = self._owned(token_id, from_address)
        self._require(token.renter is None, "token is rented")
        token.owner = to_address

    # -------------------------------
    # Internals
    # -------------------------------

    def _check_fault(self, function: str, args: tuple[Any, ...]) -> None:
        token_id = args[0] if args and isinstance(args[0], int) else None
        if function == "safeTransferFrom" and len(args) == 3:
            token_id = args[2]

        fault = self.faults.get((function, token_id)) or self.faults.get((function, None))
        if fault is not None:
            raise fault

    def _token(self, token_id: int) -> FakeToken:
        token = self.tokens.get(token_id)
        if token is None:
            raise LedgerRevert(f"invalid token id {token_id}")
        return token

    def _owned(self, token_id: int, account: str) -> FakeToken:
        token = self._token(token_id)
        self._require(token.owner.lower() == account.lower(), "caller is not owner")
        return token

    @staticmethod
    def _require(condition: bool, reason: str) -> None:
        if not condition:
            raise LedgerRevert(f"execution reverted: {reason}")


def rented_record(token_id: int, end_time: int, time_left: int) -> AssetRecord:
    """Registry record for an asset currently rented by BOB"""
    return AssetRecord(
        token_id=token_id,
        asset=AssetData(name=f"Asset {token_id}", description="test"),
        owner=ALICE,
        state=Rented(renter=BOB, end_time=end_time),
        time_left=time_left,
    )
