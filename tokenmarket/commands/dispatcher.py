"""User intents -> validated ledger writes -> registry refresh."""

import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from tokenmarket.commands.validation import (
    coerce_traits,
    parse_address,
    parse_amount,
    parse_duration,
    parse_token_id,
    require_text,
)
from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import (
    GatewayError,
    InvariantViolation,
    UploadError,
    ValidationError,
)
from tokenmarket.ledger.gateway import LedgerGateway
from tokenmarket.ledger.units import format_ether
from tokenmarket.metadata.client import MetadataClient, MetadataDocument
from tokenmarket.registry.asset_registry import AssetRegistry

logger: Logger = structlog.get_logger()

RefreshCallback = Callable[[], Awaitable[Any]]


class CommandKind(StrEnum):
    SET_SALE_PRICE = "set-sale-price"
    CONFIRM_PURCHASE = "confirm-purchase"
    SET_RENTAL_PRICE = "set-rental-price"
    SET_RENTAL_DURATION = "set-rental-duration"
    CONFIRM_RENT = "confirm-rent"
    CREATE_AUCTION = "create-auction"
    PLACE_BID = "place-bid"
    END_AUCTION = "end-auction"
    TRANSFER = "transfer"
    CREATE_ASSET = "create-asset-with-metadata"


@dataclass(slots=True)
class PendingCommand:
    """An in-flight ledger write; lives only for one submit-and-confirm cycle"""

    kind: CommandKind
    token_id: int | None
    params: dict[str, Any]
    account: str
    submitted_at: float = field(default_factory=time.monotonic)


@dataclass(slots=True)
class CommandResult:
    kind: CommandKind
    token_id: int | None
    tx_hash: str
    refreshed: bool
    metadata_uri: str | None = None


class CommandDispatcher:
    """
    One operation per user intent.

    Every operation validates its input before any remote call, performs
    exactly one ledger write attributed to the connected account and, on
    success, waits for a full registry refresh. The cache is never updated
    optimistically and nothing is retried: writes can carry payment.
    """

    __slots__ = ("_gateway", "_registry", "_account", "_refresh", "_metadata", "_pending")

    def __init__(
        self,
        gateway: LedgerGateway,
        registry: AssetRegistry,
        account: str,
        refresh: RefreshCallback | None = None,
        metadata: MetadataClient | None = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            gateway: Ledger gateway for writes
            registry: Registry consulted for local guards (read-only)
            account: Connected account every write is attributed to
            refresh: Awaitable refresh trigger run after each successful write
            metadata: Off-chain store client, required for asset creation
        """
        self._gateway = gateway
        self._registry = registry
        self._account = account
        self._refresh = refresh
        self._metadata = metadata
        self._pending: list[PendingCommand] = []

    @property
    def account(self) -> str:
        return self._account

    @property
    def pending(self) -> list[PendingCommand]:
        """Commands awaiting ledger confirmation"""
        return list(self._pending)

    # -------------------------------
    # Direct sale
    # -------------------------------

    async def set_sale_price(self, token_id: Any, price: Any) -> CommandResult:
        """List (or with price "0", unlist) a token for direct sale."""
        tid = parse_token_id(token_id)
        wei = parse_amount(price, label="Sale price")
        sender = self._require_account()

        return await self._submit(
            CommandKind.SET_SALE_PRICE,
            tid,
            {"price": wei},
            lambda: self._gateway.set_sale_price(tid, wei, sender=sender),
        )

    async def confirm_purchase(self, token_id: Any, payment: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        wei = parse_amount(payment, positive=True, label="Purchase price")
        sender = self._require_account()

        return await self._submit(
            CommandKind.CONFIRM_PURCHASE,
            tid,
            {"payment": wei},
            lambda: self._gateway.confirm_purchase(tid, sender=sender, payment=wei),
        )

    # -------------------------------
    # Direct rental
    # -------------------------------

    async def set_rental_price(self, token_id: Any, price: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        wei = parse_amount(price, label="Rental price")
        sender = self._require_account()

        return await self._submit(
            CommandKind.SET_RENTAL_PRICE,
            tid,
            {"price": wei},
            lambda: self._gateway.set_rental_price(tid, wei, sender=sender),
        )

    async def set_rental_duration(self, token_id: Any, seconds: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        duration = parse_duration(seconds, label="Rental duration")
        sender = self._require_account()

        return await self._submit(
            CommandKind.SET_RENTAL_DURATION,
            tid,
            {"duration": duration},
            lambda: self._gateway.set_rental_duration(tid, duration, sender=sender),
        )

    async def confirm_rent(self, token_id: Any, payment: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        wei = parse_amount(payment, positive=True, label="Rental amount")
        sender = self._require_account()

        return await self._submit(
            CommandKind.CONFIRM_RENT,
            tid,
            {"payment": wei},
            lambda: self._gateway.confirm_rent(tid, sender=sender, payment=wei),
        )

    # -------------------------------
    # Auctions
    # -------------------------------

    async def create_auction(self, token_id: Any, seconds: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        duration = parse_duration(seconds, label="Auction duration")
        sender = self._require_account()

        return await self._submit(
            CommandKind.CREATE_AUCTION,
            tid,
            {"duration": duration},
            lambda: self._gateway.create_auction(tid, duration, sender=sender),
        )

    async def place_bid(self, token_id: Any, amount: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        wei = parse_amount(amount, positive=True, label="Bid amount")
        sender = self._require_account()

        return await self._submit(
            CommandKind.PLACE_BID,
            tid,
            {"payment": wei},
            lambda: self._gateway.place_bid(tid, sender=sender, payment=wei),
        )

    async def end_auction(self, token_id: Any) -> CommandResult:
        tid = parse_token_id(token_id)
        sender = self._require_account()

        return await self._submit(
            CommandKind.END_AUCTION,
            tid,
            {},
            lambda: self._gateway.end_auction(tid, sender=sender),
        )

    # -------------------------------
    # Ownership
    # -------------------------------

    async def transfer(self, token_id: Any, recipient: Any) -> CommandResult:
        """
        Transfer a token held by the connected account.

        Raises:
            ValidationError: Malformed input or token not held by the account
            InvariantViolation: Token is cached as Rented or InAuction
        """
        tid = parse_token_id(token_id)
        to_address = parse_address(recipient, label="Recipient")
        sender = self._require_account()

        record = self._registry.get(tid)
        if record is None:
            raise ValidationError(
                f"Token {tid} is not held by {sender}; refresh and try again"
            )

        if not record.is_transferable:
            raise InvariantViolation(
                f"Token {tid} is {record.kind.name.lower()} and cannot be transferred",
                token_id=tid,
            )

        return await self._submit(
            CommandKind.TRANSFER,
            tid,
            {"to": to_address},
            lambda: self._gateway.transfer(sender, to_address, tid, sender=sender),
        )

    async def create_asset_with_metadata(
        self,
        name: Any,
        description: Any,
        attributes: Iterable[Any],
        image: bytes,
        image_filename: str = "image.png",
    ) -> CommandResult:
        """
        Create a new asset.

        Strict order: upload image -> upload metadata document embedding the
        image URI -> ledger write embedding the metadata URI. Upload failures
        raise UploadError before any ledger contact.
        """
        name = require_text(name, "Asset name")
        description = require_text(description, "Asset description")
        traits = coerce_traits(attributes or ())
        if not image:
            raise ValidationError("Image is required")
        if self._metadata is None:
            raise ValidationError("No metadata store configured")
        sender = self._require_account()

        try:
            image_uri = await self._metadata.upload_image(image, filename=image_filename)
            metadata_uri = await self._metadata.upload_metadata(
                MetadataDocument(
                    name=name,
                    description=description,
                    image=image_uri,
                    attributes=traits,
                )
            )
        except UploadError as e:
            logger.error(f"Asset creation aborted before ledger write: {e}")
            raise

        result = await self._submit(
            CommandKind.CREATE_ASSET,
            None,
            {"name": name, "metadata_uri": metadata_uri, "traits": len(traits)},
            lambda: self._gateway.create_asset_with_metadata(
                name,
                description,
                metadata_uri,
                [trait.trait_type for trait in traits],
                [trait.value for trait in traits],
                sender=sender,
            ),
        )
        result.metadata_uri = metadata_uri
        return result

    # -------------------------------
    # Internals
    # -------------------------------

    def _require_account(self) -> str:
        if not self._account:
            raise ValidationError("No account connected")
        return self._account

    async def _submit(
        self,
        kind: CommandKind,
        token_id: int | None,
        params: dict[str, Any],
        write: Callable[[], Awaitable[str]],
    ) -> CommandResult:
        command = PendingCommand(
            kind=kind, token_id=token_id, params=params, account=self._account
        )
        self._pending.append(command)
        logger.info(f"Submitting {kind} token={token_id} {_describe(params)}")

        try:
            tx_hash = await write()
        except GatewayError as e:
            logger.error(f"{kind} token={token_id} failed: {e}")
            raise
        finally:
            self._pending.remove(command)

        refreshed = await self._refresh_after(kind)
        return CommandResult(
            kind=kind, token_id=token_id, tx_hash=tx_hash, refreshed=refreshed
        )

    async def _refresh_after(self, kind: CommandKind) -> bool:
        if self._refresh is None:
            return False

        try:
            await self._refresh()
        except GatewayError as e:
            # The write is confirmed; only the follow-up read failed
            logger.warning(f"Refresh after {kind} failed: {e}")
            return False

        return True


def _describe(params: dict[str, Any]) -> str:
    parts = []
    for key, value in params.items():
        if key in ("price", "payment"):
            value = f"{format_ether(value)} ETH"
        parts.append(f"{key}={value}")
    return " ".join(parts)
