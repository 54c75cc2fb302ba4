"""Typed request/response wrapper around the ledger contract."""

from typing import Any, TypeVar

import msgspec
import structlog

from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import GatewayError
from tokenmarket.ledger.types import AssetData, AuctionInfo, LedgerTransport, Trait

logger: Logger = structlog.get_logger()

T = TypeVar("T")


class LedgerGateway:
    """
    Stateless, typed view of the contract.

    Every read and write is a suspension point. Any failure, whether in the
    transport or in decoding, surfaces as GatewayError carrying the contract
    function name and token id.
    """

    __slots__ = ("_transport",)

    def __init__(self, transport: LedgerTransport) -> None:
        self._transport = transport

    async def close(self) -> None:
        await self._transport.close()

    # -------------------------------
    # Reads
    # -------------------------------

    async def get_tokens_by_owner(self, account: str) -> list[int]:
        raw = await self._call("getTokensByOwner", account)
        return self._decode("getTokensByOwner", raw, list[int])

    async def get_asset(self, token_id: int) -> AssetData:
        raw = await self._call("getAsset", token_id, token_id=token_id)
        return self._decode("getAsset", raw, AssetData, token_id)

    async def get_attributes(self, token_id: int) -> tuple[Trait, ...]:
        raw = await self._call("getAttributes", token_id, token_id=token_id)
        return self._decode("getAttributes", raw, tuple[Trait, ...], token_id)

    async def is_rented(self, token_id: int) -> bool:
        raw = await self._call("isRented", token_id, token_id=token_id)
        return self._decode("isRented", raw, bool, token_id)

    async def get_renter(self, token_id: int) -> str:
        raw = await self._call("getRenter", token_id, token_id=token_id)
        return self._decode("getRenter", raw, str, token_id)

    async def get_rental_end_time(self, token_id: int) -> int:
        raw = await self._call("getRentalEndTime", token_id, token_id=token_id)
        return self._decode("getRentalEndTime", raw, int, token_id)

    async def sale_price(self, token_id: int) -> int:
        raw = await self._call("salePrices", token_id, token_id=token_id)
        return self._decode("salePrices", raw, int, token_id)

    async def rental_price(self, token_id: int) -> int:
        raw = await self._call("rentalPrices", token_id, token_id=token_id)
        return self._decode("rentalPrices", raw, int, token_id)

    async def rental_duration(self, token_id: int) -> int:
        raw = await self._call("rentalDurations", token_id, token_id=token_id)
        return self._decode("rentalDurations", raw, int, token_id)

    async def get_auction(self, token_id: int) -> AuctionInfo:
        raw = await self._call("auctions", token_id, token_id=token_id)
        return self._decode("auctions", raw, AuctionInfo, token_id)

    # -------------------------------
    # Writes
    # -------------------------------

    async def create_asset_with_metadata(
        self,
        name: str,
        description: str,
        metadata_uri: str,
        trait_names: list[str],
        trait_values: list[str],
        *,
        sender: str,
    ) -> str:
        return await self._send(
            "createAssetWithMetadata",
            name,
            description,
            metadata_uri,
            trait_names,
            trait_values,
            sender=sender,
        )

    async def set_sale_price(self, token_id: int, amount: int, *, sender: str) -> str:
        return await self._send(
            "setSalePrice", token_id, amount, sender=sender, token_id=token_id
        )

    async def confirm_purchase(
        self, token_id: int, *, sender: str, payment: int
    ) -> str:
        return await self._send(
            "confirmPurchase", token_id, sender=sender, value=payment, token_id=token_id
        )

    async def set_rental_price(
        self, token_id: int, amount: int, *, sender: str
    ) -> str:
        return await self._send(
            "setRentalPrice", token_id, amount, sender=sender, token_id=token_id
        )

    async def set_rental_duration(
        self, token_id: int, seconds: int, *, sender: str
    ) -> str:
        return await self._send(
            "setRentalDuration", token_id, seconds, sender=sender, token_id=token_id
        )

    async def confirm_rent(self, token_id: int, *, sender: str, payment: int) -> str:
        return await self._send(
            "confirmRent", token_id, sender=sender, value=payment, token_id=token_id
        )

    async def end_rental(self, token_id: int, *, sender: str) -> str:
        return await self._send("endRental", token_id, sender=sender, token_id=token_id)

    async def create_auction(
        self, token_id: int, duration_seconds: int, *, sender: str
    ) -> str:
        return await self._send(
            "createAuction", token_id, duration_seconds, sender=sender, token_id=token_id
        )

    async def place_bid(self, token_id: int, *, sender: str, payment: int) -> str:
        return await self._send(
            "placeBid", token_id, sender=sender, value=payment, token_id=token_id
        )

    async def end_auction(self, token_id: int, *, sender: str) -> str:
        return await self._send("endAuction", token_id, sender=sender, token_id=token_id)

    async def transfer(
        self, from_address: str, to_address: str, token_id: int, *, sender: str
    ) -> str:
        return await self._send(
            "safeTransferFrom",
            from_address,
            to_address,
            token_id,
            sender=sender,
            token_id=token_id,
        )

    # -------------------------------
    # Internals
    # -------------------------------

    async def _call(self, function: str, *args: Any, token_id: int | None = None) -> Any:
        try:
            return await self._transport.call(function, *args)
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(
                f"Ledger read {function} failed: {e}",
                function=function,
                token_id=token_id,
            ) from e

    async def _send(
        self,
        function: str,
        *args: Any,
        sender: str,
        value: int = 0,
        token_id: int | None = None,
    ) -> str:
        logger.debug(f"Submitting {function} from {sender} (value={value})")
        try:
            tx_hash = await self._transport.send(
                function, *args, sender=sender, value=value
            )
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(
                f"Ledger write {function} failed: {e}",
                function=function,
                token_id=token_id,
            ) from e

        logger.info(f"Ledger write {function} confirmed: tx={tx_hash}")
        return tx_hash

    @staticmethod
    def _decode(
        function: str, raw: Any, type_: type[T], token_id: int | None = None
    ) -> T:
        try:
            return msgspec.convert(raw, type=type_, strict=False)
        except msgspec.ValidationError as e:
            raise GatewayError(
                f"Unexpected {function} response: {e}",
                function=function,
                token_id=token_id,
            ) from e
