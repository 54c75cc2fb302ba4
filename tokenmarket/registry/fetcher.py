import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import msgspec
import structlog
from codetiming import Timer

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import GatewayError, PartialFetchError
from tokenmarket.ledger.gateway import LedgerGateway
from tokenmarket.ledger.types import RawCommercialFields
from tokenmarket.market.state import Rented, normalize, rental_time_left
from tokenmarket.registry.asset_record import AssetRecord

logger: Logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass(slots=True)
class FetchResult:
    """Outcome of one snapshot fetch; partial success is the normal case"""

    owner: str
    records: list[AssetRecord] = field(default_factory=list)
    failures: list[PartialFetchError] = field(default_factory=list)
    finalized: list[int] = field(default_factory=list)  # rentals ended on read
    elapsed: float = 0.0

    @property
    def token_ids(self) -> list[int]:
        return [record.token_id for record in self.records]


class AssetSnapshotFetcher:
    """
    Pulls every field needed to compute commercial state for an owner's tokens.

    The ledger has no batched read, so each field is a separate call. A failure
    in any of them drops only that asset from the result. Rentals found lapsed
    are finalized on the ledger before their record is returned.
    """

    __slots__ = ("_gateway", "_clock", "_concurrency")

    def __init__(
        self,
        gateway: LedgerGateway,
        clock: Clock = time.time,
        concurrency: int | None = None,
    ) -> None:
        self._gateway = gateway
        self._clock = clock
        self._concurrency = (
            concurrency if concurrency is not None else settings.FETCH_CONCURRENCY
        )

        if self._concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    async def fetch(self, owner: str) -> FetchResult:
        """
        Fetch all records currently attributed to `owner`, in ledger order.

        Raises:
            GatewayError: If the token listing itself cannot be read
        """
        result = FetchResult(owner=owner)

        with Timer("fetch", logger=None) as timer:
            token_ids = await self._gateway.get_tokens_by_owner(owner)

            semaphore = asyncio.Semaphore(self._concurrency)
            outcomes = await asyncio.gather(
                *(
                    self._fetch_guarded(owner, token_id, semaphore, result)
                    for token_id in token_ids
                )
            )

        for outcome in outcomes:
            if isinstance(outcome, PartialFetchError):
                result.failures.append(outcome)
            else:
                result.records.append(outcome)

        result.elapsed = timer.last

        logger.info(
            f"Fetched {len(result.records)}/{len(token_ids)} assets for {owner} "
            f"in {result.elapsed:.3f}s ({len(result.failures)} failed, "
            f"{len(result.finalized)} finalized)"
        )
        return result

    async def _fetch_guarded(
        self,
        owner: str,
        token_id: int,
        semaphore: asyncio.Semaphore,
        result: FetchResult,
    ) -> AssetRecord | PartialFetchError:
        async with semaphore:
            try:
                return await self.fetch_record(owner, token_id, result)
            except Exception as e:
                logger.warning(f"Dropping token {token_id} from this refresh: {e}")
                return PartialFetchError(token_id, e)

    async def fetch_record(
        self,
        owner: str,
        token_id: int,
        result: FetchResult | None = None,
    ) -> AssetRecord:
        """Fetch and normalize a single asset. Any field failure raises."""
        asset = await self._gateway.get_asset(token_id)
        attributes = await self._gateway.get_attributes(token_id)
        fields = await self._fetch_commercial_fields(token_id)

        now = self._clock()
        stale = False

        if fields.is_rented and rental_time_left(fields, now) <= 0:
            fields, stale = await self._finalize_rental(owner, token_id, fields)
            if not stale and result is not None:
                result.finalized.append(token_id)
            now = self._clock()

        state = normalize(fields, now)

        return AssetRecord(
            token_id=token_id,
            asset=asset,
            owner=owner,
            attributes=attributes,
            state=state,
            time_left=rental_time_left(fields, now) if isinstance(state, Rented) else 0,
            stale=stale,
            last_synced_at=now,
        )

    async def _fetch_commercial_fields(self, token_id: int) -> RawCommercialFields:
        is_rented = await self._gateway.is_rented(token_id)
        sale_price = await self._gateway.sale_price(token_id)
        rental_price = await self._gateway.rental_price(token_id)
        rental_duration = await self._gateway.rental_duration(token_id)
        auction = await self._gateway.get_auction(token_id)

        renter: str | None = None
        rental_end_time = 0

        if is_rented:
            renter = await self._gateway.get_renter(token_id)
            rental_end_time = await self._gateway.get_rental_end_time(token_id)

        return RawCommercialFields(
            sale_price=sale_price,
            rental_price=rental_price,
            rental_duration=rental_duration,
            is_rented=is_rented,
            renter=renter,
            rental_end_time=rental_end_time,
            auction_active=auction.active,
            auction_end_time=auction.end_time,
            highest_bid=auction.highest_bid,
        )

    async def _finalize_rental(
        self,
        owner: str,
        token_id: int,
        fields: RawCommercialFields,
    ) -> tuple[RawCommercialFields, bool]:
        """
        End a lapsed rental on the ledger and re-read the rental fields.

        Returns the refreshed fields and a stale flag. On failure the lapsed
        fields are returned unchanged with stale=True.
        """
        logger.info(f"Rental of token {token_id} has lapsed, finalizing")

        try:
            await self._gateway.end_rental(token_id, sender=owner)

            is_rented = await self._gateway.is_rented(token_id)
            renter: str | None = None
            rental_end_time = 0
            if is_rented:
                renter = await self._gateway.get_renter(token_id)
                rental_end_time = await self._gateway.get_rental_end_time(token_id)

            rental_price = await self._gateway.rental_price(token_id)
            rental_duration = await self._gateway.rental_duration(token_id)

        except GatewayError as e:
            logger.warning(f"Finalizing rental of token {token_id} failed: {e}")
            return fields, True

        refreshed = msgspec.structs.replace(
            fields,
            is_rented=is_rented,
            renter=renter,
            rental_end_time=rental_end_time,
            rental_price=rental_price,
            rental_duration=rental_duration,
        )
        return refreshed, False
