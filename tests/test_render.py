"""Tests for plain-text record rendering."""

from tests.fakes import ALICE, BOB, ether
from tokenmarket.ledger.types import AssetData, Trait
from tokenmarket.market.state import ForRent, ForSale, Idle, InAuction, Rented
from tokenmarket.registry.asset_record import AssetRecord
from tokenmarket.render import describe_state, render_record, render_records


def record(state, time_left: int = 0, stale: bool = False) -> AssetRecord:
    return AssetRecord(
        token_id=1,
        asset=AssetData(name="Sunset", description="Oil", metadata_uri="uri"),
        owner=ALICE,
        attributes=(Trait(trait_type="Size", value="L"),),
        state=state,
        time_left=time_left,
        stale=stale,
    )


class TestDescribeState:
    def test_each_variant(self) -> None:
        assert describe_state(Idle()) == "Idle"
        assert describe_state(ForSale(price=ether("1.5"))) == "For sale (1.5 ETH)"
        assert describe_state(ForRent(price=ether("0.1"), duration=3600)) == (
            "For rent (0.1 ETH, 3600s)"
        )
        assert describe_state(ForRent(price=1, duration=0)).endswith("duration not set)")
        assert describe_state(Rented(renter=BOB, end_time=0)) == f"Rented by {BOB}"
        assert describe_state(InAuction(end_time=0)) == "In auction (no bids)"
        assert describe_state(InAuction(end_time=0, highest_bid=ether(2))) == (
            "In auction (2 ETH)"
        )


class TestRenderRecord:
    def test_idle(self) -> None:
        text = render_record(record(Idle()))

        assert "Token ID: 1" in text
        assert "  Size: L" in text
        assert "Renter: Not rented" in text
        assert "Sale Price (ETH): Not for sale" in text
        assert "Rental Price (ETH): Not for rent" in text
        assert "Transfer is blocked" not in text

    def test_rented_with_time_left(self) -> None:
        text = render_record(record(Rented(renter=BOB, end_time=0), time_left=42))

        assert f"Renter: {BOB}" in text
        assert "Time Left: 42s" in text
        assert "Transfer is blocked: token is rented." in text

    def test_rental_countdown_finished(self) -> None:
        text = render_record(record(Rented(renter=BOB, end_time=0), time_left=0))

        assert "Time Left: Rental ended" in text

    def test_for_rent(self) -> None:
        text = render_record(record(ForRent(price=ether("0.1"), duration=0)))

        assert "Rental Price (ETH): 0.1" in text
        assert "Rental Duration (seconds): Not set" in text

    def test_stale_warning(self) -> None:
        text = render_record(record(Idle(), stale=True))

        assert "could not be finalized" in text


def test_render_records_empty() -> None:
    assert render_records([]) == "No assets found"


def test_render_records_joins_blocks() -> None:
    text = render_records([record(Idle()), record(ForSale(price=1))])

    assert text.count("Token ID: 1") == 2
