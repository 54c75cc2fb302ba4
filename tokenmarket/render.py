"""Plain-text rendering of registry records."""

from typing import assert_never

from tokenmarket.ledger.units import format_ether
from tokenmarket.market.state import (
    CommercialState,
    ForRent,
    ForSale,
    Idle,
    InAuction,
    Rented,
)
from tokenmarket.registry.asset_record import AssetRecord


def describe_state(state: CommercialState) -> str:
    match state:
        case Idle():
            return "Idle"
        case ForSale(price=price):
            return f"For sale ({format_ether(price)} ETH)"
        case ForRent(price=price, duration=duration):
            terms = f"{duration}s" if duration > 0 else "duration not set"
            return f"For rent ({format_ether(price)} ETH, {terms})"
        case Rented(renter=renter):
            return f"Rented by {renter}"
        case InAuction(highest_bid=bid):
            current = f"{format_ether(bid)} ETH" if bid else "no bids"
            return f"In auction ({current})"
        case _:
            assert_never(state)


def render_record(record: AssetRecord) -> str:
    state = record.state
    lines = [
        f"Token ID: {record.token_id}",
        f"Name: {record.asset.name}",
        f"Description: {record.asset.description}",
        f"Metadata URI: {record.asset.metadata_uri}",
        f"State: {describe_state(state)}",
    ]

    if record.attributes:
        lines.append("Attributes:")
        lines.extend(
            f"  {trait.trait_type}: {trait.value}" for trait in record.attributes
        )

    if isinstance(state, Rented):
        lines.append(f"Renter: {state.renter}")
        left = f"{record.time_left}s" if record.time_left > 0 else "Rental ended"
        lines.append(f"Time Left: {left}")
    else:
        lines.append("Renter: Not rented")

    sale = format_ether(state.price) if isinstance(state, ForSale) else "Not for sale"
    lines.append(f"Sale Price (ETH): {sale}")

    if isinstance(state, ForRent):
        lines.append(f"Rental Price (ETH): {format_ether(state.price)}")
        duration = f"{state.duration} seconds" if state.duration > 0 else "Not set"
        lines.append(f"Rental Duration (seconds): {duration}")
    else:
        lines.append("Rental Price (ETH): Not for rent")

    if isinstance(state, InAuction):
        lines.append(f"Auction ends at: {state.end_time}")

    if not record.is_transferable:
        lines.append(f"Transfer is blocked: token is {record.kind.name.lower()}.")

    if record.stale:
        lines.append("Warning: rental lapsed but could not be finalized on the ledger.")

    return "\n".join(lines)


def render_records(records: list[AssetRecord]) -> str:
    if not records:
        return "No assets found"
    return "\n\n".join(render_record(record) for record in records)
