"""Input validation for user commands. Nothing here touches the ledger."""

from collections.abc import Iterable
from typing import Any

import msgspec

from tokenmarket.exceptions import ValidationError
from tokenmarket.ledger.types import Trait
from tokenmarket.ledger.units import is_address, to_wei


def parse_token_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid token id: {value!r}")

    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError("Token id is required")
        if not value.isdecimal():
            raise ValidationError(f"Invalid token id: {value!r}")
        return int(value)

    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"Token id must not be negative: {value}")
        return value

    raise ValidationError(f"Invalid token id: {value!r}")


def parse_amount(value: Any, *, positive: bool = False, label: str = "Amount") -> int:
    """Parse an ether amount into wei. Payments must be strictly positive."""
    if value is None:
        raise ValidationError(f"{label} is required")

    wei = to_wei(value)
    if positive and wei == 0:
        raise ValidationError(f"{label} must be greater than zero")
    return wei


def parse_duration(value: Any, *, label: str = "Duration") -> int:
    """Parse a positive whole number of seconds."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} is required")

    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal():
            raise ValidationError(f"{label} must be a whole number of seconds")
        value = int(value)

    if not isinstance(value, int):
        raise ValidationError(f"{label} must be a whole number of seconds")

    if value <= 0:
        raise ValidationError(f"{label} must be greater than zero")
    return value


def parse_address(value: Any, *, label: str = "Address") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")

    value = value.strip()
    if not is_address(value):
        raise ValidationError(f"{label} is not a valid account address: {value!r}")
    return value


def require_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def parse_attributes(raw: str | bytes) -> tuple[Trait, ...]:
    """
    Parse attribute input of the form
    {"attributes": [{"traitType": "Size", "value": "100x100"}]}.
    """
    try:
        document = msgspec.json.decode(raw)
    except msgspec.DecodeError as e:
        raise ValidationError(f"Attributes are not valid JSON: {e}") from None

    if not isinstance(document, dict) or not isinstance(
        document.get("attributes"), list
    ):
        raise ValidationError('Attributes must be an object with an "attributes" list')

    return coerce_traits(document["attributes"])


def coerce_traits(items: Iterable[Any]) -> tuple[Trait, ...]:
    traits: list[Trait] = []

    for index, item in enumerate(items):
        if isinstance(item, Trait):
            traits.append(item)
            continue

        if isinstance(item, (tuple, list)) and len(item) == 2:
            trait_type, value = item
        elif isinstance(item, dict):
            trait_type, value = item.get("traitType"), item.get("value")
        else:
            raise ValidationError(f"Attribute {index} is malformed: {item!r}")

        if not isinstance(trait_type, str) or not trait_type.strip():
            raise ValidationError(f"Attribute {index} is missing traitType")

        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError(f"Attribute {index} has an invalid value: {value!r}")

        traits.append(Trait(trait_type=trait_type.strip(), value=str(value)))

    return tuple(traits)
