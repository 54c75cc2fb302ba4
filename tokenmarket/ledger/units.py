"""
Monetary unit conversion between the user-facing unit (ether) and the
ledger's base unit (wei).

Integer base units are used everywhere below the command layer:
actual_amount = wei / WEI_PER_ETHER
"""

import re
from decimal import Decimal, InvalidOperation, Overflow, localcontext
from typing import Final

from tokenmarket.exceptions import ValidationError

ETHER_DECIMALS: Final[int] = 18
WEI_PER_ETHER: Final[int] = 10**ETHER_DECIMALS

_ADDRESS_RE: Final = re.compile(r"^0x[0-9a-fA-F]{40}$")


def to_wei(amount: str | int | Decimal) -> int:
    """Parse an ether amount into wei.

    Raises:
        ValidationError: If the amount is empty, non-numeric, negative or
            more precise than one wei.
    """
    if isinstance(amount, str):
        amount = amount.strip()
        if not amount:
            raise ValidationError("Amount is required")

    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}") from None

    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")

    if value < 0:
        raise ValidationError(f"Amount must not be negative: {amount!r}")

    # Enough precision to scale without rounding away sub-wei digits
    with localcontext() as ctx:
        ctx.prec = len(value.as_tuple().digits) + ETHER_DECIMALS
        try:
            wei = value.scaleb(ETHER_DECIMALS)
        except Overflow:
            raise ValidationError(f"Invalid amount: {amount!r}") from None

    if wei != wei.to_integral_value():
        raise ValidationError(
            f"Amount {amount!r} has more than {ETHER_DECIMALS} decimal places"
        )

    return int(wei)


def from_wei(wei: int) -> Decimal:
    value = Decimal(wei)
    with localcontext() as ctx:
        ctx.prec = max(len(value.as_tuple().digits), 1)
        return value.scaleb(-ETHER_DECIMALS)


def format_ether(wei: int) -> str:
    """Render wei as a plain ether string without trailing zeros."""
    text = format(from_wei(wei), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def is_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value or ""))
