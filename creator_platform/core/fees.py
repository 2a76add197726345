"""
Fee splitting.

The platform fee is computed first and rounded half-up to the cent; the
creator receives the remainder, so ``platform_fee + creator_amount`` is
always exactly the gross.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from creator_platform.core.errors import InvalidAmount

CENT = Decimal("1")


@dataclass(frozen=True)
class FeeSplit:
    """Result of splitting a gross charge."""

    gross_cents: int
    platform_fee_cents: int
    creator_amount_cents: int
    fee_percent: Decimal


def split_fee(gross_cents: int, fee_percent: Union[Decimal, int, str]) -> FeeSplit:
    """
    Split a gross amount between platform and creator.

    Args:
        gross_cents: Gross charge in cents (must be a positive integer)
        fee_percent: Platform cut, 0..100

    Returns:
        FeeSplit: The computed split

    Raises:
        InvalidAmount: If the gross is not positive or the percent is out of range
    """
    if isinstance(gross_cents, bool) or not isinstance(gross_cents, int):
        raise InvalidAmount(f"gross must be whole cents, got {gross_cents!r}")
    if gross_cents <= 0:
        raise InvalidAmount("gross must be positive")

    try:
        percent = Decimal(str(fee_percent))
    except InvalidOperation as e:
        raise InvalidAmount(f"fee percent {fee_percent!r} is not a number") from e
    if not percent.is_finite() or percent < 0 or percent > 100:
        raise InvalidAmount("fee percent must be between 0 and 100")

    platform_fee = int(
        (Decimal(gross_cents) * percent / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    )
    return FeeSplit(
        gross_cents=gross_cents,
        platform_fee_cents=platform_fee,
        creator_amount_cents=gross_cents - platform_fee,
        fee_percent=percent,
    )


def to_cents(amount: Union[Decimal, int, str]) -> int:
    """
    Convert a major-unit amount (e.g. ``"19.99"``) to cents, rounding half-up.

    Raises:
        InvalidAmount: If the value is not a finite number
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise InvalidAmount(f"{amount!r} is not a number") from e
    if not value.is_finite():
        raise InvalidAmount(f"{amount!r} is not a finite number")
    return int((value * 100).quantize(CENT, rounding=ROUND_HALF_UP))
