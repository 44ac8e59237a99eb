"""
USDC amount conversion
Human decimal amounts <-> on-chain base units (6 decimals)
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

# USDC has 6 decimals
USDC_DECIMALS = 6

_SCALE = Decimal(10) ** USDC_DECIMALS
_CENTS = Decimal("0.01")

AmountLike = Union[Decimal, int, float, str]


def _to_decimal(amount: AmountLike) -> Decimal:
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")
    if isinstance(amount, Decimal):
        value = amount
    else:
        # str() of a float gives its shortest repr, so 10.5 -> Decimal("10.5")
        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return value


def to_base_units(amount: AmountLike) -> int:
    """
    Convert a USDC amount to base units (e.g. 10.50 -> 10500000).
    Rounds half-up to the nearest unit; negative amounts are rejected.
    """
    value = _to_decimal(amount)
    if value < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    return int((value * _SCALE).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_base_units(units: int) -> Decimal:
    """Convert base units to a USDC amount (e.g. 10500000 -> 10.5)"""
    return Decimal(int(units)) / _SCALE


def parse_base_units(value: Union[str, int]) -> int:
    """Parse a base-unit amount as carried in a payment requirement"""
    if isinstance(value, bool):
        raise ValueError(f"Invalid base-unit amount: {value!r}")
    if isinstance(value, int):
        units = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"Invalid base-unit amount: {value!r}")
        units = int(text)
    if units < 0:
        raise ValueError(f"Invalid base-unit amount: {value!r}")
    return units


def format_usdc(amount: AmountLike) -> str:
    """Two-decimal display string. Never use for settlement math."""
    return str(_to_decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP))


def format_base_units(units: int) -> str:
    return format_usdc(from_base_units(units))
