"""
Fixed-point helpers for native token amounts.

Every amount the saga moves is a ``Decimal`` quantized to the smallest
denomination (9 decimals: lamports on Solana, FROST/MIST on Sui), so fee
arithmetic never drifts the way float math does.
"""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Tuple, Union

from blobferry.errors import ValidationError

NATIVE_DECIMALS = 9
SMALLEST_UNIT = Decimal(1).scaleb(-NATIVE_DECIMALS)

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike, field_name: str = "amount") -> Decimal:
    """
    Convert an amount to a quantized Decimal.

    Floats go through ``str()`` first so 0.1 becomes Decimal("0.1"),
    not its binary expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number", field=field_name) from None
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    return quantize(amount)


def quantize(amount: Decimal) -> Decimal:
    """Round to the smallest denomination (banker's rounding)."""
    return amount.quantize(SMALLEST_UNIT, rounding=ROUND_HALF_EVEN)


def to_base_units(amount: Decimal) -> int:
    """Whole-unit Decimal to integer base units (e.g. SOL to lamports)."""
    return int(quantize(amount).scaleb(NATIVE_DECIMALS))


def from_base_units(units: int) -> Decimal:
    """Integer base units to whole-unit Decimal (e.g. FROST to WAL)."""
    return quantize(Decimal(units).scaleb(-NATIVE_DECIMALS))


def split_fee(total: Decimal, fee_percent: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split ``total`` into (fee, remainder).

    The fee is rounded once; the remainder is derived by subtraction so
    ``fee + remainder == total`` holds exactly.
    """
    total = quantize(total)
    fee = quantize(total * fee_percent)
    return fee, total - fee
