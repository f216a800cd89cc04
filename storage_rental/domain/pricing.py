from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from storage_rental.domain.exceptions import ValidationError

CENT = Decimal("0.01")
_WHOLE = Decimal("1")


@dataclass(frozen=True)
class FeeSplit:
    amount_minor: int
    platform_fee_minor: int
    amount_charged: Decimal
    platform_fee: Decimal
    amount_transferred: Decimal


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(_WHOLE, rounding=ROUND_HALF_UP))


def compute_fee_split(total_price: Decimal, fee_percent: Decimal) -> FeeSplit:
    """
    Splits a booking total into the platform fee and the lender's share.

    The fee is rounded to whole minor units, and the lender receives the
    booking total minus that fee, so ``amount_transferred + platform_fee``
    matches ``amount_charged`` to within one minor unit.
    """
    if total_price <= 0:
        raise ValidationError("Total price must be greater than zero")
    if fee_percent < 0 or fee_percent > 100:
        raise ValidationError("Platform fee percent must be between 0 and 100")

    amount_minor = to_minor_units(total_price)
    fee_minor = int(
        (Decimal(amount_minor) * fee_percent / 100).quantize(_WHOLE, rounding=ROUND_HALF_UP)
    )
    platform_fee = (Decimal(fee_minor) / 100).quantize(CENT)

    return FeeSplit(
        amount_minor=amount_minor,
        platform_fee_minor=fee_minor,
        amount_charged=(Decimal(amount_minor) / 100).quantize(CENT),
        platform_fee=platform_fee,
        amount_transferred=total_price - platform_fee,
    )
