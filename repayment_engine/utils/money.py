"""Currency rounding helpers"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Convert int/str/float/Decimal to Decimal without binary float artefacts"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value) -> Decimal:
    """Round to cents using half-up rounding, the way a ledger posts money"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
