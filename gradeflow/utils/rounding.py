from decimal import Decimal, ROUND_HALF_UP

Q2 = Decimal("0.01")
Q0 = Decimal("1")


def round2(x) -> float:
    """Round half-up to two decimals (84.445 -> 84.45, not banker's rounding)."""
    return float(Decimal(str(x)).quantize(Q2, rounding=ROUND_HALF_UP))


def round_int(x) -> int:
    return int(Decimal(str(x)).quantize(Q0, rounding=ROUND_HALF_UP))
