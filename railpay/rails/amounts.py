"""Exact conversions between fixed-point protocol amounts and atomic units."""

from decimal import Decimal, InvalidOperation


def decimal_to_atomic(value, decimals: int) -> int:
    """Convert a fixed-point amount (e.g. BTC `0.00000001`) to atomic units.

    The value is rendered as a plain decimal string and split on the point;
    no float multiplication is involved. Trailing zeros beyond `decimals` are
    tolerated, any other excess precision raises ValueError.
    """

    if isinstance(value, bool):
        raise ValueError(f"not an amount: {value!r}")
    try:
        # str() first: a float is taken by its shortest repr, not its binary value.
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"not an amount: {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"not an amount: {value!r}")
    if number < 0:
        raise ValueError(f"negative amount: {value!r}")

    text = format(number, "f")
    whole, _, frac = text.partition(".")
    frac = frac.rstrip("0")
    if len(frac) > decimals:
        raise ValueError(f"amount {value!r} exceeds {decimals} fractional digits")
    return int(whole or "0") * 10**decimals + int(frac.ljust(decimals, "0") or "0")


def parse_atomic(value) -> int:
    """Parse an integer atomic amount delivered as int or base-10 string."""

    if isinstance(value, bool) or value is None:
        raise ValueError(f"not an atomic amount: {value!r}")
    if isinstance(value, int):
        amount = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"not an atomic amount: {value!r}")
        amount = int(text)
    if amount < 0:
        raise ValueError(f"negative atomic amount: {value!r}")
    return amount
