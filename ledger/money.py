from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from ledger.errors import InvalidPayment

# Amounts are integer counts of sen; 100 sen make one rupiah.
MINOR_UNITS = 100
BASIS_POINTS = 10_000

Number = Union[int, str, Decimal]


def to_minor(value: Number) -> int:
    """Convert a major-unit value ("1500000.50", Decimal, int) to minor units."""
    if isinstance(value, bool):
        raise InvalidPayment(f"Amount must be numeric, got {value!r}", value=value)
    if isinstance(value, int):
        return value * MINOR_UNITS
    try:
        major = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidPayment(f"Amount must be numeric, got {value!r}", value=str(value))
    if not major.is_finite():
        raise InvalidPayment(f"Amount must be finite, got {value!r}", value=str(value))
    minor = (major * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def to_major(amount: int) -> Decimal:
    return Decimal(amount) / MINOR_UNITS


def _group_thousands(digits: str) -> str:
    groups = []
    while len(digits) > 3:
        groups.append(digits[-3:])
        digits = digits[:-3]
    groups.append(digits)
    return ".".join(reversed(groups))


def format_rupiah(amount: int, with_symbol: bool = True, decimal: bool = False, symbol: str = "Rp") -> str:
    """Render minor units the Indonesian way: Rp1.500.000 or Rp1.500.000,50.

    Without decimals the sen part is rounded half up into whole rupiah.
    """
    negative = amount < 0
    magnitude = abs(amount)
    if decimal:
        whole, sen = divmod(magnitude, MINOR_UNITS)
        text = f"{_group_thousands(str(whole))},{sen:02d}"
    else:
        whole = (magnitude + MINOR_UNITS // 2) // MINOR_UNITS
        text = _group_thousands(str(whole))
    if with_symbol:
        text = f"{symbol}{text}"
    return f"-{text}" if negative and magnitude else text


def percent_of(amount: int, basis_points: int) -> int:
    """amount * basis_points / 10000, rounded half away from zero."""
    product = amount * basis_points
    quotient, rest = divmod(abs(product), BASIS_POINTS)
    if rest * 2 >= BASIS_POINTS:
        quotient += 1
    return quotient if product >= 0 else -quotient


def margin_basis_points(part: int, whole: int) -> int:
    """part / whole expressed in basis points (1234 == 12.34%), 0 when whole is 0."""
    if whole == 0:
        return 0
    numerator = part * BASIS_POINTS
    quotient, rest = divmod(abs(numerator), abs(whole))
    if rest * 2 >= abs(whole):
        quotient += 1
    return quotient if (numerator >= 0) == (whole > 0) else -quotient


def format_basis_points(bp: int) -> str:
    sign = "-" if bp < 0 else ""
    whole, frac = divmod(abs(bp), 100)
    return f"{sign}{whole},{frac:02d}%"
