"""
Money helpers shared by every model and service, so that precision and
rounding are defined once.

CRITICAL: No floats anywhere in the kernel.  Amounts arrive as Decimal, int
or numeric strings; ``to_money`` rejects floats outright.  Columns store
Numeric(38, 9) (see ``db.base``); presented amounts are cents, half-up.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_money(value) -> Decimal:
    """
    Coerce an incoming amount to Decimal without rounding.

    Raises:
        TypeError: for float input.
        ValueError: for non-numeric strings.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"monetary amounts must not be {type(value).__name__}: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a monetary amount: {value!r}") from exc


def round_money(value: Decimal) -> Decimal:
    """The only sanctioned rounding for money: 2 places, half-up."""
    return to_money(value).quantize(MONEY_QUANTUM, rounding=DEFAULT_ROUNDING)
