"""
Currency Arithmetic

Monetary values are stored as decimal strings ("100.50") and every
calculation goes through decimal.Decimal, never through float.

DESIGN DECISION: Results are returned in one canonical form:
- fixed-point notation (never "1E+2")
- trailing fractional zeros stripped ("100.00" -> "100")
- negative zero folded to "0"

A single canonical form means balances compare equal as strings after
any sequence of additions and their reversals.

Addition and subtraction are exact at any magnitude: the working
precision is widened to fit the operands, never the default 28 digits.

No currency conversion happens here. Conversion rates are applied by the
caller, which passes the already converted destination amount.
"""

import operator
import re
from decimal import Context, Decimal, Inexact, InvalidOperation, ROUND_HALF_UP, getcontext, localcontext
from typing import Callable, Optional, Union

Amount = Union[str, int, float, Decimal]

_ZERO = Decimal("0")


def to_decimal(amount: Amount) -> Decimal:
    """
    Convert an amount to Decimal.

    Floats go through repr() so that -0.01 becomes Decimal("-0.01")
    and not its binary expansion.

    Raises:
        ValueError: If the amount is not a finite number
    """
    if isinstance(amount, bool):
        raise ValueError(f"Not a monetary amount: {amount!r}")
    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, int):
        value = Decimal(amount)
    elif isinstance(amount, float):
        value = Decimal(repr(amount))
    elif isinstance(amount, str):
        try:
            value = Decimal(amount.strip())
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {amount!r}")
    else:
        raise ValueError(f"Not a monetary amount: {amount!r}")

    if not value.is_finite():
        raise ValueError(f"Not a monetary amount: {amount!r}")
    return value


def _to_string(value: Decimal) -> str:
    """Render a Decimal in canonical fixed-point form."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def _digits(value: Decimal) -> int:
    """Digits needed to hold value exactly, counted down to its last place."""
    return max(value.adjusted(), 0) - min(value.as_tuple().exponent, 0) + 1


def _exact_context(*values: Decimal, extra: int = 0) -> Context:
    """
    A context wide enough that arithmetic on values cannot round.

    Inexact is trapped, so a result that still does not fit raises
    instead of silently losing digits.
    """
    ctx = getcontext().copy()
    ctx.prec = max(ctx.prec, sum(_digits(v) for v in values) + extra + 2)
    ctx.traps[Inexact] = True
    return ctx


def _exact(operation: Callable[..., Decimal], *values: Decimal) -> Decimal:
    try:
        with localcontext(_exact_context(*values)):
            return operation(*values)
    except Inexact as e:
        raise ValueError(f"Amount out of range: {values!r}") from e


def _round(value: Decimal, places: int) -> Decimal:
    """Round half-up to `places` fractional digits."""
    ctx = _exact_context(value, extra=places)
    ctx.traps[Inexact] = False
    with localcontext(ctx):
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def normalize(amount: Amount) -> str:
    """Return the canonical decimal string for an amount."""
    return _to_string(to_decimal(amount))


def add(a: Amount, b: Amount) -> str:
    """Add two amounts exactly."""
    return _to_string(_exact(operator.add, to_decimal(a), to_decimal(b)))


def subtract(a: Amount, b: Amount) -> str:
    """Subtract b from a exactly."""
    return _to_string(_exact(operator.sub, to_decimal(a), to_decimal(b)))


def negate(amount: Amount) -> str:
    return _to_string(_exact(operator.neg, to_decimal(amount)))


def absolute(amount: Amount) -> str:
    return _to_string(_exact(abs, to_decimal(amount)))


def multiply(amount: Amount, factor: Amount, places: int = 2) -> str:
    """
    Multiply an amount by a factor (e.g. an exchange rate).

    The product is rounded half-up to `places` fractional digits.
    """
    product = _exact(operator.mul, to_decimal(amount), to_decimal(factor))
    return _to_string(_round(product, places))


def divide(amount: Amount, divisor: Amount, places: int = 2) -> str:
    """
    Divide an amount, rounded half-up to `places` fractional digits.

    Raises:
        ZeroDivisionError: If divisor is zero
    """
    d = to_decimal(divisor)
    if d == _ZERO:
        raise ZeroDivisionError("Division by zero")
    value = to_decimal(amount)

    # a few guard digits past `places` before the final rounding
    ctx = _exact_context(value, d, extra=places + 10)
    ctx.traps[Inexact] = False
    with localcontext(ctx):
        quotient = value / d
    return _to_string(_round(quotient, places))


def compare(a: Amount, b: Amount) -> int:
    """Return -1 if a < b, 0 if equal, 1 if a > b."""
    left, right = to_decimal(a), to_decimal(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def is_positive(amount: Amount) -> bool:
    return to_decimal(amount) > _ZERO


def is_negative(amount: Amount) -> bool:
    return to_decimal(amount) < _ZERO


def is_zero(amount: Amount) -> bool:
    return to_decimal(amount) == _ZERO


def is_valid(amount: object) -> bool:
    """Check whether a value can be used as a monetary amount."""
    try:
        to_decimal(amount)  # type: ignore[arg-type]
    except ValueError:
        return False
    return True


def parse_input(text: Optional[str]) -> Optional[str]:
    """
    Normalise free-form user input into a decimal string.

    Currency symbols, spaces and thousands separators are dropped.
    Returns None if nothing numeric is left.
    """
    if not text or not isinstance(text, str):
        return None

    cleaned = re.sub(r"[^0-9.\-]", "", text)
    try:
        return normalize(cleaned)
    except ValueError:
        return None
