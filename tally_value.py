# tally_value.py — Value & Unit Algebra for Tally
#
# A Value is an exact rational magnitude optionally tagged with a Unit.
# +, −, × and ÷ are exact; the only inexact operations (non-integer powers,
# the constant pi) are materialized through Decimal at a configurable
# precision and then kept exact from there on, so chained conversions and
# repeated substitution never drift.

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, Overflow, localcontext
from fractions import Fraction
from functools import lru_cache
from typing import Optional, Union

from tally_diagnostic import (
    DimensionMismatch, DivisionByZero, EvalError, UnsupportedExponent,
)
from tally_units import DIMENSIONLESS, Dimension, Unit, UnitRegistry

DEFAULT_PRECISION = 50

# Exponents beyond this would build integers too large to be useful.
MAX_EXPONENT = 10_000
# Results past this many bits (about 300,000 digits) are refused.
MAX_RESULT_BITS = 1_000_000

Number = Union[int, str, Fraction, Decimal]


@dataclass(frozen=True)
class Value:
    magnitude: Fraction
    unit: Optional[Unit] = None

    @classmethod
    def of(cls, magnitude: Number, unit: Optional[Unit] = None) -> "Value":
        if isinstance(magnitude, (Decimal, int)):
            magnitude = Fraction(magnitude)
        elif not isinstance(magnitude, Fraction):
            magnitude = Fraction(str(magnitude))
        return _normalized(magnitude, unit)

    @property
    def dimension(self) -> Dimension:
        return self.unit.dimension if self.unit else DIMENSIONLESS

    @property
    def is_dimensionless(self) -> bool:
        return self.unit is None

    @property
    def unit_name(self) -> str:
        return self.unit.name if self.unit else ""

    def decimal(self, precision: int = DEFAULT_PRECISION) -> Decimal:
        """The magnitude as a Decimal with `precision` significant digits."""
        with localcontext() as ctx:
            ctx.prec = precision
            return Decimal(self.magnitude.numerator) / Decimal(self.magnitude.denominator)

    def __str__(self) -> str:
        text = _plain(self.decimal())
        return f"{text} {self.unit_name}" if self.unit else text

    def __repr__(self) -> str:
        return f"Value({self})"


def _plain(d: Decimal) -> str:
    """Decimal text without exponent notation or trailing zeros."""
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _normalized(magnitude: Fraction, unit: Optional[Unit]) -> Value:
    """Drop empty units and fold units whose dimensions cancel."""
    if unit is None or unit.is_empty:
        return Value(magnitude, None)
    if unit.dimension.is_dimensionless():
        return Value(magnitude * unit.scale, None)
    return Value(magnitude, unit)


# ── Arithmetic ────────────────────────────────────────────────────────────────

def _same_dimension(a: Value, b: Value, verb: str) -> None:
    if a.dimension != b.dimension:
        left  = a.unit_name or "a plain number"
        right = b.unit_name or "a plain number"
        raise DimensionMismatch(f"cannot {verb} `{left}` and `{right}`")


def _in_units_of(b: Value, a: Value) -> Fraction:
    """b's magnitude expressed in a's unit (dimensions already equal)."""
    if a.unit is None:
        return b.magnitude
    return b.magnitude * b.unit.scale / a.unit.scale


def add(a: Value, b: Value) -> Value:
    _same_dimension(a, b, "add")
    return Value(a.magnitude + _in_units_of(b, a), a.unit)


def sub(a: Value, b: Value) -> Value:
    _same_dimension(a, b, "subtract")
    return Value(a.magnitude - _in_units_of(b, a), a.unit)


def mul(a: Value, b: Value) -> Value:
    if a.unit and b.unit:
        unit = a.unit * b.unit
    else:
        unit = a.unit or b.unit
    return _normalized(a.magnitude * b.magnitude, unit)


def div(a: Value, b: Value) -> Value:
    if b.magnitude == 0:
        raise DivisionByZero()
    if a.unit and b.unit:
        unit = a.unit / b.unit
    elif b.unit:
        unit = b.unit ** -1
    else:
        unit = a.unit
    return _normalized(a.magnitude / b.magnitude, unit)


def negate(a: Value) -> Value:
    return Value(-a.magnitude, a.unit)


def percent(a: Value) -> Value:
    return Value(a.magnitude / 100, a.unit)


def _exact_root(x: int, n: int) -> Optional[int]:
    """Integer n-th root of a non-negative int, or None if not exact."""
    if x < 2:
        return x
    # Newton iteration from above converges down to floor(x ** (1/n)).
    guess = 1 << -(-x.bit_length() // n)
    while True:
        nxt = ((n - 1) * guess + x // guess ** (n - 1)) // n
        if nxt >= guess:
            break
        guess = nxt
    return guess if guess ** n == x else None


def _rational_power(base: Fraction, exp: Fraction, precision: int) -> Fraction:
    if abs(exp.numerator) > MAX_EXPONENT:
        raise EvalError("number too large", code="E0035")
    if base == 0 and exp < 0:
        raise DivisionByZero()
    bits = max(base.numerator.bit_length(), base.denominator.bit_length())
    if bits * abs(exp.numerator) // exp.denominator > MAX_RESULT_BITS:
        raise EvalError("number too large", code="E0035")
    if exp.denominator == 1:
        return base ** exp.numerator

    q = exp.denominator
    if base >= 0:
        num = _exact_root(base.numerator, q)
        den = _exact_root(base.denominator, q)
        if num is not None and den is not None:
            return Fraction(num, den) ** exp.numerator
    elif q % 2 == 1:
        # Odd roots of negatives stay real.
        return -_rational_power(-base, exp, precision) if exp.numerator % 2 else \
            _rational_power(-base, exp, precision)

    with localcontext() as ctx:
        ctx.prec = precision
        try:
            d_base = Decimal(base.numerator) / Decimal(base.denominator)
            d_exp  = Decimal(exp.numerator) / Decimal(exp.denominator)
            return Fraction(d_base ** d_exp)
        except InvalidOperation:
            raise EvalError("result is not a real number", code="E0034")
        except Overflow:
            raise EvalError("number too large", code="E0035")


def pow(a: Value, b: Value, precision: int = DEFAULT_PRECISION) -> Value:
    if not b.is_dimensionless:
        raise UnsupportedExponent(f"exponent must be a plain number, not `{b.unit_name}`")
    exp = b.magnitude
    if a.unit is None:
        return Value(_rational_power(a.magnitude, exp, precision))

    # Dimensioned base: every resulting unit power must stay an integer.
    q, p = exp.denominator, exp.numerator
    if any(e % q for _, e in a.unit.factors):
        raise UnsupportedExponent(
            f"`{a.unit_name}` raised to {exp} has fractional dimensions")
    unit = Unit(tuple((d, e * p // q) for d, e in a.unit.factors))
    return _normalized(_rational_power(a.magnitude, exp, precision), unit)


def convert(a: Value, unit: Unit, registry: Optional[UnitRegistry] = None) -> Value:
    """Re-express `a` in `unit`; the Unit Registry enforces dimensions."""
    registry = registry or UnitRegistry.default()
    if a.unit is None:
        if not unit.dimension.is_dimensionless():
            raise DimensionMismatch(
                f"cannot convert a plain number to `{unit.name}`")
        return Value(a.magnitude)
    return Value(registry.convert(a.magnitude, a.unit, unit), unit)


# ── Constants ─────────────────────────────────────────────────────────────────

CONSTANTS = ("pi", "π", "tau")


@lru_cache(maxsize=8)
def _pi(precision: int) -> Fraction:
    """Pi to `precision` digits (recipe from the decimal module docs)."""
    with localcontext() as ctx:
        ctx.prec = precision + 2
        three = Decimal(3)
        lasts, t, s, n, na, d, da = 0, three, 3, 1, 0, 0, 24
        while s != lasts:
            lasts = s
            n, na = n + na, na + 8
            d, da = d + da, da + 32
            t = (t * n) / d
            s += t
        ctx.prec = precision
        return Fraction(+s)


def constant(name: str, precision: int = DEFAULT_PRECISION) -> Optional[Value]:
    if name in ("pi", "π"):
        return Value(_pi(precision))
    if name == "tau":
        return Value(2 * _pi(precision))
    return None
