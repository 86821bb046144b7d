# tally_format.py — Display helpers for Tally results
#
# The engine hands out canonical Values; these helpers turn them into the
# text shown next to a line. Nothing here changes a stored Value.

from __future__ import annotations
from decimal import MAX_EMAX, MIN_EMIN, Decimal, localcontext
from fractions import Fraction
from typing import Optional

from tally_units import Unit, UnitRegistry
from tally_value import Value


def pack(value: Value, registry: Optional[UnitRegistry] = None) -> Value:
    """
    Re-express `value` in the largest unit of its family whose magnitude is
    at least that unit's pack_min: 12 tsp → 1/4 cup, 80 tbsp → 1 1/4 quart.
    Values outside any family come back unchanged.
    """
    registry = registry or UnitRegistry.default()
    family = registry.family_of(value.unit)
    if family is None or value.magnitude == 0:
        return value
    for defn in reversed(registry.family_units(family.name)):
        magnitude = registry.convert(value.magnitude, value.unit, defn)
        if abs(magnitude) >= defn.pack_min:
            return Value(magnitude, Unit.of(defn))
    return value


def _mixed_fraction(magnitude: Fraction) -> str:
    sign = "-" if magnitude < 0 else ""
    whole, rem = divmod(abs(magnitude), 1)
    if rem == 0:
        return f"{sign}{whole}"
    if whole == 0:
        return f"{sign}{rem.numerator}/{rem.denominator}"
    return f"{sign}{whole} {rem.numerator}/{rem.denominator}"


# Whole parts at or above this are shown in scientific notation.
SCIENTIFIC_ABOVE = 10 ** 1000


def _scientific(magnitude: Fraction, decimal_places: int) -> str:
    with localcontext() as ctx:
        ctx.prec = decimal_places + 1
        ctx.Emax = MAX_EMAX
        ctx.Emin = MIN_EMIN
        d = Decimal(magnitude.numerator) / Decimal(magnitude.denominator)
    mantissa, _, exponent = f"{d:E}".partition("E")
    if "." in mantissa:
        mantissa = mantissa.rstrip("0").rstrip(".")
    return f"{mantissa}e{int(exponent)}"


def format_magnitude(magnitude: Fraction, decimal_places: int = 10,
                     fractions: bool = False) -> str:
    """
    Plain decimal text rounded half-even to `decimal_places`, trailing zeros
    dropped. With fractions=True, multiples of 1/8 become "1 1/4".
    """
    magnitude = Fraction(magnitude)
    if abs(magnitude) >= SCIENTIFIC_ABOVE:
        return _scientific(magnitude, decimal_places)
    if fractions and (magnitude * 8).denominator == 1:
        return _mixed_fraction(magnitude)

    scaled = round(magnitude * 10 ** decimal_places)
    sign   = "-" if scaled < 0 else ""
    whole, frac = divmod(abs(scaled), 10 ** decimal_places)
    text = str(whole)
    if frac and decimal_places:
        text += "." + str(frac).rjust(decimal_places, "0").rstrip("0")
    return "0" if text == "0" else sign + text


def format_value(value: Value, decimal_places: int = 10, fractions: bool = True,
                 pack_units: bool = True,
                 registry: Optional[UnitRegistry] = None) -> str:
    registry = registry or UnitRegistry.default()
    if pack_units:
        value = pack(value, registry)
    family = registry.family_of(value.unit)
    kitchen = fractions and family is not None and family.fractions
    text = format_magnitude(value.magnitude, decimal_places, kitchen)
    return f"{text} {value.unit_name}" if value.unit else text


def format_report(report, config=None, registry: Optional[UnitRegistry] = None) -> str:
    """Value text, or `error[code]: message`, for one line report."""
    if report.error is not None:
        return f"error[{report.error.code}]: {report.error.message}"
    if report.value is None:
        return ""
    if config is None:
        return format_value(report.value, registry=registry)
    return format_value(report.value, config.decimal_places, config.fractions,
                        config.pack_units, registry)


def render(report, config=None, registry: Optional[UnitRegistry] = None) -> str:
    """`<expression> => <value>` for a line, empty for prose."""
    if report.expression is None:
        return ""
    return f"{report.expression} => {format_report(report, config, registry)}"
