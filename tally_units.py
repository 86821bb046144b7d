# tally_units.py — Unit Registry and Dimension algebra for Tally
#
# Units are data, not code: the built-in table below is a YAML document and
# extra tables can be merged from files at startup. Each unit belongs to one
# Dimension (integer exponents over a fixed basis) and carries an exact
# rational scale relative to that dimension's base unit. Conversion between
# two units is legal iff their dimensions are equal.
#
# The registry is read-only after construction and safe to share between
# documents and threads.

from __future__ import annotations
from dataclasses import dataclass
from fractions import Fraction
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging
import re

import yaml

from tally_diagnostic import DimensionMismatch, RegistryError, UnknownUnit
from tally_token import KEYWORDS

logger = logging.getLogger(__name__)


# ── Dimensions ────────────────────────────────────────────────────────────────

BASIS: Tuple[str, ...] = ("length", "mass", "time", "currency")


@dataclass(frozen=True)
class Dimension:
    """
    Integer exponents over the basis quantities.

        volume   → Dimension(length=3)
        velocity → Dimension(length=1, time=-1)
        price/kg → Dimension(currency=1, mass=-1)
    """
    length: int = 0
    mass: int = 0
    time: int = 0
    currency: int = 0

    @property
    def exponents(self) -> Tuple[int, ...]:
        return (self.length, self.mass, self.time, self.currency)

    @classmethod
    def from_exponents(cls, exps: Iterable[int]) -> "Dimension":
        return cls(*exps)

    def __mul__(self, other: "Dimension") -> "Dimension":
        return Dimension.from_exponents(
            a + b for a, b in zip(self.exponents, other.exponents))

    def __truediv__(self, other: "Dimension") -> "Dimension":
        return Dimension.from_exponents(
            a - b for a, b in zip(self.exponents, other.exponents))

    def __pow__(self, exp: int) -> "Dimension":
        return Dimension.from_exponents(a * exp for a in self.exponents)

    def is_dimensionless(self) -> bool:
        return not any(self.exponents)

    def __repr__(self) -> str:
        parts = []
        for name, val in zip(BASIS, self.exponents):
            if val == 1:
                parts.append(name)
            elif val != 0:
                parts.append(f"{name}^{val}")
        return " * ".join(parts) if parts else "1"


DIMENSIONLESS = Dimension()


# ── Unit definitions ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UnitDefinition:
    """One named unit from the table."""
    name: str
    dimension: Dimension
    scale: Fraction                          # multiply to reach the base unit
    aliases: Tuple[str, ...] = ()
    family: Optional[str] = None             # packing ladder, e.g. "us_volume"
    pack_min: Fraction = Fraction(1)         # smallest magnitude shown in this unit

    def __repr__(self) -> str:
        return f"UnitDefinition({self.name!r}, {self.dimension!r}, {self.scale})"


@dataclass(frozen=True)
class Family:
    name: str
    fractions: bool = False                  # render eighths as kitchen fractions


@dataclass(frozen=True)
class Unit:
    """
    A unit as carried by a Value: a product of named units raised to
    integer powers. Simple units have exactly one factor with power 1.
    """
    factors: Tuple[Tuple[UnitDefinition, int], ...]

    @classmethod
    def of(cls, definition: UnitDefinition) -> "Unit":
        return cls(((definition, 1),))

    @staticmethod
    def _combine(left: Iterable[Tuple[UnitDefinition, int]],
                 right: Iterable[Tuple[UnitDefinition, int]]) -> "Unit":
        powers: Dict[UnitDefinition, int] = {}
        for defn, exp in list(left) + list(right):
            powers[defn] = powers.get(defn, 0) + exp
        return Unit(tuple((d, e) for d, e in powers.items() if e != 0))

    @property
    def dimension(self) -> Dimension:
        dim = DIMENSIONLESS
        for defn, exp in self.factors:
            dim = dim * (defn.dimension ** exp)
        return dim

    @property
    def scale(self) -> Fraction:
        scale = Fraction(1)
        for defn, exp in self.factors:
            scale *= defn.scale ** exp
        return scale

    @property
    def is_simple(self) -> bool:
        return len(self.factors) == 1 and self.factors[0][1] == 1

    @property
    def definition(self) -> Optional[UnitDefinition]:
        return self.factors[0][0] if self.is_simple else None

    @property
    def is_empty(self) -> bool:
        return not self.factors

    @property
    def name(self) -> str:
        def term(defn: UnitDefinition, exp: int) -> str:
            return defn.name if exp == 1 else f"{defn.name}^{exp}"
        num = [term(d, e) for d, e in self.factors if e > 0]
        den = [term(d, -e) for d, e in self.factors if e < 0]
        text = "*".join(num) or "1"
        if den:
            text += "/" + "/".join(den)
        return text

    def __mul__(self, other: "Unit") -> "Unit":
        return Unit._combine(self.factors, other.factors)

    def __truediv__(self, other: "Unit") -> "Unit":
        return Unit._combine(self.factors, ((d, -e) for d, e in other.factors))

    def __pow__(self, exp: int) -> "Unit":
        return Unit._combine((), ((d, e * exp) for d, e in self.factors))

    def __repr__(self) -> str:
        return f"Unit({self.name})"

    def __str__(self) -> str:
        return self.name


# ── Built-in table ────────────────────────────────────────────────────────────
# Scales are exact decimals or ratios, relative to m, kg, s and the dollar.
# US kitchen measures: 1 tbsp = 3 tsp, 1 cup = 16 tbsp, 1 quart = 4 cup,
# 1 gallon = 4 quart, 1 tsp = 4.92892159375 ml.

DEFAULT_UNITS = """
families:
  us_volume:     {fractions: true}
  metric_volume: {fractions: false}
  metric_mass:   {fractions: false}
  metric_length: {fractions: false}

units:
  # volume, US kitchen
  - {name: tsp,    dimension: {length: 3}, scale: "0.00000492892159375", family: us_volume,
     aliases: [tsps, teaspoon, teaspoons]}
  - {name: tbsp,   dimension: {length: 3}, scale: "0.00001478676478125", family: us_volume,
     aliases: [tbsps, tbs, tablespoon, tablespoons]}
  - {name: cup,    dimension: {length: 3}, scale: "0.0002365882365", family: us_volume,
     pack_min: "1/4", aliases: [cups]}
  - {name: quart,  dimension: {length: 3}, scale: "0.000946352946", family: us_volume,
     aliases: [quarts, qt]}
  - {name: gallon, dimension: {length: 3}, scale: "0.003785411784", family: us_volume,
     aliases: [gallons, gal]}

  # volume, metric
  - {name: ml, dimension: {length: 3}, scale: "1/1000000", family: metric_volume,
     aliases: [mL, milliliter, milliliters, millilitre, millilitres]}
  - {name: cl, dimension: {length: 3}, scale: "1/100000", family: metric_volume,
     aliases: [cL, centiliter, centiliters, centilitre, centilitres]}
  - {name: dl, dimension: {length: 3}, scale: "1/10000", family: metric_volume,
     aliases: [dL, deciliter, deciliters, decilitre, decilitres]}
  - {name: l,  dimension: {length: 3}, scale: "1/1000", family: metric_volume,
     aliases: [L, liter, liters, litre, litres]}

  # mass
  - {name: mg, dimension: {mass: 1}, scale: "1/1000000", family: metric_mass,
     aliases: [milligram, milligrams]}
  - {name: g,  dimension: {mass: 1}, scale: "1/1000", family: metric_mass,
     aliases: [gram, grams]}
  - {name: kg, dimension: {mass: 1}, scale: "1", family: metric_mass,
     aliases: [kilogram, kilograms, kilo, kilos]}
  - {name: oz, dimension: {mass: 1}, scale: "0.028349523125", aliases: [ounce, ounces]}
  - {name: lb, dimension: {mass: 1}, scale: "0.45359237", aliases: [lbs, pound, pounds]}

  # length
  - {name: mm, dimension: {length: 1}, scale: "1/1000", family: metric_length,
     aliases: [millimeter, millimeters, millimetre, millimetres]}
  - {name: cm, dimension: {length: 1}, scale: "1/100", family: metric_length,
     aliases: [centimeter, centimeters, centimetre, centimetres]}
  - {name: m,  dimension: {length: 1}, scale: "1", family: metric_length,
     aliases: [meter, meters, metre, metres]}
  - {name: km, dimension: {length: 1}, scale: "1000", family: metric_length,
     aliases: [kilometer, kilometers, kilometre, kilometres]}
  - {name: inch, dimension: {length: 1}, scale: "0.0254", aliases: [inches]}
  - {name: ft,   dimension: {length: 1}, scale: "0.3048", aliases: [foot, feet]}
  - {name: yd,   dimension: {length: 1}, scale: "0.9144", aliases: [yard, yards]}
  - {name: mi,   dimension: {length: 1}, scale: "1609.344", aliases: [mile, miles]}

  # time
  - {name: s,   dimension: {time: 1}, scale: "1", aliases: [sec, secs, second, seconds]}
  - {name: min, dimension: {time: 1}, scale: "60", aliases: [mins, minute, minutes]}
  - {name: h,   dimension: {time: 1}, scale: "3600", aliases: [hr, hrs, hour, hours]}
  - {name: day, dimension: {time: 1}, scale: "86400", aliases: [days]}

  # currency
  - {name: dollar, dimension: {currency: 1}, scale: "1", aliases: [dollars, usd, USD]}
  - {name: cent,   dimension: {currency: 1}, scale: "1/100", aliases: [cents]}
"""

# Names the registry may never claim: keywords and constants.
RESERVED: frozenset = KEYWORDS | frozenset({"pi", "tau", "π"})

_UNIT_TERM = re.compile(r"\s*([A-Za-z_µ][A-Za-z0-9_]*)\s*(?:(?:\^|\*\*)\s*(-?\d+))?\s*")


def _as_fraction(raw) -> Fraction:
    """Exact rational from a YAML scalar; floats go through their repr."""
    if isinstance(raw, Fraction):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"not a number: {raw!r}")
    if isinstance(raw, float):
        raw = repr(raw)
    return Fraction(str(raw).strip())


# ── Registry ──────────────────────────────────────────────────────────────────

class UnitRegistry:
    """Lookup table from every unit name and alias to its definition."""

    def __init__(self, definitions: Iterable[UnitDefinition] = (),
                 families: Optional[Dict[str, Family]] = None):
        self._by_name: Dict[str, UnitDefinition] = {}
        self._units:   Dict[str, UnitDefinition] = {}
        self.families: Dict[str, Family] = dict(families or {})
        self._frozen = False
        for defn in definitions:
            self.register(defn)

    # ── Construction ─────────────────────────────────────────────────────────

    @classmethod
    @lru_cache(maxsize=None)
    def default(cls) -> "UnitRegistry":
        """Process-wide registry built from the built-in table. Read-only."""
        return cls.from_yaml(DEFAULT_UNITS).freeze()

    @classmethod
    def from_yaml(cls, source: Union[str, Path]) -> "UnitRegistry":
        registry = cls()
        registry.load_yaml(source)
        return registry

    def freeze(self) -> "UnitRegistry":
        """Refuse further registration; copies start out writable."""
        self._frozen  = True
        self.families = MappingProxyType(dict(self.families))
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_writable(self) -> None:
        if self._frozen:
            raise RegistryError("unit registry is read-only; register into a copy()",
                                code="E0043")

    def copy(self) -> "UnitRegistry":
        return UnitRegistry(self._units.values(), self.families)

    def merge(self, other: "UnitRegistry", override: bool = False) -> "UnitRegistry":
        """New registry holding both tables; families already known here win."""
        merged = self.copy()
        for name, family in other.families.items():
            merged.families.setdefault(name, family)
        for defn in other.units:
            merged.register(defn, override=override)
        return merged

    def load_yaml(self, source: Union[str, Path], override: bool = False) -> int:
        """
        Add every unit from a YAML table (text or file path). Returns the
        number of units added. With override=True later definitions replace
        earlier ones sharing a name or alias.
        """
        self._check_writable()
        origin = "<inline>"
        if isinstance(source, Path):
            origin = str(source)
            try:
                source = source.read_text(encoding="utf-8")
            except OSError as e:
                raise RegistryError(f"cannot read unit table {origin}: {e}")
        try:
            data = yaml.safe_load(source) or {}
        except yaml.YAMLError as e:
            raise RegistryError(f"unit table {origin} is not valid YAML: {e}")
        if not isinstance(data, dict):
            raise RegistryError(f"unit table {origin} must be a mapping")

        for fam_name, opts in (data.get("families") or {}).items():
            opts = opts or {}
            self.families[fam_name] = Family(fam_name, bool(opts.get("fractions", False)))

        count = 0
        for entry in data.get("units") or []:
            self.register(self._parse_entry(entry, origin), override=override)
            count += 1
        logger.info("Loaded %d units from %s", count, origin)
        return count

    def _parse_entry(self, entry, origin: str) -> UnitDefinition:
        if not isinstance(entry, dict) or "name" not in entry:
            raise RegistryError(f"unit entry without a name in {origin}: {entry!r}")
        name = str(entry["name"])
        exps = entry.get("dimension") or {}
        unknown = set(exps) - set(BASIS)
        if unknown:
            raise RegistryError(
                f"unit `{name}` uses unknown dimension(s) {sorted(unknown)}; "
                f"basis is {list(BASIS)}")
        try:
            scale    = _as_fraction(entry.get("scale", 1))
            pack_min = _as_fraction(entry.get("pack_min", 1))
            dim      = Dimension(**{k: int(v) for k, v in exps.items()})
        except (ValueError, ZeroDivisionError, TypeError) as e:
            raise RegistryError(f"unit `{name}` in {origin}: {e}")
        if scale <= 0:
            raise RegistryError(f"unit `{name}` must have a positive scale")
        family = entry.get("family")
        if family is not None and family not in self.families:
            self.families[family] = Family(family)
        return UnitDefinition(
            name=name,
            dimension=dim,
            scale=scale,
            aliases=tuple(str(a) for a in entry.get("aliases") or ()),
            family=family,
            pack_min=pack_min,
        )

    def register(self, defn: UnitDefinition, override: bool = False) -> None:
        self._check_writable()
        for key in (defn.name,) + defn.aliases:
            if key in RESERVED:
                raise RegistryError(f"`{key}` is reserved and cannot name a unit")
            existing = self._by_name.get(key)
            if existing is not None and existing.name != defn.name:
                if not override:
                    raise RegistryError(
                        f"`{key}` already names unit `{existing.name}`")
                logger.warning("Unit alias `%s` moved from `%s` to `%s`",
                               key, existing.name, defn.name)
        if defn.name in self._units:
            if not override:
                raise RegistryError(f"unit `{defn.name}` is defined twice")
            old = self._units[defn.name]
            for key in (old.name,) + old.aliases:
                self._by_name.pop(key, None)
        self._units[defn.name] = defn
        for key in (defn.name,) + defn.aliases:
            self._by_name[key] = defn

    # ── Query ─────────────────────────────────────────────────────────────────

    def lookup(self, name: str) -> Optional[UnitDefinition]:
        return self._by_name.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._units)

    @property
    def units(self) -> List[UnitDefinition]:
        return list(self._units.values())

    def family_units(self, family: str) -> List[UnitDefinition]:
        """Units of a family, smallest first."""
        return sorted((u for u in self._units.values() if u.family == family),
                      key=lambda u: u.scale)

    def family_of(self, unit: Optional[Unit]) -> Optional[Family]:
        if unit is None or not unit.is_simple or unit.definition.family is None:
            return None
        return self.families.get(unit.definition.family)

    def unit(self, name: str) -> Unit:
        """Simple Unit for a name or alias; raises UnknownUnit."""
        defn = self.lookup(name)
        if defn is None:
            raise UnknownUnit(f"unknown unit `{name}`")
        return Unit.of(defn)

    def parse_unit(self, text: str) -> Unit:
        """
        Parse a unit expression such as `km/h`, `m^2` or `kg*m/s^2`.
        Raises UnknownUnit for names not in the table.
        """
        pos, unit, op = 0, None, "*"
        while True:
            m = _UNIT_TERM.match(text, pos)
            if not m or not m.group(1):
                raise UnknownUnit(f"malformed unit expression `{text}`")
            term = self.unit(m.group(1)) ** int(m.group(2) or 1)
            if unit is None:
                unit = term
            else:
                unit = unit * term if op == "*" else unit / term
            pos = m.end()
            if pos >= len(text):
                return unit
            op = text[pos]
            if op not in "*/":
                raise UnknownUnit(f"malformed unit expression `{text}`")
            pos += 1

    def _resolve(self, unit: Union[str, Unit, UnitDefinition]) -> Unit:
        if isinstance(unit, Unit):
            return unit
        if isinstance(unit, UnitDefinition):
            return Unit.of(unit)
        return self.parse_unit(unit)

    def convert(self, magnitude, src: Union[str, Unit, UnitDefinition],
                dst: Union[str, Unit, UnitDefinition]) -> Fraction:
        """
        Re-express a magnitude given in `src` units in `dst` units, exactly:
        magnitude * (scale_src / scale_dst).
        """
        src, dst = self._resolve(src), self._resolve(dst)
        if src.dimension != dst.dimension:
            raise DimensionMismatch(
                f"cannot convert `{src.name}` ({src.dimension!r}) "
                f"to `{dst.name}` ({dst.dimension!r})")
        return _as_fraction(magnitude) * src.scale / dst.scale
