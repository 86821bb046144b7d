# tally_tests.py — Test Suite for the Tally notepad engine
#
# Unit and end-to-end tests over the whole pipeline:
# Scanner → Parser → Evaluator (Value & Unit algebra) → Document
#
#   python tally_tests.py            run everything
#   python tally_tests.py document   run one tag
#   pytest                           same functions, collected by name

from __future__ import annotations
import sys
import traceback
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, List, Optional


# ── Test harness ──────────────────────────────────────────────────────────────

@dataclass
class Case:
    name:    str
    fn:      Callable[[], None]
    tags:    List[str]

_tests: List[Case] = []

def test(name: str = "", *tags: str):
    """Decorator to register a test function."""
    def decorator(fn: Callable):
        _tests.append(Case(name or fn.__name__, fn, list(tags)))
        return fn
    return decorator

def assert_eq(a, b, msg: str = ""):
    if a != b:
        raise AssertionError(f"{msg or 'assert_eq failed'}: {a!r} != {b!r}")

def assert_true(cond, msg: str = ""):
    if not cond:
        raise AssertionError(msg or "assert_true failed")

def assert_raises(exc_type, fn: Callable, code: Optional[str] = None):
    try:
        fn()
    except exc_type as e:
        if code is not None and getattr(e, "code", None) != code:
            raise AssertionError(f"Expected code {code}, got {e.code}: {e}")
        return e
    raise AssertionError(f"Expected {exc_type.__name__} to be raised")


def run_tests(filter_tag: Optional[str] = None):
    passed = failed = skipped = 0
    total  = len(_tests)

    print(f"\n{'='*60}")
    print(f"  Tally Engine Test Suite")
    print(f"{'='*60}\n")

    for tc in _tests:
        if filter_tag and filter_tag not in tc.tags:
            skipped += 1
            continue
        try:
            tc.fn()
            print(f"  \033[32m✓\033[0m {tc.name}")
            passed += 1
        except AssertionError as e:
            print(f"  \033[31m✗\033[0m {tc.name}")
            print(f"      {e}")
            failed += 1
        except Exception as e:
            print(f"  \033[31m✗\033[0m {tc.name} [EXCEPTION]")
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"  Results: {passed}/{total} passed, {failed} failed, {skipped} skipped")
    print(f"{'='*60}\n")
    return failed == 0


# ── Helpers ───────────────────────────────────────────────────────────────────

def _scan(text: str, known=()):
    from tally_scanner import Scanner
    return Scanner(known=known).scan(text)

def _parse(text: str, known=()):
    from tally_parser import Parser
    return Parser(_scan(text, known).expression_tokens()).parse()

def _unit(name: str):
    from tally_units import UnitRegistry
    return UnitRegistry.default().unit(name)

def _v(magnitude, unit: Optional[str] = None):
    from tally_value import Value
    return Value.of(magnitude, _unit(unit) if unit else None)

def _doc(*lines: str):
    from tally_document import Document
    return Document("\n".join(lines))

def _kinds(span):
    from tally_token import TokenType
    return [t.kind for t in span.tokens if t.kind != TokenType.WHITESPACE]

TAX_LINES = (
    "subtotal = 100.00",
    "tax_rate = 0.0875",
    "taxes = subtotal * tax_rate",
    "grand_total = subtotal + taxes",
)


# ═══════════════════════════════════════════════════════════════════════════════
# TOKEN & DIAGNOSTIC TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Span: repr is 1-based and merge covers both", "token")
def test_span_repr_merge():
    from tally_token import Span
    a = Span(0, 3, 5)
    b = Span(0, 8, 10)
    assert_eq(repr(a), "1:4-6")
    assert_eq(a.merge(b), Span(0, 3, 10))
    assert_eq(len(a.merge(b)), 7)
    assert_eq(Span(0, 0, 5).slice("hello world"), "hello")


@test("Diagnostic: renders code, location and caret underline", "diagnostic")
def test_diagnostic_render():
    from tally_diagnostic import DiagnosticBag
    from tally_token import Span
    bag = DiagnosticBag("first\n1 cup + 1 dollar")
    bag.error("E0030", "cannot add `cup` and `dollar`", Span(1, 0, 16))
    text = str(bag.all[0])
    assert "error[E0030]" in text
    assert "2 | 1 cup + 1 dollar" in text
    assert "^" * 16 in text
    assert_eq(bag.codes(), ["E0030"])
    assert_true(bag.has_errors)


@test("Diagnostic: errors compare by kind, code and message", "diagnostic")
def test_error_equality():
    from tally_diagnostic import DivisionByZero, DimensionMismatch
    from tally_token import Span
    assert_eq(DivisionByZero(Span(0, 1, 2)), DivisionByZero())
    assert_true(DimensionMismatch("x") != DimensionMismatch("y"))
    assert_eq(DimensionMismatch("x").code, "E0030")


# ═══════════════════════════════════════════════════════════════════════════════
# SCANNER TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Scanner: prose-only line has no candidate", "scanner")
def test_scan_prose():
    from tally_token import TokenType
    span = _scan("The grand total comes to:")
    assert_true(span.candidate is None, "Expected no candidate")
    assert_true(all(k == TokenType.PROSE for k in _kinds(span)))


@test("Scanner: finds the expression inside a sentence", "scanner")
def test_scan_embedded():
    from tally_token import TokenType
    span = _scan("Flour: 12 tbsp + 1 cup in tsps, sifted")
    assert_eq(span.candidate.text, "12 tbsp + 1 cup in tsps")
    units = [t for t in span.tokens if t.kind == TokenType.UNIT]
    assert_eq([u.value for u in units], ["tbsp", "cup", "tsp"])
    kw = [t for t in span.tokens if t.kind == TokenType.KEYWORD]
    assert_eq([k.text for k in kw], ["in"])


@test("Scanner: token offsets cover the source text", "scanner")
def test_scan_offsets():
    from tally_token import TokenType
    text = "Flour: 12 tbsp"
    span = _scan(text)
    num  = next(t for t in span.tokens if t.kind == TokenType.NUMBER)
    assert_eq((num.span.start, num.span.end), (7, 9))
    assert_eq("".join(t.text for t in span.tokens), text)
    assert_eq(span.candidate.span.start, 7)


@test("Scanner: unit names outside quantity context stay prose", "scanner")
def test_scan_unit_context():
    span = _scan("it's a nice day")
    assert_true(span.candidate is None, "`s` and `day` must not start an expression")


@test("Scanner: longest run wins, leftmost on ties", "scanner")
def test_scan_longest_run():
    assert_eq(_scan("add 2 + 3 then 4 * 5 * 6").candidate.text, "4 * 5 * 6")
    assert_eq(_scan("either 2 + 3 or 4 + 5").candidate.text, "2 + 3")


@test("Scanner: numbers with thousands separators", "scanner")
def test_scan_thousands():
    from tally_token import TokenType
    span = _scan("1,000,000.50 dollars")
    assert_eq(span.tokens[0].kind, TokenType.NUMBER)
    assert_eq(span.tokens[0].value, Fraction("1000000.50"))
    assert_eq(span.candidate.text, "1,000,000.50 dollars")


@test("Scanner: classification precedence for words", "scanner")
def test_scan_precedence():
    from tally_token import TokenType
    # known variable
    assert_eq(_kinds(_scan("subtotal * 2", known={"subtotal"}))[0], TokenType.IDENTIFIER)
    # unknown word that is not an assignment target
    assert_eq(_kinds(_scan("subtotal * 2"))[0], TokenType.PROSE)
    # assignment target at the start of a run
    assert_eq(_kinds(_scan("Note: subtotal = 100"))[2], TokenType.IDENTIFIER)
    # constant
    assert_eq(_kinds(_scan("2 * pi"))[2], TokenType.IDENTIFIER)


@test("Scanner: digit runs past the int conversion limit are prose", "scanner")
def test_scan_huge_number():
    from tally_token import TokenType
    limit = getattr(sys, "get_int_max_str_digits", lambda: 0)()
    if not limit:
        return
    span = _scan("9" * (limit + 1))
    assert_eq(_kinds(span), [TokenType.PROSE])
    assert_true(not span.has_candidate)


@test("Scanner: `in` is a keyword only before a unit", "scanner")
def test_scan_in_keyword():
    from tally_token import TokenType
    span = _scan("5 in the box")
    assert_true(TokenType.KEYWORD not in _kinds(span))
    assert_eq(span.candidate.text, "5")


@test("Scanner: number glued to a non-unit word is prose", "scanner")
def test_scan_glued_number():
    assert_true(_scan("the 2nd time").candidate is None)
    assert_eq(_scan("add 12tbsp").candidate.text, "12tbsp")


@test("Scanner: `**` is exponentiation and styles are exposed", "scanner")
def test_scan_styles():
    from tally_token import TokenType
    assert_eq(_kinds(_scan("2 ** 3")), [TokenType.NUMBER, TokenType.CARET, TokenType.NUMBER])
    styles = [s for _, _, s in _scan("x = 3 cups").styles() if s != "prose"]
    assert_eq(styles, ["identifier", "operator", "number", "unit"])


@test("Scanner: mentions every word on the line", "scanner")
def test_scan_mentions():
    span = _scan("taxes = subtotal * tax_rate")
    assert_eq(span.mentions, frozenset({"taxes", "subtotal", "tax_rate"}))


# ═══════════════════════════════════════════════════════════════════════════════
# PARSER TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Parser: multiplication binds tighter than addition", "parser")
def test_parse_precedence():
    from tally_ast import BinaryOp
    node = _parse("2 + 3 * 4")
    assert isinstance(node, BinaryOp)
    assert_eq(node.op, "+")
    assert isinstance(node.right, BinaryOp)
    assert_eq(node.right.op, "*")


@test("Parser: conversion applies to the whole arithmetic expression", "parser")
def test_parse_conversion_loosest():
    from tally_ast import BinaryOp, ConversionTo
    node = _parse("12 tbsp + 1 cup in tsps")
    assert isinstance(node, ConversionTo)
    assert isinstance(node.expr, BinaryOp)
    assert_eq(node.target.name, "tsp")


@test("Parser: unary minus binds tighter than power", "parser")
def test_parse_unary_power():
    from tally_ast import BinaryOp, UnaryOp
    node = _parse("-2^2")
    assert isinstance(node, BinaryOp)
    assert_eq(node.op, "^")
    assert isinstance(node.left, UnaryOp)


@test("Parser: power is right-associative", "parser")
def test_parse_power_assoc():
    from tally_ast import BinaryOp, Literal
    node = _parse("2^3^2")
    assert isinstance(node.left, Literal)
    assert isinstance(node.right, BinaryOp)


@test("Parser: assignment at the start of a line", "parser")
def test_parse_assignment():
    from tally_ast import Assignment, BinaryOp
    node = _parse("x = 1 + 2")
    assert isinstance(node, Assignment)
    assert_eq(node.name, "x")
    assert isinstance(node.expr, BinaryOp)


@test("Parser: assignment elsewhere is rejected", "parser")
def test_parse_assignment_not_at_start():
    from tally_diagnostic import ParseError
    assert_raises(ParseError, lambda: _parse("1 + x = 2", known={"x"}), "E0015")


@test("Parser: constants cannot be assigned", "parser")
def test_parse_assign_constant():
    from tally_diagnostic import ParseError
    assert_raises(ParseError, lambda: _parse("pi = 3"), "E0013")


@test("Parser: unit names cannot be assigned", "parser")
def test_parse_assign_unit():
    from tally_diagnostic import ParseError
    e = assert_raises(ParseError, lambda: _parse("cups = 3"), "E0013")
    assert_eq(e.message, "cannot assign to unit `cups`")
    assert_raises(ParseError, lambda: _parse("m = 5"), "E0013")


@test("Parser: unbalanced parenthesis and dangling operator", "parser")
def test_parse_errors():
    from tally_diagnostic import ParseError
    from tally_parser import Parser
    assert_raises(ParseError, lambda: _parse("(1 + 2"), "E0012")
    assert_raises(ParseError, lambda: _parse("1 +"), "E0011")

    parser = Parser(_scan("(1 + 2").expression_tokens())
    try:
        parser.parse()
    except ParseError:
        pass
    assert_eq(parser.diag.codes(), ["E0012"])


@test("Parser: compound unit literals", "parser")
def test_parse_compound_units():
    from tally_ast import Literal
    node = _parse("60 km/h")
    assert isinstance(node, Literal)
    assert_eq(node.unit.name, "km/h")
    assert_eq(_parse("3 m^2").unit.name, "m^2")


@test("Parser: postfix percent", "parser")
def test_parse_percent():
    from tally_ast import UnaryOp
    node = _parse("8.75%")
    assert isinstance(node, UnaryOp)
    assert_eq(node.op, "%")


@test("AST: references collects every variable read", "parser")
def test_ast_references():
    from tally_ast import references
    assert_eq(references(_parse("a + b * a", known={"a", "b"})), {"a", "b"})


# ═══════════════════════════════════════════════════════════════════════════════
# UNIT REGISTRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Units: aliases resolve to canonical units", "units")
def test_units_alias():
    from tally_units import UnitRegistry
    reg = UnitRegistry.default()
    assert_eq(reg.lookup("tablespoons").name, "tbsp")
    assert_eq(reg.lookup("L").name, "l")
    assert_true(reg.lookup("in") is None, "`in` is the conversion keyword")


@test("Units: documented kitchen ratios are exact", "units")
def test_units_kitchen_ratios():
    from tally_units import UnitRegistry
    reg = UnitRegistry.default()
    assert_eq(reg.convert(1, "tbsp", "tsp"), Fraction(3))
    assert_eq(reg.convert(1, "cup", "tbsp"), Fraction(16))
    assert_eq(reg.convert(1, "cup", "tsp"), Fraction(48))
    assert_eq(reg.convert(1, "quart", "cup"), Fraction(4))
    assert_eq(reg.convert(1, "gallon", "quart"), Fraction(4))
    assert_eq(reg.convert(1, "tsp", "ml"), Fraction("4.92892159375"))


@test("Units: conversion round-trips exactly", "units")
def test_units_round_trip():
    from tally_units import UnitRegistry
    reg = UnitRegistry.default()
    for dim_units in (["tsp", "tbsp", "cup", "ml", "l", "gallon"],
                      ["g", "kg", "oz", "lb"],
                      ["mm", "inch", "ft", "mi", "km"]):
        for a in dim_units:
            for b in dim_units:
                x = Fraction("2.37")
                there = reg.convert(x, a, b)
                assert_eq(reg.convert(there, b, a), x, f"{a} → {b} → {a}")


@test("Units: incompatible dimensions cannot convert", "units")
def test_units_mismatch():
    from tally_diagnostic import DimensionMismatch, UnknownUnit
    from tally_units import UnitRegistry
    reg = UnitRegistry.default()
    assert_raises(DimensionMismatch, lambda: reg.convert(1, "cup", "dollar"), "E0030")
    assert_raises(UnknownUnit, lambda: reg.unit("furlong"), "E0033")


@test("Units: compound unit expressions", "units")
def test_units_compound():
    from tally_units import Dimension, UnitRegistry
    reg = UnitRegistry.default()
    kmh = reg.parse_unit("km/h")
    assert_eq(kmh.dimension, Dimension(length=1, time=-1))
    assert_eq(reg.convert(36, kmh, "m/s"), Fraction(10))
    assert_eq(reg.parse_unit("kg*m/s^2").dimension, Dimension(length=1, mass=1, time=-2))


@test("Units: extra YAML table merges without touching the default", "units")
def test_units_yaml_merge():
    from tally_units import UnitRegistry
    extra = UnitRegistry.from_yaml(
        "units:\n"
        "  - {name: furlong, dimension: {length: 1}, scale: '201.168', aliases: [furlongs]}\n")
    merged = UnitRegistry.default().merge(extra)
    assert_eq(merged.convert(1, "furlongs", "m"), Fraction("201.168"))
    assert_true("furlong" not in UnitRegistry.default())
    # families of the base table survive the merge
    assert_true(merged.families["us_volume"].fractions)


@test("Units: the shared default registry is read-only", "units")
def test_units_default_frozen():
    from tally_diagnostic import RegistryError
    from tally_units import Dimension, Family, UnitDefinition, UnitRegistry
    furlong = UnitDefinition("furlong", Dimension(length=1), Fraction("201.168"))
    default = UnitRegistry.default()
    assert_true(default.frozen)
    assert_raises(RegistryError, lambda: default.register(furlong), "E0043")
    assert_raises(RegistryError, lambda: default.load_yaml("units: []\n"), "E0043")
    assert_raises(TypeError, lambda: default.families.__setitem__("x", Family("x")))
    assert_true("furlong" not in default)

    own = default.copy()
    own.register(furlong)
    own.families["x"] = Family("x")
    assert_true(not own.frozen)
    assert_eq(own.convert(1, "furlong", "m"), Fraction("201.168"))


@test("Units: invalid tables raise RegistryError", "units")
def test_units_invalid_tables():
    from tally_diagnostic import RegistryError
    from tally_units import UnitRegistry
    assert_raises(RegistryError, lambda: UnitRegistry.from_yaml(
        "units:\n  - {name: in, dimension: {length: 1}, scale: 1}\n"), "E0040")
    assert_raises(RegistryError, lambda: UnitRegistry.from_yaml(
        "units:\n  - {name: x, dimension: {colour: 1}, scale: 1}\n"))
    assert_raises(RegistryError, lambda: UnitRegistry.from_yaml(
        "units:\n  - {name: a, aliases: [b]}\n  - {name: c, aliases: [b]}\n"))
    assert_raises(RegistryError, lambda: UnitRegistry.from_yaml(
        "units:\n  - {name: z, scale: '-1'}\n"))


# ═══════════════════════════════════════════════════════════════════════════════
# VALUE & UNIT ALGEBRA TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Algebra: add converts to the left operand's unit", "algebra")
def test_algebra_add():
    from tally_value import add, sub
    result = add(_v(12, "tbsp"), _v(1, "cup"))
    assert_eq(result, _v(28, "tbsp"))
    assert_eq(sub(_v(1, "cup"), _v(4, "tbsp")), _v("0.75", "cup"))


@test("Algebra: add/sub need equal dimensions", "algebra")
def test_algebra_add_mismatch():
    from tally_diagnostic import DimensionMismatch
    from tally_value import add, sub
    e = assert_raises(DimensionMismatch, lambda: add(_v(1, "cup"), _v(1, "dollar")))
    assert_eq(e.message, "cannot add `cup` and `dollar`")
    assert_raises(DimensionMismatch, lambda: sub(_v(5), _v(1, "kg")))


@test("Algebra: mul/div combine units and fold cancelled dimensions", "algebra")
def test_algebra_mul_div():
    from tally_value import div, mul
    speed = div(_v(100, "km"), _v(2, "h"))
    assert_eq(speed.magnitude, Fraction(50))
    assert_eq(speed.unit_name, "km/h")
    assert_eq(div(_v(1, "km"), _v(1, "m")), _v(1000))
    assert_eq(mul(_v(3), _v(2, "cup")), _v(6, "cup"))
    assert_eq(div(_v(1), _v(4, "s")).unit_name, "1/s")


@test("Algebra: division by zero", "algebra")
def test_algebra_div_zero():
    from tally_diagnostic import DivisionByZero
    from tally_value import div
    assert_raises(DivisionByZero, lambda: div(_v(1, "cup"), _v(0)), "E0031")


@test("Algebra: powers of dimensioned values", "algebra")
def test_algebra_pow_dimensioned():
    from tally_diagnostic import UnsupportedExponent
    from tally_units import UnitRegistry
    from tally_value import Value, pow
    m2 = Value.of(9, UnitRegistry.default().parse_unit("m^2"))
    root = pow(m2, _v("0.5"))
    assert_eq(root, _v(3, "m"))
    assert_eq(pow(_v(2, "m"), _v(3)).unit_name, "m^3")
    assert_raises(UnsupportedExponent, lambda: pow(_v(2, "m"), _v("0.5")), "E0032")
    assert_raises(UnsupportedExponent, lambda: pow(_v(2), _v(1, "m")), "E0032")


@test("Algebra: powers of plain numbers", "algebra")
def test_algebra_pow_plain():
    from tally_diagnostic import EvalError
    from tally_value import pow
    assert_eq(pow(_v(2), _v(10)), _v(1024))
    assert_eq(pow(_v(2), _v(-1)), _v("0.5"))
    assert_eq(pow(_v(-8), _v(Fraction(1, 3))), _v(-2))
    assert_true(str(pow(_v(2), _v("0.5"))).startswith("1.41421356237309504880"))
    assert_raises(EvalError, lambda: pow(_v(-4), _v("0.5")), "E0034")


@test("Algebra: powers with oversized results are refused", "algebra")
def test_algebra_pow_too_large():
    from tally_diagnostic import EvalError
    from tally_value import pow
    assert_raises(EvalError, lambda: pow(_v(10 ** 1000), _v(1000)), "E0035")
    assert_raises(EvalError, lambda: pow(_v(Fraction(1, 3 ** 700)), _v(1000)), "E0035")
    assert_raises(EvalError, lambda: pow(_v(2), _v(10001)), "E0035")
    assert_eq(pow(_v(2), _v(10000)).magnitude, Fraction(2 ** 10000))


@test("Algebra: negate, percent and constants", "algebra")
def test_algebra_misc():
    from tally_value import constant, negate, percent
    assert_eq(negate(_v(3, "cup")), _v(-3, "cup"))
    assert_eq(percent(_v("8.75")), _v("0.0875"))
    assert_true(str(constant("pi")).startswith("3.14159265358979323846"))
    assert_eq(constant("tau").magnitude, 2 * constant("pi").magnitude)
    assert_true(constant("e") is None)


@test("Algebra: convert delegates to the registry", "algebra")
def test_algebra_convert():
    from tally_diagnostic import DimensionMismatch
    from tally_value import convert
    assert_eq(convert(_v(2, "cup"), _unit("ml")), _v("473.176473", "ml"))
    assert_raises(DimensionMismatch, lambda: convert(_v(2), _unit("ml")))


# ═══════════════════════════════════════════════════════════════════════════════
# ENVIRONMENT & EVALUATOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Environment: lookup sees the latest definition strictly before", "env")
def test_env_lookup():
    from tally_env import Environment
    env = Environment()
    env.define("x", _v(1), 2)
    env.define("x", _v(5), 5)
    assert_true(env.lookup("x", 2) is None)
    assert_eq(env.lookup("x", 3), _v(1))
    assert_eq(env.lookup("x", 5), _v(1))
    assert_eq(env.lookup("x", 6), _v(5))


@test("Environment: shift and undefine keep line order", "env")
def test_env_shift():
    from tally_env import Environment
    env = Environment()
    env.define("x", _v(1), 2)
    env.define("x", _v(5), 5)
    env.shift(3, 1)
    assert_eq(env.lookup("x", 6), _v(1))
    assert_eq(env.lookup("x", 7), _v(5))
    assert_true(env.undefine("x", 6))
    assert_true(not env.undefine("x", 6))
    assert_eq(env.lookup("x", 10), _v(1))


@test("Environment: constants are pre-bound and fixed", "env")
def test_env_constants():
    from tally_diagnostic import EvalError
    from tally_env import Environment
    env = Environment()
    assert_true(env.lookup("pi", 0) is not None)
    assert_raises(EvalError, lambda: env.define("pi", _v(3), 0))
    env.define("x", _v(1), 2)
    assert_true("x" not in env.names_before(2))
    assert_true({"x", "pi"} <= env.names_before(3))


@test("Evaluator: exact decimal arithmetic", "evaluator")
def test_eval_exact():
    from tally_env import Environment
    from tally_evaluator import evaluate
    assert_eq(evaluate(_parse("100 * (7 / 8)"), Environment(), 0), _v("87.5"))
    assert_eq(evaluate(_parse("0.1 + 0.2"), Environment(), 0), _v("0.3"))


@test("Evaluator: undefined variables and foreign nodes", "evaluator")
def test_eval_undefined():
    from tally_ast import VariableRef
    from tally_diagnostic import UndefinedVariable
    from tally_env import Environment
    from tally_evaluator import evaluate
    e = assert_raises(UndefinedVariable,
                      lambda: evaluate(VariableRef("ghost"), Environment(), 0))
    assert_eq(e.name, "ghost")
    assert_raises(TypeError, lambda: evaluate("1 + 1", Environment(), 0))


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Document: bare arithmetic line", "document")
def test_doc_arithmetic():
    doc = _doc("100 * (7 / 8)")
    r = doc.report(0)
    assert_eq(r.value, _v("87.5"))
    assert_eq(r.expression, "100 * (7 / 8)")


@test("Document: later lines see the latest assignment", "document")
def test_doc_tax_example():
    doc = _doc(*TAX_LINES)
    assert_eq(doc.report(2).value, _v("8.75"))
    assert_eq(doc.report(3).value, _v("108.75"))
    assert_eq(doc.report(3).defines, "grand_total")
    assert_eq(str(doc.lookup("grand_total")), "108.75")


@test("Document: kitchen conversion uses documented ratios", "document")
def test_doc_kitchen_conversion():
    r = _doc("12 tbsp + 1 cup in tsps").report(0)
    assert_eq(r.value, _v(84, "tsp"))
    assert_eq(str(r.value), "84 tsp")


@test("Document: incompatible units surface DimensionMismatch", "document")
def test_doc_dimension_mismatch():
    from tally_diagnostic import DimensionMismatch
    doc = _doc("x = 1 cup + 1 dollar", "1 cup + 1 dollar")
    assert_true(isinstance(doc.report(1).error, DimensionMismatch))
    assert_eq(doc.report(1).expression, "1 cup + 1 dollar")
    assert_true(isinstance(doc.report(0).error, DimensionMismatch))
    assert_true(doc.lookup("x") is None, "failed assignment must not bind")
    assert_eq(len(doc.env), 0)


@test("Document: editing an assignment updates only dependents", "document")
def test_doc_edit_propagates():
    doc = _doc(*TAX_LINES, "flour = 2 cups")
    subtotal_before = doc.report(0)
    recomputed = doc.edit_line(1, "tax_rate = 0.10")
    assert_eq(recomputed, [1, 2, 3])
    assert_eq(doc.last_recomputed, [1, 2, 3])
    assert_eq(doc.report(0), subtotal_before)
    assert_eq(doc.report(2).value, _v(10))
    assert_eq(doc.report(3).value, _v(110))
    assert_eq(doc.report(4).value, _v(2, "cup"))


@test("Document: unchanged rebinding stops propagation", "document")
def test_doc_shadowing():
    doc = _doc("x = 1", "a = x + 1", "x = 10", "b = x + 1")
    assert_eq(doc.report(1).value, _v(2))
    assert_eq(doc.report(3).value, _v(11))
    assert_eq(doc.edit_line(0, "x = 5"), [0, 1, 2])
    assert_eq(doc.report(1).value, _v(6))
    assert_eq(doc.report(3).value, _v(11))


@test("Document: prose lines produce nothing", "document")
def test_doc_prose():
    doc = _doc("The grand total comes to:", "it's a nice day")
    for r in doc.reports():
        assert_true(not r.has_expression, f"line {r.index} should be prose")
        assert_true(r.error is None)
    assert_eq(doc.diagnostics(), [])


@test("Document: malformed and undefined candidates fail closed", "document")
def test_doc_fail_closed():
    doc = _doc("I paid (5 + for lunch", "total = price * 2",
               "y = z + 1", "z = 2", "5 / 0")
    for i in range(3):
        r = doc.report(i)
        assert_true(not r.has_expression and r.error is None, f"line {i}")
    # `z` is only visible below its definition
    assert_eq(doc.report(3).defines, "z")
    # an expression-shaped line that fails to evaluate is surfaced
    assert_eq(doc.report(4).error.code, "E0031")


@test("Document: oversized numbers stay on their own line", "document")
def test_doc_huge_numbers():
    doc = _doc("id " + "9" * 5000, "(10^10000)^10000", "10^5000", "1 + 1")
    r = doc.report(0)
    assert_true(not r.has_expression and r.error is None)
    assert_eq(doc.report(1).error.code, "E0035")
    assert_true(doc.report(2).ok)
    assert_eq(doc.report(2).value.magnitude, Fraction(10 ** 5000))
    assert_eq(doc.report(3).value, _v(2))


@test("Document: unit names are not assignment targets", "document")
def test_doc_unit_target():
    doc = _doc("cups = 3", "2 * cups")
    r = doc.report(0)
    assert_true(not r.has_expression and r.error is None)
    assert_eq(r.defines, None)
    assert_eq(doc.lookup("cups"), None)
    assert_eq(doc.variables(), {})
    assert_true(doc.report(1).value != _v(6))


@test("Document: re-evaluation is idempotent", "document")
def test_doc_idempotent():
    doc = _doc(*TAX_LINES, "Sauce: 12 tbsp + 1 cup in tsps", "1 cup + 1 dollar",
               "just words", "r = 2", "area = pi * r^2")
    first = doc.reports()
    doc.reevaluate()
    second = doc.reports()
    doc.reevaluate()
    assert_eq(first, second)
    assert_eq(second, doc.reports())
    assert_eq(len(doc.env), 6)


@test("Document: insert and remove shift later bindings", "document")
def test_doc_insert_remove():
    doc = _doc("a = 2", "b = a * 3")
    doc.insert_line(1, "a = 5")
    assert_eq(doc.report(2).value, _v(15))
    assert_eq(doc.report(2).index, 2)
    doc.remove_line(1)
    assert_eq(doc.report(1).value, _v(6))
    doc.remove_line(0)
    assert_true(not doc.report(0).has_expression, "`a` is gone")
    doc.append_line("a = 1")
    assert_true(not doc.report(0).has_expression, "no forward references")
    assert_eq(doc.text, "b = a * 3\na = 1")


@test("Document: undefined name becomes defined by an earlier edit", "document")
def test_doc_late_definition():
    doc = _doc("note", "total = price * 2")
    assert_true(not doc.report(1).has_expression)
    doc.edit_line(0, "price = 4.50")
    assert_eq(doc.report(1).value, _v(9))


@test("Document: constants, percent and compound conversion", "document")
def test_doc_features():
    doc = _doc("r = 2", "area = pi * r^2", "rate = 8.75%", "100 * rate",
               "60 km/h in m/s", "1 gallon in cups", "-2^2")
    assert_true(str(doc.report(1).value).startswith("12.566370614359"))
    assert_eq(doc.report(2).value, _v("0.0875"))
    assert_eq(doc.report(3).value, _v("8.75"))
    assert_eq(doc.report(4).value.magnitude, Fraction(50, 3))
    assert_eq(doc.report(4).value.unit_name, "m/s")
    assert_eq(doc.report(5).value, _v(16, "cup"))
    assert_eq(doc.report(6).value, _v(4))


@test("Document: diagnostics point at the failing line", "document")
def test_doc_diagnostics():
    doc = _doc("ok = 1", "1 cup + 1 dollar")
    diags = doc.diagnostics()
    assert_eq(len(diags), 1)
    assert_eq(diags[0].code, "E0030")
    assert_eq(diags[0].labels[0].span.line, 1)
    assert "1 cup + 1 dollar" in str(diags[0])
    assert_eq(diags[0].labels[0].message, "cannot add `cup` and `dollar`")


@test("Document: bad indices raise IndexError", "document")
def test_doc_bad_index():
    doc = _doc("1")
    assert_raises(IndexError, lambda: doc.edit_line(3, "x"))
    assert_raises(IndexError, lambda: doc.insert_line(5, "x"))


@test("DocumentWorker: edits run in submission order", "document")
def test_doc_worker():
    from tally_document import DocumentWorker
    doc = _doc("a = 2", "b = a * 3")
    with DocumentWorker(doc) as worker:
        f1 = worker.submit_edit(0, "a = 4")
        f2 = worker.submit_insert(2, "c = b + 1")
        f3 = worker.submit_reports()
        assert_eq(f1.result(), [0, 1])
        assert_eq(f2.result(), [2])
        reports = f3.result()
    assert_eq(reports[1].value, _v(12))
    assert_eq(reports[2].value, _v(13))


# ═══════════════════════════════════════════════════════════════════════════════
# FORMAT TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Format: packing picks the largest convenient unit", "format")
def test_format_pack():
    from tally_format import format_value
    assert_eq(format_value(_v(12, "tsp")), "1/4 cup")
    assert_eq(format_value(_v(3, "tbsp")), "3 tbsp")
    assert_eq(format_value(_v(80, "tbsp")), "1 1/4 quart")
    assert_eq(format_value(_v(1100, "ml")), "1.1 l")
    assert_eq(format_value(_v(2000, "g")), "2 kg")
    assert_eq(format_value(_v("2.123", "gallon")), "2.123 gallon")
    assert_eq(format_value(_v(12, "tsp"), pack_units=False), "12 tsp")


@test("Format: magnitudes round half-even and trim zeros", "format")
def test_format_magnitude():
    from tally_format import format_magnitude
    assert_eq(format_magnitude(Fraction(1, 3), 4), "0.3333")
    assert_eq(format_magnitude(Fraction("2.5"), 0), "2")
    assert_eq(format_magnitude(Fraction("108.7500")), "108.75")
    assert_eq(format_magnitude(Fraction(-5, 4), fractions=True), "-1 1/4")
    assert_eq(format_magnitude(Fraction(1, 2), fractions=True), "1/2")
    assert_eq(format_magnitude(Fraction(-1, 10 ** 12)), "0")


@test("Format: huge magnitudes switch to scientific notation", "format")
def test_format_scientific():
    from tally_format import format_magnitude, render
    assert_eq(format_magnitude(Fraction(10 ** 5000)), "1e5000")
    assert_eq(format_magnitude(Fraction(-3 * 10 ** 1200, 2), 4), "-1.5e1200")
    assert_eq(format_magnitude(Fraction(10 ** 999)).count("0"), 999)
    assert_eq(render(_doc("10^5000").report(0)), "10^5000 => 1e5000")


@test("Format: render shows expression and result", "format")
def test_format_render():
    from tally_config import TallyConfig
    from tally_format import render
    doc = _doc("Sauce: 12 tbsp + 1 cup in tsps", "notes", "1 cup + 1 dollar")
    assert_eq(render(doc.report(0)), "12 tbsp + 1 cup in tsps => 1 3/4 cup")
    assert_eq(render(doc.report(0), TallyConfig(pack_units=False)),
              "12 tbsp + 1 cup in tsps => 84 tsp")
    assert_eq(render(doc.report(1)), "")
    assert_eq(render(doc.report(2)),
              "1 cup + 1 dollar => error[E0030]: cannot add `cup` and `dollar`")


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIG TESTS
# ═══════════════════════════════════════════════════════════════════════════════

@test("Config: defaults when no file is given", "config")
def test_config_defaults():
    from tally_config import DEFAULT_CONFIG, TallyConfig, load_config
    cfg = load_config(None)
    assert_eq(cfg, TallyConfig())
    assert_eq(cfg.precision, DEFAULT_CONFIG['precision'])
    assert_eq(load_config("/nonexistent/tally.yaml"), TallyConfig())


@test("Config: YAML values override defaults, unknown keys ignored", "config")
def test_config_from_file():
    import tempfile
    from pathlib import Path
    from tally_config import load_config
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "tally.yaml"
        path.write_text("precision: 30\ndecimal_places: 2\nbogus: 1\n")
        cfg = load_config(path)
    assert_eq(cfg.precision, 30)
    assert_eq(cfg.decimal_places, 2)
    assert_true(cfg.pack_units)


@test("Config: wrong types raise ConfigError", "config")
def test_config_bad_types():
    from tally_config import TallyConfig
    from tally_diagnostic import ConfigError
    assert_raises(ConfigError, lambda: TallyConfig.from_dict({"precision": "lots"}), "E0041")
    assert_raises(ConfigError, lambda: TallyConfig.from_dict({"precision": True}))
    assert_raises(ConfigError, lambda: TallyConfig.from_dict({"fractions": 1}))
    assert_raises(ConfigError, lambda: TallyConfig.from_dict({"precision": 5}))


@test("Config: units_file extends the unit table of a document", "config")
def test_config_units_file():
    import tempfile
    from pathlib import Path
    from tally_config import load_config
    from tally_document import Document
    with tempfile.TemporaryDirectory() as tmp:
        Path(tmp, "extra.yaml").write_text(
            "units:\n"
            "  - {name: furlong, dimension: {length: 1}, scale: '201.168'}\n")
        path = Path(tmp) / "tally.yaml"
        path.write_text("units_file: extra.yaml\n")
        cfg = load_config(path)
        doc = Document("2 furlong in m", config=cfg)
    assert_eq(doc.report(0).value, _v("402.336", "m"))


# ── Main ───────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    tag = sys.argv[1] if len(sys.argv) > 1 else None
    ok  = run_tests(tag)
    sys.exit(0 if ok else 1)
