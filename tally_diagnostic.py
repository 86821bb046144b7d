# tally_diagnostic.py — Error kinds and Diagnostics for the Tally engine
#
# Every per-line failure is a TallyError carrying a stable code and the span
# of the offending text. Errors never escape a line: the Document stores them
# as line results and turns the user-visible ones into Diagnostics that the
# editing surface can print or underline.

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional

from tally_token import Span


# ── Exceptions ────────────────────────────────────────────────────────────────

class TallyError(Exception):
    """Root of all engine errors."""
    code = "E0000"

    def __init__(self, message: str, span: Optional[Span] = None,
                 code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.span    = span
        if code:
            self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}, {self.message!r})"

    def __eq__(self, other: object) -> bool:
        return (type(self) is type(other)
                and self.code == other.code
                and self.message == other.message)

    def __hash__(self):
        return hash((type(self).__name__, self.code, self.message))


class ParseError(TallyError):
    """Malformed candidate expression. Never shown for what may be prose."""
    code = "E0010"


class EvalError(TallyError):
    code = "E0020"


class UndefinedVariable(EvalError):
    code = "E0020"

    def __init__(self, name: str, span: Optional[Span] = None):
        super().__init__(f"undefined variable `{name}`", span)
        self.name = name


class DimensionMismatch(EvalError):
    code = "E0030"


class DivisionByZero(EvalError):
    code = "E0031"

    def __init__(self, span: Optional[Span] = None):
        super().__init__("division by zero", span)


class UnsupportedExponent(EvalError):
    code = "E0032"


class UnknownUnit(EvalError):
    code = "E0033"


class RegistryError(TallyError):
    """Invalid unit table. Raised at startup, never per line."""
    code = "E0040"


class ConfigError(TallyError):
    code = "E0041"


# ── Diagnostics ───────────────────────────────────────────────────────────────

class Severity(Enum):
    ERROR   = auto()
    WARNING = auto()
    NOTE    = auto()
    HINT    = auto()


# ANSI colour codes (gracefully no-op on Windows without VT support)
_RESET  = "\033[0m"
_BOLD   = "\033[1m"
_RED    = "\033[31m"
_YELLOW = "\033[33m"
_CYAN   = "\033[36m"
_GREEN  = "\033[32m"

_SEV_COLOR = {
    Severity.ERROR:   _RED,
    Severity.WARNING: _YELLOW,
    Severity.NOTE:    _CYAN,
    Severity.HINT:    _GREEN,
}

_SEV_LABEL = {
    Severity.ERROR:   "error",
    Severity.WARNING: "warning",
    Severity.NOTE:    "note",
    Severity.HINT:    "hint",
}


@dataclass
class Label:
    """An annotated region of a line inside a diagnostic."""
    span: Span
    message: str
    primary: bool = True   # True → ^^^ underlining; False → --- underlining


@dataclass
class Diagnostic:
    """
    A single report about one document line.

    Example output:
        error[E0030]: cannot add `cup` and `dollar`
          --> 3:1-17
           3 | 1 cup + 1 dollar
             | ^^^^^^^^^^^^^^^^ cannot add `cup` and `dollar`
    """
    severity: Severity
    code: str
    message: str
    labels: List[Label] = field(default_factory=list)
    notes: List[str]   = field(default_factory=list)
    hints: List[str]   = field(default_factory=list)

    _source_lines: Optional[List[str]] = field(default=None, repr=False)

    @classmethod
    def from_error(cls, error: TallyError, source: str = "",
                   span: Optional[Span] = None,
                   hints: Optional[List[str]] = None) -> "Diagnostic":
        d = cls(Severity.ERROR, error.code, error.message, hints=hints or [])
        span = span or error.span
        if span:
            d.labels.append(Label(span, error.message))
        if source:
            d.with_source(source)
        return d

    def with_source(self, source: str) -> "Diagnostic":
        self._source_lines = source.splitlines()
        return self

    def render(self, color: bool = True) -> str:
        lines: List[str] = []
        sev_col = _SEV_COLOR[self.severity] if color else ""
        reset   = _RESET if color else ""
        bold    = _BOLD  if color else ""

        lines.append(
            f"{bold}{sev_col}{_SEV_LABEL[self.severity]}[{self.code}]{reset}"
            f"{bold}: {self.message}{reset}"
        )

        for label in self.labels:
            sp = label.span
            arrow_col = _CYAN if color else ""
            lines.append(f"  {arrow_col}-->{reset} {sp!r}")

            if self._source_lines and 0 <= sp.line < len(self._source_lines):
                src_line = self._source_lines[sp.line]
                line_num = str(sp.line + 1)
                gutter   = " " * len(line_num)
                lines.append(f"   {arrow_col}{line_num} |{reset} {src_line}")

                under_char = "^" if label.primary else "-"
                under_col  = sev_col if label.primary else arrow_col
                underline  = " " * sp.start + under_char * max(1, len(sp))
                lines.append(
                    f"   {arrow_col}{gutter} |{reset} "
                    f"{under_col}{underline} {label.message}{reset}"
                )

        for note in self.notes:
            lines.append(f"   {_CYAN if color else ''}= note:{reset} {note}")
        for hint in self.hints:
            lines.append(f"   {_GREEN if color else ''}= hint:{reset} {hint}")

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render(color=False)


class DiagnosticBag:
    """
    Collects diagnostics emitted while scanning, parsing or evaluating.
    The parser writes into its own bag; the Document builds one per query.
    """

    def __init__(self, source: str = ""):
        self._diags: List[Diagnostic] = []
        self._source = source

    # ── Emit helpers ─────────────────────────────────────────────────────────

    def error(self, code: str, message: str,
              span: Optional[Span] = None,
              hints: Optional[List[str]] = None) -> Diagnostic:
        return self._emit(Severity.ERROR, code, message, span, hints)

    def report(self, error: TallyError, span: Optional[Span] = None,
               hints: Optional[List[str]] = None) -> Diagnostic:
        d = Diagnostic.from_error(error, self._source, span, hints)
        self._diags.append(d)
        return d

    def _emit(self, severity: Severity, code: str, message: str,
              span: Optional[Span], hints: Optional[List[str]]) -> Diagnostic:
        d = Diagnostic(severity=severity, code=code, message=message,
                       hints=hints or [])
        if span:
            d.labels.append(Label(span, message, primary=True))
        if self._source:
            d.with_source(self._source)
        self._diags.append(d)
        return d

    # ── Query ─────────────────────────────────────────────────────────────────

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self._diags)

    @property
    def all(self) -> List[Diagnostic]:
        return list(self._diags)

    def codes(self) -> List[str]:
        return [d.code for d in self._diags]

    def __len__(self) -> int:
        return len(self._diags)


# ── Error Code Registry ────────────────────────────────────────────────────────
# Centralised so the editing surface can enumerate and document all codes.

ERROR_CODES = {
    # Parser
    "E0010": "Unexpected token",
    "E0011": "Expected expression",
    "E0012": "Mismatched parentheses",
    "E0013": "Invalid assignment target",
    "E0014": "Expected unit after `in`",
    "E0015": "Assignment not at start of expression",
    # Evaluation
    "E0020": "Undefined variable",
    "E0030": "Dimension mismatch",
    "E0031": "Division by zero",
    "E0032": "Unsupported exponent",
    "E0033": "Unknown unit",
    "E0034": "Result is not a real number",
    "E0035": "Number too large",
    # Startup
    "E0040": "Invalid unit table",
    "E0041": "Invalid configuration",
    "E0042": "Configuration file unreadable",
    "E0043": "Unit registry is read-only",
}
