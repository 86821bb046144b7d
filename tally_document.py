# tally_document.py — Document Evaluator for Tally
#
# Owns the ordered lines of one notepad, the Environment they build, and the
# incremental recomputation that keeps results consistent under edits.
#
# Per line:  UNPARSED → PARSED → EVALUATED (value, error, or no expression)
#
# Dependencies run strictly downward: a line only sees bindings from lines
# above it, so every edit is repaired by a single forward pass starting at
# the edited index. A line is revisited when it mentions a name whose
# visible binding may have changed ("dirty"); a name stops being dirty once
# a later line rebinds it to the same value it had before.

from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, List, Optional, Set
import logging
import threading

from tally_ast import Assignment, ExpressionNode, Literal, VariableRef, references
from tally_config import TallyConfig
from tally_diagnostic import (
    Diagnostic, DiagnosticBag, ParseError, TallyError, UndefinedVariable,
)
from tally_env import Environment
from tally_evaluator import evaluate
from tally_parser import Parser
from tally_scanner import Scanner, TokenSpan
from tally_token import Span
from tally_units import UnitRegistry
from tally_value import Value

logger = logging.getLogger(__name__)


class LineState(Enum):
    UNPARSED  = auto()
    PARSED    = auto()
    EVALUATED = auto()


@dataclass
class Line:
    """One line of the document and everything cached about it."""
    text:     str
    state:    LineState = LineState.UNPARSED
    scanned:  Optional[TokenSpan] = None
    node:     Optional[ExpressionNode] = None
    value:    Optional[Value] = None
    error:    Optional[TallyError] = None
    defines:  Optional[str] = None         # set only when the binding succeeded
    reads:    FrozenSet[str] = frozenset()
    mentions: FrozenSet[str] = frozenset()

    def reset(self) -> None:
        self.state   = LineState.UNPARSED
        self.scanned = None
        self.node    = None
        self.value   = None
        self.error   = None
        self.reads   = frozenset()
        # `defines` and `mentions` survive until the line is re-evaluated so
        # the forward pass can compare old and new bindings.

    @property
    def has_expression(self) -> bool:
        return self.value is not None or self.error is not None


@dataclass(frozen=True)
class LineReport:
    """What the editing surface needs to show next to one line."""
    index:      int
    text:       str
    expression: Optional[str] = None      # source text of the evaluated expression
    span:       Optional[Span] = None     # its offsets on the line
    value:      Optional[Value] = None
    error:      Optional[TallyError] = None
    defines:    Optional[str] = None
    styles:     tuple = ()

    @property
    def has_expression(self) -> bool:
        return self.expression is not None

    @property
    def ok(self) -> bool:
        return self.error is None


def _is_expression_shaped(node: ExpressionNode) -> bool:
    """True when the tree has an operator, conversion or assignment."""
    return not isinstance(node, (Literal, VariableRef))


class Document:
    def __init__(self, text: str = "", registry: Optional[UnitRegistry] = None,
                 config: Optional[TallyConfig] = None):
        self.config    = config or TallyConfig()
        self.registry  = registry or self.config.registry()
        self.precision = self.config.precision
        self.env       = Environment(self.precision)
        self.lines: List[Line] = []
        self.last_recomputed: List[int] = []
        self._lock = threading.RLock()
        if text:
            self.load(text)

    # ── Editing surface ───────────────────────────────────────────────────────

    def load(self, text: str) -> List[int]:
        """Replace the whole document and evaluate it top to bottom."""
        with self._lock:
            self.lines = [Line(t) for t in text.splitlines()]
            return self._recompute_all()

    def reevaluate(self) -> List[int]:
        """Recompute every line from scratch."""
        with self._lock:
            return self._recompute_all()

    def edit_line(self, index: int, text: str) -> List[int]:
        with self._lock:
            self._check_index(index)
            self.lines[index].text = text
            return self._propagate(index, set(), {index})

    def insert_line(self, index: int, text: str = "") -> List[int]:
        with self._lock:
            if not 0 <= index <= len(self.lines):
                raise IndexError(f"cannot insert at line {index}; "
                                 f"document has {len(self.lines)} lines")
            self.env.shift(index, 1)
            self.lines.insert(index, Line(text))
            return self._propagate(index, set(), {index})

    def append_line(self, text: str) -> List[int]:
        with self._lock:
            return self.insert_line(len(self.lines), text)

    def remove_line(self, index: int) -> List[int]:
        with self._lock:
            self._check_index(index)
            removed = self.lines.pop(index)
            dirty: Set[str] = set()
            if removed.defines:
                self.env.undefine(removed.defines, index)
                dirty.add(removed.defines)
            self.env.shift(index + 1, -1)
            return self._propagate(index, dirty, set())

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.lines):
            raise IndexError(f"line {index} out of range; "
                             f"document has {len(self.lines)} lines")

    # ── Recomputation ─────────────────────────────────────────────────────────

    def _recompute_all(self) -> List[int]:
        self.env.clear()
        for line in self.lines:
            line.defines = None
        return self._propagate(0, set(), set(range(len(self.lines))))

    def _propagate(self, start: int, dirty: Set[str], force: Set[int]) -> List[int]:
        """Single forward pass from `start`; returns the recomputed indices."""
        recomputed: List[int] = []
        for j in range(start, len(self.lines)):
            line = self.lines[j]
            if j not in force and not (line.mentions & dirty):
                continue
            old_name  = line.defines
            old_value = line.value if old_name else None
            line.reset()
            self._evaluate_line(j)
            recomputed.append(j)

            if line.defines and line.defines == old_name and line.value == old_value:
                # rebound unchanged: lines below see this binding, not the edit
                dirty.discard(line.defines)
            else:
                dirty.update(n for n in (old_name, line.defines) if n)

        self.last_recomputed = recomputed
        logger.debug("Recomputed lines %s (dirty names: %s)",
                     recomputed, sorted(dirty) or "none")
        return recomputed

    def _evaluate_line(self, index: int) -> None:
        line = self.lines[index]
        if line.defines:
            self.env.undefine(line.defines, index)
            line.defines = None

        scanner = Scanner(self.registry, self.env.names_before(index))
        line.scanned  = scanner.scan(line.text, index)
        line.mentions = line.scanned.mentions
        if not line.scanned.has_candidate:
            line.state = LineState.EVALUATED
            return

        try:
            node = Parser(line.scanned.expression_tokens(), self.registry,
                          line.text).parse()
        except ParseError as e:
            logger.debug("Line %d: no expression (%s)", index, e.message)
            line.state = LineState.EVALUATED
            return
        line.node  = node
        line.reads = frozenset(references(node))
        line.state = LineState.PARSED

        try:
            value = evaluate(node, self.env, index, self.registry, self.precision)
        except UndefinedVariable as e:
            logger.debug("Line %d: no expression (%s)", index, e.message)
            line.state = LineState.EVALUATED
            return
        except TallyError as e:
            line.state = LineState.EVALUATED
            if _is_expression_shaped(node):
                line.error = e
                logger.debug("Line %d: %s", index, e.message)
            else:
                logger.debug("Line %d: no expression (%s)", index, e.message)
            return

        line.value = value
        line.state = LineState.EVALUATED
        if isinstance(node, Assignment):
            self.env.define(node.name, value, index)
            line.defines = node.name

    # ── Queries ───────────────────────────────────────────────────────────────

    def report(self, index: int) -> LineReport:
        with self._lock:
            self._check_index(index)
            line = self.lines[index]
            styles = tuple(line.scanned.styles()) if line.scanned else ()
            if not line.has_expression:
                return LineReport(index, line.text, styles=styles)
            candidate = line.scanned.candidate
            return LineReport(
                index=index,
                text=line.text,
                expression=candidate.text,
                span=candidate.span.on_line(index),
                value=line.value,
                error=line.error,
                defines=line.defines,
                styles=styles,
            )

    def reports(self) -> List[LineReport]:
        with self._lock:
            return [self.report(i) for i in range(len(self.lines))]

    def diagnostics(self) -> List[Diagnostic]:
        """One Diagnostic per line whose error is shown to the user."""
        with self._lock:
            bag = DiagnosticBag(self.text)
            for i, line in enumerate(self.lines):
                if line.error is None:
                    continue
                span = line.error.span or line.scanned.candidate.span
                bag.report(line.error, span.on_line(i))
            return bag.all

    def lookup(self, name: str, as_of: Optional[int] = None) -> Optional[Value]:
        """Value of `name` as seen by line `as_of` (default: below the last line)."""
        with self._lock:
            return self.env.lookup(name, len(self.lines) if as_of is None else as_of)

    def variables(self) -> Dict[str, Value]:
        """Every binding visible below the last line."""
        with self._lock:
            end = len(self.lines)
            return {name: self.env.lookup(name, end)
                    for _, name, _ in self.env.bindings()}

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def __repr__(self) -> str:
        return f"Document({len(self.lines)} lines)"


class DocumentWorker:
    """
    Runs a Document's edits on one background thread. Edits are applied in
    submission order; each future resolves to the recomputed line indices.
    """

    def __init__(self, document: Document):
        self.document  = document
        self._executor = ThreadPoolExecutor(max_workers=1,
                                            thread_name_prefix="tally-document")

    def submit_load(self, text: str) -> Future:
        return self._executor.submit(self.document.load, text)

    def submit_edit(self, index: int, text: str) -> Future:
        return self._executor.submit(self.document.edit_line, index, text)

    def submit_insert(self, index: int, text: str = "") -> Future:
        return self._executor.submit(self.document.insert_line, index, text)

    def submit_remove(self, index: int) -> Future:
        return self._executor.submit(self.document.remove_line, index)

    def submit_reports(self) -> Future:
        return self._executor.submit(self.document.reports)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "DocumentWorker":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()


if __name__ == "__main__":
    from tally_format import render

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    doc = Document("\n".join([
        "Dinner for four",
        "subtotal = 100.00",
        "tax_rate = 0.0875",
        "taxes = subtotal * tax_rate",
        "grand_total = subtotal + taxes",
        "The grand total comes to:",
        "Sauce: 12 tbsp + 1 cup in tsps",
        "1 cup + 1 dollar",
    ]))
    for r in doc.reports():
        print(f"{r.index + 1:>3} | {r.text:34} {render(r)}")

    print("\nedit tax_rate → recomputed", doc.edit_line(2, "tax_rate = 0.10"))
    for r in doc.reports():
        print(f"{r.index + 1:>3} | {r.text:34} {render(r)}")

    for d in doc.diagnostics():
        print(d.render(color=False))
