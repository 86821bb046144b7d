# tally_env.py — Line-scoped variable bindings for Tally
#
# Each name maps to the sorted list of lines that define it. A lookup as of
# line n sees the latest definition on a line strictly before n, so a later
# redefinition never changes what an earlier line saw. Constants are bound
# for every line and cannot be redefined.
#
# One Environment belongs to one Document; it is never a process-wide value.

from __future__ import annotations
from bisect import bisect_left, insort
from typing import Dict, List, Optional, Set, Tuple

from tally_diagnostic import EvalError
from tally_value import CONSTANTS, DEFAULT_PRECISION, Value, constant


class Environment:
    def __init__(self, precision: int = DEFAULT_PRECISION):
        self._lines:  Dict[str, List[int]] = {}
        self._values: Dict[Tuple[str, int], Value] = {}
        self._constants: Dict[str, Value] = {
            name: constant(name, precision) for name in CONSTANTS
        }

    # ── Mutation ──────────────────────────────────────────────────────────────

    def define(self, name: str, value: Value, line: int) -> None:
        if name in self._constants:
            raise EvalError(f"cannot redefine constant `{name}`", code="E0013")
        lines = self._lines.setdefault(name, [])
        if (name, line) not in self._values:
            insort(lines, line)
        self._values[(name, line)] = value

    def undefine(self, name: str, line: int) -> bool:
        """Drop the binding `line` made for `name`; True if there was one."""
        if self._values.pop((name, line), None) is None:
            return False
        lines = self._lines[name]
        lines.remove(line)
        if not lines:
            del self._lines[name]
        return True

    def shift(self, from_line: int, delta: int) -> None:
        """Move every binding made at or after `from_line` by `delta` lines."""
        moved = {}
        for (name, line), value in list(self._values.items()):
            if line >= from_line:
                del self._values[(name, line)]
                moved[(name, line + delta)] = value
        self._values.update(moved)
        for name, lines in self._lines.items():
            self._lines[name] = [l + delta if l >= from_line else l for l in lines]

    def clear(self) -> None:
        self._lines.clear()
        self._values.clear()

    # ── Query ─────────────────────────────────────────────────────────────────

    def lookup(self, name: str, as_of: int) -> Optional[Value]:
        """Value of `name` visible to line `as_of`, or None."""
        if name in self._constants:
            return self._constants[name]
        line = self.defining_line(name, as_of)
        return None if line is None else self._values[(name, line)]

    def defining_line(self, name: str, as_of: int) -> Optional[int]:
        lines = self._lines.get(name)
        if not lines:
            return None
        idx = bisect_left(lines, as_of)
        return lines[idx - 1] if idx else None

    def names_before(self, line: int) -> Set[str]:
        """Every name a line at index `line` can see, constants included."""
        names = set(self._constants)
        names.update(n for n, lines in self._lines.items() if lines[0] < line)
        return names

    def bindings(self) -> List[Tuple[int, str, Value]]:
        """All (line, name, value) bindings in line order."""
        return sorted((line, name, value)
                      for (name, line), value in self._values.items())

    def __contains__(self, name: str) -> bool:
        return name in self._constants or name in self._lines

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Environment({len(self)} bindings)"
