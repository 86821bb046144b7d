# tally_token.py — Structured Token & Span for the Tally notepad engine
#
# A line of free text is scanned into classified tokens. Every token keeps
# its source offsets so the editing surface can highlight the expression
# embedded in a sentence.

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict


class TokenType(Enum):
    # Operands
    NUMBER     = auto()
    IDENTIFIER = auto()   # variable reference, constant or assignment target
    UNIT       = auto()

    # Operators
    PLUS       = auto()
    MINUS      = auto()
    STAR       = auto()
    SLASH      = auto()
    CARET      = auto()   # ^ and **
    PERCENT    = auto()   # postfix %

    # Grouping
    LPAREN     = auto()
    RPAREN     = auto()

    ASSIGN     = auto()   # =
    KEYWORD    = auto()   # conversion keyword `in`

    # Text that is never evaluated
    WHITESPACE = auto()
    PROSE      = auto()

    # Meta
    EOF        = auto()


OPERATORS: frozenset = frozenset({
    TokenType.PLUS, TokenType.MINUS, TokenType.STAR,
    TokenType.SLASH, TokenType.CARET, TokenType.PERCENT,
})

# Token kinds that never belong to a candidate expression.
NON_EVALUABLE: frozenset = frozenset({
    TokenType.WHITESPACE, TokenType.PROSE, TokenType.EOF,
})

CONVERSION_KEYWORD = "in"

KEYWORDS: frozenset[str] = frozenset({CONVERSION_KEYWORD})

# Highlight style handed to the editing surface, keyed by token kind.
TOKEN_STYLES: Dict[TokenType, str] = {
    TokenType.NUMBER:     "number",
    TokenType.IDENTIFIER: "identifier",
    TokenType.UNIT:       "unit",
    TokenType.PLUS:       "operator",
    TokenType.MINUS:      "operator",
    TokenType.STAR:       "operator",
    TokenType.SLASH:      "operator",
    TokenType.CARET:      "operator",
    TokenType.PERCENT:    "operator",
    TokenType.ASSIGN:     "operator",
    TokenType.LPAREN:     "operator",
    TokenType.RPAREN:     "operator",
    TokenType.KEYWORD:    "keyword",
    TokenType.WHITESPACE: "prose",
    TokenType.PROSE:      "prose",
}


@dataclass(frozen=True)
class Span:
    """Half-open character range [start, end) on one document line."""
    line:  int    # 0-indexed line of the document
    start: int    # 0-indexed column
    end:   int

    def __repr__(self) -> str:
        return f"{self.line + 1}:{self.start + 1}-{self.end + 1}"

    def __len__(self) -> int:
        return self.end - self.start

    def merge(self, other: "Span") -> "Span":
        """Return the smallest span that covers both self and other."""
        return Span(self.line, min(self.start, other.start), max(self.end, other.end))

    def on_line(self, line: int) -> "Span":
        return Span(line, self.start, self.end)

    def slice(self, text: str) -> str:
        return text[self.start:self.end]

    @staticmethod
    def dummy() -> "Span":
        return Span(0, 0, 0)


@dataclass
class Token:
    """A scanned token with type, value, and source location."""
    kind:  TokenType
    text:  str          # exact source text
    value: Any          # Fraction for numbers, canonical name for units, else text
    span:  Span

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.text!r}, {self.span})"

    @property
    def is_evaluable(self) -> bool:
        return self.kind not in NON_EVALUABLE

    @property
    def style(self) -> str:
        return TOKEN_STYLES.get(self.kind, "prose")

    def keyword_is(self, *words: str) -> bool:
        return self.kind == TokenType.KEYWORD and self.value in words
