# tally_scanner.py — Line Scanner for Tally
#
# Turns one line of free text into classified tokens and picks the
# expression embedded in it:
#   - Every character lands in some token, so offsets cover the whole line
#   - Words are classified by one total function with a fixed precedence:
#       keyword `in` > unit > constant > known variable > assignment target > prose
#   - Units count only in quantity context, so "it's" or "a m" stay prose
#   - The candidate is the longest run of non-prose tokens (leftmost wins ties)

from __future__ import annotations
from dataclasses import dataclass, field
from fractions import Fraction
from typing import FrozenSet, Iterable, List, Optional
import re

from tally_token import Token, TokenType, Span, CONVERSION_KEYWORD
from tally_units import UnitRegistry
from tally_value import CONSTANTS


# Thousands groups only when every group has exactly three digits.
_NUMBER = re.compile(r"\d{1,3}(?:,\d{3})+(?!\d)(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+")
_WORD   = re.compile(r"[^\W\d]\w*")

_SINGLE = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "^": TokenType.CARET,
    "%": TokenType.PERCENT,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "=": TokenType.ASSIGN,
}

# Tokens after which an expression can continue with `in <unit>`.
_OPERAND_END = frozenset({
    TokenType.NUMBER, TokenType.UNIT, TokenType.IDENTIFIER,
    TokenType.RPAREN, TokenType.PERCENT,
})

# A run made only of punctuation-like operators is not an expression.
_OPERANDS = frozenset({TokenType.NUMBER, TokenType.IDENTIFIER})

# Marker kind for words before classification.
_WORD_KIND = TokenType.IDENTIFIER


@dataclass(frozen=True)
class Candidate:
    """The run of tokens chosen for evaluation."""
    start: int      # index into TokenSpan.tokens
    end:   int      # exclusive
    span:  Span     # source offsets on the line
    text:  str


@dataclass
class TokenSpan:
    """Result of scanning one line."""
    source:    str
    line:      int
    tokens:    List[Token]
    candidate: Optional[Candidate] = None
    mentions:  FrozenSet[str] = field(default_factory=frozenset)

    @property
    def has_candidate(self) -> bool:
        return self.candidate is not None

    def expression_tokens(self) -> List[Token]:
        """Evaluable tokens of the candidate, terminated by EOF."""
        if self.candidate is None:
            return []
        c = self.candidate
        toks = [t for t in self.tokens[c.start:c.end] if t.is_evaluable]
        end = Span(self.line, c.span.end, c.span.end)
        toks.append(Token(TokenType.EOF, "", None, end))
        return toks

    def styles(self) -> List[tuple]:
        """(start, end, style) triples for highlighting."""
        return [(t.span.start, t.span.end, t.style) for t in self.tokens]


class Scanner:
    """
    Scans lines against a unit registry and a set of names known to be
    defined above the line being scanned. Scanners hold no per-line
    state and may be reused.
    """

    def __init__(self, registry: Optional[UnitRegistry] = None,
                 known: Iterable[str] = ()):
        self.registry = registry or UnitRegistry.default()
        self.known    = frozenset(known)

    # ── Entry point ───────────────────────────────────────────────────────────

    def scan(self, text: str, line: int = 0) -> TokenSpan:
        tokens = _LineLexer(text, line).lex()
        self._classify(tokens)
        mentions = frozenset(t.text for t in tokens if _WORD.fullmatch(t.text))
        return TokenSpan(text, line, tokens, _choose_candidate(tokens, text, line),
                         mentions)

    # ── Classification ────────────────────────────────────────────────────────

    def classify_word(self, word: str, prev: Optional[Token],
                      nxt: Optional[Token], in_unit_term: bool) -> TokenType:
        """
        Total classification of one word given its neighbours (whitespace
        skipped). `prev` is already classified; `nxt` is raw.
        """
        if word == CONVERSION_KEYWORD:
            if (prev is not None and prev.kind in _OPERAND_END
                    and nxt is not None and nxt.kind == _WORD_KIND
                    and nxt.text in self.registry):
                return TokenType.KEYWORD
            return TokenType.PROSE

        if word in self.registry and prev is not None:
            if prev.kind == TokenType.NUMBER or prev.keyword_is(CONVERSION_KEYWORD):
                return TokenType.UNIT
            if prev.kind in (TokenType.SLASH, TokenType.STAR) and in_unit_term:
                return TokenType.UNIT

        if word in CONSTANTS:
            return TokenType.IDENTIFIER
        if word in self.known:
            return TokenType.IDENTIFIER
        if (nxt is not None and nxt.kind == TokenType.ASSIGN
                and (prev is None or prev.kind == TokenType.PROSE)):
            return TokenType.IDENTIFIER
        return TokenType.PROSE

    def _classify(self, tokens: List[Token]) -> None:
        significant = [t for t in tokens if t.kind != TokenType.WHITESPACE]
        prev: Optional[Token] = None
        in_unit_term = False

        for i, tok in enumerate(significant):
            nxt = significant[i + 1] if i + 1 < len(significant) else None

            if tok.kind == _WORD_KIND and tok.value is None:
                tok.kind  = self.classify_word(tok.text, prev, nxt, in_unit_term)
                defn      = self.registry.lookup(tok.text) if tok.kind == TokenType.UNIT else None
                tok.value = defn.name if defn else tok.text
                # A number glued to a word that is not a unit is prose: "2nd".
                if (prev is not None and prev.kind == TokenType.NUMBER
                        and prev.span.end == tok.span.start
                        and tok.kind != TokenType.UNIT):
                    prev.kind, prev.value = TokenType.PROSE, prev.text
                    tok.kind = TokenType.PROSE

            in_unit_term = _continues_unit_term(tok, prev, in_unit_term)
            prev = tok


def _continues_unit_term(tok: Token, prev: Optional[Token], in_term: bool) -> bool:
    if tok.kind == TokenType.UNIT:
        return True
    if not in_term or prev is None:
        return False
    if tok.kind in (TokenType.CARET, TokenType.SLASH, TokenType.STAR):
        return True
    # exponent of the previous unit: `m^2`, `s^-1`
    if tok.kind in (TokenType.NUMBER, TokenType.MINUS):
        return prev.kind == TokenType.CARET or (
            tok.kind == TokenType.NUMBER and prev.kind == TokenType.MINUS)
    return False


def _choose_candidate(tokens: List[Token], text: str, line: int) -> Optional[Candidate]:
    """Longest run of non-prose tokens, counted without whitespace."""
    best: Optional[tuple] = None   # (count, start, end)
    i = 0
    while i < len(tokens):
        if not tokens[i].is_evaluable:
            i += 1
            continue
        start = i
        end   = i
        while end < len(tokens) and tokens[end].kind != TokenType.PROSE:
            end += 1
        # trim trailing whitespace
        stop = end
        while stop > start and tokens[stop - 1].kind == TokenType.WHITESPACE:
            stop -= 1
        run = [t for t in tokens[start:stop] if t.is_evaluable]
        if any(t.kind in _OPERANDS for t in run):
            if best is None or len(run) > best[0]:
                best = (len(run), start, stop)
        i = end

    if best is None:
        return None
    _, start, stop = best
    span = Span(line, tokens[start].span.start, tokens[stop - 1].span.end)
    return Candidate(start, stop, span, span.slice(text))


# ── Raw lexing ────────────────────────────────────────────────────────────────

class _LineLexer:
    """Splits a line into whitespace, numbers, words, operators and prose."""

    def __init__(self, text: str, line: int):
        self.text = text
        self.line = line
        self.pos  = 0

    def _peek(self, off: int = 0) -> str:
        idx = self.pos + off
        return self.text[idx] if idx < len(self.text) else "\0"

    def _token(self, kind: TokenType, start: int, value=None) -> Token:
        raw = self.text[start:self.pos]
        return Token(kind, raw, value, Span(self.line, start, self.pos))

    def lex(self) -> List[Token]:
        tokens: List[Token] = []
        while self.pos < len(self.text):
            ch    = self._peek()
            start = self.pos

            if ch.isspace():
                while self.pos < len(self.text) and self._peek().isspace():
                    self.pos += 1
                tokens.append(self._token(TokenType.WHITESPACE, start, " "))
                continue

            m = _NUMBER.match(self.text, self.pos)
            if m:
                self.pos = m.end()
                try:
                    value = Fraction(m.group().replace(",", ""))
                except ValueError:
                    # past the interpreter's int conversion limit
                    tokens.append(self._token(TokenType.PROSE, start, m.group()))
                    continue
                tokens.append(self._token(TokenType.NUMBER, start, value))
                continue

            m = _WORD.match(self.text, self.pos)
            if m:
                self.pos = m.end()
                # value stays None until the word is classified
                tokens.append(self._token(_WORD_KIND, start))
                continue

            if ch == "*" and self._peek(1) == "*":
                self.pos += 2
                tokens.append(self._token(TokenType.CARET, start, "^"))
                continue

            if ch in _SINGLE:
                self.pos += 1
                tokens.append(self._token(_SINGLE[ch], start, ch))
                continue

            self.pos += 1
            tokens.append(self._token(TokenType.PROSE, start, ch))
        return tokens


if __name__ == "__main__":
    scanner = Scanner(known={"subtotal", "tax_rate"})
    for text in ("The grand total comes to:",
                 "taxes = subtotal * tax_rate",
                 "Flour: 12 tbsp + 1 cup in tsps, sifted",
                 "it's 60 km/h on the 2nd road"):
        span = scanner.scan(text)
        print(repr(text))
        for tok in span.tokens:
            if tok.kind != TokenType.WHITESPACE:
                print("   ", tok, tok.style)
        print("  candidate:", span.candidate.text if span.candidate else None)
