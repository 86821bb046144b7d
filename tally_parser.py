# tally_parser.py — Expression Parser for Tally
#
# Pratt parser over the candidate tokens of one line. Produces a
# span-annotated tree (tally_ast.py) and reports problems through a
# DiagnosticBag before raising ParseError.
#
# Precedence, loosest first:
#   assignment (start of line only)  name = ...
#   conversion                       ... in <unit>
#   additive                         + -
#   multiplicative                   * /
#   power (right-assoc)              ^ **
#   unary minus                      -x
#   postfix percent                  x%
#   primary                          number [unit], name, ( ... )

from __future__ import annotations
from dataclasses import replace
from typing import List, Optional

from tally_ast import (
    Assignment, BinaryOp, ConversionTo, ExpressionNode, Literal, UnaryOp,
    VariableRef,
)
from tally_diagnostic import DiagnosticBag, ParseError, UnknownUnit
from tally_token import Token, TokenType, Span, CONVERSION_KEYWORD
from tally_units import UnitRegistry
from tally_value import CONSTANTS


class Parser:
    def __init__(self, tokens: List[Token], registry: Optional[UnitRegistry] = None,
                 source: str = ""):
        self.tokens   = [t for t in tokens if t.is_evaluable]
        end = tokens[-1].span if tokens else Span.dummy()
        self.tokens.append(Token(TokenType.EOF, "", None,
                                 Span(end.line, end.end, end.end)))
        self.pos      = 0
        self.registry = registry or UnitRegistry.default()
        self.diag     = DiagnosticBag(source)

    # ── Navigation ────────────────────────────────────────────────────────────

    def _peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]  # EOF token
        return self.tokens[idx]

    def _advance(self) -> Token:
        tok = self._peek()
        if tok.kind != TokenType.EOF:
            self.pos += 1
        return tok

    def _check(self, kind: TokenType, offset: int = 0) -> bool:
        return self._peek(offset).kind == kind

    def _match(self, kind: TokenType) -> Optional[Token]:
        if self._check(kind):
            return self._advance()
        return None

    def _expect(self, kind: TokenType, code: str, msg: str) -> Token:
        if not self._check(kind):
            self._fail(code, msg, self._peek().span)
        return self._advance()

    def _fail(self, code: str, msg: str, span: Span):
        self.diag.error(code, msg, span)
        raise ParseError(msg, span, code=code)

    @staticmethod
    def _describe(tok: Token) -> str:
        return "end of expression" if tok.kind == TokenType.EOF else f"`{tok.text}`"

    # ── Entry point ───────────────────────────────────────────────────────────

    def parse(self) -> ExpressionNode:
        """Parse the whole token list as one line; raises ParseError."""
        if self._check(TokenType.IDENTIFIER) and self._check(TokenType.ASSIGN, 1):
            node = self._parse_assignment()
        elif self._check(TokenType.ASSIGN, 1):
            tok = self._peek()
            self._fail("E0013",
                f"cannot assign to {self._describe(tok)}", tok.span)
        else:
            node = self._parse_conversion()

        tok = self._peek()
        if tok.kind == TokenType.ASSIGN:
            self._fail("E0015", "assignment is only allowed at the start of a line",
                       tok.span)
        if tok.kind == TokenType.RPAREN:
            self._fail("E0012", "unmatched `)`", tok.span)
        if tok.kind != TokenType.EOF:
            self._fail("E0010", f"unexpected {self._describe(tok)}", tok.span)
        return node

    def _parse_assignment(self) -> Assignment:
        target = self._advance()
        if target.value in CONSTANTS:
            self._fail("E0013", f"cannot assign to constant `{target.text}`", target.span)
        if self.registry.lookup(target.text) is not None:
            self._fail("E0013", f"cannot assign to unit `{target.text}`", target.span)
        self._advance()  # =
        expr = self._parse_conversion()
        return Assignment(target.text, expr, span=target.span.merge(expr.span))

    # ── Expressions (Pratt parser) ────────────────────────────────────────────

    _PREC: dict = {
        "+": 1, "-": 1,
        "*": 2, "/": 2,
    }

    def _parse_conversion(self) -> ExpressionNode:
        expr = self._parse_binary(0)
        while self._peek().keyword_is(CONVERSION_KEYWORD):
            kw = self._advance()
            if not self._check(TokenType.UNIT):
                self._fail("E0014",
                    f"expected a unit after `in`, found {self._describe(self._peek())}",
                    kw.span)
            target, span = self._parse_unit_term()
            expr = ConversionTo(expr, target, span=expr.span.merge(span))
        return expr

    def _parse_binary(self, min_prec: int) -> ExpressionNode:
        left = self._parse_power()
        while True:
            tok  = self._peek()
            prec = None
            if tok.kind in (TokenType.PLUS, TokenType.MINUS,
                            TokenType.STAR, TokenType.SLASH):
                prec = self._PREC.get(tok.value)
            if prec is None or prec <= min_prec:
                break
            self._advance()
            right = self._parse_binary(prec)
            left  = BinaryOp(left, tok.value, right, span=left.span.merge(right.span))
        return left

    def _parse_power(self) -> ExpressionNode:
        base = self._parse_unary()
        if self._check(TokenType.CARET):
            self._advance()
            exp = self._parse_power()
            return BinaryOp(base, "^", exp, span=base.span.merge(exp.span))
        return base

    def _parse_unary(self) -> ExpressionNode:
        if self._check(TokenType.MINUS):
            tok = self._advance()
            operand = self._parse_unary()
            return UnaryOp("-", operand, span=tok.span.merge(operand.span))
        if self._check(TokenType.PLUS):
            self._advance()
            return self._parse_unary()
        return self._parse_postfix()

    def _parse_postfix(self) -> ExpressionNode:
        expr = self._parse_primary()
        while self._check(TokenType.PERCENT):
            tok  = self._advance()
            expr = UnaryOp("%", expr, span=expr.span.merge(tok.span))
        return expr

    def _parse_primary(self) -> ExpressionNode:
        tok = self._peek()

        if tok.kind == TokenType.NUMBER:
            self._advance()
            if self._check(TokenType.UNIT):
                unit, span = self._parse_unit_term()
                return Literal(tok.value, unit, span=tok.span.merge(span))
            return Literal(tok.value, span=tok.span)

        if tok.kind == TokenType.IDENTIFIER:
            self._advance()
            return VariableRef(tok.text, span=tok.span)

        if tok.kind == TokenType.LPAREN:
            self._advance()
            expr = self._parse_conversion()
            close = self._expect(TokenType.RPAREN, "E0012",
                                 "expected `)` to close `(`")
            return _respan(expr, tok.span.merge(close.span))

        if tok.kind == TokenType.RPAREN:
            self._fail("E0012", "unmatched `)`", tok.span)
        self._fail("E0011", f"expected an expression, found {self._describe(tok)}",
                   tok.span)

    # ── Units ─────────────────────────────────────────────────────────────────

    def _parse_unit_term(self):
        """
        unit_term   := unit_factor (('*' | '/') unit_factor)*
        unit_factor := UNIT ('^' '-'? integer)?
        An operator is only taken when a unit follows it, so `2 m * 3 m`
        stays a product of two quantities.
        """
        unit, span = self._parse_unit_factor()
        while (self._check(TokenType.STAR) or self._check(TokenType.SLASH)) \
                and self._check(TokenType.UNIT, 1):
            op = self._advance()
            factor, fspan = self._parse_unit_factor()
            unit = unit * factor if op.kind == TokenType.STAR else unit / factor
            span = span.merge(fspan)
        return unit, span

    def _parse_unit_factor(self):
        tok = self._advance()
        try:
            unit = self.registry.unit(tok.value)
        except UnknownUnit as e:
            self._fail("E0010", e.message, tok.span)
        span = tok.span
        if self._check(TokenType.CARET):
            sign = 1
            ahead = 1
            if self._check(TokenType.MINUS, 1):
                sign, ahead = -1, 2
            num = self._peek(ahead)
            if num.kind == TokenType.NUMBER and num.value.denominator == 1 \
                    and num.value != 0:
                for _ in range(ahead + 1):
                    self._advance()
                unit = unit ** (sign * int(num.value))
                span = span.merge(num.span)
        return unit, span


def _respan(node: ExpressionNode, span: Span) -> ExpressionNode:
    """Same node, widened to cover its parentheses."""
    return replace(node, span=span)


if __name__ == "__main__":
    from tally_scanner import Scanner

    scanner = Scanner(known={"subtotal", "tax_rate"})
    for text in ("100 * (7 / 8)",
                 "12 tbsp + 1 cup in tsps",
                 "taxes = subtotal * tax_rate",
                 "-2^2",
                 "60 km/h in m/s"):
        span = scanner.scan(text)
        print(f"{text:30} {Parser(span.expression_tokens()).parse()}")
