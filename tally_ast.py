# tally_ast.py — Span-annotated expression tree for Tally
#
# The tree is a closed set of frozen node classes; ExpressionNode names the
# union and every consumer (evaluator, printer, reference collector) handles
# each member explicitly and raises on anything else.
#
# Each concrete @dataclass declares `span: Optional[Span] = None` as its LAST
# field so the parser can pass span=... as a keyword arg.

from __future__ import annotations
from dataclasses import dataclass
from fractions import Fraction
from typing import Iterator, Optional, Set, Union

from tally_token import Span
from tally_units import Unit


class Node:
    """Base for all expression nodes."""
    span: Optional[Span] = None


@dataclass(frozen=True)
class Literal(Node):
    magnitude: Fraction
    unit:      Optional[Unit] = None
    span:      Optional[Span] = None

    def __repr__(self) -> str:
        if self.unit:
            return f"Literal({self.magnitude}, {self.unit.name})"
        return f"Literal({self.magnitude})"


@dataclass(frozen=True)
class VariableRef(Node):
    name: str
    span: Optional[Span] = None

    def __repr__(self) -> str:
        return f"VariableRef({self.name!r})"


@dataclass(frozen=True)
class UnaryOp(Node):
    """`-x` or postfix `x%`."""
    op:      str
    operand: "ExpressionNode"
    span:    Optional[Span] = None

    def __repr__(self) -> str:
        return f"UnaryOp({self.op!r}, {self.operand})"


@dataclass(frozen=True)
class BinaryOp(Node):
    left:  "ExpressionNode"
    op:    str
    right: "ExpressionNode"
    span:  Optional[Span] = None

    def __repr__(self) -> str:
        return f"BinaryOp({self.left}, {self.op!r}, {self.right})"


@dataclass(frozen=True)
class ConversionTo(Node):
    """`expr in unit`"""
    expr:   "ExpressionNode"
    target: Unit
    span:   Optional[Span] = None

    def __repr__(self) -> str:
        return f"ConversionTo({self.expr}, {self.target.name})"


@dataclass(frozen=True)
class Assignment(Node):
    """`name = expr`, only ever at the root of a tree."""
    name: str
    expr: "ExpressionNode"
    span: Optional[Span] = None

    def __repr__(self) -> str:
        return f"Assignment({self.name!r}, {self.expr})"


ExpressionNode = Union[Literal, VariableRef, UnaryOp, BinaryOp, ConversionTo, Assignment]


def walk(node: ExpressionNode) -> Iterator[ExpressionNode]:
    """Pre-order traversal."""
    yield node
    if isinstance(node, (Literal, VariableRef)):
        return
    if isinstance(node, UnaryOp):
        yield from walk(node.operand)
    elif isinstance(node, BinaryOp):
        yield from walk(node.left)
        yield from walk(node.right)
    elif isinstance(node, (ConversionTo, Assignment)):
        yield from walk(node.expr)
    else:
        raise TypeError(f"not an expression node: {node!r}")


def references(node: ExpressionNode) -> Set[str]:
    """Names of every variable or constant the tree reads."""
    return {n.name for n in walk(node) if isinstance(n, VariableRef)}
