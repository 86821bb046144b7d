# tally_evaluator.py — Tree evaluation for Tally
#
# Walks an expression tree with an explicit isinstance chain over the closed
# node set and applies the Value & Unit algebra. Nothing here mutates the
# Environment: an Assignment evaluates to its right-hand side and the
# Document decides whether to bind it.

from __future__ import annotations
from decimal import localcontext
from typing import Optional

from tally_ast import (
    Assignment, BinaryOp, ConversionTo, ExpressionNode, Literal, UnaryOp,
    VariableRef,
)
from tally_diagnostic import TallyError, UndefinedVariable
from tally_env import Environment
from tally_units import UnitRegistry
import tally_value as algebra
from tally_value import DEFAULT_PRECISION, Value


_BINARY = {
    "+": algebra.add,
    "-": algebra.sub,
    "*": algebra.mul,
    "/": algebra.div,
}


class Evaluator:
    def __init__(self, env: Environment, line_index: int,
                 registry: Optional[UnitRegistry] = None,
                 precision: int = DEFAULT_PRECISION):
        self.env        = env
        self.line_index = line_index
        self.registry   = registry or UnitRegistry.default()
        self.precision  = precision

    def evaluate(self, node: ExpressionNode) -> Value:
        with localcontext() as ctx:
            ctx.prec = self.precision
            return self._eval(node)

    def _eval(self, node: ExpressionNode) -> Value:
        try:
            return self._eval_inner(node)
        except TallyError as e:
            # innermost node that failed owns the span
            if e.span is None:
                e.span = node.span
            raise

    def _eval_inner(self, node: ExpressionNode) -> Value:
        if isinstance(node, Literal):
            return Value.of(node.magnitude, node.unit)

        if isinstance(node, VariableRef):
            value = self.env.lookup(node.name, self.line_index)
            if value is None:
                raise UndefinedVariable(node.name, node.span)
            return value

        if isinstance(node, UnaryOp):
            operand = self._eval(node.operand)
            if node.op == "-":
                return algebra.negate(operand)
            if node.op == "%":
                return algebra.percent(operand)
            raise TypeError(f"unknown unary operator {node.op!r}")

        if isinstance(node, BinaryOp):
            left  = self._eval(node.left)
            right = self._eval(node.right)
            if node.op == "^":
                return algebra.pow(left, right, self.precision)
            fn = _BINARY.get(node.op)
            if fn is None:
                raise TypeError(f"unknown binary operator {node.op!r}")
            return fn(left, right)

        if isinstance(node, ConversionTo):
            return algebra.convert(self._eval(node.expr), node.target, self.registry)

        if isinstance(node, Assignment):
            return self._eval(node.expr)

        raise TypeError(f"not an expression node: {node!r}")


def evaluate(node: ExpressionNode, env: Environment, line_index: int,
             registry: Optional[UnitRegistry] = None,
             precision: int = DEFAULT_PRECISION) -> Value:
    """Evaluate one line's tree against the bindings visible to that line."""
    return Evaluator(env, line_index, registry, precision).evaluate(node)
