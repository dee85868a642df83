"""
Exact symbolic differentiation.

``differentiate`` applies the chain rule through the operator registry.
``expand_derivatives`` eliminates unexpanded DIFFERENTIAL nodes whose
operand is not a plain symbol, iterating bottom-up passes to a fixpoint.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from symcas.errors import NonTerminating
from symcas.expr import (
    ONE,
    ZERO,
    Expr,
    ExprKind,
    ExprLike,
    Symbol,
    add,
    differential,
    is_atomic_derivative,
    is_one,
    is_zero,
    leaf_depends,
    mul,
    rebuild,
    to_expr,
)
from symcas.logging import logger
from symcas.registry import OperatorRegistry, operator_key, resolve
from symcas.simplify import simplify as _simplify

DEFAULT_MAX_ITERATIONS = 100


def differentiate(expr: ExprLike, wrt: Symbol, registry: Optional[OperatorRegistry] = None) -> Expr:
    """
    First derivative of ``expr`` with respect to ``wrt``.

    Symbols that depend on ``wrt`` (states of time, say) differentiate to an
    unexpanded ``D_wrt(symbol)`` leaf. The result is not simplified.

    Raises:
        UnregisteredDerivative: An operator without a rule has an argument
            that depends on ``wrt``
    """
    return _diff(to_expr(expr), wrt, resolve(registry))


def _diff(expr: Expr, wrt: Symbol, registry: OperatorRegistry) -> Expr:
    kind = expr.kind
    if kind == ExprKind.CONSTANT:
        return ZERO
    if kind == ExprKind.SYMBOL:
        if expr.symbol == wrt:
            return ONE
        if expr.symbol.depends(wrt):
            return differential(expr, wrt)
        return ZERO
    if kind == ExprKind.DIFFERENTIAL:
        if is_atomic_derivative(expr):
            if leaf_depends(expr, wrt):
                return differential(expr, wrt)
            return ZERO
        return _diff(expand_derivatives(expr, registry=registry), wrt, registry)

    key = operator_key(expr)
    terms = []
    for i, arg in enumerate(expr.children):
        inner = _diff(arg, wrt, registry)
        if is_zero(inner):
            continue
        outer = registry.partial(key, expr.children, i)
        if is_one(inner):
            terms.append(outer)
        elif is_one(outer):
            terms.append(inner)
        else:
            terms.append(mul(outer, inner))
    return add(*terms)


def _has_composite(expr: Expr) -> bool:
    if expr.kind == ExprKind.DIFFERENTIAL and not is_atomic_derivative(expr):
        return True
    return any(_has_composite(c) for c in expr.children)


def _expand_pass(expr: Expr, registry: OperatorRegistry) -> Expr:
    if not expr.children:
        return expr
    children = tuple(_expand_pass(c, registry) for c in expr.children)
    node = rebuild(expr, children)
    if expr.kind != ExprKind.DIFFERENTIAL or is_atomic_derivative(node):
        return node
    result = node.children[0]
    for _ in range(node.order):
        result = _diff(result, node.symbol, registry)
    return result


def expand_derivatives(
    expr: ExprLike,
    simplify: bool = False,
    registry: Optional[OperatorRegistry] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Expr:
    """
    Expand every composite DIFFERENTIAL node in ``expr``.

    Atomic differentials ``D^n(symbol)`` remain as derivative leaves.

    Args:
        expr: Expression to expand
        simplify: Run the simplifier on the result
        registry: Operator registry, builtin if None
        max_iterations: Pass budget before giving up

    Raises:
        NonTerminating: A composite differential survives ``max_iterations`` passes
    """
    registry = resolve(registry)
    result = to_expr(expr)
    iteration = 0
    while _has_composite(result):
        if iteration >= max_iterations:
            raise NonTerminating(expression=result, iterations=iteration)
        result = _expand_pass(result, registry)
        iteration += 1
        logger.debug("expand_derivatives pass %d: %s", iteration, result)
    if simplify:
        result = _simplify(result, registry)
    return result


def derivative(
    expr: ExprLike,
    wrt: Symbol,
    order: int = 1,
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> Expr:
    """``order``-th derivative of ``expr`` in ``wrt``, expanded."""
    result = to_expr(expr)
    for _ in range(order):
        result = expand_derivatives(differentiate(result, wrt, registry), simplify=simplify, registry=registry)
    return result


def gradient(
    expr: ExprLike,
    variables: Sequence[Symbol],
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> List[Expr]:
    """First derivatives of ``expr`` with respect to each of ``variables``."""
    return [derivative(expr, v, 1, simplify, registry) for v in variables]
