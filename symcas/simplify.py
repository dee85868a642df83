"""
Local algebraic simplification.

A single bottom-up rewrite pass: children are simplified first, then one
rule per node kind produces a node that no rule rewrites again, so
``simplify(simplify(e)) == simplify(e)``. This is not a canonicalizer:
``x + y`` and ``y + x`` stay distinct.
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from symcas.expr import (
    ONE,
    ZERO,
    Equation,
    Expr,
    ExprKind,
    ExprLike,
    const,
    is_constant,
    is_one,
    is_zero,
    rebuild,
    to_expr,
)
from symcas.registry import OperatorRegistry, operator_key, resolve


def simplify(expr: ExprLike, registry: Optional[OperatorRegistry] = None) -> Expr:
    """Simplify ``expr``. Registered functions of constants are folded."""
    return _simplify(to_expr(expr), resolve(registry))


def simplify_equation(eq: Equation, registry: Optional[OperatorRegistry] = None) -> Equation:
    registry = resolve(registry)
    return Equation(_simplify(eq.lhs, registry), _simplify(eq.rhs, registry))


def _simplify(expr: Expr, registry: OperatorRegistry) -> Expr:
    if not expr.children:
        return expr
    children = tuple(_simplify(c, registry) for c in expr.children)
    rule = _RULES.get(expr.kind)
    if rule is not None:
        return rule(expr, children)
    return _fold_function(expr, children, registry)


def _add(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    terms: List[Expr] = []
    total = 0
    for c in children:
        for term in c.children if c.kind == ExprKind.ADD else (c,):
            if is_constant(term):
                total = total + term.value
            else:
                terms.append(term)
    if total != 0:
        terms.append(const(total))
    if not terms:
        return ZERO
    if len(terms) == 1:
        return terms[0]
    return rebuild(expr, tuple(terms))


def _mul(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    coeff = 1
    factors: List[Expr] = []
    stack = list(reversed(children))
    while stack:
        c = stack.pop()
        if c.kind == ExprKind.MUL:
            stack.extend(reversed(c.children))
        elif c.kind == ExprKind.NEG:
            coeff = -coeff
            stack.append(c.children[0])
        elif is_constant(c):
            coeff = coeff * c.value
        else:
            factors.append(c)
    if coeff == 0:
        return ZERO
    if not factors:
        return const(coeff)
    body = factors[0] if len(factors) == 1 else Expr(ExprKind.MUL, tuple(factors))
    if coeff == 1:
        return body
    if coeff == -1:
        return Expr(ExprKind.NEG, (body,))
    return Expr(ExprKind.MUL, (const(coeff),) + tuple(factors))


def _neg_of(a: Expr) -> Expr:
    if a.kind == ExprKind.NEG:
        return a.children[0]
    if is_constant(a):
        return ZERO if a.value == 0 else const(-a.value)
    if a.kind == ExprKind.MUL and is_constant(a.children[0]):
        return Expr(ExprKind.MUL, (const(-a.children[0].value),) + a.children[1:])
    return Expr(ExprKind.NEG, (a,))


def _neg(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    return _neg_of(children[0])


def _sub(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    a, b = children
    if is_constant(a) and is_constant(b):
        return const(a.value - b.value)
    if is_zero(b):
        return a
    if is_zero(a):
        return _neg_of(b)
    if a == b:
        return ZERO
    return rebuild(expr, children)


def _div(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    a, b = children
    if is_one(b):
        return a
    if is_constant(b) and b.value == -1:
        return _neg_of(a)
    if is_zero(a) and not is_zero(b):
        return ZERO
    if is_constant(a) and is_constant(b) and b.value != 0:
        if isinstance(a.value, int) and isinstance(b.value, int) and a.value % b.value == 0:
            return const(a.value // b.value)
        return const(a.value / b.value)
    return rebuild(expr, children)


def _is_integer(e: Expr) -> bool:
    if not is_constant(e):
        return False
    return isinstance(e.value, int) or float(e.value).is_integer()


def _pow_of(expr: Optional[Expr], a: Expr, b: Expr) -> Expr:
    if is_zero(b):
        return ONE
    if is_one(b):
        return a
    if is_one(a):
        return ONE
    if is_zero(a) and is_constant(b) and b.value > 0:
        return ZERO
    if is_constant(a) and is_constant(b):
        folded = _fold_power(a.value, b.value)
        if folded is not None:
            return const(folded)
    if a.kind == ExprKind.POW and _is_integer(a.children[1]) and _is_integer(b):
        return _pow_of(None, a.children[0], const(a.children[1].value * b.value))
    if expr is not None:
        return rebuild(expr, (a, b))
    return Expr(ExprKind.POW, (a, b))


def _fold_power(base, exponent):
    if isinstance(base, int) and isinstance(exponent, int) and exponent >= 0:
        return base**exponent
    if base == 0 and exponent < 0:
        return None
    try:
        value = float(base) ** float(exponent)
    except (OverflowError, ZeroDivisionError):
        return None
    if isinstance(value, complex) or not math.isfinite(value):
        return None
    return value


def _pow(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    return _pow_of(expr, *children)


def _differential(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    if is_constant(children[0]):
        return ZERO
    return rebuild(expr, children)


def _fold_function(expr: Expr, children: Tuple[Expr, ...], registry: OperatorRegistry) -> Expr:
    node = rebuild(expr, children)
    if not all(is_constant(c) for c in children):
        return node
    info = registry.lookup(operator_key(expr))
    if info is None or info.numeric is None:
        return node
    with np.errstate(all="ignore"):
        value = info.numeric(*(c.value for c in children))
    if np.iscomplexobj(value) or np.ndim(value) != 0:
        return node
    value = float(value)
    if not math.isfinite(value):
        return node
    return const(value)


_RULES: Dict[ExprKind, Callable[[Expr, Tuple[Expr, ...]], Expr]] = {
    ExprKind.ADD: _add,
    ExprKind.MUL: _mul,
    ExprKind.NEG: _neg,
    ExprKind.SUB: _sub,
    ExprKind.DIV: _div,
    ExprKind.POW: _pow,
    ExprKind.DIFFERENTIAL: _differential,
}
