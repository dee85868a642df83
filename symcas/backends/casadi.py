"""
CasADi backend.

Converts Expr trees to CasADi SX through a dispatch table on ExprKind and
wraps vector outputs in a ``casadi.Function`` so generated systems can be
handed to CasADi integrators and optimizers.
"""

from __future__ import annotations

import functools
import operator
from typing import Any, Dict, List, Mapping, Sequence, Union

import casadi as ca
import numpy as np

from symcas.calculators import SparseExprMatrix
from symcas.errors import ShapeMismatch
from symcas.expr import Expr, ExprKind, Role, Symbol, to_expr


def _make_expr_handlers():
    """Dispatch table from ExprKind to CasADi construction."""
    unary_math = {
        ExprKind.NEG: lambda c, e: -c(e.children[0]),
        ExprKind.SIN: lambda c, e: ca.sin(c(e.children[0])),
        ExprKind.COS: lambda c, e: ca.cos(c(e.children[0])),
        ExprKind.TAN: lambda c, e: ca.tan(c(e.children[0])),
        ExprKind.ASIN: lambda c, e: ca.asin(c(e.children[0])),
        ExprKind.ACOS: lambda c, e: ca.acos(c(e.children[0])),
        ExprKind.ATAN: lambda c, e: ca.atan(c(e.children[0])),
        ExprKind.SINH: lambda c, e: ca.sinh(c(e.children[0])),
        ExprKind.COSH: lambda c, e: ca.cosh(c(e.children[0])),
        ExprKind.TANH: lambda c, e: ca.tanh(c(e.children[0])),
        ExprKind.EXP: lambda c, e: ca.exp(c(e.children[0])),
        ExprKind.LOG: lambda c, e: ca.log(c(e.children[0])),
        ExprKind.SQRT: lambda c, e: ca.sqrt(c(e.children[0])),
        ExprKind.ABS: lambda c, e: ca.fabs(c(e.children[0])),
    }

    # ADD and MUL are n-ary
    arithmetic = {
        ExprKind.ADD: lambda c, e: functools.reduce(operator.add, [c(x) for x in e.children]),
        ExprKind.MUL: lambda c, e: functools.reduce(operator.mul, [c(x) for x in e.children]),
        ExprKind.SUB: lambda c, e: c(e.children[0]) - c(e.children[1]),
        ExprKind.DIV: lambda c, e: c(e.children[0]) / c(e.children[1]),
        ExprKind.POW: lambda c, e: c(e.children[0]) ** c(e.children[1]),
        ExprKind.ATAN2: lambda c, e: ca.atan2(c(e.children[0]), c(e.children[1])),
    }

    return {**unary_math, **arithmetic}


_EXPR_HANDLERS = _make_expr_handlers()


def to_casadi(expr: Any, symbols: Mapping[Any, Any]) -> ca.SX:
    """
    Convert ``expr`` to CasADi.

    Args:
        expr: Expression to convert
        symbols: CasADi value for every leaf (Symbol or derivative leaf)

    Raises:
        ShapeMismatch: A leaf has no entry in ``symbols``
        NotImplementedError: CALL nodes and unexpanded derivatives
    """
    table: Dict[Expr, Any] = {to_expr(k): v for k, v in symbols.items()}

    def convert(e: Expr) -> Any:
        hit = table.get(e)
        if hit is not None:
            return hit
        if e.kind == ExprKind.CONSTANT:
            return ca.SX(float(e.value))
        if e.kind == ExprKind.SYMBOL:
            if e.symbol.role == Role.CONSTANT and e.symbol.value is not None:
                return ca.SX(float(e.symbol.value))
            raise ShapeMismatch("no CasADi value for symbol", symbol=e.symbol.name)
        handler = _EXPR_HANDLERS.get(e.kind)
        if handler is None:
            raise NotImplementedError(f"Unsupported expression kind for CasADi: {e.kind}")
        return handler(convert, e)

    return ca.SX(convert(to_expr(expr)))


def casadi_function(
    name: str,
    output: Any,
    *groups: Union[Symbol, Expr, Sequence[Union[Symbol, Expr]]],
    arg_names: Sequence[str] = (),
) -> ca.Function:
    """
    Build a ``casadi.Function`` with one SX input per argument group.

    Vector groups become column vectors, a single Symbol a scalar input.
    ``output`` may be an Expr, a sequence of Expr, a 2-D object array or a
    SparseExprMatrix.
    """
    names = list(arg_names) or [f"arg{k}" for k in range(len(groups))]
    if len(names) != len(groups):
        raise ShapeMismatch("one name per argument group", names=len(names), groups=len(groups))
    inputs: List[ca.SX] = []
    symbols: Dict[Expr, Any] = {}
    for arg, group in zip(names, groups):
        if isinstance(group, (Symbol, Expr)):
            x = ca.SX.sym(arg)
            symbols[to_expr(group)] = x
        else:
            leaves = [to_expr(g) for g in group]
            x = ca.SX.sym(arg, len(leaves))
            for i, leaf in enumerate(leaves):
                symbols[leaf] = x[i]
        inputs.append(x)

    if isinstance(output, SparseExprMatrix):
        output = output.to_dense()
    if isinstance(output, (list, tuple)):
        out = ca.vertcat(*[to_casadi(e, symbols) for e in output]) if output else ca.SX(0, 1)
    elif isinstance(output, np.ndarray) and output.ndim == 2:
        m, n = output.shape
        out = ca.SX(m, n)
        for i in range(m):
            for j in range(n):
                out[i, j] = to_casadi(output[i, j], symbols)
    elif isinstance(output, np.ndarray):
        out = ca.vertcat(*[to_casadi(e, symbols) for e in output])
    else:
        out = to_casadi(output, symbols)
    return ca.Function(name, inputs, [out], names, ["out"])
