"""
SymPy backend.

Converts Expr trees to SymPy, mainly for inspection and for checking
derivatives against an independent implementation. States become
applied undefined functions ``x(t)`` so SymPy differentiates them the
same way symcas does.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np
import sympy as sp

from symcas.calculators import SparseExprMatrix
from symcas.expr import Expr, ExprKind, Role, Symbol, to_expr

_FUNCTIONS = {
    ExprKind.SIN: sp.sin,
    ExprKind.COS: sp.cos,
    ExprKind.TAN: sp.tan,
    ExprKind.ASIN: sp.asin,
    ExprKind.ACOS: sp.acos,
    ExprKind.ATAN: sp.atan,
    ExprKind.SINH: sp.sinh,
    ExprKind.COSH: sp.cosh,
    ExprKind.TANH: sp.tanh,
    ExprKind.EXP: sp.exp,
    ExprKind.LOG: sp.log,
    ExprKind.SQRT: sp.sqrt,
    ExprKind.ABS: sp.Abs,
    ExprKind.ATAN2: sp.atan2,
}


def _symbol(s: Symbol, symbols: Dict[Symbol, sp.Basic]) -> sp.Basic:
    if s not in symbols:
        if s.role == Role.CONSTANT and s.value is not None:
            symbols[s] = sp.sympify(s.value)
        elif s.depends_on:
            symbols[s] = sp.Function(s.name, real=True)(*(_symbol(d, symbols) for d in s.depends_on))
        else:
            symbols[s] = sp.Symbol(s.name, real=True)
    return symbols[s]


def to_sympy(expr, symbols: Optional[Dict[Symbol, sp.Basic]] = None) -> sp.Basic:
    """
    Convert ``expr`` to SymPy.

    ``symbols`` maps symcas Symbols to SymPy objects. Missing entries are
    created and added to the mapping, so passing the same dict to several
    calls shares symbols between the results.
    """
    symbols = {} if symbols is None else symbols

    def convert(e: Expr) -> sp.Basic:
        kind = e.kind
        if kind == ExprKind.CONSTANT:
            return sp.sympify(e.value)
        if kind == ExprKind.SYMBOL:
            return _symbol(e.symbol, symbols)
        if kind == ExprKind.DIFFERENTIAL:
            return sp.Derivative(convert(e.children[0]), (_symbol(e.symbol, symbols), e.order))
        args = [convert(c) for c in e.children]
        if kind == ExprKind.ADD:
            return sp.Add(*args)
        if kind == ExprKind.MUL:
            return sp.Mul(*args)
        if kind == ExprKind.SUB:
            return args[0] - args[1]
        if kind == ExprKind.DIV:
            return args[0] / args[1]
        if kind == ExprKind.POW:
            return args[0] ** args[1]
        if kind == ExprKind.NEG:
            return -args[0]
        if kind == ExprKind.CALL:
            return sp.Function(e.name)(*args)
        return _FUNCTIONS[kind](*args)

    return convert(to_expr(expr))


def matrix_to_sympy(matrix, symbols: Optional[Dict[Symbol, sp.Basic]] = None) -> sp.Matrix:
    """Convert a 1-D or 2-D object array of Expr (or a SparseExprMatrix) to ``sp.Matrix``."""
    symbols = {} if symbols is None else symbols
    if isinstance(matrix, SparseExprMatrix):
        matrix = matrix.to_dense()
    array = np.asarray(matrix, dtype=object)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    return sp.Matrix(array.shape[0], array.shape[1], lambda i, j: to_sympy(array[i, j], symbols))
