"""
Expression tree representation for symcas.

This module contains the Symbol, Expr and Equation records and the explicit
constructors used to build trees. Trees are immutable: every transformation
returns a new tree and shares unchanged subtrees with its input.

Expressions are built with explicit calls only::

    t = independent("t")
    x = state("x", t)
    k = parameter("k")
    rhs = neg(mul(k, x))              # -(k * x)
    eq = equation(differential(x, t), rhs)

Structural equality is syntactic: ``add(x, y) != add(y, x)``. Run both sides
through ``symcas.simplify`` before comparing when a normal form is wanted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

import numpy as np

Number = Union[int, float]


class Role(Enum):
    """Role of a symbol in an equation system."""

    INDEPENDENT = auto()  # Independent variable, usually time
    STATE = auto()  # Dependent variable (differential or algebraic)
    PARAMETER = auto()  # Constant during a solve, passed in by the caller
    CONSTANT = auto()  # Named numeric constant, rendered as its value
    INTERNAL = auto()  # Created by symcas itself, never equal to a user symbol


@dataclass(frozen=True)
class Symbol:
    """
    Named atomic quantity.

    States carry the symbols they depend on (normally the independent
    variable) in ``depends_on``. ``origin`` is only set on auxiliary states
    created by order lowering and records ``(base, iv, order)``, which makes
    auxiliary identity injective independently of the display name.
    """

    name: str
    role: Role = Role.STATE
    depends_on: Tuple["Symbol", ...] = ()
    value: Optional[Number] = None
    origin: Optional[Tuple["Symbol", "Symbol", int]] = None

    def __repr__(self) -> str:
        return self.name

    def depends(self, other: "Symbol") -> bool:
        """True if this symbol depends on ``other``, directly or transitively."""
        for dep in self.depends_on:
            if dep == other or dep.depends(other):
                return True
        return False


class ExprKind(Enum):
    """Kinds of expression nodes."""

    # Leaf nodes
    SYMBOL = auto()  # Reference to a Symbol
    CONSTANT = auto()  # Numeric constant

    # Derivative operator: d^order(child)/d(symbol)^order
    DIFFERENTIAL = auto()

    # Arithmetic
    ADD = auto()  # n-ary sum
    MUL = auto()  # n-ary product
    SUB = auto()  # x - y
    DIV = auto()  # x / y
    POW = auto()  # x ** y
    NEG = auto()  # -x

    # Math functions
    SIN = auto()
    COS = auto()
    TAN = auto()
    ASIN = auto()
    ACOS = auto()
    ATAN = auto()
    SINH = auto()
    COSH = auto()
    TANH = auto()
    EXP = auto()
    LOG = auto()
    SQRT = auto()
    ABS = auto()
    ATAN2 = auto()

    # User-registered function, looked up by Expr.name
    CALL = auto()


LEAF_KINDS = frozenset({ExprKind.SYMBOL, ExprKind.CONSTANT})

_INFIX = {
    ExprKind.ADD: " + ",
    ExprKind.MUL: " * ",
    ExprKind.SUB: " - ",
    ExprKind.DIV: " / ",
    ExprKind.POW: " ** ",
}


@dataclass(frozen=True)
class Expr:
    """
    Immutable expression tree node.

    - SYMBOL: ``symbol`` is set.
    - CONSTANT: ``value`` is set.
    - DIFFERENTIAL: one child (the operand), ``symbol`` is the
      differentiation variable and ``order`` the derivative order.
    - CALL: ``name`` is the registered function name.
    - everything else: operator kind plus ordered ``children``.
    """

    kind: ExprKind
    children: Tuple["Expr", ...] = ()
    name: Optional[str] = None
    value: Optional[Number] = None
    symbol: Optional[Symbol] = None
    order: int = 0
    _hash: int = field(default=0, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.kind == ExprKind.SYMBOL and self.symbol is None:
            raise ValueError("SYMBOL node requires a symbol")
        if self.kind == ExprKind.CONSTANT and self.value is None:
            raise ValueError("CONSTANT node requires a value")
        if self.kind == ExprKind.DIFFERENTIAL:
            if self.symbol is None or len(self.children) != 1 or self.order < 1:
                raise ValueError("DIFFERENTIAL node requires one operand, a Symbol and order >= 1")
        if self.kind == ExprKind.CALL and not self.name:
            raise ValueError("CALL node requires a function name")
        object.__setattr__(
            self,
            "_hash",
            hash((self.kind, self.children, self.name, self.value, self.symbol, self.order)),
        )

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        kind = self.kind
        if kind == ExprKind.SYMBOL:
            return self.symbol.name
        if kind == ExprKind.CONSTANT:
            return f"{self.value}"
        if kind == ExprKind.DIFFERENTIAL:
            exponent = "" if self.order == 1 else f"^{self.order}"
            return f"D[{self.symbol.name}]{exponent}({self.children[0]})"
        if kind in _INFIX:
            return "(" + _INFIX[kind].join(repr(c) for c in self.children) + ")"
        if kind == ExprKind.NEG:
            return f"(-{self.children[0]})"
        args = ", ".join(repr(c) for c in self.children)
        if kind == ExprKind.CALL:
            return f"{self.name}({args})"
        return f"{kind.name.lower()}({args})"


ExprLike = Union[Expr, Symbol, int, float, np.number]


@dataclass(frozen=True)
class Equation:
    """Equality ``lhs ~ rhs``. Not an assignment."""

    lhs: Expr
    rhs: Expr

    def __repr__(self) -> str:
        return f"{self.lhs} ~ {self.rhs}"


# =============================================================================
# Constructors
# =============================================================================


def independent(name: str) -> Symbol:
    """Independent variable symbol."""
    return Symbol(name, Role.INDEPENDENT)


def state(name: str, *depends_on: Symbol) -> Symbol:
    """State symbol depending on the given independent variables."""
    return Symbol(name, Role.STATE, tuple(depends_on))


def parameter(name: str) -> Symbol:
    """Parameter symbol."""
    return Symbol(name, Role.PARAMETER)


def constant(name: str, value: Number) -> Symbol:
    """Named numeric constant."""
    return Symbol(name, Role.CONSTANT, value=value)


def to_expr(x: Any) -> Expr:
    """Convert an Expr, Symbol or real number to Expr."""
    if isinstance(x, Expr):
        return x
    if isinstance(x, Symbol):
        return Expr(ExprKind.SYMBOL, symbol=x)
    if isinstance(x, np.generic) and np.isrealobj(x):
        x = x.item()
    if isinstance(x, bool):
        raise TypeError("Booleans are not numeric constants")
    if isinstance(x, (int, float)):
        return Expr(ExprKind.CONSTANT, value=x)
    raise TypeError(f"Cannot convert {type(x)} to Expr")


def const(value: Number) -> Expr:
    """Numeric constant leaf."""
    return to_expr(value)


def sym(symbol: Symbol) -> Expr:
    """Symbol leaf."""
    return Expr(ExprKind.SYMBOL, symbol=symbol)


ZERO = const(0)
ONE = const(1)


def _nary(kind: ExprKind, args: Tuple[Any, ...], empty: Expr) -> Expr:
    if not args:
        return empty
    if len(args) == 1:
        return to_expr(args[0])
    return Expr(kind, tuple(to_expr(a) for a in args))


def add(*args: ExprLike) -> Expr:
    """n-ary sum. ``add()`` is 0 and ``add(x)`` is ``x``."""
    return _nary(ExprKind.ADD, args, ZERO)


def mul(*args: ExprLike) -> Expr:
    """n-ary product. ``mul()`` is 1 and ``mul(x)`` is ``x``."""
    return _nary(ExprKind.MUL, args, ONE)


def sub(a: ExprLike, b: ExprLike) -> Expr:
    return Expr(ExprKind.SUB, (to_expr(a), to_expr(b)))


def div(a: ExprLike, b: ExprLike) -> Expr:
    return Expr(ExprKind.DIV, (to_expr(a), to_expr(b)))


def power(a: ExprLike, b: ExprLike) -> Expr:
    return Expr(ExprKind.POW, (to_expr(a), to_expr(b)))


def neg(a: ExprLike) -> Expr:
    return Expr(ExprKind.NEG, (to_expr(a),))


def _unary(kind: ExprKind):
    def build(a: ExprLike) -> Expr:
        return Expr(kind, (to_expr(a),))

    build.__name__ = kind.name.lower()
    build.__doc__ = f"{kind.name.lower()}(a)"
    return build


sin = _unary(ExprKind.SIN)
cos = _unary(ExprKind.COS)
tan = _unary(ExprKind.TAN)
asin = _unary(ExprKind.ASIN)
acos = _unary(ExprKind.ACOS)
atan = _unary(ExprKind.ATAN)
sinh = _unary(ExprKind.SINH)
cosh = _unary(ExprKind.COSH)
tanh = _unary(ExprKind.TANH)
exp = _unary(ExprKind.EXP)
log = _unary(ExprKind.LOG)
sqrt = _unary(ExprKind.SQRT)
fabs = _unary(ExprKind.ABS)


def atan2(y: ExprLike, x: ExprLike) -> Expr:
    return Expr(ExprKind.ATAN2, (to_expr(y), to_expr(x)))


def call(name: str, *args: ExprLike) -> Expr:
    """Application of a user-registered function."""
    return Expr(ExprKind.CALL, tuple(to_expr(a) for a in args), name=name)


def differential(operand: ExprLike, wrt: Symbol, order: int = 1) -> Expr:
    """
    Unexpanded derivative ``d^order(operand)/d(wrt)^order``.

    Nested differentials in the same variable are composed, so
    ``differential(differential(x, t), t)`` is ``differential(x, t, 2)``.
    """
    operand = to_expr(operand)
    if order < 0:
        raise ValueError(f"Derivative order must be >= 0, got {order}")
    if order == 0:
        return operand
    if operand.kind == ExprKind.DIFFERENTIAL and operand.symbol == wrt:
        return Expr(ExprKind.DIFFERENTIAL, operand.children, symbol=wrt, order=operand.order + order)
    return Expr(ExprKind.DIFFERENTIAL, (operand,), symbol=wrt, order=order)


def equation(lhs: ExprLike, rhs: ExprLike) -> Equation:
    """Build ``lhs ~ rhs``."""
    return Equation(to_expr(lhs), to_expr(rhs))


# =============================================================================
# Predicates
# =============================================================================


def is_constant(expr: Expr) -> bool:
    return expr.kind == ExprKind.CONSTANT


def is_zero(expr: Expr) -> bool:
    return expr.kind == ExprKind.CONSTANT and expr.value == 0


def is_one(expr: Expr) -> bool:
    return expr.kind == ExprKind.CONSTANT and expr.value == 1


def is_atomic_derivative(expr: Expr) -> bool:
    """
    True for ``D(x)``, ``D^n(x)`` and nested forms such as ``D_a(D_t(x))``
    where ``x`` is a symbol leaf that depends on the differentiation variables.

    Atomic derivatives cannot be expanded further and act as implicit
    derivative leaves (DAE style). ``D_t(t)`` and ``D_t(p)`` for a parameter
    ``p`` are not atomic: they expand to 1 and 0.
    """
    if expr.kind != ExprKind.DIFFERENTIAL:
        return False
    inner = expr.children[0]
    if inner.kind == ExprKind.SYMBOL:
        return inner.symbol.depends(expr.symbol)
    return is_atomic_derivative(inner) and leaf_depends(inner, expr.symbol)


def leaf_depends(expr: Expr, wrt: Symbol) -> bool:
    """
    True if a symbol leaf or atomic derivative leaf varies with ``wrt``.

    A derivative leaf varies with its differentiation variables and with
    whatever its base symbol depends on, but not with the base symbol
    itself: ``D_t(x)`` and ``x`` are independent arguments of a Jacobian.
    """
    if expr.kind == ExprKind.SYMBOL:
        return expr.symbol == wrt or expr.symbol.depends(wrt)
    while expr.kind == ExprKind.DIFFERENTIAL:
        if expr.symbol == wrt or expr.symbol.depends(wrt):
            return True
        expr = expr.children[0]
    return expr.kind == ExprKind.SYMBOL and expr.symbol.depends(wrt)


def differential_base(expr: Expr) -> Optional[Tuple[Symbol, Symbol, int]]:
    """Return ``(symbol, wrt, order)`` for ``D[wrt]^order(symbol)``, else None."""
    if expr.kind == ExprKind.DIFFERENTIAL and expr.children[0].kind == ExprKind.SYMBOL:
        return expr.children[0].symbol, expr.symbol, expr.order
    return None


# =============================================================================
# Traversal
# =============================================================================


def walk(expr: Expr) -> Iterator[Expr]:
    """Pre-order, left-to-right traversal of every node."""
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def rebuild(expr: Expr, children: Tuple[Expr, ...]) -> Expr:
    """Return ``expr`` with new children, or ``expr`` itself if nothing changed."""
    if len(children) == len(expr.children) and all(a is b for a, b in zip(children, expr.children)):
        return expr
    if expr.kind == ExprKind.DIFFERENTIAL:
        return differential(children[0], expr.symbol, expr.order)
    return replace(expr, children=children)


def free_symbols(expr: Expr) -> Set[Symbol]:
    """
    Set of symbols referenced in ``expr``.

    The differentiation variable of a DIFFERENTIAL node is data, not a
    sub-expression, so only its operand contributes.
    """
    return {node.symbol for node in walk(expr) if node.kind == ExprKind.SYMBOL}


def ordered_symbols(exprs: Iterable[Expr]) -> List[Symbol]:
    """Symbols of ``exprs`` in order of first occurrence."""
    seen: Dict[Symbol, None] = {}
    for expr in exprs:
        for node in walk(expr):
            if node.kind == ExprKind.SYMBOL:
                seen.setdefault(node.symbol, None)
    return list(seen)


def substitute(expr: ExprLike, mapping: Mapping[Any, Any]) -> Expr:
    """
    Replace every syntactic occurrence of the keys of ``mapping``.

    Keys and values may be Expr, Symbol or numbers. Matching is outermost
    first: a replaced subtree is not searched again.
    """
    rules = {to_expr(k): to_expr(v) for k, v in mapping.items()}
    if not rules:
        return to_expr(expr)

    def visit(node: Expr) -> Expr:
        hit = rules.get(node)
        if hit is not None:
            return hit
        if not node.children:
            return node
        return rebuild(node, tuple(visit(c) for c in node.children))

    return visit(to_expr(expr))


def substitute_equation(eq: Equation, mapping: Mapping[Any, Any]) -> Equation:
    return Equation(substitute(eq.lhs, mapping), substitute(eq.rhs, mapping))
