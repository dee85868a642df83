"""
Operator registry.

Maps an operator key (an ExprKind, or the function name of a CALL node) to
its derivative rules, second-order linearity, numeric implementation and
codegen printer. The registry is an explicit value: passes take it as an
argument and fall back to ``builtin_registry()``, which is built once and
frozen. Extend it with ``builtin_registry().copy()`` followed by
``register(...)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from symcas.errors import RegistryFrozen, UnknownLinearity, UnregisteredDerivative
from symcas.expr import (
    ONE,
    Expr,
    ExprKind,
    add,
    atan2,
    const,
    cos,
    cosh,
    div,
    exp,
    fabs,
    log,
    mul,
    neg,
    power,
    sin,
    sinh,
    sqrt,
    sub,
    tan,
    tanh,
)

OpKey = Union[ExprKind, str]
PartialRule = Callable[..., Expr]
VariadicRule = Callable[[Tuple[Expr, ...], int], Expr]


@dataclass(frozen=True)
class UnaryLinearity:
    """``linear`` is True when f'' vanishes identically."""

    linear: bool


@dataclass(frozen=True)
class BinaryLinearity:
    """Which second derivatives of f(a, b) vanish: f_aa, f_bb and f_ab."""

    first: bool
    second: bool
    cross: bool


Linearity = Union[UnaryLinearity, BinaryLinearity]


@dataclass(frozen=True)
class OperatorInfo:
    """
    Everything the passes know about one operator.

    ``derivatives`` holds one partial rule per argument position, each
    taking the argument expressions. Variadic operators (ADD, MUL) use
    ``variadic`` instead, called with the argument tuple and a position.
    """

    key: OpKey
    arity: Optional[int] = None
    derivatives: Tuple[PartialRule, ...] = ()
    variadic: Optional[VariadicRule] = None
    linearity: Optional[Linearity] = None
    numeric: Optional[Callable] = None
    printer: Optional[str] = None


def operator_key(expr: Expr) -> OpKey:
    """Registry key of an operation node."""
    if expr.kind == ExprKind.CALL:
        return expr.name
    return expr.kind


class OperatorRegistry:
    """Mutable table of OperatorInfo until frozen."""

    def __init__(self, operators: Optional[Dict[OpKey, OperatorInfo]] = None):
        self._operators: Dict[OpKey, OperatorInfo] = dict(operators or {})
        self._frozen = False

    def __contains__(self, key: OpKey) -> bool:
        return key in self._operators

    def __len__(self) -> int:
        return len(self._operators)

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"OperatorRegistry({len(self._operators)} operators, {state})"

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        key: OpKey,
        *derivatives: PartialRule,
        arity: Optional[int] = None,
        variadic: Optional[VariadicRule] = None,
        linearity: Optional[Linearity] = None,
        numeric: Optional[Callable] = None,
        printer: Optional[str] = None,
    ) -> OperatorInfo:
        """
        Register (or replace) an operator.

        Args:
            key: ExprKind of a builtin node, or the name used in ``call(name, ...)``
            *derivatives: One partial rule per argument position
            arity: Expected argument count, defaults to ``len(derivatives)``
            variadic: Rule ``(args, i) -> Expr`` for n-ary operators
            linearity: UnaryLinearity or BinaryLinearity, None if unknown
            numeric: NumPy callable used by codegen and constant folding
            printer: Source text of the callable in generated code

        Raises:
            RegistryFrozen: If the registry has been frozen
        """
        if self._frozen:
            raise RegistryFrozen(key=key)
        if key == ExprKind.CALL:
            raise ValueError("Register user functions by name, not as ExprKind.CALL")
        if arity is None and derivatives:
            arity = len(derivatives)
        info = OperatorInfo(
            key=key,
            arity=arity,
            derivatives=tuple(derivatives),
            variadic=variadic,
            linearity=linearity,
            numeric=numeric,
            printer=printer,
        )
        self._operators[key] = info
        return info

    def lookup(self, key: OpKey) -> Optional[OperatorInfo]:
        return self._operators.get(key)

    def partial(self, key: OpKey, args: Sequence[Expr], i: int) -> Expr:
        """Partial derivative of operator ``key`` at ``args`` in argument ``i``."""
        info = self._operators.get(key)
        if info is None:
            raise UnregisteredDerivative(operator=key)
        args = tuple(args)
        if info.arity is not None and len(args) != info.arity:
            raise ValueError(f"Operator {key} expects {info.arity} arguments, got {len(args)}")
        if info.variadic is not None:
            return info.variadic(args, i)
        if i >= len(info.derivatives):
            raise UnregisteredDerivative(operator=key, argument=i)
        return info.derivatives[i](*args)

    def linearity(self, key: OpKey) -> Linearity:
        info = self._operators.get(key)
        if info is None or info.linearity is None:
            raise UnknownLinearity(operator=key)
        return info.linearity

    def numeric(self, key: OpKey) -> Callable:
        info = self._operators.get(key)
        if info is None or info.numeric is None:
            raise ValueError(f"No numeric implementation registered for {key}")
        return info.numeric

    def copy(self) -> "OperatorRegistry":
        """Unfrozen copy sharing the same OperatorInfo records."""
        return OperatorRegistry(self._operators)

    def freeze(self) -> "OperatorRegistry":
        self._frozen = True
        return self


def _others(args: Tuple[Expr, ...], i: int) -> Expr:
    return mul(*(a for k, a in enumerate(args) if k != i))


def _sum_partial(args: Tuple[Expr, ...], i: int) -> Expr:
    return ONE


def _one_minus_square(a: Expr) -> Expr:
    return sub(1, power(a, 2))


@lru_cache(maxsize=None)
def builtin_registry() -> OperatorRegistry:
    """The frozen registry of builtin operators, built on first use."""
    reg = OperatorRegistry()
    lin = UnaryLinearity(True)
    nonlin = UnaryLinearity(False)

    # ADD, MUL and POW are handled structurally by the sparsity analysis
    reg.register(ExprKind.ADD, variadic=_sum_partial, numeric=np.add)
    reg.register(ExprKind.MUL, variadic=_others, numeric=np.multiply)
    reg.register(
        ExprKind.SUB,
        lambda a, b: ONE,
        lambda a, b: const(-1),
        linearity=BinaryLinearity(True, True, True),
        numeric=np.subtract,
    )
    reg.register(
        ExprKind.DIV,
        lambda a, b: div(1, b),
        lambda a, b: neg(div(a, power(b, 2))),
        linearity=BinaryLinearity(True, False, False),
        numeric=np.divide,
    )
    reg.register(
        ExprKind.POW,
        lambda a, b: mul(b, power(a, sub(b, 1))),
        lambda a, b: mul(power(a, b), log(a)),
        linearity=BinaryLinearity(False, False, False),
        numeric=np.power,
    )
    reg.register(ExprKind.NEG, lambda a: const(-1), linearity=lin, numeric=np.negative)

    reg.register(ExprKind.SIN, lambda a: cos(a), linearity=nonlin, numeric=np.sin, printer="np.sin")
    reg.register(ExprKind.COS, lambda a: neg(sin(a)), linearity=nonlin, numeric=np.cos, printer="np.cos")
    reg.register(
        ExprKind.TAN,
        lambda a: add(1, power(tan(a), 2)),
        linearity=nonlin,
        numeric=np.tan,
        printer="np.tan",
    )
    reg.register(
        ExprKind.ASIN,
        lambda a: div(1, sqrt(_one_minus_square(a))),
        linearity=nonlin,
        numeric=np.arcsin,
        printer="np.arcsin",
    )
    reg.register(
        ExprKind.ACOS,
        lambda a: neg(div(1, sqrt(_one_minus_square(a)))),
        linearity=nonlin,
        numeric=np.arccos,
        printer="np.arccos",
    )
    reg.register(
        ExprKind.ATAN,
        lambda a: div(1, add(1, power(a, 2))),
        linearity=nonlin,
        numeric=np.arctan,
        printer="np.arctan",
    )
    reg.register(ExprKind.SINH, lambda a: cosh(a), linearity=nonlin, numeric=np.sinh, printer="np.sinh")
    reg.register(ExprKind.COSH, lambda a: sinh(a), linearity=nonlin, numeric=np.cosh, printer="np.cosh")
    reg.register(
        ExprKind.TANH,
        lambda a: sub(1, power(tanh(a), 2)),
        linearity=nonlin,
        numeric=np.tanh,
        printer="np.tanh",
    )
    reg.register(ExprKind.EXP, lambda a: exp(a), linearity=nonlin, numeric=np.exp, printer="np.exp")
    reg.register(ExprKind.LOG, lambda a: div(1, a), linearity=nonlin, numeric=np.log, printer="np.log")
    reg.register(
        ExprKind.SQRT,
        lambda a: div(1, mul(2, sqrt(a))),
        linearity=nonlin,
        numeric=np.sqrt,
        printer="np.sqrt",
    )
    # |x|'' vanishes everywhere except at the kink
    reg.register(ExprKind.ABS, lambda a: div(a, fabs(a)), linearity=lin, numeric=np.abs, printer="np.abs")
    reg.register(
        ExprKind.ATAN2,
        lambda y, x: div(x, add(power(x, 2), power(y, 2))),
        lambda y, x: neg(div(y, add(power(x, 2), power(y, 2)))),
        linearity=BinaryLinearity(False, False, False),
        numeric=np.arctan2,
        printer="np.arctan2",
    )
    return reg.freeze()


def resolve(registry: Optional[OperatorRegistry]) -> OperatorRegistry:
    """``registry`` if given, else the builtin one."""
    return builtin_registry() if registry is None else registry
