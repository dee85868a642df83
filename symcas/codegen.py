"""
Code generation from symbolic outputs to NumPy callables.

``build_function`` emits Python source for an out-of-place variant
``f(*args) -> value`` and an in-place variant ``f(out, *args) -> None``,
compiles both with ``exec`` into a namespace holding only NumPy, SciPy
sparse and the constant index arrays, and returns them together with the
source text.

How argument leaves are spelled in the source is decided by a
LeafRenderer: ``IndexedRenderer`` reads ``u[0]`` directly while
``IdentifierRenderer`` unpacks arguments into named locals first.

Example::

    f = build_function([mul(k, x), neg(y)], [x, y], [k], t, arg_names=("u", "p", "t"))
    f(np.array([1.0, 2.0]), np.array([3.0]), 0.0)   # array([ 3., -2.])
    out = np.zeros(2)
    f(out, np.array([1.0, 2.0]), np.array([3.0]), 0.0)
"""

from __future__ import annotations

import functools
import keyword
import math
import operator
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
import scipy.sparse as sp

from symcas.calculators import SparseExprMatrix
from symcas.errors import ShapeMismatch
from symcas.expr import (
    Expr,
    ExprKind,
    Role,
    Symbol,
    differential_base,
    is_atomic_derivative,
    to_expr,
)
from symcas.logging import logger
from symcas.registry import OperatorRegistry, operator_key, resolve

ArgumentGroup = Union[Symbol, Expr, Sequence[Union[Symbol, Expr]]]

_INFIX = {
    ExprKind.ADD: " + ",
    ExprKind.MUL: " * ",
    ExprKind.SUB: " - ",
    ExprKind.DIV: " / ",
    ExprKind.POW: " ** ",
}

_RESERVED = frozenset({"np", "_sp", "_out", "_ShapeMismatch", "_indices", "_indptr"})


# =============================================================================
# Leaf rendering
# =============================================================================


def _identifier(leaf: Expr) -> str:
    if leaf.kind == ExprKind.SYMBOL:
        text = leaf.symbol.name
    else:
        base = differential_base(leaf)
        if base is None:
            text = "dleaf"
        else:
            var, wrt, order = base
            text = f"d{var.name}_d{wrt.name}" + (str(order) if order > 1 else "")
    text = re.sub(r"\W", "_", text)
    if not text or text[0].isdigit() or keyword.iskeyword(text):
        text = "v_" + text
    if text.startswith("_"):
        text = "v" + text
    return text


def _unique(name: str, taken: Set[str]) -> str:
    candidate = name
    k = 1
    while candidate in taken:
        candidate = f"{name}_{k}"
        k += 1
    taken.add(candidate)
    return candidate


class LeafRenderer(ABC):
    """Spelling of argument leaves in generated source."""

    @abstractmethod
    def bind(
        self, arg: str, leaves: Sequence[Expr], scalar: bool, taken: Set[str]
    ) -> Tuple[List[str], Dict[Expr, str]]:
        """
        Render one argument group.

        Returns the prologue lines to emit at the top of the function body
        and the source text of each leaf. Names added to the body must be
        registered in ``taken``.
        """


class IndexedRenderer(LeafRenderer):
    """Leaves read straight from the argument: ``u[0]``, ``u[1]``, ..."""

    def bind(self, arg, leaves, scalar, taken):
        if scalar:
            return [], {leaves[0]: arg}
        return [], {leaf: f"{arg}[{k}]" for k, leaf in enumerate(leaves)}


class IdentifierRenderer(LeafRenderer):
    """Leaves unpacked into locals named after their symbols: ``x = u[0]``."""

    def bind(self, arg, leaves, scalar, taken):
        lines = []
        names = {}
        for k, leaf in enumerate(leaves):
            name = _unique(_identifier(leaf), taken)
            lines.append(f"{name} = {arg}" if scalar else f"{name} = {arg}[{k}]")
            names[leaf] = name
        return lines, names


# =============================================================================
# Expression emission
# =============================================================================


def _literal(value: Union[int, float]) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "np.nan"
        return "np.inf" if value > 0 else "(-np.inf)"
    text = repr(value)
    return f"({text})" if value < 0 else text


class _Emitter:
    def __init__(self, leaves: Dict[Expr, str], registry: OperatorRegistry, namespace: Dict[str, Any]):
        self.leaves = leaves
        self.registry = registry
        self.namespace = namespace
        self.helpers: Dict[Any, str] = {}

    def _callable(self, key) -> str:
        info = self.registry.lookup(key)
        if info is None or (info.printer is None and info.numeric is None):
            raise ValueError(f"No numeric implementation registered for {key}")
        if info.printer is not None:
            return info.printer
        if key not in self.helpers:
            name = f"_fn{len(self.helpers)}"
            self.helpers[key] = name
            self.namespace[name] = info.numeric
        return self.helpers[key]

    def emit(self, expr: Expr) -> str:
        hit = self.leaves.get(expr)
        if hit is not None:
            return hit
        kind = expr.kind
        if kind == ExprKind.CONSTANT:
            return _literal(expr.value)
        if kind == ExprKind.SYMBOL:
            s = expr.symbol
            if s.role == Role.CONSTANT and s.value is not None:
                return _literal(s.value)
            raise ShapeMismatch("symbol is not bound by any argument", symbol=s.name)
        if kind == ExprKind.DIFFERENTIAL:
            if is_atomic_derivative(expr):
                raise ShapeMismatch("derivative leaf is not bound by any argument", leaf=repr(expr))
            raise ShapeMismatch("expand derivatives before code generation", expression=repr(expr))
        args = [self.emit(c) for c in expr.children]
        if kind in _INFIX:
            return "(" + _INFIX[kind].join(args) + ")"
        if kind == ExprKind.NEG:
            return f"(-{args[0]})"
        return f"{self._callable(operator_key(expr))}({', '.join(args)})"


# =============================================================================
# Outputs
# =============================================================================


@dataclass(frozen=True)
class _Output:
    kind: str  # scalar | vector | matrix | sparse
    shape: Tuple[int, ...]
    exprs: Tuple[Expr, ...]
    indices: Optional[np.ndarray] = None
    indptr: Optional[np.ndarray] = None


def _classify(output: Any) -> _Output:
    if isinstance(output, SparseExprMatrix):
        pattern = output.pattern()
        pattern.sort_indices()
        exprs = tuple(e for _, e in output.entries_csc())
        return _Output("sparse", output.shape, exprs, pattern.indices.copy(), pattern.indptr.copy())
    if isinstance(output, (Expr, Symbol, int, float, np.number)):
        return _Output("scalar", (), (to_expr(output),))
    array = np.empty(0, dtype=object)
    if isinstance(output, np.ndarray):
        array = output
    elif isinstance(output, (list, tuple)):
        if output and isinstance(output[0], (list, tuple)):
            array = np.empty((len(output), len(output[0])), dtype=object)
            for i, row in enumerate(output):
                if len(row) != array.shape[1]:
                    raise ShapeMismatch("ragged matrix output", row=i)
                for j, e in enumerate(row):
                    array[i, j] = e
        else:
            array = np.empty(len(output), dtype=object)
            for i, e in enumerate(output):
                array[i] = e
    else:
        raise TypeError(f"Unsupported output type {type(output)}")
    if array.ndim == 0:
        return _Output("scalar", (), (to_expr(array.item()),))
    if array.ndim == 1:
        return _Output("vector", array.shape, tuple(to_expr(e) for e in array))
    if array.ndim == 2:
        return _Output("matrix", array.shape, tuple(to_expr(e) for e in array.ravel()))
    raise ShapeMismatch("outputs of more than two dimensions are not supported", ndim=array.ndim)


def _normalize_group(group: ArgumentGroup) -> Tuple[Tuple[Expr, ...], bool]:
    if isinstance(group, (Symbol, Expr)):
        leaves, scalar = (to_expr(group),), True
    else:
        leaves, scalar = tuple(to_expr(g) for g in group), False
    for leaf in leaves:
        if leaf.kind != ExprKind.SYMBOL and not is_atomic_derivative(leaf):
            raise ShapeMismatch("arguments must be symbols or derivative leaves", leaf=repr(leaf))
    return leaves, scalar


def _out_body(out: _Output, values: List[str]) -> Tuple[str, List[str], List[str]]:
    """Return the oop return expression, in-place shape check and in-place writes."""
    if out.kind == "scalar":
        check = ["if np.size(_out) != 1:", "    raise _ShapeMismatch('output buffer must hold one value', got=np.shape(_out))"]
        return values[0], check, [f"_out[...] = {values[0]}"]
    if out.kind == "vector":
        (n,) = out.shape
        check = [
            f"if np.shape(_out) != ({n},):",
            f"    raise _ShapeMismatch('output buffer must have shape ({n},)', got=np.shape(_out))",
        ]
        writes = [f"_out[{k}] = {v}" for k, v in enumerate(values)]
        return f"np.array([{', '.join(values)}], dtype=float)", check, writes
    if out.kind == "matrix":
        m, n = out.shape
        check = [
            f"if np.shape(_out) != ({m}, {n}):",
            f"    raise _ShapeMismatch('output buffer must have shape ({m}, {n})', got=np.shape(_out))",
        ]
        writes = [f"_out[{k // n}, {k % n}] = {v}" for k, v in enumerate(values)]
        return f"np.array([{', '.join(values)}], dtype=float).reshape({m}, {n})", check, writes
    m, n = out.shape
    nnz = len(values)
    check = [
        f"if _out.shape != ({m}, {n}) or np.shape(_out.data) != ({nnz},):",
        f"    raise _ShapeMismatch('output buffer must be a ({m}, {n}) sparse matrix with {nnz} stored entries', "
        "got=_out.shape)",
    ]
    writes = [f"_out.data[{k}] = {v}" for k, v in enumerate(values)]
    data = f"np.array([{', '.join(values)}], dtype=float)"
    return f"_sp.csc_matrix(({data}, _indices.copy(), _indptr.copy()), shape=({m}, {n}))", check, writes


@dataclass(frozen=True)
class GeneratedFunction:
    """
    Out-of-place and in-place variants of one generated function.

    Calling the object dispatches on the number of arguments: one per
    argument group runs ``oop``, one more (the output buffer first) runs
    ``iip``. Unpacks as ``oop, iip = build_function(...)``.
    """

    oop: Callable[..., Any]
    iip: Callable[..., None]
    source: str
    n_args: int

    def __iter__(self):
        return iter((self.oop, self.iip))

    def __call__(self, *args: Any) -> Any:
        if len(args) == self.n_args:
            return self.oop(*args)
        if len(args) == self.n_args + 1:
            return self.iip(*args)
        raise ShapeMismatch("wrong number of arguments", expected=self.n_args, got=len(args))


def build_function(
    output: Any,
    *argument_groups: ArgumentGroup,
    arg_names: Optional[Sequence[str]] = None,
    renderer: Optional[LeafRenderer] = None,
    registry: Optional[OperatorRegistry] = None,
    name: str = "generated",
) -> GeneratedFunction:
    """
    Compile ``output`` into NumPy callables of the given argument groups.

    Args:
        output: Expr (scalar), sequence of Expr (vector), 2-D object array
            or nested lists (matrix), or SparseExprMatrix (csc)
        *argument_groups: One per positional argument. A sequence of
            symbols or derivative leaves is a vector argument, a single
            Symbol a scalar argument
        arg_names: Parameter names in the generated source
        renderer: LeafRenderer, IndexedRenderer by default
        registry: Operator registry for function printers
        name: Base name of the generated functions

    Raises:
        ShapeMismatch: A leaf of ``output`` is bound by no argument, or a
            leaf is bound twice
    """
    registry = resolve(registry)
    renderer = IndexedRenderer() if renderer is None else renderer
    if arg_names is None:
        arg_names = tuple(f"arg{k}" for k in range(len(argument_groups)))
    arg_names = tuple(arg_names)
    if len(arg_names) != len(argument_groups):
        raise ShapeMismatch("one name per argument group", names=len(arg_names), groups=len(argument_groups))
    for arg in arg_names:
        if not arg.isidentifier() or keyword.iskeyword(arg) or arg in _RESERVED or arg.startswith("_"):
            raise ValueError(f"Invalid argument name {arg!r}")
    if len(set(arg_names)) != len(arg_names):
        raise ValueError(f"Duplicate argument names {arg_names}")
    func_name = _identifier(to_expr(Symbol(name)))
    if func_name in _RESERVED or func_name in arg_names:
        func_name = f"{func_name}_fn"

    taken: Set[str] = set(_RESERVED) | set(arg_names)
    prologue: List[str] = []
    checks: List[str] = []
    leaves: Dict[Expr, str] = {}
    for arg, group in zip(arg_names, argument_groups):
        group_leaves, scalar = _normalize_group(group)
        for leaf in group_leaves:
            if leaf in leaves:
                raise ShapeMismatch("leaf bound by more than one argument", leaf=repr(leaf))
        if not scalar and group_leaves:
            n = len(group_leaves)
            checks.append(f"if len({arg}) != {n}:")
            checks.append(f"    raise _ShapeMismatch('argument {arg} must have {n} entries', got=len({arg}))")
        lines, names = renderer.bind(arg, group_leaves, scalar, taken)
        prologue.extend(lines)
        leaves.update(names)

    out = _classify(output)
    namespace: Dict[str, Any] = {"np": np, "_sp": sp, "_ShapeMismatch": ShapeMismatch}
    if out.kind == "sparse":
        namespace["_indices"] = out.indices
        namespace["_indptr"] = out.indptr
    emitter = _Emitter(leaves, registry, namespace)
    values = [emitter.emit(e) for e in out.exprs]
    result, out_check, writes = _out_body(out, values)

    params = ", ".join(arg_names)
    iip_params = ", ".join(("_out",) + arg_names)
    body = checks + prologue
    oop_lines = [f"def {func_name}({params}):"] + [f"    {line}" for line in body + [f"return {result}"]]
    iip_lines = [f"def {func_name}_iip({iip_params}):"] + [
        f"    {line}" for line in checks + out_check + prologue + writes + ["return None"]
    ]
    source = "\n".join(oop_lines) + "\n\n\n" + "\n".join(iip_lines) + "\n"
    logger.debug("generated %s:\n%s", func_name, source)

    code = compile(source, f"<symcas:{func_name}>", "exec")
    exec(code, namespace)
    return GeneratedFunction(namespace[func_name], namespace[f"{func_name}_iip"], source, len(arg_names))


# =============================================================================
# Tree-walking evaluation
# =============================================================================


_ARITHMETIC: Dict[ExprKind, Callable[..., Any]] = {
    ExprKind.ADD: lambda *xs: functools.reduce(operator.add, xs),
    ExprKind.MUL: lambda *xs: functools.reduce(operator.mul, xs),
    ExprKind.SUB: operator.sub,
    ExprKind.DIV: operator.truediv,
    ExprKind.POW: operator.pow,
    ExprKind.NEG: operator.neg,
}


def evaluate(expr: Any, bindings: Mapping[Any, Any], registry: Optional[OperatorRegistry] = None) -> Any:
    """
    Numeric value of ``expr`` with leaves taken from ``bindings``.

    Keys of ``bindings`` may be Symbols or leaf expressions such as
    ``differential(x, t)``.

    Raises:
        ShapeMismatch: A leaf has no binding
    """
    registry = resolve(registry)
    values = {to_expr(k): v for k, v in bindings.items()}

    def visit(node: Expr) -> Any:
        if node in values:
            return values[node]
        kind = node.kind
        if kind == ExprKind.CONSTANT:
            return node.value
        if kind == ExprKind.SYMBOL:
            if node.symbol.role == Role.CONSTANT and node.symbol.value is not None:
                return node.symbol.value
            raise ShapeMismatch("no value bound for symbol", symbol=node.symbol.name)
        if kind == ExprKind.DIFFERENTIAL:
            raise ShapeMismatch("no value bound for derivative", leaf=repr(node))
        args = [visit(c) for c in node.children]
        if kind in _ARITHMETIC:
            return _ARITHMETIC[kind](*args)
        return registry.numeric(operator_key(node))(*args)

    return visit(to_expr(expr))
