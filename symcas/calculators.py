"""
Derivative matrices of equation systems.

The free functions (``jacobian``, ``hessian`` and their sparse variants)
work on any list of expressions and are not cached. The ``calculate_*``
functions take an EquationSystem and store their result in a
DerivativeCache, so each artifact is computed at most once per system and
never invalidated.

Dense results are numpy object arrays of Expr.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp

from symcas.differentiation import differentiate, expand_derivatives
from symcas.errors import ShapeMismatch, SingularSymbolicFactorization, UnsupportedMassMatrix
from symcas.expr import (
    ONE,
    ZERO,
    Equation,
    Expr,
    ExprKind,
    Role,
    Symbol,
    differential_base,
    div,
    is_atomic_derivative,
    is_zero,
    mul,
    sub,
    substitute,
    sym,
    walk,
)
from symcas.logging import logger
from symcas.registry import OperatorRegistry
from symcas.simplify import simplify as _simplify
from symcas.sparsity import hessian_sparsity, jacobian_sparsity
from symcas.system import DEFAULT_CACHE, DerivativeCache, EquationSystem

# Scaling symbol of the W operator, I - gam*J. Distinct from any user parameter named "gam"
GAMMA = Symbol("gam", Role.INTERNAL)

Target = Union[Expr, Equation]


def _rhs(target: Target) -> Expr:
    return target.rhs if isinstance(target, Equation) else target


def _d(f: Expr, v: Symbol, simplify: bool, registry: Optional[OperatorRegistry]) -> Expr:
    return expand_derivatives(differentiate(f, v, registry), simplify=simplify, registry=registry)


@dataclass(frozen=True)
class SparseExprMatrix:
    """Sparse matrix of Expr. Absent entries are structurally zero."""

    shape: Tuple[int, int]
    entries: Tuple[Tuple[Tuple[int, int], Expr], ...]
    _lookup: Dict[Tuple[int, int], Expr] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Column-major, the order of scipy csc data
        ordered = tuple(sorted(self.entries, key=lambda e: (e[0][1], e[0][0])))
        object.__setattr__(self, "entries", ordered)
        object.__setattr__(self, "_lookup", dict(ordered))

    def __getitem__(self, ij: Tuple[int, int]) -> Expr:
        return self._lookup.get(tuple(ij), ZERO)

    @property
    def nnz(self) -> int:
        return len(self.entries)

    def entries_csc(self) -> Iterator[Tuple[Tuple[int, int], Expr]]:
        return iter(self.entries)

    def pattern(self) -> sp.csc_matrix:
        rows = [i for (i, _), _ in self.entries]
        cols = [j for (_, j), _ in self.entries]
        data = np.ones(len(rows), dtype=bool)
        return sp.csc_matrix((data, (rows, cols)), shape=self.shape, dtype=bool)

    def to_dense(self) -> np.ndarray:
        dense = np.full(self.shape, ZERO, dtype=object)
        for (i, j), value in self.entries:
            dense[i, j] = value
        return dense


# =============================================================================
# Uncached calculators
# =============================================================================


def jacobian(
    targets: Sequence[Target],
    variables: Sequence[Symbol],
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> np.ndarray:
    """Dense Jacobian, entry (i, j) = d targets[i] / d variables[j]."""
    result = np.empty((len(targets), len(variables)), dtype=object)
    for i, target in enumerate(targets):
        f = _rhs(target)
        for j, v in enumerate(variables):
            result[i, j] = _d(f, v, simplify, registry)
    return result


def sparse_jacobian(
    targets: Sequence[Target],
    variables: Sequence[Symbol],
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> SparseExprMatrix:
    """Jacobian restricted to the structural nonzeros of jacobian_sparsity."""
    pattern = jacobian_sparsity(targets, variables).tocoo()
    entries = []
    for i, j in zip(pattern.row, pattern.col):
        i, j = int(i), int(j)
        entries.append(((i, j), _d(_rhs(targets[i]), variables[j], simplify, registry)))
    return SparseExprMatrix((len(targets), len(variables)), tuple(entries))


def hessian(
    target: Target,
    variables: Sequence[Symbol],
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> np.ndarray:
    """Dense symmetric Hessian of one expression."""
    f = _rhs(target)
    first = [_d(f, v, simplify, registry) for v in variables]
    n = len(variables)
    result = np.empty((n, n), dtype=object)
    for i in range(n):
        for j in range(i + 1):
            entry = _d(first[j], variables[i], simplify, registry)
            result[i, j] = entry
            result[j, i] = entry
    return result


def sparse_hessian(
    target: Target,
    variables: Sequence[Symbol],
    simplify: bool = True,
    registry: Optional[OperatorRegistry] = None,
) -> SparseExprMatrix:
    """Hessian restricted to the structural nonzeros of hessian_sparsity."""
    f = _rhs(target)
    pattern = hessian_sparsity(f, variables, registry).tocoo()
    first = {}
    entries = []
    for i, j in zip(pattern.row, pattern.col):
        i, j = int(i), int(j)
        if j not in first:
            first[j] = _d(f, variables[j], simplify, registry)
        entries.append(((i, j), _d(first[j], variables[i], simplify, registry)))
    n = len(variables)
    return SparseExprMatrix((n, n), tuple(entries))


def symbolic_lu(matrix: np.ndarray, simplify: bool = True) -> np.ndarray:
    """
    LU factorization without pivoting, packed in one matrix.

    The strict lower triangle holds L (unit diagonal implied) and the upper
    triangle U.

    Raises:
        ShapeMismatch: The matrix is not square
        SingularSymbolicFactorization: A pivot is structurally zero
    """
    n = matrix.shape[0]
    if matrix.ndim != 2 or matrix.shape != (n, n):
        raise ShapeMismatch("symbolic LU needs a square matrix", shape=matrix.shape)

    def s(e: Expr) -> Expr:
        return _simplify(e) if simplify else e

    lu = matrix.copy()
    for k in range(n):
        pivot = lu[k, k]
        if is_zero(pivot):
            raise SingularSymbolicFactorization(pivot=k)
        for i in range(k + 1, n):
            if is_zero(lu[i, k]):
                continue
            lu[i, k] = s(div(lu[i, k], pivot))
            for j in range(k + 1, n):
                if is_zero(lu[k, j]):
                    continue
                lu[i, j] = s(sub(lu[i, j], mul(lu[i, k], lu[k, j])))
    return lu


# =============================================================================
# Cached calculators
# =============================================================================


def _cache(cache: Optional[DerivativeCache]) -> DerivativeCache:
    return DEFAULT_CACHE if cache is None else cache


def calculate_jacobian(
    system: EquationSystem,
    sparse: bool = False,
    simplify: bool = True,
    cache: Optional[DerivativeCache] = None,
    registry: Optional[OperatorRegistry] = None,
) -> Union[np.ndarray, SparseExprMatrix]:
    """Jacobian of the right-hand sides with respect to the states."""
    key: Hashable = ("jacobian", sparse, simplify, registry)
    build = sparse_jacobian if sparse else jacobian
    return _cache(cache).get_or_compute(
        system, key, lambda: build(system.equations, system.states, simplify, registry)
    )


def _time_leaves(system: EquationSystem) -> List[Expr]:
    # Leaves that vary with the independent variable: states and derivative leaves
    iv = system.iv
    seen = {}
    for eq in system.equations:
        for node in walk(eq.rhs):
            if node.kind == ExprKind.SYMBOL and node.symbol.depends(iv):
                seen.setdefault(node, None)
            elif is_atomic_derivative(node):
                seen.setdefault(node, None)
    return list(seen)


def calculate_tgrad(
    system: EquationSystem,
    simplify: bool = True,
    cache: Optional[DerivativeCache] = None,
    registry: Optional[OperatorRegistry] = None,
) -> np.ndarray:
    """
    Partial derivative of each right-hand side in the independent variable,
    holding the states fixed.
    """

    def compute() -> np.ndarray:
        leaves = _time_leaves(system)
        frozen = [sym(Symbol(f"_{k}_{leaf!r}", Role.INTERNAL)) for k, leaf in enumerate(leaves)]
        freeze = dict(zip(leaves, frozen))
        thaw = dict(zip(frozen, leaves))
        result = np.empty(len(system.equations), dtype=object)
        for i, eq in enumerate(system.equations):
            held = substitute(eq.rhs, freeze)
            result[i] = substitute(_d(held, system.iv, simplify, registry), thaw)
        return result

    return _cache(cache).get_or_compute(system, ("tgrad", simplify, registry), compute)


def calculate_hessian(
    system: EquationSystem,
    sparse: bool = False,
    simplify: bool = True,
    cache: Optional[DerivativeCache] = None,
    registry: Optional[OperatorRegistry] = None,
) -> Tuple[Union[np.ndarray, SparseExprMatrix], ...]:
    """One Hessian in the states per right-hand side."""
    build = sparse_hessian if sparse else hessian
    return _cache(cache).get_or_compute(
        system,
        ("hessian", sparse, simplify, registry),
        lambda: tuple(build(eq, system.states, simplify, registry) for eq in system.equations),
    )


def calculate_massmatrix(system: EquationSystem, cache: Optional[DerivativeCache] = None) -> np.ndarray:
    """
    Mass matrix of a semi-explicit system.

    A left-hand side ``D(x)`` puts a 1 in the column of state ``x`` and a
    left-hand side of 0 leaves the row empty.

    Raises:
        ShapeMismatch: The number of equations differs from the number of states
        UnsupportedMassMatrix: Any other left-hand side
    """

    def compute() -> np.ndarray:
        n = len(system.states)
        if len(system.equations) != n:
            raise ShapeMismatch(
                "mass matrix needs a square system", equations=len(system.equations), states=n
            )
        index = system.state_index
        mass = np.zeros((n, n))
        for i, eq in enumerate(system.equations):
            if is_zero(eq.lhs):
                continue
            base = differential_base(eq.lhs)
            if base is None or base[1] != system.iv or base[2] != 1 or base[0] not in index:
                raise UnsupportedMassMatrix(equation=i, lhs=eq.lhs)
            mass[i, index[base[0]]] = 1.0
        return mass

    return _cache(cache).get_or_compute(system, ("massmatrix",), compute)


def _w_operators(jac: np.ndarray, simplify: bool) -> Tuple[np.ndarray, np.ndarray]:
    n = jac.shape[0]
    w = np.empty((n, n), dtype=object)
    w_t = np.empty((n, n), dtype=object)
    for i in range(n):
        for j in range(n):
            delta = ONE if i == j else ZERO
            w[i, j] = sub(delta, mul(sym(GAMMA), jac[i, j]))
            w_t[i, j] = sub(div(delta, sym(GAMMA)), jac[i, j])
            if simplify:
                w[i, j] = _simplify(w[i, j])
                w_t[i, j] = _simplify(w_t[i, j])
    return w, w_t


def calculate_factorized_w(
    system: EquationSystem,
    simplify: bool = True,
    cache: Optional[DerivativeCache] = None,
    registry: Optional[OperatorRegistry] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Packed LU factors of ``W = I - gam*J`` and ``W_t = I/gam - J``.

    ``gam`` is the GAMMA parameter. Returns ``(Wfact, Wfact_t)``.
    """

    def compute() -> Tuple[np.ndarray, np.ndarray]:
        jac = calculate_jacobian(system, simplify=simplify, cache=cache, registry=registry)
        if jac.shape[0] != jac.shape[1]:
            raise ShapeMismatch("W operator needs a square Jacobian", shape=jac.shape)
        w, w_t = _w_operators(jac, simplify)
        logger.debug("factorizing W for %s (%d states)", system.name, jac.shape[0])
        return symbolic_lu(w, simplify), symbolic_lu(w_t, simplify)

    return _cache(cache).get_or_compute(system, ("wfact", simplify, registry), compute)
