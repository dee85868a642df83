"""
Structural analysis of expressions and equation sets.

Jacobian sparsity is a presence analysis. Hessian sparsity propagates a
TermCombination through the tree: a set of monomials over the tracked
variables with degrees capped at 2, which is exactly what is needed to
decide whether a second derivative can be nonzero.

Dependency graphs relate equations and variables of a reaction or jump
system: which variables an equation reads, which it modifies, and which
equations must be updated when another one fires.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
import scipy.sparse as sp

from symcas.errors import UnknownLinearity
from symcas.expr import (
    Equation,
    Expr,
    ExprKind,
    Symbol,
    differential_base,
    free_symbols,
    is_atomic_derivative,
    is_constant,
    to_expr,
)
from symcas.registry import BinaryLinearity, OperatorRegistry, UnaryLinearity, operator_key, resolve

Monomial = Tuple[Tuple[int, int], ...]
Target = Union[Expr, Equation]
Variable = Union[Symbol, Expr]


def _rhs(target: Target) -> Expr:
    return target.rhs if isinstance(target, Equation) else target


def _index(variables: Sequence[Variable]) -> Dict[Expr, int]:
    index: Dict[Expr, int] = {}
    for i, v in enumerate(variables):
        index.setdefault(to_expr(v), i)
    return index


def _pattern(rows: Iterable[int], cols: Iterable[int], shape: Tuple[int, int]) -> sp.csc_matrix:
    rows = np.fromiter(rows, dtype=np.int64)
    cols = np.fromiter(cols, dtype=np.int64)
    data = np.ones(len(rows), dtype=bool)
    return sp.csc_matrix((data, (rows, cols)), shape=shape, dtype=bool)


# =============================================================================
# Jacobian sparsity
# =============================================================================


def _occurrences(expr: Expr, index: Dict[Expr, int], found: Set[int]) -> Set[int]:
    hit = index.get(expr)
    if hit is not None:
        found.add(hit)
        return found
    if is_atomic_derivative(expr):
        return found
    for c in expr.children:
        _occurrences(c, index, found)
    return found


def jacobian_sparsity(targets: Sequence[Target], variables: Sequence[Variable]) -> sp.csc_matrix:
    """
    Boolean csc matrix with entry (i, j) set when variable j occurs in
    ``targets[i]`` (the right-hand side for equations).

    Derivative leaves such as ``D(x)`` are opaque unless listed in
    ``variables`` themselves.
    """
    index = _index(variables)
    rows: List[int] = []
    cols: List[int] = []
    for i, target in enumerate(targets):
        for j in sorted(_occurrences(_rhs(target), index, set())):
            rows.append(i)
            cols.append(j)
    return _pattern(rows, cols, (len(targets), len(variables)))


def exprs_occur_in(exprs: Sequence[Variable], expr: Target) -> List[bool]:
    """For each of ``exprs``, whether it occurs in ``expr``."""
    found = _occurrences(_rhs(expr), _index(exprs), set())
    return [i in found for i in range(len(exprs))]


# =============================================================================
# Hessian sparsity
# =============================================================================


def _monomial_product(a: Monomial, b: Monomial) -> Monomial:
    degrees = dict(a)
    for var, deg in b:
        degrees[var] = min(degrees.get(var, 0) + deg, 2)
    return tuple(sorted(degrees.items()))


@dataclass(frozen=True)
class TermCombination:
    """
    Set of monomials in the tracked variables.

    The empty monomial stands for a constant term. Sum is set union and
    product multiplies every pair of monomials, so a variable reaches
    degree 2 exactly when a second derivative in it may survive.
    """

    terms: FrozenSet[Monomial]

    @classmethod
    def one(cls) -> "TermCombination":
        return cls(frozenset({()}))

    @classmethod
    def variable(cls, i: int) -> "TermCombination":
        return cls(frozenset({((i, 1),)}))

    def __add__(self, other: "TermCombination") -> "TermCombination":
        return TermCombination(self.terms | other.terms)

    def __mul__(self, other: "TermCombination") -> "TermCombination":
        return TermCombination(frozenset(_monomial_product(a, b) for a in self.terms for b in other.terms))

    def is_constant(self) -> bool:
        return self.terms == frozenset({()})

    def hessian_entries(self) -> Set[Tuple[int, int]]:
        entries: Set[Tuple[int, int]] = set()
        for monomial in self.terms:
            for i, deg in monomial:
                if deg >= 2:
                    entries.add((i, i))
                for j, _ in monomial:
                    if i != j:
                        entries.add((i, j))
        return entries


def _nonlinear(a: TermCombination) -> TermCombination:
    return a * a


def _combine_binary(lin: BinaryLinearity, a: TermCombination, b: TermCombination) -> TermCombination:
    result = a + b
    if not lin.first:
        result = result + a * a
    if not lin.second:
        result = result + b * b
    if not lin.cross:
        result = result + a * b
    return result


def _propagate(expr: Expr, index: Dict[Expr, int], registry: OperatorRegistry) -> TermCombination:
    hit = index.get(expr)
    if hit is not None:
        return TermCombination.variable(hit)
    kind = expr.kind
    if kind in (ExprKind.CONSTANT, ExprKind.SYMBOL) or is_atomic_derivative(expr):
        return TermCombination.one()
    if kind == ExprKind.DIFFERENTIAL:
        raise UnknownLinearity("expand derivatives before Hessian sparsity analysis", expression=expr)

    args = [_propagate(c, index, registry) for c in expr.children]
    if kind == ExprKind.ADD:
        result = TermCombination.one()
        for a in args:
            result = result + a
        return result
    if kind == ExprKind.MUL:
        result = TermCombination.one()
        for a in args:
            result = result * a
        return result
    if kind == ExprKind.POW:
        base, exponent = args
        if exponent.is_constant():
            literal = expr.children[1]
            if is_constant(literal) and literal.value == 1:
                return base
            if is_constant(literal) and literal.value == 0:
                return TermCombination.one()
            return _nonlinear(base)

    # Functions of untracked quantities are constants, whatever their linearity
    if all(a.is_constant() for a in args):
        return TermCombination.one()
    linearity = registry.linearity(operator_key(expr))
    if isinstance(linearity, UnaryLinearity) and len(args) == 1:
        return args[0] if linearity.linear else _nonlinear(args[0])
    if isinstance(linearity, BinaryLinearity) and len(args) == 2:
        return _combine_binary(linearity, *args)
    raise UnknownLinearity(operator=operator_key(expr), arity=len(args))


def hessian_sparsity(
    expr: Target, variables: Sequence[Variable], registry: Optional[OperatorRegistry] = None
) -> sp.csc_matrix:
    """
    Symmetric boolean csc matrix of the second derivatives of ``expr`` with
    respect to ``variables`` that may be nonzero.

    Raises:
        UnknownLinearity: An operator has no registered linearity
    """
    term = _propagate(_rhs(expr), _index(variables), resolve(registry))
    entries = sorted(term.hessian_entries())
    n = len(variables)
    return _pattern((i for i, _ in entries), (j for _, j in entries), (n, n))


def is_linear(expr: Target, variables: Sequence[Variable], registry: Optional[OperatorRegistry] = None) -> bool:
    """True when every second derivative in ``variables`` vanishes structurally."""
    return hessian_sparsity(expr, variables, registry).nnz == 0


# =============================================================================
# Dependency graphs
# =============================================================================


@dataclass(frozen=True)
class BipartiteGraph:
    """
    Bipartite graph between a source and a destination vertex set.

    ``fadjlist[s]`` lists destinations of source ``s`` in ascending order and
    ``badjlist[d]`` the sources of destination ``d``.
    """

    fadjlist: Tuple[Tuple[int, ...], ...]
    badjlist: Tuple[Tuple[int, ...], ...]

    @classmethod
    def from_edges(cls, n_src: int, n_dst: int, edges: Iterable[Tuple[int, int]]) -> "BipartiteGraph":
        fadj: List[Set[int]] = [set() for _ in range(n_src)]
        badj: List[Set[int]] = [set() for _ in range(n_dst)]
        for s, d in edges:
            fadj[s].add(d)
            badj[d].add(s)
        return cls(tuple(tuple(sorted(a)) for a in fadj), tuple(tuple(sorted(a)) for a in badj))

    @property
    def ne(self) -> int:
        return sum(len(a) for a in self.fadjlist)

    def has_edge(self, src: int, dst: int) -> bool:
        return dst in self.fadjlist[src]

    def to_sparse(self) -> sp.csc_matrix:
        rows = [s for s, adj in enumerate(self.fadjlist) for _ in adj]
        cols = [d for adj in self.fadjlist for d in adj]
        return _pattern(rows, cols, (len(self.fadjlist), len(self.badjlist)))


@dataclass(frozen=True)
class DependencyGraph:
    """Directed graph on one vertex set, as sorted adjacency lists."""

    adjlist: Tuple[Tuple[int, ...], ...]

    @property
    def ne(self) -> int:
        return sum(len(a) for a in self.adjlist)

    def has_edge(self, src: int, dst: int) -> bool:
        return dst in self.adjlist[src]

    def to_sparse(self) -> sp.csc_matrix:
        n = len(self.adjlist)
        rows = [s for s, adj in enumerate(self.adjlist) for _ in adj]
        cols = [d for adj in self.adjlist for d in adj]
        return _pattern(rows, cols, (n, n))


def _modified(eq: Equation) -> Optional[Symbol]:
    if eq.lhs.kind == ExprKind.SYMBOL:
        return eq.lhs.symbol
    base = differential_base(eq.lhs)
    if base is not None:
        return base[0]
    return None


def equation_dependencies(equations: Sequence[Target], variables: Sequence[Symbol]) -> BipartiteGraph:
    """
    Equation -> variables read by its right-hand side.

    Plain expressions (jump rates, say) are read as a whole.
    """
    position = {v: j for j, v in enumerate(variables)}
    edges = []
    for i, eq in enumerate(equations):
        for s in free_symbols(_rhs(eq)):
            j = position.get(s)
            if j is not None:
                edges.append((i, j))
    return BipartiteGraph.from_edges(len(equations), len(variables), edges)


def variable_dependencies(
    equations: Sequence[Union[Equation, Sequence[Equation]]], variables: Sequence[Symbol]
) -> BipartiteGraph:
    """
    Variable -> equations that modify it.

    An equation modifies the variable on its left-hand side, either the
    symbol itself (``x ~ x - 1``) or its derivative (``D(x) ~ ...``). An
    entry may also be a list of equations, such as the affects of one jump,
    which together count as one vertex.
    """
    position = {v: j for j, v in enumerate(variables)}
    edges = []
    for i, entry in enumerate(equations):
        for eq in (entry,) if isinstance(entry, Equation) else entry:
            target = _modified(eq)
            if target is not None and target in position:
                edges.append((position[target], i))
    return BipartiteGraph.from_edges(len(variables), len(equations), edges)


def eqeq_dependencies(eqdeps: BipartiteGraph, vardeps: BipartiteGraph) -> DependencyGraph:
    """
    Equation ``i`` -> equations that read a variable equation ``i`` modifies.

    ``eqdeps`` comes from ``equation_dependencies`` and ``vardeps`` from
    ``variable_dependencies`` over the same variables.
    """
    adj = []
    for i in range(len(eqdeps.fadjlist)):
        deps: Set[int] = set()
        for v in vardeps.badjlist[i]:
            deps.update(eqdeps.badjlist[v])
        adj.append(tuple(sorted(deps)))
    return DependencyGraph(tuple(adj))


def varvar_dependencies(eqdeps: BipartiteGraph, vardeps: BipartiteGraph) -> DependencyGraph:
    """Variable ``v`` -> variables modified by equations that read ``v``."""
    adj = []
    for v in range(len(eqdeps.badjlist)):
        deps: Set[int] = set()
        for i in eqdeps.badjlist[v]:
            deps.update(vardeps.badjlist[i])
        adj.append(tuple(sorted(deps)))
    return DependencyGraph(tuple(adj))
