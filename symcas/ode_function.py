"""
Solver-facing bundles of generated functions for an EquationSystem.

Every generated callable takes ``(u, p, t)``: the state vector in the order
of ``dvs`` (default ``system.states``), the parameter vector in the order
of ``ps`` (default ``system.parameters``) and the scalar independent
variable. The factorized W functions take ``(u, p, gam, t)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from symcas.calculators import (
    GAMMA,
    calculate_factorized_w,
    calculate_jacobian,
    calculate_massmatrix,
    calculate_tgrad,
    jacobian,
    sparse_jacobian,
)
from symcas.codegen import GeneratedFunction, LeafRenderer, build_function
from symcas.differentiation import expand_derivatives
from symcas.errors import ShapeMismatch
from symcas.expr import Symbol
from symcas.system import DerivativeCache, EquationSystem

ODE_ARGS = ("u", "p", "t")
W_ARGS = ("u", "p", "gam", "t")


def _vars(system: EquationSystem, dvs: Optional[Sequence[Symbol]], ps: Optional[Sequence[Symbol]]):
    dvs = system.states if dvs is None else tuple(dvs)
    ps = system.parameters if ps is None else tuple(ps)
    return dvs, ps


def generate_function(
    system: EquationSystem,
    dvs: Optional[Sequence[Symbol]] = None,
    ps: Optional[Sequence[Symbol]] = None,
    renderer: Optional[LeafRenderer] = None,
) -> GeneratedFunction:
    """Right-hand side ``f(u, p, t)`` of the system."""
    dvs, ps = _vars(system, dvs, ps)
    rhs = [expand_derivatives(eq.rhs, simplify=True) for eq in system.equations]
    return build_function(
        rhs, dvs, ps, system.iv, arg_names=ODE_ARGS, renderer=renderer, name=f"{system.name}_f"
    )


def generate_jacobian(
    system: EquationSystem,
    dvs: Optional[Sequence[Symbol]] = None,
    ps: Optional[Sequence[Symbol]] = None,
    sparse: bool = False,
    renderer: Optional[LeafRenderer] = None,
    cache: Optional[DerivativeCache] = None,
) -> GeneratedFunction:
    """Jacobian ``J(u, p, t)`` in the system states, dense or scipy csc."""
    dvs, ps = _vars(system, dvs, ps)
    if dvs == system.states:
        jac = calculate_jacobian(system, sparse=sparse, cache=cache)
    else:
        jac = (sparse_jacobian if sparse else jacobian)(system.equations, dvs)
    return build_function(
        jac, dvs, ps, system.iv, arg_names=ODE_ARGS, renderer=renderer, name=f"{system.name}_jac"
    )


def generate_tgrad(
    system: EquationSystem,
    dvs: Optional[Sequence[Symbol]] = None,
    ps: Optional[Sequence[Symbol]] = None,
    renderer: Optional[LeafRenderer] = None,
    cache: Optional[DerivativeCache] = None,
) -> GeneratedFunction:
    """Time gradient ``tgrad(u, p, t)``."""
    dvs, ps = _vars(system, dvs, ps)
    tgrad = calculate_tgrad(system, cache=cache)
    return build_function(
        tgrad, dvs, ps, system.iv, arg_names=ODE_ARGS, renderer=renderer, name=f"{system.name}_tgrad"
    )


def generate_factorized_w(
    system: EquationSystem,
    dvs: Optional[Sequence[Symbol]] = None,
    ps: Optional[Sequence[Symbol]] = None,
    renderer: Optional[LeafRenderer] = None,
    cache: Optional[DerivativeCache] = None,
) -> Tuple[GeneratedFunction, GeneratedFunction]:
    """Packed LU factors of ``I - gam*J`` and ``I/gam - J`` as ``(u, p, gam, t)`` functions."""
    dvs, ps = _vars(system, dvs, ps)
    if dvs != system.states:
        raise ShapeMismatch("factorized W is only generated in system state order", dvs=list(dvs))
    wfact, wfact_t = calculate_factorized_w(system, cache=cache)
    kwargs = dict(arg_names=W_ARGS, renderer=renderer)
    return (
        build_function(wfact, dvs, ps, GAMMA, system.iv, name=f"{system.name}_Wfact", **kwargs),
        build_function(wfact_t, dvs, ps, GAMMA, system.iv, name=f"{system.name}_Wfact_t", **kwargs),
    )


@dataclass(frozen=True)
class ODEFunction:
    """
    Generated right-hand side plus optional derivative functions.

    Calling the bundle calls ``f``, in-place when an output buffer is given.
    """

    f: GeneratedFunction
    mass_matrix: np.ndarray
    syms: Tuple[str, ...]
    jac: Optional[GeneratedFunction] = None
    tgrad: Optional[GeneratedFunction] = None
    wfact: Optional[GeneratedFunction] = None
    wfact_t: Optional[GeneratedFunction] = None

    def __call__(self, *args):
        return self.f(*args)


def build_ode_function(
    system: EquationSystem,
    dvs: Optional[Sequence[Symbol]] = None,
    ps: Optional[Sequence[Symbol]] = None,
    jac: bool = False,
    tgrad: bool = False,
    wfact: bool = False,
    sparse: bool = False,
    renderer: Optional[LeafRenderer] = None,
    cache: Optional[DerivativeCache] = None,
) -> ODEFunction:
    """
    Bundle the generated functions a stiff ODE/DAE solver needs.

    The mass matrix columns follow ``dvs``, which must be a permutation of
    the system states.

    Raises:
        ShapeMismatch: ``dvs`` is not a permutation of the system states
        UnsupportedMassMatrix: A left-hand side is not 0 or ``D(state)``
    """
    dvs, ps = _vars(system, dvs, ps)
    if len(dvs) != len(system.states) or set(dvs) != set(system.states):
        raise ShapeMismatch("dvs must be a permutation of the system states", dvs=list(dvs))
    index = system.state_index
    mass = calculate_massmatrix(system, cache=cache)[:, [index[v] for v in dvs]]

    wfact_fn = wfact_t_fn = None
    if wfact:
        wfact_fn, wfact_t_fn = generate_factorized_w(system, dvs, ps, renderer, cache)
    return ODEFunction(
        f=generate_function(system, dvs, ps, renderer),
        mass_matrix=mass,
        syms=tuple(s.name for s in dvs),
        jac=generate_jacobian(system, dvs, ps, sparse, renderer, cache) if jac else None,
        tgrad=generate_tgrad(system, dvs, ps, renderer, cache) if tgrad else None,
        wfact=wfact_fn,
        wfact_t=wfact_t_fn,
    )
