"""
Reduction of higher-order differential systems to first order.

Each state ``x`` of order ``n`` gets auxiliary states ``x_t, x_tt, ...``
standing for its first ``n - 1`` derivatives, linked by equations
``D(x) ~ x_t``, ``D(x_t) ~ x_tt`` and so on.
"""

from __future__ import annotations

from typing import Dict, List

from symcas.expr import Equation, Expr, Symbol, differential, differential_base, substitute, sym
from symcas.logging import logger
from symcas.system import EquationSystem


def lower_varname(var: Symbol, iv: Symbol, order: int) -> Symbol:
    """
    Auxiliary state standing for the ``order``-th derivative of ``var``.

    The display name is ``{var}_{iv * order}`` (``x_tt``). Identity is
    ``(var, iv, order)``, recorded in ``Symbol.origin``, so two auxiliaries
    never collide even when their names do. Lowering an auxiliary again
    adds to its order.
    """
    if order == 0:
        return var
    if var.origin is not None and var.origin[1] == iv:
        base, _, base_order = var.origin
        return lower_varname(base, iv, base_order + order)
    return Symbol(
        name=f"{var.name}_{iv.name * order}",
        role=var.role,
        depends_on=var.depends_on,
        origin=(var, iv, order),
    )


def _orders(system: EquationSystem) -> Dict[Symbol, int]:
    orders: Dict[Symbol, int] = {}
    for eq in system.equations:
        base = differential_base(eq.lhs)
        if base is not None and base[1] == system.iv:
            var, _, order = base
            orders[var] = max(orders.get(var, 0), order)
    return orders


def ode_order_lowering(system: EquationSystem) -> EquationSystem:
    """
    Equivalent first-order system.

    The new equations are, in order: the auxiliary equations of each state
    (highest order first, states in order of first appearance on a left
    side), then the original equations with every derivative below a
    state's order replaced by its auxiliary state. States follow the left
    sides of the new equations, then the remaining original states.

    Lowering a first-order system gives an equal system.

    Raises:
        ValueError: A state has more than one differential equation
    """
    iv = system.iv
    orders = _orders(system)

    replacements: Dict[Expr, Expr] = {}
    for var, n in orders.items():
        for k in range(1, n):
            replacements[differential(sym(var), iv, k)] = sym(lower_varname(var, iv, k))

    aux: List[Equation] = []
    for var, n in orders.items():
        for k in range(n - 1, 0, -1):
            aux.append(
                Equation(differential(sym(lower_varname(var, iv, k - 1)), iv), sym(lower_varname(var, iv, k)))
            )

    lowered: List[Equation] = []
    seen = set()
    for eq in system.equations:
        rhs = substitute(eq.rhs, replacements)
        base = differential_base(eq.lhs)
        if base is not None and base[1] == iv:
            var, _, order = base
            if var in seen:
                raise ValueError(f"State {var} has more than one differential equation")
            seen.add(var)
            lhs = differential(sym(lower_varname(var, iv, order - 1)), iv)
        else:
            lhs = substitute(eq.lhs, replacements)
        lowered.append(Equation(lhs, rhs))

    equations = tuple(aux + lowered)
    states: Dict[Symbol, None] = {}
    for eq in equations:
        base = differential_base(eq.lhs)
        if base is not None and base[1] == iv:
            states.setdefault(base[0], None)
    for s in system.states:
        states.setdefault(s, None)

    n_aux = sum(n - 1 for n in orders.values())
    if n_aux:
        logger.info("lowered %s to first order with %d auxiliary states", system.name, n_aux)
    return EquationSystem(equations, iv, tuple(states), system.parameters, system.name)
