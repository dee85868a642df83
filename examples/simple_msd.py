"""
Example: Mass-Spring-Damper system as a second-order equation.

Builds m*D2(x) ~ F - c*D(x) - k*x, lowers it to first order and generates
the right-hand side, Jacobian and factorized W functions a stiff solver
would call.
"""

import numpy as np

from symcas import build_ode_function, ode_order_lowering
from symcas.backends import casadi_function
from symcas.calculators import calculate_jacobian
from symcas.expr import add, differential, div, equation, independent, mul, parameter, state, sub
from symcas.system import EquationSystem, equation_system


def create_mass_spring_damper() -> EquationSystem:
    """
    Second-order mass-spring-damper with a constant applied force.

    model MassSpringDamper
      Real x "position";
      parameter Real m, c, k, F;
    equation
      m*der(der(x)) = F - c*der(x) - k*x;
    end MassSpringDamper;
    """
    t = independent("t")
    x = state("x", t)
    m, c, k, F = parameter("m"), parameter("c"), parameter("k"), parameter("F")

    net_force = sub(F, add(mul(c, differential(x, t)), mul(k, x)))
    return equation_system(
        [equation(differential(x, t, 2), div(net_force, m))],
        t,
        parameters=[m, c, k, F],
        name="msd",
    )


if __name__ == "__main__":
    system = create_mass_spring_damper()
    print(system)

    lowered = ode_order_lowering(system)
    print()
    print("First-order equations:")
    for i, eq in enumerate(lowered.equations, 1):
        print(f"  {i}. {eq}")

    ode = build_ode_function(lowered, jac=True, wfact=True)
    u = np.array([1.0, 0.0])
    p = np.array([1.0, 0.1, 1.0, 0.5])

    print()
    print(f"states      : {ode.syms}")
    print(f"f(u, p, 0)  : {ode(u, p, 0.0)}")
    print(f"J(u, p, 0)  :\n{ode.jac(u, p, 0.0)}")
    print(f"Wfact(gam=0.1):\n{ode.wfact(u, p, 0.1, 0.0)}")

    print()
    print("Generated right-hand side:")
    print(ode.f.source)

    J = casadi_function(
        "msd_jac", calculate_jacobian(lowered), lowered.states, lowered.parameters, arg_names=["u", "p"]
    )
    print(f"CasADi Jacobian: {J(u, p)}")
