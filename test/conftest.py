"""Shared equation systems for the symcas test-suite."""

from __future__ import annotations

import pytest

from symcas.expr import (
    add,
    differential,
    equation,
    independent,
    mul,
    neg,
    parameter,
    power,
    state,
    sub,
)
from symcas.system import DerivativeCache, equation_system


@pytest.fixture
def cache() -> DerivativeCache:
    return DerivativeCache()


@pytest.fixture
def lorenz():
    t = independent("t")
    x, y, z = state("x", t), state("y", t), state("z", t)
    sigma, rho, beta = parameter("σ"), parameter("ρ"), parameter("β")
    eqs = [
        equation(differential(x, t), mul(sigma, sub(y, x))),
        equation(differential(y, t), sub(mul(x, sub(rho, z)), y)),
        equation(differential(z, t), sub(mul(x, y), mul(beta, z))),
    ]
    return equation_system(eqs, t, [x, y, z], [sigma, rho, beta], name="lorenz")


@pytest.fixture
def lorenz_forced():
    """Lorenz system with an explicit time dependence in the second equation."""
    t = independent("t")
    x, y, z = state("x", t), state("y", t), state("z", t)
    sigma, rho, beta = parameter("σ"), parameter("ρ"), parameter("β")
    eqs = [
        equation(differential(x, t), mul(sigma, sub(y, x))),
        equation(differential(y, t), sub(mul(x, sub(rho, z)), mul(y, t))),
        equation(differential(z, t), sub(mul(x, y), mul(beta, z))),
    ]
    return equation_system(eqs, t, [x, y, z], [sigma, rho, beta], name="lorenz_forced")


@pytest.fixture
def robertson():
    t = independent("t")
    y1, y2, y3 = state("y1", t), state("y2", t), state("y3", t)
    k1, k2, k3 = parameter("k1"), parameter("k2"), parameter("k3")
    eqs = [
        equation(differential(y1, t), add(neg(mul(k1, y1)), mul(k3, y2, y3))),
        equation(0, sub(add(y1, y2, y3), 1)),
        equation(differential(y2, t), sub(sub(mul(k1, y1), mul(k3, y2, y3)), mul(k2, power(y2, 2)))),
    ]
    return equation_system(eqs, t, [y1, y2, y3], [k1, k2, k3], name="robertson")


@pytest.fixture
def damped():
    """Linear 2x2 system with Jacobian [[-a, 1], [1, -b]]."""
    t = independent("t")
    x, y = state("x", t), state("y", t)
    a, b = parameter("a"), parameter("b")
    eqs = [
        equation(differential(x, t), add(neg(mul(a, x)), y)),
        equation(differential(y, t), sub(x, mul(b, y))),
    ]
    return equation_system(eqs, t, [x, y], [a, b], name="damped")
