"""Tests for reduction of higher-order systems to first order."""

from __future__ import annotations

import numpy as np
import pytest

from symcas.calculators import calculate_massmatrix
from symcas.codegen import build_function
from symcas.expr import (
    add,
    differential,
    equation,
    independent,
    mul,
    neg,
    state,
    sym,
)
from symcas.lowering import lower_varname, ode_order_lowering
from symcas.system import equation_system


@pytest.fixture
def third_order():
    """D3(u) ~ 2*D2(u) + D(u) + D(x) + 1 and D2(x) ~ D(x) + 2."""
    t = independent("t")
    u, x = state("u", t), state("x", t)
    eqs = [
        equation(
            differential(u, t, 3),
            add(mul(2, differential(u, t, 2)), differential(u, t), differential(x, t), 1),
        ),
        equation(differential(x, t, 2), add(differential(x, t), 2)),
    ]
    return equation_system(eqs, t, [u, x], name="third_order")


class TestLowerVarname:
    def test_names(self) -> None:
        t = independent("t")
        u = state("u", t)
        assert lower_varname(u, t, 0) is u
        assert lower_varname(u, t, 1).name == "u_t"
        assert lower_varname(u, t, 2).name == "u_tt"

    def test_relowering_adds_order(self) -> None:
        t = independent("t")
        u = state("u", t)
        assert lower_varname(lower_varname(u, t, 1), t, 1) == lower_varname(u, t, 2)

    def test_injective(self) -> None:
        t = independent("t")
        u = state("u", t)
        clash = state("u_t", t)
        assert lower_varname(u, t, 1).name == clash.name
        assert lower_varname(u, t, 1) != clash

    def test_auxiliary_keeps_dependencies(self) -> None:
        t = independent("t")
        aux = lower_varname(state("u", t), t, 1)
        assert aux.depends(t)
        assert aux.origin[2] == 1


class TestOdeOrderLowering:
    def test_third_order(self, third_order) -> None:
        t = third_order.iv
        u, x = third_order.states
        u_t, u_tt, x_t = lower_varname(u, t, 1), lower_varname(u, t, 2), lower_varname(x, t, 1)

        lowered = ode_order_lowering(third_order)
        assert lowered.equations == (
            equation(differential(u_t, t), u_tt),
            equation(differential(u, t), u_t),
            equation(differential(x, t), x_t),
            equation(differential(u_tt, t), add(mul(2, u_tt), u_t, x_t, 1)),
            equation(differential(x_t, t), add(x_t, 2)),
        )
        assert lowered.states == (u_t, u, x, u_tt, x_t)
        assert lowered.iv == t
        assert lowered.name == "third_order"

    def test_lowered_system_is_explicit(self, third_order, cache) -> None:
        lowered = ode_order_lowering(third_order)
        np.testing.assert_array_equal(calculate_massmatrix(lowered, cache=cache), np.eye(5))

        f = build_function(list(lowered.rhss), lowered.states)
        np.testing.assert_allclose(f(np.ones(5)), [1.0, 1.0, 1.0, 5.0, 3.0])

    def test_first_order_unchanged(self, lorenz) -> None:
        lowered = ode_order_lowering(lorenz)
        assert lowered.equations == lorenz.equations
        assert lowered.states == lorenz.states
        assert lowered.parameters == lorenz.parameters

    def test_idempotent(self, third_order) -> None:
        once = ode_order_lowering(third_order)
        twice = ode_order_lowering(once)
        assert twice.equations == once.equations
        assert twice.states == once.states

    def test_algebraic_equations(self, cache) -> None:
        t = independent("t")
        x, y, z = state("x", t), state("y", t), state("z", t)
        eqs = [
            equation(differential(x, t), y),
            equation(0, add(x, z)),
            equation(0, add(x, neg(y))),
        ]
        system = equation_system(eqs, t, [z, y, x])
        lowered = ode_order_lowering(system)
        assert lowered.states == (x, z, y)
        np.testing.assert_array_equal(calculate_massmatrix(lowered, cache=cache), np.diag([1.0, 0.0, 0.0]))

    def test_derivatives_in_algebraic_equations(self) -> None:
        t = independent("t")
        x, y = state("x", t), state("y", t)
        eqs = [
            equation(differential(x, t, 2), neg(x)),
            equation(0, add(differential(x, t), neg(y))),
        ]
        lowered = ode_order_lowering(equation_system(eqs, t, [x, y]))
        x_t = lower_varname(x, t, 1)
        assert lowered.equations[-1] == equation(0, add(x_t, neg(y)))

    def test_duplicate_differential_equation(self) -> None:
        t = independent("t")
        x = state("x", t)
        eqs = [equation(differential(x, t, 2), neg(x)), equation(differential(x, t, 2), sym(x))]
        with pytest.raises(ValueError):
            ode_order_lowering(equation_system(eqs, t, [x]))

    def test_logs_auxiliary_count(self, third_order, caplog) -> None:
        with caplog.at_level("INFO", logger="symcas"):
            ode_order_lowering(third_order)
        assert "3 auxiliary states" in caplog.text
