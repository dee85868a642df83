"""
Tests for the CasADi and SymPy backends.

Both engines also serve as independent references for the derivatives
symcas computes.
"""

from __future__ import annotations

import casadi as ca
import numpy as np
import pytest
import sympy as sp

from symcas.backends import casadi_function, matrix_to_sympy, to_casadi, to_sympy
from symcas.calculators import calculate_jacobian
from symcas.errors import ShapeMismatch
from symcas.expr import (
    add,
    atan2,
    call,
    constant,
    differential,
    fabs,
    independent,
    mul,
    neg,
    power,
    sin,
    sqrt,
    state,
    sub,
)

U = np.array([1.0, 2.0, 3.0])
P = np.array([10.0, 28.0, 8.0 / 3.0])
LORENZ_J = [[-10.0, 10.0, 0.0], [25.0, -1.0, -1.0], [2.0, 1.0, -8.0 / 3.0]]


# =============================================================================
# SymPy
# =============================================================================


class TestSympy:
    def test_independent_symbols(self) -> None:
        x = independent("x")
        X = sp.Symbol("x", real=True)
        assert to_sympy(add(mul(2, sin(x)), 1)) == 2 * sp.sin(X) + 1

    def test_states_are_functions_of_time(self) -> None:
        t = independent("t")
        x = state("x", t)
        symbols = {}
        e = to_sympy(differential(x, t, 2), symbols)
        assert e == sp.Derivative(symbols[x], (symbols[t], 2))
        assert symbols[x].args == (symbols[t],)

    def test_shared_symbol_table(self) -> None:
        x = independent("x")
        symbols = {}
        a = to_sympy(sin(x), symbols)
        b = to_sympy(power(x, 2), symbols)
        assert a.free_symbols == b.free_symbols == {symbols[x]}

    def test_named_constant(self) -> None:
        x = independent("x")
        e = to_sympy(mul(constant("g", 2.5), x))
        assert e == sp.Float(2.5) * sp.Symbol("x", real=True)

    def test_functions(self) -> None:
        x, y = independent("x"), independent("y")
        X, Y = sp.Symbol("x", real=True), sp.Symbol("y", real=True)
        assert to_sympy(atan2(y, x)) == sp.atan2(Y, X)
        assert to_sympy(fabs(sub(x, y))) == sp.Abs(X - Y)
        assert to_sympy(sqrt(neg(x))) == sp.sqrt(-X)
        assert to_sympy(call("f", x)) == sp.Function("f")(X)

    def test_lorenz_jacobian(self, lorenz, cache) -> None:
        symbols = {}
        ours = matrix_to_sympy(calculate_jacobian(lorenz, cache=cache), symbols)
        rhs = sp.Matrix([to_sympy(e, symbols) for e in lorenz.rhss])
        theirs = rhs.jacobian([symbols[s] for s in lorenz.states])
        assert (ours - theirs).applyfunc(sp.simplify) == sp.zeros(3, 3)

    def test_sparse_matrix(self, lorenz, cache) -> None:
        sparse = calculate_jacobian(lorenz, sparse=True, cache=cache)
        assert matrix_to_sympy(sparse).shape == (3, 3)

    def test_vector_becomes_column(self, lorenz) -> None:
        assert matrix_to_sympy(np.array(lorenz.rhss, dtype=object)).shape == (3, 1)


# =============================================================================
# CasADi
# =============================================================================


class TestCasadi:
    def test_scalar(self) -> None:
        x, y = independent("x"), independent("y")
        X, Y = ca.SX.sym("x"), ca.SX.sym("y")
        e = to_casadi(add(mul(x, sin(y)), 1), {x: X, y: Y})
        f = ca.Function("f", [X, Y], [e])
        assert float(f(2.0, 0.5)) == pytest.approx(2.0 * np.sin(0.5) + 1.0)

    def test_lorenz_function(self, lorenz) -> None:
        f = casadi_function(
            "lorenz", list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv, arg_names=["u", "p", "t"]
        )
        assert f.name_in() == ["u", "p", "t"]
        np.testing.assert_allclose(np.array(f(U, P, 0.0)).ravel(), [10.0, 23.0, -6.0])

    def test_jacobian_matrix(self, lorenz, cache) -> None:
        f = casadi_function("J", calculate_jacobian(lorenz, cache=cache), lorenz.states, lorenz.parameters, lorenz.iv)
        np.testing.assert_allclose(np.array(f(U, P, 0.0)), LORENZ_J)

    def test_sparse_jacobian_matrix(self, lorenz, cache) -> None:
        J = calculate_jacobian(lorenz, sparse=True, cache=cache)
        f = casadi_function("J", J, lorenz.states, lorenz.parameters, lorenz.iv)
        np.testing.assert_allclose(np.array(f(U, P, 0.0)), LORENZ_J)

    def test_jacobian_matches_casadi(self, lorenz, cache) -> None:
        u, p = ca.SX.sym("u", 3), ca.SX.sym("p", 3)
        mapping = {s: u[i] for i, s in enumerate(lorenz.states)}
        mapping.update({s: p[i] for i, s in enumerate(lorenz.parameters)})
        out = ca.vertcat(*[to_casadi(e, mapping) for e in lorenz.rhss])
        reference = ca.Function("ref", [u, p], [ca.jacobian(out, u)])
        ours = casadi_function("J", calculate_jacobian(lorenz, cache=cache), lorenz.states, lorenz.parameters)
        np.testing.assert_allclose(np.array(ours(U, P)), np.array(reference(U, P)))

    def test_unbound_symbol(self) -> None:
        x = independent("x")
        with pytest.raises(ShapeMismatch):
            to_casadi(sin(x), {})

    def test_user_functions_unsupported(self) -> None:
        x = independent("x")
        with pytest.raises(NotImplementedError):
            to_casadi(call("f", x), {x: ca.SX.sym("x")})

    def test_argument_name_count(self, lorenz) -> None:
        with pytest.raises(ShapeMismatch):
            casadi_function("f", list(lorenz.rhss), lorenz.states, arg_names=["u", "p"])
