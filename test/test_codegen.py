"""
Tests for code generation.

Generated functions are compiled from source, so most tests check the
numbers they return against hand-computed values.
"""

from __future__ import annotations

import math

import numpy as np
import pytest
import scipy.sparse as sp

from symcas.calculators import calculate_jacobian
from symcas.codegen import (
    GeneratedFunction,
    IdentifierRenderer,
    IndexedRenderer,
    LeafRenderer,
    build_function,
    evaluate,
)
from symcas.errors import ShapeMismatch
from symcas.expr import (
    add,
    call,
    const,
    constant,
    differential,
    exp,
    independent,
    mul,
    neg,
    parameter,
    sin,
    state,
    sub,
)
from symcas.registry import UnaryLinearity, builtin_registry

U = np.array([1.0, 2.0, 3.0])
P = np.array([10.0, 28.0, 8.0 / 3.0])


class NamedRenderer(LeafRenderer):
    """Reads vector arguments as mappings keyed by symbol name."""

    def bind(self, arg, leaves, scalar, taken):
        if scalar:
            return [], {leaves[0]: arg}
        return [], {leaf: f"{arg}[{leaf.symbol.name!r}]" for leaf in leaves}


# =============================================================================
# Output shapes
# =============================================================================


class TestOutputs:
    def test_scalar(self) -> None:
        x, k = independent("x"), parameter("k")
        f = build_function(mul(k, x), x, k)
        assert f(2.0, 3.0) == 6.0

    def test_vector(self, lorenz) -> None:
        f = build_function(list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv)
        np.testing.assert_allclose(f(U, P, 0.0), [10.0, 23.0, -6.0])

    def test_in_place(self, lorenz) -> None:
        oop, iip = build_function(list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv)
        out = np.zeros(3)
        assert iip(out, U, P, 0.0) is None
        np.testing.assert_allclose(out, oop(U, P, 0.0))

    def test_dispatch_on_argument_count(self, lorenz) -> None:
        f = build_function(list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv)
        out = np.zeros(3)
        assert f(out, U, P, 0.0) is None
        np.testing.assert_allclose(out, [10.0, 23.0, -6.0])
        with pytest.raises(ShapeMismatch):
            f(U)

    def test_matrix(self, lorenz, cache) -> None:
        J = calculate_jacobian(lorenz, cache=cache)
        f = build_function(J, lorenz.states, lorenz.parameters, lorenz.iv)
        expected = [[-10.0, 10.0, 0.0], [25.0, -1.0, -1.0], [2.0, 1.0, -8.0 / 3.0]]
        np.testing.assert_allclose(f(U, P, 0.0), expected)
        out = np.zeros((3, 3))
        f(out, U, P, 0.0)
        np.testing.assert_allclose(out, expected)

    def test_nested_lists(self) -> None:
        x = independent("x")
        f = build_function([[x, mul(2, x)], [3, neg(x)]], [x])
        np.testing.assert_allclose(f([1.5]), [[1.5, 3.0], [3.0, -1.5]])

    def test_sparse(self, lorenz, cache) -> None:
        J = calculate_jacobian(lorenz, sparse=True, cache=cache)
        dense = calculate_jacobian(lorenz, cache=cache)
        f = build_function(J, lorenz.states, lorenz.parameters, lorenz.iv)
        g = build_function(dense, lorenz.states, lorenz.parameters, lorenz.iv)

        result = f(U, P, 0.0)
        assert sp.issparse(result)
        assert result.format == "csc"
        assert result.nnz == 8
        np.testing.assert_allclose(result.toarray(), g(U, P, 0.0))

        other = np.array([0.5, -1.0, 4.0])
        f(result, other, P, 0.0)
        np.testing.assert_allclose(result.toarray(), g(other, P, 0.0))

    def test_sparse_results_do_not_share_structure(self, lorenz, cache) -> None:
        f = build_function(calculate_jacobian(lorenz, sparse=True, cache=cache), lorenz.states, lorenz.parameters, lorenz.iv)
        a = f(U, P, 0.0)
        b = f(U, P, 0.0)
        assert a.indices is not b.indices

    def test_too_many_dimensions(self) -> None:
        x = independent("x")
        cube = np.full((2, 2, 2), None, dtype=object)
        cube[...] = x
        with pytest.raises(ShapeMismatch):
            build_function(cube, [x])


# =============================================================================
# Arguments and leaves
# =============================================================================


class TestArguments:
    def test_derivative_leaves(self) -> None:
        t = independent("t")
        x = state("x", t)
        f = build_function([add(differential(x, t), x)], [differential(x, t)], [x])
        np.testing.assert_allclose(f([2.0], [3.0]), [5.0])

    def test_unbound_symbol(self) -> None:
        x, y = independent("x"), independent("y")
        with pytest.raises(ShapeMismatch):
            build_function(add(x, y), [x])

    def test_unbound_derivative(self) -> None:
        t = independent("t")
        x = state("x", t)
        with pytest.raises(ShapeMismatch):
            build_function(differential(x, t), [x])

    def test_leaf_bound_twice(self) -> None:
        x = independent("x")
        with pytest.raises(ShapeMismatch):
            build_function(x, [x], [x])

    def test_composite_argument_rejected(self) -> None:
        x = independent("x")
        with pytest.raises(ShapeMismatch):
            build_function(x, [mul(2, x)])

    def test_wrong_argument_length(self, lorenz) -> None:
        f = build_function(list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv)
        with pytest.raises(ShapeMismatch):
            f(U[:2], P, 0.0)

    def test_wrong_output_buffer(self, lorenz) -> None:
        f = build_function(list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv)
        with pytest.raises(ShapeMismatch):
            f(np.zeros(4), U, P, 0.0)

    def test_named_constants_are_inlined(self) -> None:
        x = independent("x")
        g = constant("g", 9.81)
        f = build_function([mul(g, x)], [x])
        np.testing.assert_allclose(f([2.0]), [19.62])

    @pytest.mark.parametrize("names", [("np",), ("_out",), ("lambda",), ("u", "u")])
    def test_invalid_argument_names(self, names) -> None:
        x, y = independent("x"), independent("y")
        groups = [[x], [y]][: len(names)]
        with pytest.raises(ValueError):
            build_function(x if len(names) == 1 else add(x, y), *groups, arg_names=names)

    def test_argument_name_count(self) -> None:
        x = independent("x")
        with pytest.raises(ShapeMismatch):
            build_function(x, [x], arg_names=("u", "p"))


# =============================================================================
# Rendering
# =============================================================================


class TestRenderers:
    def test_indexed_source(self, lorenz) -> None:
        f = build_function(
            list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv, arg_names=("u", "p", "t")
        )
        assert isinstance(f, GeneratedFunction)
        assert "def generated(u, p, t):" in f.source
        assert "def generated_iip(_out, u, p, t):" in f.source
        assert "u[0]" in f.source

    def test_identifier_renderer(self, lorenz) -> None:
        f = build_function(
            list(lorenz.rhss),
            lorenz.states,
            lorenz.parameters,
            lorenz.iv,
            arg_names=("u", "p", "t"),
            renderer=IdentifierRenderer(),
        )
        assert "x = u[0]" in f.source
        assert "σ = p[0]" in f.source
        np.testing.assert_allclose(f(U, P, 0.0), [10.0, 23.0, -6.0])

    def test_identifier_clashes(self) -> None:
        a, b = independent("np"), independent("u")
        f = build_function(
            [sub(a, b)], [a, b], arg_names=("u",), renderer=IdentifierRenderer(), name="np"
        )
        assert "np_1 = u[0]" in f.source
        assert "u_1 = u[1]" in f.source
        assert "def np_fn(u):" in f.source
        np.testing.assert_allclose(f([5.0, 2.0]), [3.0])

    def test_derivative_identifier(self) -> None:
        t = independent("t")
        x = state("x", t)
        f = build_function(
            [differential(x, t, 2)], [differential(x, t, 2)], renderer=IdentifierRenderer()
        )
        assert "dx_dt2 = arg0[0]" in f.source

    def test_custom_renderer(self, lorenz) -> None:
        f = build_function(
            list(lorenz.rhss), lorenz.states, lorenz.parameters, lorenz.iv, renderer=NamedRenderer()
        )
        u = {"x": 1.0, "y": 2.0, "z": 3.0}
        p = {"σ": 10.0, "ρ": 28.0, "β": 8.0 / 3.0}
        np.testing.assert_allclose(f(u, p, 0.0), [10.0, 23.0, -6.0])

    def test_default_renderer_is_indexed(self) -> None:
        x = independent("x")
        assert build_function(sin(x), x).source == build_function(sin(x), x, renderer=IndexedRenderer()).source

    def test_function_printers(self) -> None:
        x = independent("x")
        f = build_function([sin(x), exp(x)], [x])
        assert "np.sin(" in f.source
        np.testing.assert_allclose(f([0.5]), [math.sin(0.5), math.exp(0.5)])

    def test_user_function_without_printer(self) -> None:
        x = independent("x")
        reg = builtin_registry().copy()
        reg.register("cube", lambda a: mul(3, a, a), linearity=UnaryLinearity(False), numeric=lambda a: a**3)
        f = build_function([call("cube", x)], [x], registry=reg)
        assert "_fn0(" in f.source
        np.testing.assert_allclose(f([2.0]), [8.0])

    def test_non_finite_constants(self) -> None:
        x = independent("x")
        f = build_function([add(x, const(float("inf"))), neg(const(float("nan")))], [x])
        result = f([1.0])
        assert math.isinf(result[0])
        assert math.isnan(result[1])

    def test_source_is_logged(self, caplog) -> None:
        x = independent("x")
        with caplog.at_level("DEBUG", logger="symcas"):
            build_function(sin(x), x, name="logged_fn")
        assert "def logged_fn(arg0):" in caplog.text


# =============================================================================
# Tree-walking evaluation
# =============================================================================


class TestEvaluate:
    def test_matches_generated(self, lorenz) -> None:
        x, y, z = lorenz.states
        sigma, rho, beta = lorenz.parameters
        bindings = {x: 1.0, y: 2.0, z: 3.0, sigma: 10.0, rho: 28.0, beta: 8.0 / 3.0}
        assert [evaluate(e, bindings) for e in lorenz.rhss] == pytest.approx([10.0, 23.0, -6.0])

    def test_derivative_binding(self) -> None:
        t = independent("t")
        x = state("x", t)
        assert evaluate(mul(2, differential(x, t)), {differential(x, t): 4.0}) == 8.0

    def test_unbound(self) -> None:
        with pytest.raises(ShapeMismatch):
            evaluate(add(independent("x"), 1), {})
