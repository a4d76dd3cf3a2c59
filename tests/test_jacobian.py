"""Tests for Jacobian blocks and the block cache."""

import numpy as np
import pytest
import sympy

from symdae.core.jacobian import JacobianBlockCache
from symdae.core.sparsity import Sparsity
from symdae.core.sx_function import SXFunction


def make_function(**options):
    x, y = sympy.symbols("x y")
    f = SXFunction([x, y], [x * y, x + y**2], name="f", **options)
    f.init()
    return f


def test_single_block():
    """Test a single requested block returns d(out)/d(in)."""
    f = make_function()

    J = f.jacobian([(0, 0)])
    (dxy_dx,) = J(2.0, 3.0)

    assert J.n_in == 2
    assert dxy_dx[0, 0] == pytest.approx(3.0)


def test_passthrough_and_blocks_in_request_order():
    """Test input index -1 passes the nondifferentiated output through."""
    f = make_function()

    J = f.jacobian([(0, -1), (1, 1), (1, -1)])
    value0, d1_dy, value1 = J(2.0, 3.0)

    assert J.n_out == 3
    assert value0[0, 0] == pytest.approx(6.0)
    assert d1_dy[0, 0] == pytest.approx(6.0)
    assert value1[0, 0] == pytest.approx(11.0)


def test_null_block_is_zero():
    """Test structurally null blocks evaluate to zeros of the right shape."""
    x, y = sympy.symbols("x y")
    z = sympy.Matrix(sympy.symbols("z0 z1"))
    f = SXFunction([x, y, z], [x**2], name="g")
    f.init()

    J = f.jacobian([(0, 1)])
    (block,) = J(2.0, 3.0, [1.0, 1.0])
    np.testing.assert_array_equal(block, [[0.0]])

    J = f.jacobian([(0, -1), (0, 2)])
    value, block = J(2.0, 3.0, [1.0, 1.0])
    assert value[0, 0] == pytest.approx(4.0)
    assert block.shape == (1, 2)
    np.testing.assert_array_equal(block, [[0.0, 0.0]])


def test_empty_request_rejected():
    f = make_function()
    with pytest.raises(ValueError, match="At least one"):
        f.jacobian([])


def test_block_output_index_checked():
    f = make_function()
    with pytest.raises(IndexError):
        f.jacobian([(5, -1), (0, 0)])


def test_store_jacobians_shares_evaluators():
    """Test evaluators are only kept when store_jacobians is set."""
    stored = make_function(store_jacobians=True)
    assert stored.jacobian_function(0, 0) is stored.jacobian_function(0, 0)

    rebuilt = make_function()
    assert rebuilt.jacobian_function(0, 0) is not rebuilt.jacobian_function(0, 0)


def test_store_jacobians_independent_of_verbose():
    f = make_function(store_jacobians=True, verbose=False)
    J = f.jacobian_function(1, 1)
    assert f.jacobian_function(1, 1) is J


def test_cache_generates_sparsity_once():
    cache = JacobianBlockCache(n_out=1, n_in=1)
    calls = []

    def generate():
        calls.append(1)
        return Sparsity.dense(2, 2)

    first = cache.sparsity(0, 0, generate)
    second = cache.sparsity(0, 0, generate)

    assert first is second
    assert len(calls) == 1
    assert cache.has_sparsity(0, 0)
    assert len(cache) == 1


def test_cache_stores_null_evaluator():
    cache = JacobianBlockCache(n_out=1, n_in=1, store_functions=True)
    calls = []

    def build():
        calls.append(1)
        return None

    assert cache.function(0, 0, build) is None
    assert cache.function(0, 0, build) is None
    assert len(calls) == 1
