"""Tests for sympy-backed functions."""

import numpy as np
import pytest
import sympy

from symdae.core.sparsity import Sparsity
from symdae.core.sx_function import SXFunction, structure


def test_inputs_must_be_symbols():
    x = sympy.Symbol("x")
    with pytest.raises(ValueError, match="must consist of symbols"):
        SXFunction([2 * x], [x])


def test_repeated_symbol_rejected():
    x = sympy.Symbol("x")
    with pytest.raises(ValueError, match="appears more than once"):
        SXFunction([x, x], [x])


def test_matrix_inputs_column_major():
    """Test flat data fills matrix slots column by column."""
    X = sympy.Matrix(2, 2, sympy.symbols("a b c d"))  # [[a, b], [c, d]]
    f = SXFunction([X], [X.T], name="transpose")
    f.init()

    # Column-major: a=1, c=2, b=3, d=4
    out = f([1.0, 2.0, 3.0, 4.0])[0]

    np.testing.assert_allclose(out, [[1.0, 2.0], [3.0, 4.0]])


def test_evaluate_multiple_outputs():
    x = sympy.Matrix(sympy.symbols("x0 x1"))
    f = SXFunction([x], [x[0] * x[1], x[0] + x[1]], name="mixed")
    f.init()

    prod, total = f([2.0, 3.0])

    assert prod[0, 0] == pytest.approx(6.0)
    assert total[0, 0] == pytest.approx(5.0)


def test_numeric_leaves_slots_untouched():
    x, y = sympy.symbols("x y")
    f = SXFunction([x, y], [x * y, x + y], name="pair")
    f.init()

    prod, total = f.numeric([2.0, None])

    np.testing.assert_allclose(prod, [[0.0]])
    np.testing.assert_allclose(total, [[2.0]])
    np.testing.assert_array_equal(f.input(0), 0.0)
    np.testing.assert_array_equal(f.output(1), 0.0)
    with pytest.raises(ValueError, match="expected 2 arguments"):
        f.numeric([1.0])


def test_jac_sparsity_of_identity():
    """Test the Jacobian pattern of y = x is the identity pattern."""
    x = sympy.Matrix(sympy.symbols("x0:3"))
    f = SXFunction([x], [x], name="identity")
    f.init()

    sp = f.jac_sparsity(0, 0)

    assert sp == Sparsity.from_mask(np.eye(3))
    assert sp.nnz == 3


def test_jac_sparsity_structural():
    x = sympy.Matrix(sympy.symbols("x0:3"))
    f = SXFunction([x], [sympy.Matrix([x[0] * x[1], x[2] ** 2])])
    f.init()

    mask = f.jac_sparsity(0, 0).to_mask()

    np.testing.assert_array_equal(mask, [[True, True, False], [False, False, True]])


def test_jac_sparsity_dense_option():
    x = sympy.Matrix(sympy.symbols("x0:3"))
    f = SXFunction([x], [x], sparse=False)
    f.init()
    assert f.jac_sparsity(0, 0).is_dense()


def test_independent_block_is_empty():
    """Test blocks without dependency are empty and have no evaluator."""
    x, y = sympy.symbols("x y")
    f = SXFunction([x, y], [x**2])
    f.init()

    sp = f.jac_sparsity(1, 0)

    assert sp.is_empty()
    assert sp.shape == (1, 1)
    assert f.jacobian_function(1, 0) is None
    assert f.jacobian_function(0, 0) is not None


def test_symbolic_call_substitutes():
    x, y = sympy.symbols("x y")
    f = SXFunction([x], [x**2])
    f.init()

    (out,) = f.call([2 * y])

    assert sympy.simplify(out[0, 0] - 4 * y**2) == 0


def test_symbolic_call_wrong_count():
    x = sympy.Symbol("x")
    f = SXFunction([x], [x])
    f.init()
    with pytest.raises(ValueError, match="expected 1 arguments"):
        f.call([x, x])


def test_hessian_of_scalar_output():
    """Test hessian returns [hessian, gradient, value]."""
    x = sympy.Matrix(sympy.symbols("x0 x1"))
    f = SXFunction([x], [x[0] ** 2 * x[1]], name="cubic")
    f.init()

    H = f.hessian(0, 0)
    hess, grad, value = H([1.0, 2.0])

    assert H.name == "cubic_hess_0_0"
    np.testing.assert_allclose(hess, [[4.0, 2.0], [2.0, 0.0]])
    np.testing.assert_allclose(grad, [[4.0], [1.0]])
    assert value[0, 0] == pytest.approx(2.0)


def test_hessian_requires_scalar_output():
    x = sympy.Matrix(sympy.symbols("x0 x1"))
    f = SXFunction([x], [x])
    f.init()
    with pytest.raises(ValueError, match="requires a scalar output"):
        f.hessian(0, 0)


def test_structure_of_expression():
    x = sympy.Symbol("x")
    sp = structure(sympy.Matrix([[x, 0], [0, 1]]))
    np.testing.assert_array_equal(sp.to_mask(), [[True, False], [False, True]])
