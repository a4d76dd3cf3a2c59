"""Tests for the Function base class."""

import logging
import numpy as np
import pytest
import sympy

from symdae.core.function import Function
from symdae.core.sparsity import Sparsity
from symdae.core.sx_function import SXFunction
from symdae.errors import (
    InvalidStateError,
    SlotIndexError,
    StatNotSetError,
    UnsupportedOperationError,
)


class Doubler(Function):
    """Numeric-only function y = 2 x without symbolic support."""

    def __init__(self, n=2, **kwargs):
        super().__init__(**kwargs)
        self.set_num_inputs(1)
        self.set_num_outputs(1)
        self.set_input_sparsity(0, Sparsity.dense(n))
        self.set_output_sparsity(0, Sparsity.dense(n))

    def _evaluate(self):
        self.output(0)[...] = 2.0 * self.input(0)


def test_call_evaluates_outputs():
    """Test numeric call shorthand."""
    f = Doubler(name="doubler")
    f.init()

    out = f([1.0, 2.0])

    assert len(out) == 1
    np.testing.assert_allclose(out[0], [[2.0], [4.0]])


def test_call_wrong_number_of_arguments():
    f = Doubler()
    f.init()
    with pytest.raises(ValueError, match="expected 1 inputs"):
        f([1.0, 2.0], [3.0])


def test_input_index_out_of_range():
    """Test slot bounds are reported with the valid interval."""
    f = Doubler(name="doubler")
    f.init()

    with pytest.raises(IndexError, match=r"input 1 not in interval \[0,1\)"):
        f.input(1)
    with pytest.raises(SlotIndexError, match="output -1"):
        f.output(-1)


def test_direction_index_out_of_range():
    f = Doubler(name="doubler")
    f.init()

    assert f.nfdir == 1
    f.fwd_seed(0, 0)
    with pytest.raises(SlotIndexError, match=r"forward direction 1 not in interval \[0,1\)"):
        f.fwd_seed(0, 1)
    with pytest.raises(SlotIndexError, match="adjoint direction"):
        f.adj_sens(0, 3)


def test_evaluate_too_many_directions():
    f = Doubler()
    f.init()
    with pytest.raises(SlotIndexError):
        f.evaluate(nfdir=2)


def test_set_input_dimension_mismatch():
    f = Doubler()
    f.init()
    with pytest.raises(ValueError, match="Dimension mismatch"):
        f.set_input([1.0, 2.0, 3.0])


def test_evaluate_before_init():
    f = Doubler(name="doubler")
    with pytest.raises(InvalidStateError, match="doubler not initialized"):
        f.evaluate()


def test_jac_sparsity_before_init():
    f = Doubler()
    with pytest.raises(InvalidStateError, match="Function not initialized."):
        f.jac_sparsity(0, 0)


def test_default_jac_sparsity_is_dense():
    """Test functions without structural information report dense blocks."""
    f = Doubler(n=3)
    f.init()

    sp = f.jac_sparsity(0, 0)

    assert sp.shape == (3, 3)
    assert sp.is_dense()
    # Memoized
    assert f.jac_sparsity(0, 0) is sp


def test_hessian_unsupported():
    f = Doubler()
    f.init()
    with pytest.raises(UnsupportedOperationError, match="hessian not defined for class Doubler"):
        f.hessian(0, 0)
    # Also usable as NotImplementedError
    with pytest.raises(NotImplementedError):
        f.hessian()


def test_symbolic_call_unsupported():
    f = Doubler()
    f.init()
    with pytest.raises(UnsupportedOperationError):
        f.call([sympy.Matrix([1, 2])])


def test_jacobian_requires_symbolic_call():
    """Test numeric-only functions refuse to build Jacobians."""
    f = Doubler()
    f.init()
    with pytest.raises(UnsupportedOperationError, match="jacobian not defined for class Doubler"):
        f.jacobian([(0, 0)])
    with pytest.raises(UnsupportedOperationError, match="Doubler"):
        f.jacobian([(0, -1)])
    with pytest.raises(UnsupportedOperationError, match="Doubler"):
        f.jacobian_function(0, 0)


def test_stats_not_set_before_evaluate():
    """Test statistics are only available after an evaluate call."""
    f = Doubler()
    f.init()

    with pytest.raises(StatNotSetError, match="has not been set"):
        f.get_stat("n_eval")
    # Also a KeyError
    with pytest.raises(KeyError):
        f.get_stat("t_eval")

    f.evaluate()
    f.evaluate()

    assert f.get_stat("n_eval") == 2
    assert f.get_stat("t_eval") >= 0.0
    assert f.get_stats() is f.stats


def test_unknown_option_rejected():
    with pytest.raises(TypeError, match="Unknown option"):
        Doubler(bogus=1)


def test_repr():
    f = Doubler(name="doubler")
    assert repr(f) == 'function("doubler")'


def test_verbose_logging(caplog):
    """Test progress messages are only emitted when verbose."""
    quiet = Doubler(name="quiet")
    loud = Doubler(name="loud", verbose=True)

    with caplog.at_level(logging.INFO, logger="symdae.function"):
        quiet.log("test", "hidden")
        loud.log("test", "shown")

    messages = [r.getMessage() for r in caplog.records]
    assert 'In "test" --- shown' in messages
    assert not any("hidden" in m for m in messages)


def test_forward_sensitivity_of_square():
    """Test d(x^2)/dx = 6 at x = 3 in forward mode."""
    x = sympy.Symbol("x")
    f = SXFunction([x], [x**2], name="square")
    f.init()

    f.set_input(3.0)
    f.set_fwd_seed(1.0)
    f.evaluate(nfdir=1)

    assert f.output()[0, 0] == pytest.approx(9.0)
    assert f.fwd_sens()[0, 0] == pytest.approx(6.0)


def test_adjoint_sensitivity_of_square():
    """Test d(x^2)/dx = 6 at x = 3 in adjoint mode."""
    x = sympy.Symbol("x")
    f = SXFunction([x], [x**2], name="square")
    f.init()

    f.set_input(3.0)
    f.set_adj_seed(1.0)
    f.evaluate(nadir=1)

    assert f.output()[0, 0] == pytest.approx(9.0)
    assert f.adj_sens()[0, 0] == pytest.approx(6.0)


def test_multiple_forward_directions():
    x, y = sympy.symbols("x y")
    f = SXFunction([x, y], [x * y], name="product", number_of_fwd_dir=2)
    f.init()

    f([2.0], [5.0])
    f.set_fwd_seed(1.0, 0, 0)
    f.set_fwd_seed(1.0, 1, 1)
    f.evaluate(nfdir=2)

    # Directions are seeded on x and y respectively
    assert f.fwd_sens(0, 0)[0, 0] == pytest.approx(5.0)
    assert f.fwd_sens(0, 1)[0, 0] == pytest.approx(2.0)
