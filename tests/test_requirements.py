"""Tests for solver requirements deduction."""

import pytest

from symdae.core.options import IntegratorOptions
from symdae.errors import ConfigurationError
from symdae.integrators.requirements import SolverRequirements, deduce_requirements


def test_requirements_dense_exact():
    """Test dense solver with exact Jacobian needs jacF only."""
    req = deduce_requirements(IntegratorOptions(), has_backward=False)

    assert isinstance(req, SolverRequirements)
    assert req.linear_solver == "dense"
    assert req.needs_jacobian is True
    assert req.needs_jtimes is False
    assert req.needs_linsol is False
    assert req.needs_backward is False
    assert req.needs_taping is False


def test_requirements_dense_difference_quotients():
    """Test inexact Jacobians need no generated functions."""
    options = IntegratorOptions(exact_jacobian=False)

    req = deduce_requirements(options, has_backward=False)

    assert req.needs_jacobian is False
    assert req.needs_jtimes is False
    assert req.needs_linsol is False


def test_requirements_banded():
    req = deduce_requirements(IntegratorOptions(linear_solver="banded"), False)
    assert req.linear_solver == "banded"
    assert req.needs_jacobian is True
    assert req.needs_linsol is False


def test_requirements_iterative_without_preconditioner():
    """Test Krylov solvers use exact Jacobian-vector products."""
    options = IntegratorOptions(linear_solver="iterative")

    req = deduce_requirements(options, has_backward=False)

    assert req.needs_jtimes is True
    assert req.needs_jacobian is False
    assert req.needs_linsol is False


def test_requirements_iterative_with_preconditioner():
    options = IntegratorOptions(
        linear_solver="iterative",
        exact_jacobian=False,
        use_preconditioner=True,
    )

    req = deduce_requirements(options, has_backward=False)

    assert req.needs_jtimes is False
    # Preconditioner factorizes the Newton matrix
    assert req.needs_jacobian is True
    assert req.needs_linsol is True


def test_requirements_user_defined():
    req = deduce_requirements(IntegratorOptions(linear_solver="user_defined"), False)
    assert req.needs_jacobian is True
    assert req.needs_linsol is True


def test_requirements_backward_inherits_forward():
    """Test backward settings default to the forward ones."""
    options = IntegratorOptions(linear_solver="iterative", use_preconditioner=True)

    req = deduce_requirements(options, has_backward=True)

    assert req.needs_backward is True
    assert req.needs_taping is True
    assert req.linear_solver_b == "iterative"
    assert req.needs_jtimes_b is True
    assert req.needs_jacobian_b is True
    assert req.needs_linsol_b is True


def test_requirements_backward_override():
    options = IntegratorOptions(
        linear_solver="iterative",
        linear_solverB="dense",
        exact_jacobianB=False,
    )

    req = deduce_requirements(options, has_backward=True)

    assert req.needs_jtimes is True
    assert req.linear_solver_b == "dense"
    assert req.needs_jacobian_b is False
    assert req.needs_jtimes_b is False


def test_requirements_without_backward_ignore_backward_options():
    options = IntegratorOptions(linear_solverB="user_defined")

    req = deduce_requirements(options, has_backward=False)

    assert req.needs_linsol_b is False
    assert req.needs_jacobian_b is False


@pytest.mark.parametrize("overrides", [
    {"linear_solver": "sparse_lu"},
    {"linear_solverB": "cholesky"},
    {"iterative_solver": "cg"},
    {"interpolation_type": "linear"},
    {"steps_per_checkpoint": 0},
])
def test_requirements_invalid_options(overrides):
    with pytest.raises(ConfigurationError):
        deduce_requirements(IntegratorOptions(**overrides), has_backward=True)


def test_options_resolved_defaults():
    """Test backward and dependent defaults are filled from forward values."""
    options = IntegratorOptions(abstol=1e-5, reltol=1e-4, tf=2.0, max_krylov=7)

    resolved = options.resolved()

    assert resolved.abstolB == 1e-5
    assert resolved.reltolB == 1e-4
    assert resolved.first_time == 2.0
    assert resolved.calc_icB is True
    assert resolved.max_krylovB == 7
    assert resolved.resolved() is resolved
    # Original left untouched
    assert options.abstolB is None


def test_options_explicit_backward_values_kept():
    resolved = IntegratorOptions(abstolB=1e-3, calc_icB=False).resolved()
    assert resolved.abstolB == 1e-3
    assert resolved.calc_icB is False


def test_options_unknown_key():
    with pytest.raises(TypeError, match="Unknown option"):
        IntegratorOptions().updated(abstol_b=1e-3)


def test_options_negative_directions():
    with pytest.raises(ValueError, match="nonnegative"):
        IntegratorOptions(number_of_fwd_dir=-1)
