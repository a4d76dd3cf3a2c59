"""Tests for the DAE solver and its linear modules."""

import numpy as np
import pytest

from symdae.algebra.dense import DenseLinearSolver
from symdae.errors import ConfigurationError, InvalidStateError
from symdae.solvers.dae_solver import DaeSolver, wrms
from symdae.solvers.flags import ReturnFlag, get_return_flag_name, is_success
from symdae.solvers.linear import (
    BandedModule,
    DenseModule,
    IterativeModule,
    UserDefinedModule,
    create_linear_module,
)


class Decay:
    """Linear test problem: y' = -k y, written as F = y' + k y = 0"""

    def __init__(self, k=1.0, fail_first=0, fatal=False):
        self.k = k
        self.fail_first = fail_first
        self.fatal = fatal
        self.calls = 0

    def res(self, t, y, yp, rr, user_data):
        self.calls += 1
        if self.fatal:
            return -1
        if self.fail_first > 0:
            self.fail_first -= 1
            return 1
        rr[:] = yp + self.k * y
        return 0

    def jac(self, t, y, yp, rr, cj, J, user_data):
        J[:, :] = (self.k + cj) * np.eye(len(y))
        return 0

    def bjac(self, t, y, yp, rr, cj, mu, ml, J, user_data):
        return self.jac(t, y, yp, rr, cj, J, user_data)

    def jtimes(self, t, y, yp, rr, v, Jv, cj, user_data):
        Jv[:] = (self.k + cj) * v
        return 0

    def lsolve(self, solver, b, weight, y, yp, rr):
        b /= self.k + solver.cj
        return 0

    def rhs_q(self, t, y, yp, rq, user_data):
        rq[:] = y
        return 0


def make_solver(problem, module, y0=(1.0,), rtol=1e-5, atol=1e-8):
    y0 = np.array(y0, dtype=float)
    solver = DaeSolver()
    assert solver.init(problem.res, 0.0, y0, -problem.k * y0) == ReturnFlag.SUCCESS
    solver.ss_tolerances(rtol, atol)
    solver.set_max_num_steps(10000)
    assert solver.attach_linear_solver(module) == ReturnFlag.SUCCESS
    return solver


@pytest.mark.parametrize("module_factory", [
    lambda p: DenseModule(),
    lambda p: DenseModule(p.jac),
    lambda p: BandedModule(0, 0),
    lambda p: BandedModule(1, 1, p.bjac),
    lambda p: IterativeModule("gmres", 5),
    lambda p: IterativeModule("bcgstab", 5, jtimes=p.jtimes),
    lambda p: IterativeModule("tfqmr", 5, jtimes=p.jtimes),
    lambda p: UserDefinedModule(None, p.lsolve),
])
def test_decay_with_linear_modules(module_factory):
    """Test y' = -y reaches exp(-1) with every linear module."""
    problem = Decay()
    solver = make_solver(problem, module_factory(problem), y0=(1.0, 2.0))

    flag, tret = solver.solve(1.0)

    assert flag == ReturnFlag.SUCCESS
    assert tret == pytest.approx(1.0)
    np.testing.assert_allclose(solver.y, [np.exp(-1), 2 * np.exp(-1)], rtol=1e-3)
    np.testing.assert_allclose(solver.yp, -solver.y, rtol=1e-2)


def test_solve_in_pieces_lands_on_tout():
    problem = Decay()
    solver = make_solver(problem, DenseModule())

    for tout in (0.25, 0.5, 1.0):
        flag, tret = solver.solve(tout)
        assert flag == ReturnFlag.SUCCESS
        assert tret == tout

    assert solver.y[0] == pytest.approx(np.exp(-1), rel=1e-3)


def test_backward_in_time():
    """Test integration with negative steps."""
    problem = Decay()
    solver = DaeSolver()
    solver.init(problem.res, 1.0, [np.exp(-1)], [-np.exp(-1)])
    solver.ss_tolerances(1e-5, 1e-8)
    solver.attach_linear_solver(DenseModule())

    flag, tret = solver.solve(0.0)

    assert flag == ReturnFlag.SUCCESS
    assert tret == 0.0
    assert solver.y[0] == pytest.approx(1.0, rel=1e-3)


def test_direction_fixed_until_reinit():
    """Test a solver integrating forward refuses to turn back."""
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    flag, t1 = solver.solve(1.0)
    assert flag == ReturnFlag.SUCCESS
    y1 = solver.y.copy()

    flag, tret = solver.solve(0.5)

    assert flag == ReturnFlag.ILL_INPUT
    assert tret == t1
    np.testing.assert_array_equal(solver.y, y1)

    # Backward integration is allowed after reinit
    assert solver.reinit(t1, y1, -y1) == ReturnFlag.SUCCESS
    flag, tret = solver.solve(0.5)
    assert flag == ReturnFlag.SUCCESS
    assert solver.y[0] == pytest.approx(np.exp(-0.5), rel=1e-3)


def test_stop_time():
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    solver.set_stop_time(0.5)

    flag, tret = solver.solve(1.0)

    assert flag == ReturnFlag.TSTOP_RETURN
    assert tret == 0.5
    assert is_success(flag)


def test_reinit_reproduces_solution():
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    solver.solve(1.0)
    first = solver.y.copy()
    nsteps = solver.get_integrator_stats()["nsteps"]

    assert solver.reinit(0.0, [1.0], [-1.0]) == ReturnFlag.SUCCESS
    assert solver.get_integrator_stats()["nsteps"] == 0
    solver.solve(1.0)

    np.testing.assert_array_equal(solver.y, first)
    assert solver.get_integrator_stats()["nsteps"] == nsteps


def test_reinit_before_init():
    solver = DaeSolver()
    assert solver.reinit(0.0, [1.0], [0.0]) == ReturnFlag.NO_MALLOC


def test_solve_without_linear_solver():
    solver = DaeSolver()
    solver.init(Decay().res, 0.0, [1.0], [-1.0])
    flag, _ = solver.solve(1.0)
    assert flag == ReturnFlag.LINIT_FAIL


def test_too_much_work():
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    solver.set_max_num_steps(2)

    flag, tret = solver.solve(1.0)

    assert flag == ReturnFlag.TOO_MUCH_WORK
    assert tret < 1.0


def test_recoverable_residual_failure_retries():
    """Test positive residual flags shrink the step instead of aborting."""
    problem = Decay(fail_first=2)
    solver = make_solver(problem, DenseModule())

    flag, _ = solver.solve(1.0)

    assert flag == ReturnFlag.SUCCESS
    assert solver.get_integrator_stats()["ncfails"] >= 1
    assert solver.y[0] == pytest.approx(np.exp(-1), rel=1e-3)


def test_fatal_residual_failure_reported():
    """Test negative residual flags abort and reach the error handler."""
    problem = Decay(fatal=True)
    solver = make_solver(problem, DenseModule())
    reported = []
    solver.set_err_handler_fn(lambda *args: reported.append(args))

    flag, tret = solver.solve(1.0)

    assert flag == ReturnFlag.RES_FAIL
    assert tret == 0.0
    assert reported[0][0] == ReturnFlag.RES_FAIL
    assert reported[0][1] == "DaeSolver"


def test_quadrature():
    """Test q' = y with y = exp(-t) gives q(1) = 1 - exp(-1)."""
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    assert solver.quad_init(problem.rhs_q, [0.0]) == ReturnFlag.SUCCESS
    solver.set_quad_err_con(True)
    solver.quad_ss_tolerances(1e-5, 1e-8)

    solver.solve(1.0)
    t, q = solver.get_quad()

    assert t == pytest.approx(1.0)
    assert q[0] == pytest.approx(1 - np.exp(-1), rel=1e-3)


def test_quad_reinit_requires_quad_init():
    solver = DaeSolver()
    solver.init(Decay().res, 0.0, [1.0], [-1.0])
    assert solver.quad_reinit([0.0]) == ReturnFlag.NO_MALLOC


def semi_explicit_res(t, y, yp, rr, user_data):
    """y0' = -y0, 0 = y1 - 2 y0"""
    rr[0] = yp[0] + y[0]
    rr[1] = y[1] - 2.0 * y[0]
    return 0


def test_calc_ic_semi_explicit():
    """Test consistent algebraic states and differential derivatives."""
    solver = DaeSolver()
    solver.init(semi_explicit_res, 0.0, [1.0, 0.0], [0.0, 0.0])
    solver.set_id([1.0, 0.0])

    assert solver.calc_ic(1.0) == ReturnFlag.SUCCESS
    y, yp = solver.get_consistent_ic()

    np.testing.assert_allclose(y, [1.0, 2.0])
    assert yp[0] == pytest.approx(-1.0)


def test_calc_ic_then_solve_dae():
    solver = DaeSolver()
    solver.init(semi_explicit_res, 0.0, [1.0, 0.0], [0.0, 0.0])
    solver.ss_tolerances(1e-5, 1e-8)
    solver.set_id([1.0, 0.0])
    solver.set_suppress_alg(True)
    solver.attach_linear_solver(DenseModule())
    solver.calc_ic(1.0)

    flag, _ = solver.solve(1.0)

    assert flag == ReturnFlag.SUCCESS
    np.testing.assert_allclose(solver.y, [np.exp(-1), 2 * np.exp(-1)], rtol=1e-3)


def test_calc_ic_requires_id():
    solver = DaeSolver()
    solver.init(semi_explicit_res, 0.0, [1.0, 0.0], [0.0, 0.0])
    assert solver.calc_ic(1.0) == ReturnFlag.ILL_INPUT


def test_calc_ic_rejects_tout_at_t0():
    solver = DaeSolver()
    solver.init(semi_explicit_res, 0.0, [1.0, 0.0], [0.0, 0.0])
    solver.set_id([1.0, 0.0])
    assert solver.calc_ic(0.0) == ReturnFlag.ILL_INPUT


def test_option_validation():
    solver = DaeSolver()
    solver.init(Decay().res, 0.0, [1.0, 1.0], [0.0, 0.0])

    assert solver.ss_tolerances(-1.0, 1e-8) == ReturnFlag.ILL_INPUT
    assert solver.sv_tolerances(1e-6, [1e-8]) == ReturnFlag.ILL_INPUT
    assert solver.sv_tolerances(1e-6, [1e-8, 1e-9]) == ReturnFlag.SUCCESS
    assert solver.set_id([1.0]) == ReturnFlag.ILL_INPUT
    assert solver.set_max_step(-1.0) == ReturnFlag.ILL_INPUT
    assert solver.set_max_step(0.0) == ReturnFlag.SUCCESS
    assert solver.hmax == np.inf


def test_init_rejects_mismatched_vectors():
    solver = DaeSolver()
    assert solver.init(Decay().res, 0.0, [1.0, 2.0], [0.0]) == ReturnFlag.ILL_INPUT


def test_max_step_respected():
    problem = Decay()
    solver = make_solver(problem, DenseModule(), rtol=1e-2, atol=1e-2)
    solver.set_max_step(0.1)

    solver.solve(1.0)

    assert solver.get_integrator_stats()["nsteps"] >= 10


def test_backward_problem_over_tape():
    """Test -rx' = y(t) with rx(1) = 0 gives rx(0) = 1 - exp(-1)."""
    problem = Decay()
    solver = make_solver(problem, DenseModule())
    assert solver.adj_init(5, "hermite") == ReturnFlag.SUCCESS

    flag, tret, ncheck = solver.solve_f(1.0)
    assert flag == ReturnFlag.SUCCESS
    assert ncheck >= 2

    def res_b(t, y, yp, yB, ypB, rrB, user_data):
        rrB[:] = y + ypB
        return 0

    flag = solver.create_b(1.0, [0.0], [-np.exp(-1)], res_b)
    assert flag == ReturnFlag.SUCCESS
    backward = solver.backward
    backward.ss_tolerances(1e-5, 1e-8)
    backward.set_max_num_steps(10000)
    backward.attach_linear_solver(DenseModule())

    assert solver.solve_b(0.0) == ReturnFlag.SUCCESS
    tB, yB, ypB = solver.get_b()

    assert tB == 0.0
    assert yB[0] == pytest.approx(1 - np.exp(-1), rel=1e-3)


def test_backward_requires_taping():
    problem = Decay()
    solver = make_solver(problem, DenseModule())

    assert solver.create_b(1.0, [0.0], [0.0], problem.res) == ReturnFlag.NO_ADJ
    solver.adj_init(5)
    assert solver.create_b(1.0, [0.0], [0.0], problem.res) == ReturnFlag.NO_FWD
    assert solver.solve_b(0.0) == ReturnFlag.NO_FWD

    solver.solve_f(1.0)
    assert solver.solve_b(0.0) == ReturnFlag.NO_BCK
    assert solver.create_b(2.0, [0.0], [0.0], problem.res) == ReturnFlag.BAD_TB0


def test_adj_init_validates_options():
    solver = DaeSolver()
    solver.init(Decay().res, 0.0, [1.0], [-1.0])
    assert solver.adj_init(0) == ReturnFlag.ILL_INPUT
    assert solver.adj_init(5, "linear") == ReturnFlag.ILL_INPUT


def test_return_flag_names():
    assert get_return_flag_name(ReturnFlag.ERR_FAIL) == "ERR_FAIL"
    assert get_return_flag_name(-104) == "BAD_TB0"
    assert get_return_flag_name(42) == "UNKNOWN_FLAG(42)"
    assert is_success(ReturnFlag.SUCCESS)
    assert not is_success(ReturnFlag.TOO_MUCH_WORK)


def test_wrms():
    assert wrms(np.zeros(0), np.zeros(0)) == 0.0
    assert wrms(np.array([3.0, 4.0]), np.array([1.0, 1.0])) == pytest.approx(np.sqrt(12.5))


def test_create_linear_module_policies():
    assert isinstance(create_linear_module("dense"), DenseModule)
    assert isinstance(create_linear_module("banded", upper_bandwidth=1), BandedModule)
    assert isinstance(create_linear_module("iterative"), IterativeModule)
    lsolve = Decay().lsolve
    assert isinstance(create_linear_module("user_defined", lsolve=lsolve), UserDefinedModule)


def test_create_linear_module_errors():
    with pytest.raises(ConfigurationError, match="Unknown linear solver"):
        create_linear_module("sparse_lu")
    with pytest.raises(ConfigurationError, match="needs lsolve"):
        create_linear_module("user_defined")
    with pytest.raises(ConfigurationError, match="Unknown iterative solver"):
        IterativeModule("cg")
    with pytest.raises(ConfigurationError, match="nonnegative"):
        BandedModule(-1, 0)


def test_dense_linear_solver():
    lu = DenseLinearSolver()
    A = np.array([[4.0, 1.0], [2.0, 3.0]])
    b = np.array([1.0, 2.0])

    with pytest.raises(InvalidStateError):
        lu.solve(b)
    with pytest.raises(np.linalg.LinAlgError):
        lu.factorize(np.ones((2, 3)))

    lu.factorize(A)
    assert lu.is_factorized
    np.testing.assert_allclose(A @ lu.solve(b), b)
    np.testing.assert_allclose(A.T @ lu.solve(b, trans=True), b)
    assert lu.solve(b.reshape(2, 1)).shape == (2, 1)
