"""
Implicit DAE solver with quadratures and checkpointed adjoint replay.

Solves F(t, y, y') = 0 with a return-code API: every public operation
returns a ReturnFlag value instead of raising, and user callbacks report
failures the same way (0 success, positive recoverable, negative fatal).

Time stepping uses implicit Euler with Richardson extrapolation: each step
is taken once with h and twice with h/2, the difference of both results
serves as local error estimate and their extrapolation as the accepted
(second order) solution.
"""

import logging
from typing import Any, Callable, Optional
import numpy as np
from numpy.typing import NDArray, ArrayLike

from symdae.algebra.dense import DenseLinearSolver
from symdae.solvers.flags import ReturnFlag
from symdae.solvers.linear import LinearModule
from symdae.solvers.newton import NewtonMixin
from symdae.solvers.tape import Tape

logger = logging.getLogger("symdae.solvers")

# Newton convergence tolerance, in units of the local error weight
NLS_TOL = 0.033

# Maximum consecutive failures within one step
MAX_CONV_FAILS = 10
MAX_ERR_FAILS = 10


def wrms(v: NDArray, w: NDArray) -> float:
    """Weighted root-mean-square norm."""
    if len(v) == 0:
        return 0.0
    return float(np.sqrt(np.mean((v * w) ** 2)))


class DaeSolver(NewtonMixin):
    """
    Implicit DAE solver handle.

    A backward (adjoint) problem is a DaeSolver whose ``forward`` refers to
    the taped forward solver; its callbacks then receive the interpolated
    forward state (y, y') in front of their own arguments.
    """

    def __init__(self, name: str = "DaeSolver", forward: Optional["DaeSolver"] = None):
        self.name = name
        self.forward = forward

        self.res: Optional[Callable[..., int]] = None
        self.user_data: Any = None
        self.err_handler: Optional[Callable[..., None]] = None

        # Tolerances and limits
        self.rtol = 1e-6
        self.atol: Any = 1e-8
        self.max_num_steps = 500
        self.hmax = np.inf
        self.id: Optional[NDArray] = None
        self.suppress_alg = False
        self.tstop: Optional[float] = None
        self.lin: Optional[LinearModule] = None

        # Quadratures
        self.rhsQ: Optional[Callable[..., int]] = None
        self.q: Optional[NDArray] = None
        self.quad_err_con = False
        self.rtolQ = 1e-6
        self.atolQ = 1e-8

        # Adjoint taping
        self.tape: Optional[Tape] = None
        self.backward: Optional["DaeSolver"] = None
        self._taping = False

        # State
        self.tn = 0.0
        self.tcur = 0.0
        self.y = np.zeros(0)
        self.yp = np.zeros(0)
        self.h = 0.0
        self.cj = 0.0
        self.cjold = 0.0
        self.cjratio = 1.0
        # Direction of integration, fixed by the first solve after (re)init
        self._tdir: Optional[float] = None
        self._malloc_done = False
        self._force_setup = True
        self._setup_done = False
        self._res_recoverable = False
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.nst = 0
        self.nre = 0
        self.nsetups = 0
        self.netf = 0
        self.ncfn = 0
        self.nni = 0
        self.h0u = 0.0
        self.hused = 0.0

    def _error(self, flag: int, function: str, msg: str) -> int:
        if self.err_handler is not None:
            self.err_handler(flag, self.name, function, msg, self.user_data)
        else:
            logger.warning("[%s ERROR] %s: %s", self.name, function, msg)
        return flag

    # ------------------------------------------------------------------
    # Setup

    def init(self, res: Callable[..., int], t0: float, y0: ArrayLike, yp0: ArrayLike) -> int:
        if res is None:
            return self._error(ReturnFlag.ILL_INPUT, "init", "res = None illegal.")
        y0 = np.array(y0, dtype=float).ravel()
        yp0 = np.array(yp0, dtype=float).ravel()
        if y0.shape != yp0.shape:
            return self._error(
                ReturnFlag.ILL_INPUT, "init", "y0 and yp0 differ in length."
            )
        self.res = res
        self._malloc_done = True
        return self._set_initial(t0, y0, yp0)

    def reinit(self, t0: float, y0: ArrayLike, yp0: ArrayLike) -> int:
        if not self._malloc_done:
            return self._error(ReturnFlag.NO_MALLOC, "reinit", "Attempt to call before init.")
        y0 = np.array(y0, dtype=float).ravel()
        yp0 = np.array(yp0, dtype=float).ravel()
        if y0.shape != self.y.shape or yp0.shape != self.y.shape:
            return self._error(
                ReturnFlag.ILL_INPUT, "reinit", "State length changed since init."
            )
        return self._set_initial(t0, y0, yp0)

    def _set_initial(self, t0: float, y0: NDArray, yp0: NDArray) -> int:
        self.tn = self.tcur = float(t0)
        self.y = y0
        self.yp = yp0
        self.h = 0.0
        self.cj = self.cjold = 0.0
        self.cjratio = 1.0
        self.tstop = None
        self._tdir = None
        self._force_setup = True
        self._reset_counters()
        return ReturnFlag.SUCCESS

    def set_user_data(self, user_data: Any) -> int:
        self.user_data = user_data
        return ReturnFlag.SUCCESS

    def set_err_handler_fn(self, fn: Optional[Callable[..., None]]) -> int:
        self.err_handler = fn
        return ReturnFlag.SUCCESS

    def ss_tolerances(self, rtol: float, atol: float) -> int:
        if rtol < 0 or atol < 0:
            return self._error(ReturnFlag.ILL_INPUT, "ss_tolerances", "Tolerances must be nonnegative.")
        self.rtol = float(rtol)
        self.atol = float(atol)
        return ReturnFlag.SUCCESS

    def sv_tolerances(self, rtol: float, atol: ArrayLike) -> int:
        atol = np.array(atol, dtype=float).ravel()
        if rtol < 0 or np.any(atol < 0):
            return self._error(ReturnFlag.ILL_INPUT, "sv_tolerances", "Tolerances must be nonnegative.")
        if len(atol) != len(self.y):
            return self._error(ReturnFlag.ILL_INPUT, "sv_tolerances", "abstol has the wrong length.")
        self.rtol = float(rtol)
        self.atol = atol
        return ReturnFlag.SUCCESS

    def set_max_num_steps(self, n: int) -> int:
        self.max_num_steps = int(n) if n > 0 else 500
        return ReturnFlag.SUCCESS

    def set_max_step(self, hmax: float) -> int:
        if hmax < 0:
            return self._error(ReturnFlag.ILL_INPUT, "set_max_step", "hmax < 0 illegal.")
        self.hmax = np.inf if hmax == 0 else float(hmax)
        return ReturnFlag.SUCCESS

    def set_id(self, id: ArrayLike) -> int:
        id = np.array(id, dtype=float).ravel()
        if len(id) != len(self.y):
            return self._error(ReturnFlag.ILL_INPUT, "set_id", "id has the wrong length.")
        self.id = id
        return ReturnFlag.SUCCESS

    def set_suppress_alg(self, flag: bool) -> int:
        self.suppress_alg = bool(flag)
        return ReturnFlag.SUCCESS

    def set_stop_time(self, tstop: float) -> int:
        self.tstop = float(tstop)
        return ReturnFlag.SUCCESS

    def attach_linear_solver(self, module: LinearModule) -> int:
        if not self._malloc_done:
            return self._error(ReturnFlag.LINIT_FAIL, "attach_linear_solver", "Attempt to call before init.")
        self.lin = module
        self._force_setup = True
        return module.bind(self)

    # ------------------------------------------------------------------
    # Quadratures

    def quad_init(self, rhsQ: Callable[..., int], q0: ArrayLike) -> int:
        if not self._malloc_done:
            return self._error(ReturnFlag.NO_MALLOC, "quad_init", "Attempt to call before init.")
        self.rhsQ = rhsQ
        self.q = np.array(q0, dtype=float).ravel()
        return ReturnFlag.SUCCESS

    def quad_reinit(self, q0: ArrayLike) -> int:
        if self.rhsQ is None:
            return self._error(ReturnFlag.NO_MALLOC, "quad_reinit", "Quadratures not initialized.")
        self.q = np.array(q0, dtype=float).ravel()
        return ReturnFlag.SUCCESS

    def set_quad_err_con(self, flag: bool) -> int:
        self.quad_err_con = bool(flag)
        return ReturnFlag.SUCCESS

    def quad_ss_tolerances(self, rtol: float, atol: float) -> int:
        self.rtolQ = float(rtol)
        self.atolQ = float(atol)
        return ReturnFlag.SUCCESS

    def get_quad(self) -> tuple[float, NDArray]:
        q = self.q if self.q is not None else np.zeros(0)
        return self.tn, q.copy()

    # ------------------------------------------------------------------
    # Callback invocation

    def invoke(self, fn: Callable[..., int], t: float, *args: Any) -> int:
        """Call a user callback, prepending the forward state when backward."""
        if self.forward is not None:
            flag, y, yp = self.forward_state(t)
            if flag != ReturnFlag.SUCCESS:
                return flag
            return fn(t, y, yp, *args, self.user_data)
        return fn(t, *args, self.user_data)

    def forward_state(self, t: float) -> tuple[int, Optional[NDArray], Optional[NDArray]]:
        """Interpolated forward (y, y') at t; backward problems only."""
        if self.forward is None or self.forward.tape is None:
            return ReturnFlag.NO_ADJ, None, None
        return self.forward.tape.get_y(t)

    def residual(self, t: float, y: NDArray, yp: NDArray, rr: NDArray) -> int:
        self.nre += 1
        return self.invoke(self.res, t, y, yp, rr)

    def _quad_rhs(self, t: float, y: NDArray, yp: NDArray) -> tuple[int, NDArray]:
        assert self.q is not None
        rq = np.zeros_like(self.q)
        return self.invoke(self.rhsQ, t, y, yp, rq), rq

    def ewt(self, y: NDArray) -> NDArray:
        """Error weights 1 / (rtol |y| + atol)."""
        return 1.0 / (self.rtol * np.abs(y) + self.atol)

    def _err_mask(self) -> Optional[NDArray]:
        if self.suppress_alg and self.id is not None:
            return self.id != 0
        return None

    # ------------------------------------------------------------------
    # Consistent initial conditions

    def calc_ic(self, tout1: float) -> int:
        """
        Compute algebraic components of y and differential components of y'
        from the differential components of y (requires set_id).
        """
        if not self._malloc_done:
            return self._error(ReturnFlag.NO_MALLOC, "calc_ic", "Attempt to call before init.")
        if self.id is None:
            return self._error(ReturnFlag.ILL_INPUT, "calc_ic", "id = None illegal.")
        if tout1 == self.tn:
            return self._error(ReturnFlag.ILL_INPUT, "calc_ic", "tout1 too close to t0.")

        diff = self.id != 0
        nd = int(np.count_nonzero(diff))
        n = len(self.y)
        t = self.tn

        def unpack(u: NDArray) -> tuple[NDArray, NDArray]:
            y = self.y.copy()
            yp = self.yp.copy()
            yp[diff] = u[:nd]
            y[~diff] = u[nd:]
            return y, yp

        def residual_fn(u: NDArray) -> tuple[int, NDArray]:
            y, yp = unpack(u)
            rr = np.zeros(n)
            return self.residual(t, y, yp, rr), rr

        u = np.concatenate([self.yp[diff], self.y[~diff]])
        flag, rr = residual_fn(u)
        if flag > 0:
            return self._error(ReturnFlag.FIRST_RES_FAIL, "calc_ic", "The residual function failed at the first call.")
        if flag < 0:
            return self._error(ReturnFlag.RES_FAIL, "calc_ic", "The residual function failed unrecoverably.")

        lu = DenseLinearSolver()
        sqrt_eps = np.sqrt(np.finfo(float).eps)
        for iteration in range(10):
            if not np.any(rr):
                break

            # Difference-quotient Jacobian w.r.t. the unknowns
            J = np.zeros((n, n))
            for j in range(n):
                inc = sqrt_eps * max(abs(u[j]), 1.0)
                u_pert = u.copy()
                u_pert[j] += inc
                flag, r_pert = residual_fn(u_pert)
                if flag != 0:
                    return self._error(
                        ReturnFlag.NO_RECOVERY if flag > 0 else ReturnFlag.RES_FAIL,
                        "calc_ic",
                        "The residual function failed.",
                    )
                J[:, j] = (r_pert - rr) / inc
            lu.factorize(J)
            du = lu.solve(-rr)
            if not np.all(np.isfinite(du)):
                return self._error(
                    ReturnFlag.NO_RECOVERY, "calc_ic", "The Jacobian of the unknowns is singular."
                )

            w = 1.0 / (self.rtol * np.abs(u) + self.atol)
            if wrms(du, w) <= 1e-3:
                u = u + du
                break

            # Backtracking line search on the residual norm
            fnorm = float(np.linalg.norm(rr))
            lam = 1.0
            while True:
                u_new = u + lam * du
                flag, rr_new = residual_fn(u_new)
                if flag < 0:
                    return self._error(ReturnFlag.RES_FAIL, "calc_ic", "The residual function failed unrecoverably.")
                if flag == 0 and np.linalg.norm(rr_new) <= (1 - 1e-4 * lam) * fnorm:
                    break
                lam *= 0.5
                if lam < 1e-3:
                    return self._error(
                        ReturnFlag.LINESEARCH_FAIL, "calc_ic", "The line search failed."
                    )
            u, rr = u_new, rr_new
        else:
            return self._error(ReturnFlag.CONV_FAIL, "calc_ic", "Newton iterations failed to converge.")

        self.y, self.yp = unpack(u)
        logger.debug("%s: consistent initial conditions after %d iterations", self.name, iteration + 1)
        return ReturnFlag.SUCCESS

    def get_consistent_ic(self) -> tuple[NDArray, NDArray]:
        return self.y.copy(), self.yp.copy()

    # ------------------------------------------------------------------
    # Time stepping

    def _implicit_euler(
        self, t_base: float, y_base: NDArray, h: float, guess: NDArray
    ) -> tuple[int, NDArray, NDArray]:
        """One implicit Euler step from (t_base, y_base); returns (flag, y, y')."""
        assert self.lin is not None
        n = len(y_base)
        if n == 0:
            return ReturnFlag.SUCCESS, y_base.copy(), y_base.copy()
        cj = 1.0 / h
        t_new = t_base + h
        w = self.ewt(y_base)
        last: dict[str, NDArray] = {}

        def residual_fn(y: NDArray) -> tuple[int, NDArray]:
            yp = (y - y_base) * cj
            rr = np.zeros(n)
            flag = self.residual(t_new, y, yp, rr)
            if flag > 0:
                self._res_recoverable = True
            elif flag < 0:
                flag = ReturnFlag.RES_FAIL
            last["yp"], last["rr"] = yp, rr
            return flag, rr

        def linear_solve_fn(y: NDArray, b: NDArray) -> tuple[int, NDArray]:
            yp, rr = last["yp"], last["rr"]
            self.cj = cj
            self.tcur = t_new
            if self._force_setup or self.cjold == 0.0 or abs(cj / self.cjold - 1.0) > 0.25:
                flag = self.lin.setup(t_new, y, yp, rr, cj)
                self.nsetups += 1
                if flag != 0:
                    return (ReturnFlag.LSETUP_FAIL if flag < 0 else flag), b
                self.cjold = cj
                self._force_setup = False
                self._setup_done = True
            self.cjratio = cj / self.cjold
            flag, x = self.lin.solve(b, t_new, y, yp, rr, cj, w)
            if flag < 0:
                flag = ReturnFlag.LSOLVE_FAIL
            return flag, x

        flag, y, iterations = self.newton_solve(
            residual_fn,
            linear_solve_fn,
            guess,
            norm=lambda v: wrms(v, w),
            tol=NLS_TOL,
        )
        self.nni += iterations
        return flag, y, (y - y_base) * cj

    def _attempt(self, h: float) -> tuple[int, Optional[dict[str, Any]]]:
        """Full step and two half steps of size h from the current state."""
        t, y0, yp0 = self.tn, self.y, self.yp
        self._setup_done = False
        self._res_recoverable = False

        flag, y1, yp1 = self._implicit_euler(t, y0, h, y0 + h * yp0)
        if flag != 0:
            return flag, None
        flag, ym, ypm = self._implicit_euler(t, y0, 0.5 * h, y0 + 0.5 * h * yp0)
        if flag != 0:
            return flag, None
        flag, y2, yp2 = self._implicit_euler(t + 0.5 * h, ym, 0.5 * h, ym + 0.5 * h * ypm)
        if flag != 0:
            return flag, None

        w = self.ewt(y0)
        mask = self._err_mask()
        e = y2 - y1
        err = wrms(e[mask], w[mask]) if mask is not None else wrms(e, w)

        step = {"y": 2 * y2 - y1, "yp": 2 * yp2 - yp1, "err": err}

        if self.rhsQ is not None:
            q0 = self.q
            flags_q = []
            flag, f1 = self._quad_rhs(t + h, y1, yp1)
            flags_q.append(flag)
            flag, fm = self._quad_rhs(t + 0.5 * h, ym, ypm)
            flags_q.append(flag)
            flag, f2 = self._quad_rhs(t + h, y2, yp2)
            flags_q.append(flag)
            if any(f < 0 for f in flags_q):
                return ReturnFlag.QRHS_FAIL, None
            if any(f > 0 for f in flags_q):
                return 1, None
            q1 = q0 + h * f1
            q2 = q0 + 0.5 * h * (fm + f2)
            step["q"] = 2 * q2 - q1
            if self.quad_err_con:
                wq = 1.0 / (self.rtolQ * np.abs(q0) + self.atolQ)
                step["err"] = max(err, wrms(q2 - q1, wq))
        return ReturnFlag.SUCCESS, step

    def _step(self, h: float) -> int:
        """Take one accepted step, shrinking h on failures."""
        ncf = nef = 0
        retried = False
        eps = np.finfo(float).eps
        while True:
            if abs(h) <= 16 * eps * max(abs(self.tn), 1.0):
                return self._error(
                    ReturnFlag.ERR_FAIL,
                    "solve",
                    f"At t = {self.tn:g}, the step size h = {h:g} is too small.",
                )

            flag, step = self._attempt(h)
            if flag < 0:
                return self._error(flag, "solve", f"At t = {self.tn:g}, a callback failed unrecoverably.")

            if flag > 0:
                if not self._setup_done and not retried:
                    # Retry with a fresh Newton matrix before shrinking
                    self._force_setup = True
                    retried = True
                    continue
                ncf += 1
                self.ncfn += 1
                if ncf >= MAX_CONV_FAILS:
                    if self._res_recoverable:
                        return self._error(
                            ReturnFlag.REP_RES_ERR,
                            "solve",
                            f"At t = {self.tn:g}, repeated recoverable residual errors.",
                        )
                    return self._error(
                        ReturnFlag.CONV_FAIL,
                        "solve",
                        f"At t = {self.tn:g}, the corrector convergence failed repeatedly.",
                    )
                h *= 0.25
                self._force_setup = True
                continue

            assert step is not None
            err = step["err"]
            if err > 1.0:
                nef += 1
                self.netf += 1
                if nef >= MAX_ERR_FAILS:
                    return self._error(
                        ReturnFlag.ERR_FAIL,
                        "solve",
                        f"At t = {self.tn:g}, the error test failed repeatedly.",
                    )
                h *= 0.25 if nef >= 3 else max(0.2, 0.9 / np.sqrt(err))
                continue

            # Accept
            if self.nst == 0:
                self.h0u = h
            self.tn = self.tn + h
            self.y = step["y"]
            self.yp = step["yp"]
            if "q" in step:
                self.q = step["q"]
            self.nst += 1
            self.hused = h
            fac = 4.0 if err <= 0.0 else min(4.0, max(0.2, 0.9 / np.sqrt(err)))
            if nef or ncf:
                fac = min(fac, 1.0)
            self.h = h * fac
            return ReturnFlag.SUCCESS

    def _initial_step(self, tdist: float) -> float:
        h = 0.001 * tdist
        mask = self._err_mask()
        w = self.ewt(self.y)
        ypnorm = wrms(self.yp[mask], w[mask]) if mask is not None else wrms(self.yp, w)
        if ypnorm * h > 0.5:
            h = 0.5 / ypnorm
        return min(h, self.hmax)

    def solve(self, tout: float) -> tuple[int, float]:
        """
        Integrate to tout; steps are clipped to land on tout (and tstop).

        Returns:
            (flag, tret)
        """
        if not self._malloc_done:
            return self._error(ReturnFlag.NO_MALLOC, "solve", "Attempt to call before init."), self.tn
        if self.lin is None:
            return self._error(ReturnFlag.LINIT_FAIL, "solve", "No linear solver attached."), self.tn

        eps = np.finfo(float).eps
        troundoff = 100 * eps * max(abs(self.tn), abs(tout), 1.0)
        if abs(tout - self.tn) <= troundoff:
            return ReturnFlag.SUCCESS, self.tn
        tdir = 1.0 if tout > self.tn else -1.0
        if self._tdir is not None and tdir != self._tdir:
            return self._error(
                ReturnFlag.ILL_INPUT,
                "solve",
                f"tout = {tout:g} is behind the current time t = {self.tn:g}.",
            ), self.tn

        target = float(tout)
        if self.tstop is not None:
            if (self.tstop - self.tn) * tdir < -troundoff:
                return self._error(
                    ReturnFlag.ILL_INPUT, "solve", "tstop is behind the current time."
                ), self.tn
            if (target - self.tstop) * tdir > 0:
                target = self.tstop

        if self._taping and self.tape is not None and self.tape.is_empty:
            self.tape.record(self.tn, self.y, self.yp)

        self._tdir = tdir
        if self.h == 0.0:
            self.h = tdir * self._initial_step(abs(target - self.tn))

        nsteps = 0
        while (target - self.tn) * tdir > troundoff:
            if nsteps >= self.max_num_steps:
                return self._error(
                    ReturnFlag.TOO_MUCH_WORK,
                    "solve",
                    f"At t = {self.tn:g}, max_num_steps = {self.max_num_steps} taken before reaching tout.",
                ), self.tn

            h_prop = tdir * min(abs(self.h), self.hmax)
            remaining = target - self.tn
            clipped = abs(h_prop) >= abs(remaining)
            h = remaining if clipped else h_prop

            flag = self._step(h)
            if flag != ReturnFlag.SUCCESS:
                return flag, self.tn
            nsteps += 1

            if clipped and abs(self.h) < abs(h_prop) and abs(self.hused) == abs(h):
                self.h = h_prop
            if abs(target - self.tn) <= troundoff:
                self.tn = target
            if self._taping and self.tape is not None:
                self.tape.record(self.tn, self.y, self.yp)

        logger.debug("%s: reached t = %g after %d steps", self.name, self.tn, nsteps)
        if self.tstop is not None and self.tn == self.tstop:
            return ReturnFlag.TSTOP_RETURN, self.tn
        return ReturnFlag.SUCCESS, self.tn

    def get_integrator_stats(self) -> dict[str, Any]:
        return {
            "nsteps": self.nst,
            "nfevals": self.nre,
            "nlinsetups": self.nsetups,
            "netfails": self.netf,
            "qlast": 1,
            "qcur": 1,
            "hinused": self.h0u,
            "hlast": self.hused,
            "hcur": self.h,
            "tcur": self.tn,
            "nniters": self.nni,
            "ncfails": self.ncfn,
        }

    # ------------------------------------------------------------------
    # Adjoint

    def adj_init(self, steps_per_checkpoint: int, interpolation: str = "hermite") -> int:
        if not self._malloc_done:
            return self._error(ReturnFlag.NO_MALLOC, "adj_init", "Attempt to call before init.")
        try:
            self.tape = Tape(steps_per_checkpoint, interpolation)
        except ValueError as e:
            return self._error(ReturnFlag.ILL_INPUT, "adj_init", str(e))
        return ReturnFlag.SUCCESS

    def adj_reinit(self) -> int:
        if self.tape is None:
            return self._error(ReturnFlag.NO_ADJ, "adj_reinit", "adj_init has not been called.")
        self.tape.clear()
        return ReturnFlag.SUCCESS

    def solve_f(self, tout: float) -> tuple[int, float, int]:
        """Like solve, recording every accepted step for backward replay."""
        if self.tape is None:
            return self._error(ReturnFlag.NO_ADJ, "solve_f", "adj_init has not been called."), self.tn, 0
        self._taping = True
        try:
            flag, tret = self.solve(tout)
        finally:
            self._taping = False
        if self.tape.is_empty:
            self.tape.record(self.tn, self.y, self.yp)
        return flag, tret, self.tape.ncheck

    def _check_backward(self, function: str) -> int:
        if self.tape is None:
            return self._error(ReturnFlag.NO_ADJ, function, "adj_init has not been called.")
        if self.tape.is_empty or self.tape.checkpoints[-1].n_steps < 1:
            return self._error(ReturnFlag.NO_FWD, function, "solve_f has not been called.")
        return ReturnFlag.SUCCESS

    def create_b(self, tB0: float, yB0: ArrayLike, ypB0: ArrayLike, resB: Callable[..., int]) -> int:
        """Create the backward problem starting at tB0 (within the tape)."""
        flag = self._check_backward("create_b")
        if flag != ReturnFlag.SUCCESS:
            return flag
        assert self.tape is not None
        lo = min(self.tape.t_first, self.tape.t_last)
        hi = max(self.tape.t_first, self.tape.t_last)
        ttol = 100 * np.finfo(float).eps * max(abs(lo), abs(hi), 1.0)
        if tB0 < lo - ttol or tB0 > hi + ttol:
            return self._error(ReturnFlag.BAD_TB0, "create_b", "tB0 is outside the taped interval.")

        b = DaeSolver(name=f"{self.name}B", forward=self)
        b.user_data = self.user_data
        b.err_handler = self.err_handler
        flag = b.init(resB, tB0, yB0, ypB0)
        if flag != ReturnFlag.SUCCESS:
            return flag
        self.backward = b
        return ReturnFlag.SUCCESS

    def solve_b(self, tBout: float) -> int:
        flag = self._check_backward("solve_b")
        if flag != ReturnFlag.SUCCESS:
            return flag
        if self.backward is None:
            return self._error(ReturnFlag.NO_BCK, "solve_b", "No backward problem was created.")
        flag, _ = self.backward.solve(tBout)
        return flag

    def get_b(self) -> tuple[float, NDArray, NDArray]:
        assert self.backward is not None
        b = self.backward
        return b.tn, b.y.copy(), b.yp.copy()

    def get_quad_b(self) -> tuple[float, NDArray]:
        assert self.backward is not None
        return self.backward.get_quad()
