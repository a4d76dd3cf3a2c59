"""Linear solver modules for the Newton systems of DaeSolver."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, TYPE_CHECKING
import numpy as np
import scipy.linalg
import scipy.sparse.linalg
from numpy.typing import NDArray

from symdae.algebra.dense import DenseLinearSolver
from symdae.algebra.protocols import LinearSolver
from symdae.core.options import ITERATIVE_SOLVERS, LINEAR_SOLVERS
from symdae.errors import ConfigurationError
from symdae.solvers.flags import ReturnFlag

if TYPE_CHECKING:
    from symdae.solvers.dae_solver import DaeSolver


class LinearModule(ABC):
    """
    Solves J x = b with J = dF/dy + cj * dF/dy'.

    ``setup`` is called when the Newton matrix must be (re)formed, ``solve``
    once per Newton iteration. Both return solver flags: 0 on success,
    positive for recoverable failures, negative for fatal ones.
    """

    name = "linear"

    def __init__(self) -> None:
        self.solver: Optional["DaeSolver"] = None

    def bind(self, solver: "DaeSolver") -> int:
        self.solver = solver
        return ReturnFlag.SUCCESS

    @abstractmethod
    def setup(self, t: float, y: NDArray, yp: NDArray, rr: NDArray, cj: float) -> int:
        ...

    @abstractmethod
    def solve(
        self,
        b: NDArray,
        t: float,
        y: NDArray,
        yp: NDArray,
        rr: NDArray,
        cj: float,
        weight: NDArray,
    ) -> tuple[int, NDArray]:
        ...

    def dq_jacobian(
        self, t: float, y: NDArray, yp: NDArray, rr: NDArray, cj: float
    ) -> tuple[int, NDArray]:
        """Difference-quotient approximation of the Newton matrix."""
        assert self.solver is not None
        n = len(y)
        J = np.zeros((n, n))
        r_pert = np.zeros(n)
        sqrt_eps = np.sqrt(np.finfo(float).eps)
        for j in range(n):
            inc = sqrt_eps * max(abs(y[j]), abs(yp[j]) / max(abs(cj), 1.0), 1.0)
            y_pert = y.copy()
            yp_pert = yp.copy()
            y_pert[j] += inc
            yp_pert[j] += cj * inc
            flag = self.solver.residual(t, y_pert, yp_pert, r_pert)
            if flag != 0:
                return flag, J
            J[:, j] = (r_pert - rr) / inc
        return ReturnFlag.SUCCESS, J


def _cj_scale(cjratio: float) -> float:
    return 2.0 / (1.0 + cjratio)


class DenseModule(LinearModule):
    """Dense LU of the Newton matrix; DQ Jacobian without a callback."""

    name = "dense"

    def __init__(self, jac: Optional[Callable[..., int]] = None):
        super().__init__()
        self.jac = jac
        self.lu: LinearSolver = DenseLinearSolver()

    def setup(self, t, y, yp, rr, cj):
        assert self.solver is not None
        n = len(y)
        if self.jac is None:
            flag, J = self.dq_jacobian(t, y, yp, rr, cj)
        else:
            J = np.zeros((n, n))
            flag = self.solver.invoke(self.jac, t, y, yp, rr, cj, J)
        if flag != 0:
            return flag
        try:
            self.lu.factorize(J)
        except (np.linalg.LinAlgError, ValueError):
            return 1
        return ReturnFlag.SUCCESS

    def solve(self, b, t, y, yp, rr, cj, weight):
        assert self.solver is not None
        x = self.lu.solve(b)
        if not np.all(np.isfinite(x)):
            return 1, b
        if self.solver.cjratio != 1.0:
            x *= _cj_scale(self.solver.cjratio)
        return ReturnFlag.SUCCESS, x


class BandedModule(LinearModule):
    """Banded Newton matrix solved with scipy.linalg.solve_banded."""

    name = "banded"

    def __init__(self, upper: int, lower: int, jac: Optional[Callable[..., int]] = None):
        super().__init__()
        if upper < 0 or lower < 0:
            raise ConfigurationError("Bandwidths must be nonnegative")
        self.upper = upper
        self.lower = lower
        self.jac = jac
        self.ab: Optional[NDArray] = None

    def setup(self, t, y, yp, rr, cj):
        assert self.solver is not None
        n = len(y)
        if self.jac is None:
            flag, J = self.dq_jacobian(t, y, yp, rr, cj)
        else:
            J = np.zeros((n, n))
            flag = self.solver.invoke(
                self.jac, t, y, yp, rr, cj, self.upper, self.lower, J
            )
        if flag != 0:
            return flag

        # ab[u + i - j, j] = J[i, j]
        u, l = self.upper, self.lower
        ab = np.zeros((u + l + 1, n))
        for j in range(n):
            for i in range(max(0, j - u), min(n, j + l + 1)):
                ab[u + i - j, j] = J[i, j]
        self.ab = ab
        return ReturnFlag.SUCCESS

    def solve(self, b, t, y, yp, rr, cj, weight):
        assert self.solver is not None
        if self.ab is None:
            return ReturnFlag.LSOLVE_FAIL, b
        try:
            x = scipy.linalg.solve_banded((self.lower, self.upper), self.ab, b)
        except (np.linalg.LinAlgError, ValueError):
            return 1, b
        if self.solver.cjratio != 1.0:
            x *= _cj_scale(self.solver.cjratio)
        return ReturnFlag.SUCCESS, x


class _CallbackFailed(Exception):
    def __init__(self, flag: int):
        super().__init__(flag)
        self.flag = flag


_KRYLOV = {
    "gmres": scipy.sparse.linalg.gmres,
    "bcgstab": scipy.sparse.linalg.bicgstab,
    "tfqmr": scipy.sparse.linalg.tfqmr,
}


class IterativeModule(LinearModule):
    """
    Matrix-free Krylov solve with an optional preconditioner.

    Jacobian-vector products come from ``jtimes`` when given, otherwise
    from a directional difference of the residual.
    """

    name = "iterative"

    def __init__(
        self,
        method: str = "gmres",
        max_krylov: int = 10,
        jtimes: Optional[Callable[..., int]] = None,
        psetup: Optional[Callable[..., int]] = None,
        psolve: Optional[Callable[..., int]] = None,
        rtol: float = 1e-8,
    ):
        super().__init__()
        if method not in _KRYLOV:
            raise ConfigurationError(
                f"Unknown iterative solver {method!r}, expected one of "
                f"{ITERATIVE_SOLVERS}"
            )
        self.method = method
        self.max_krylov = max_krylov
        self.jtimes = jtimes
        self.psetup = psetup
        self.psolve = psolve
        self.rtol = rtol

    def setup(self, t, y, yp, rr, cj):
        assert self.solver is not None
        if self.psetup is not None:
            return self.solver.invoke(self.psetup, t, y, yp, rr, cj)
        return ReturnFlag.SUCCESS

    def _matvec(self, t, y, yp, rr, cj) -> Callable[[NDArray], NDArray]:
        assert self.solver is not None
        solver = self.solver

        def matvec(v: NDArray) -> NDArray:
            v = np.asarray(v, dtype=float).ravel()
            Jv = np.zeros_like(v)
            if self.jtimes is not None:
                flag = solver.invoke(self.jtimes, t, y, yp, rr, v, Jv, cj)
            else:
                sigma = 1.0 / max(np.linalg.norm(v), np.finfo(float).tiny)
                sigma *= np.sqrt(np.finfo(float).eps) * max(np.linalg.norm(y), 1.0)
                r_pert = np.zeros_like(v)
                flag = solver.residual(t, y + sigma * v, yp + cj * sigma * v, r_pert)
                Jv = (r_pert - rr) / sigma
            if flag != 0:
                raise _CallbackFailed(flag)
            return Jv

        return matvec

    def _precondition(self, t, y, yp, rr, cj) -> Callable[[NDArray], NDArray]:
        assert self.solver is not None
        solver = self.solver

        def apply(r: NDArray) -> NDArray:
            r = np.asarray(r, dtype=float).ravel()
            z = np.zeros_like(r)
            flag = solver.invoke(self.psolve, t, y, yp, rr, r, z, cj, self.rtol)
            if flag != 0:
                raise _CallbackFailed(flag)
            return z

        return apply

    def solve(self, b, t, y, yp, rr, cj, weight):
        n = len(b)
        A = scipy.sparse.linalg.LinearOperator(
            (n, n), matvec=self._matvec(t, y, yp, rr, cj), dtype=float
        )
        M = None
        if self.psolve is not None:
            M = scipy.sparse.linalg.LinearOperator(
                (n, n), matvec=self._precondition(t, y, yp, rr, cj), dtype=float
            )

        kwargs: dict[str, Any] = {"rtol": self.rtol, "atol": 0.0, "M": M}
        if self.method == "gmres":
            kwargs["restart"] = self.max_krylov
            kwargs["maxiter"] = max(n, 1)
        else:
            kwargs["maxiter"] = max(self.max_krylov * max(n, 1), 1)
        try:
            x, info = _KRYLOV[self.method](A, b, **kwargs)
        except _CallbackFailed as e:
            return e.flag, b
        if info > 0:
            # Not converged: retry with a smaller step
            return 1, b
        if info < 0:
            return ReturnFlag.LSOLVE_FAIL, b
        return ReturnFlag.SUCCESS, np.asarray(x, dtype=float)


class UserDefinedModule(LinearModule):
    """
    Linear solve delegated to user callbacks.

    ``lsetup(solver, y, yp, rr)`` prepares the solve; ``lsolve(solver, b,
    weight, y, yp, rr)`` overwrites b with the solution. The solver handle
    exposes ``tcur`` (time of the Newton system), ``cj``, ``cjratio``
    and ``user_data``.
    """

    name = "user_defined"

    def __init__(
        self,
        lsetup: Optional[Callable[..., int]],
        lsolve: Callable[..., int],
    ):
        super().__init__()
        self.lsetup = lsetup
        self.lsolve = lsolve

    def setup(self, t, y, yp, rr, cj):
        if self.lsetup is None:
            return ReturnFlag.SUCCESS
        return self.lsetup(self.solver, y, yp, rr)

    def solve(self, b, t, y, yp, rr, cj, weight):
        x = np.array(b, dtype=float)
        flag = self.lsolve(self.solver, x, weight, y, yp, rr)
        return flag, x


def create_linear_module(
    policy: str,
    *,
    jac: Optional[Callable[..., int]] = None,
    bjac: Optional[Callable[..., int]] = None,
    jtimes: Optional[Callable[..., int]] = None,
    psetup: Optional[Callable[..., int]] = None,
    psolve: Optional[Callable[..., int]] = None,
    lsetup: Optional[Callable[..., int]] = None,
    lsolve: Optional[Callable[..., int]] = None,
    iterative_solver: str = "gmres",
    max_krylov: int = 10,
    upper_bandwidth: int = 0,
    lower_bandwidth: int = 0,
) -> LinearModule:
    """
    Choose the linear module for a Newton system.

    Args:
        policy: One of "dense", "banded", "iterative", "user_defined"
        jac, bjac, jtimes, psetup, psolve, lsetup, lsolve: Solver callbacks;
            None selects difference quotients (or no preconditioning)

    Returns:
        Unbound linear module
    """

    if policy == "dense":
        return DenseModule(jac)

    if policy == "banded":
        return BandedModule(upper_bandwidth, lower_bandwidth, bjac)

    if policy == "iterative":
        return IterativeModule(
            iterative_solver,
            max_krylov,
            jtimes=jtimes,
            psetup=psetup,
            psolve=psolve,
        )

    if policy == "user_defined":
        if lsolve is None:
            raise ConfigurationError("user_defined linear solver needs lsolve")
        return UserDefinedModule(lsetup, lsolve)

    raise ConfigurationError(
        f"Unknown linear solver {policy!r}, expected one of {LINEAR_SOLVERS}"
    )
