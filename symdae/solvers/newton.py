"""Newton corrector mixin for implicit residual equations."""

from typing import Callable, Optional
import numpy as np
from numpy.typing import NDArray

from symdae.solvers.flags import ReturnFlag


class NewtonMixin:
    """Mixin providing a Newton corrector with a convergence-rate test."""

    def newton_solve(
        self,
        residual_fn: Callable[[NDArray], tuple[int, NDArray]],
        linear_solve_fn: Callable[[NDArray, NDArray], tuple[int, NDArray]],
        z0: NDArray,
        norm: Callable[[NDArray], float],
        tol: float = 0.33,
        max_iter: int = 4,
    ) -> tuple[int, NDArray, int]:
        """
        Newton's method for F(z) = 0.

        Args:
            residual_fn: z -> (flag, r); flag != 0 aborts the iteration
            linear_solve_fn: (z, -r) -> (flag, dz) with an approximate Jacobian
            z0: Initial guess
            norm: Norm the convergence test is measured in
            tol: Convergence tolerance on the estimated error in that norm
            max_iter: Maximum iterations

        Returns:
            flag: 0 on convergence, a positive flag if a callback asked for
                a retry or the iteration diverged, a negative one on failure
            z: Last iterate
            iterations: Number of iterations performed
        """
        z = z0.copy()
        old_norm: Optional[float] = None
        rate = 0.0

        for iteration in range(1, max_iter + 1):
            flag, r = residual_fn(z)
            if flag != 0:
                return flag, z, iteration

            flag, dz = linear_solve_fn(z, -r)
            if flag != 0:
                return flag, z, iteration
            z += dz

            dz_norm = norm(dz)
            if dz_norm <= 100 * np.finfo(float).eps * max(norm(z), 1.0):
                return ReturnFlag.SUCCESS, z, iteration
            if old_norm is None:
                # Error estimate needs a rate; accept only tiny first updates
                if dz_norm <= 1e-4 * tol:
                    return ReturnFlag.SUCCESS, z, iteration
            else:
                rate = dz_norm / old_norm
                if rate > 0.9:
                    break
                if rate / (1.0 - rate) * dz_norm <= tol:
                    return ReturnFlag.SUCCESS, z, iteration
            old_norm = dz_norm

        # Not converged: recoverable, the caller shrinks the step
        return 1, z, iteration
