"""Dense linear solver using SciPy."""

from typing import Optional, Tuple
import numpy as np
import scipy.linalg
from numpy.typing import NDArray

from symdae.errors import InvalidStateError


class DenseLinearSolver:
    """LU factorization through scipy.linalg, reused across solves."""

    def __init__(self) -> None:
        self._lu: Optional[Tuple[NDArray, NDArray]] = None

    @property
    def is_factorized(self) -> bool:
        return self._lu is not None

    def factorize(self, A: NDArray) -> None:
        """
        Compute LU factorization using scipy.

        Raises:
            numpy.linalg.LinAlgError: if A is not square
        """
        A = np.atleast_2d(np.asarray(A, dtype=float))
        if A.shape[0] != A.shape[1]:
            raise np.linalg.LinAlgError(f"Matrix of shape {A.shape} is not square")
        self._lu = scipy.linalg.lu_factor(A)

    def solve(self, b: NDArray, trans: bool = False) -> NDArray:
        """
        Solve using the stored factorization.

        Args:
            b: Right-hand side
            trans: False for Ax=b, True for A^T x=b

        Returns:
            Solution x, shaped like b
        """
        if self._lu is None:
            raise InvalidStateError("Linear solver used before factorize()")
        b = np.asarray(b, dtype=float)
        x = scipy.linalg.lu_solve(self._lu, b.ravel(), trans=int(trans))
        return x.reshape(b.shape)
