"""Linear solver protocol."""

from typing import Protocol
from numpy.typing import NDArray


class LinearSolver(Protocol):
    """
    Protocol for factorize-once, solve-many linear solvers.
    Used for Newton systems, preconditioners and user-defined linear solves.
    """

    def factorize(self, A: NDArray) -> None:
        """
        Factorize the system matrix.

        Args:
            A: Square system matrix
        """
        ...

    def solve(self, b: NDArray, trans: bool = False) -> NDArray:
        """
        Solve using the current factorization.

        Args:
            b: Right-hand side
            trans: Solve A^T x = b instead of A x = b

        Returns:
            Solution x
        """
        ...
