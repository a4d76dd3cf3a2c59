"""Linear algebra collaborators."""

from symdae.algebra.protocols import LinearSolver
from symdae.algebra.dense import DenseLinearSolver

__all__ = ["LinearSolver", "DenseLinearSolver"]
