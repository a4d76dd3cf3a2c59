"""sympy matrix helpers (column-major conventions)."""

from typing import Any
import sympy


def as_matrix(x: Any) -> sympy.MatrixBase:
    """Promote a scalar expression or nested list to a sympy Matrix."""
    if isinstance(x, sympy.MatrixBase):
        return sympy.Matrix(x)
    if isinstance(x, (list, tuple)):
        return sympy.Matrix(x) if len(x) else sympy.zeros(0, 1)
    return sympy.Matrix([[sympy.sympify(x)]])


def vec(x: sympy.MatrixBase) -> sympy.MatrixBase:
    """Stack the columns of x into one column."""
    nrow, ncol = x.shape
    if nrow * ncol == 0:
        return sympy.zeros(0, 1)
    return sympy.Matrix([x[r, c] for c in range(ncol) for r in range(nrow)])


def reshape(x: sympy.MatrixBase, shape: tuple[int, int]) -> sympy.MatrixBase:
    """Inverse of vec: fill an (nrow, ncol) matrix column by column."""
    nrow, ncol = shape
    if nrow * ncol == 0:
        return sympy.zeros(nrow, ncol)
    flat = vec(x)
    return sympy.Matrix(nrow, ncol, lambda r, c: flat[c * nrow + r])


def symbolic_matrix(name: str, shape: tuple[int, int]) -> sympy.MatrixBase:
    """Matrix of fresh, unique placeholders."""
    nrow, ncol = shape
    if nrow * ncol == 0:
        return sympy.zeros(nrow, ncol)
    return sympy.Matrix(
        nrow, ncol, lambda r, c: sympy.Dummy(f"{name}_{r}_{c}")
    )
