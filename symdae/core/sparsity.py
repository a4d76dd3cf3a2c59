"""Compressed-column sparsity patterns."""

from dataclasses import dataclass
from functools import cached_property
import numpy as np
import scipy.sparse
from numpy.typing import NDArray


@dataclass(frozen=True, eq=False)
class Sparsity:
    """Structural nonzeros of an (nrow, ncol) matrix in CCS form."""

    nrow: int
    ncol: int
    colind: tuple[int, ...]  # (ncol + 1,)
    row: tuple[int, ...]     # (nnz,)

    @staticmethod
    def dense(nrow: int, ncol: int = 1) -> "Sparsity":
        colind = tuple(range(0, nrow * ncol + 1, nrow)) if nrow else (0,) * (ncol + 1)
        row = tuple(r for _ in range(ncol) for r in range(nrow))
        return Sparsity(nrow, ncol, colind, row)

    @staticmethod
    def empty(nrow: int, ncol: int = 1) -> "Sparsity":
        """Canonical "not dependent" pattern: correct shape, no nonzeros."""
        return Sparsity(nrow, ncol, (0,) * (ncol + 1), ())

    @staticmethod
    def from_mask(mask: NDArray) -> "Sparsity":
        """Pattern of the nonzero entries of a 2D boolean/numeric array."""
        mask = np.atleast_2d(np.asarray(mask, dtype=bool))
        csc = scipy.sparse.csc_matrix(mask)
        csc.sort_indices()
        return Sparsity(
            mask.shape[0],
            mask.shape[1],
            tuple(int(i) for i in csc.indptr),
            tuple(int(i) for i in csc.indices),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return (self.nrow, self.ncol)

    @property
    def numel(self) -> int:
        return self.nrow * self.ncol

    @property
    def nnz(self) -> int:
        return len(self.row)

    def is_empty(self) -> bool:
        """True if there are no structural nonzeros."""
        return self.nnz == 0

    def is_dense(self) -> bool:
        return self.nnz == self.numel

    @cached_property
    def _mask(self) -> NDArray:
        mask = np.zeros(self.shape, dtype=bool)
        for c in range(self.ncol):
            for el in range(self.colind[c], self.colind[c + 1]):
                mask[self.row[el], c] = True
        mask.setflags(write=False)
        return mask

    def to_mask(self) -> NDArray:
        return self._mask

    def bandwidth(self) -> tuple[int, int]:
        """(upper, lower) bandwidth of the pattern."""
        upper = lower = 0
        for c in range(self.ncol):
            for el in range(self.colind[c], self.colind[c + 1]):
                r = self.row[el]
                upper = max(upper, c - r)
                lower = max(lower, r - c)
        return upper, lower

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sparsity):
            return NotImplemented
        return (
            self.shape == other.shape
            and self.colind == other.colind
            and self.row == other.row
        )

    def __hash__(self) -> int:
        return hash((self.nrow, self.ncol, self.colind, self.row))

    def __repr__(self) -> str:
        return f"Sparsity({self.nrow}x{self.ncol}, nnz={self.nnz})"
