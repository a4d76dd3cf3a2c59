"""Per-slot value and sensitivity buffers."""

from dataclasses import dataclass, field
from typing import Optional
import numpy as np
from numpy.typing import NDArray, ArrayLike

from symdae.core.sparsity import Sparsity


@dataclass
class FunctionIO:
    """One input or output slot of a Function."""

    sparsity: Sparsity = field(default_factory=lambda: Sparsity.dense(1, 1))
    data: Optional[NDArray] = None
    fwd: list[NDArray] = field(default_factory=list)  # forward directions
    adj: list[NDArray] = field(default_factory=list)  # adjoint directions

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = np.zeros(self.sparsity.shape)

    @property
    def shape(self) -> tuple[int, int]:
        return self.sparsity.shape

    @property
    def numel(self) -> int:
        return self.sparsity.numel

    def init(self, nfdir: int, nadir: int) -> None:
        """Size the direction buffers; the only place they are resized."""
        self.data = np.zeros(self.shape)
        self.fwd = [np.zeros(self.shape) for _ in range(nfdir)]
        self.adj = [np.zeros(self.shape) for _ in range(nadir)]

    def set(self, value: ArrayLike, target: Optional[NDArray] = None) -> None:
        """Copy value into the primal buffer (or into target)."""
        if target is None:
            target = self.data
        target[...] = as_slot_array(value, self.shape)


def as_slot_array(value: ArrayLike, shape: tuple[int, int]) -> NDArray:
    """Reshape a scalar, flat vector or matrix to a slot shape."""
    arr = np.asarray(value, dtype=float)
    if arr.shape == shape:
        return arr
    if arr.size != shape[0] * shape[1]:
        raise ValueError(
            f"Dimension mismatch: got {arr.size} elements for a slot of "
            f"shape {shape}"
        )
    # Flat data is column-major
    return arr.reshape(shape, order="F")
