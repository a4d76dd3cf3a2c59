"""Checkpointed forward trajectory storage for backward replay."""

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Optional
import numpy as np
import scipy.interpolate
from numpy.typing import NDArray

from symdae.solvers.flags import ReturnFlag


@dataclass
class Checkpoint:
    """Accepted forward steps between two checkpoint times."""

    t: list[float] = field(default_factory=list)
    y: list[NDArray] = field(default_factory=list)
    yp: list[NDArray] = field(default_factory=list)

    @property
    def t0(self) -> float:
        return self.t[0]

    @property
    def t1(self) -> float:
        return self.t[-1]

    @property
    def n_steps(self) -> int:
        """Number of steps (points minus one)."""
        return len(self.t) - 1


class Tape:
    """
    Forward trajectory grouped into checkpoints of ``steps_per_checkpoint``
    steps each. Consecutive checkpoints share their boundary point.

    States are interpolated within one checkpoint, either by cubic Hermite
    interpolation of (y, y') or by a polynomial spline through y.
    """

    def __init__(self, steps_per_checkpoint: int = 20, interpolation: str = "hermite"):
        if steps_per_checkpoint < 1:
            raise ValueError("steps_per_checkpoint must be positive")
        if interpolation not in ("hermite", "polynomial"):
            raise ValueError(f"Unknown interpolation type {interpolation!r}")
        self.steps_per_checkpoint = steps_per_checkpoint
        self.interpolation = interpolation
        self.checkpoints: list[Checkpoint] = []
        self._cached: Optional[tuple[int, Any]] = None

    @property
    def ncheck(self) -> int:
        """Number of checkpoints."""
        return len(self.checkpoints)

    @property
    def is_empty(self) -> bool:
        return not self.checkpoints

    @property
    def t_first(self) -> float:
        return self.checkpoints[0].t0

    @property
    def t_last(self) -> float:
        return self.checkpoints[-1].t1

    def clear(self) -> None:
        self.checkpoints = []
        self._cached = None

    def record(self, t: float, y: NDArray, yp: NDArray) -> None:
        """Append one point; the first point seeds the first checkpoint."""
        if not self.checkpoints:
            self.checkpoints.append(Checkpoint())
        cp = self.checkpoints[-1]
        if cp.n_steps >= self.steps_per_checkpoint:
            cp = Checkpoint([cp.t[-1]], [cp.y[-1]], [cp.yp[-1]])
            self.checkpoints.append(cp)
        cp.t.append(float(t))
        cp.y.append(np.array(y, dtype=float))
        cp.yp.append(np.array(yp, dtype=float))
        if self._cached is not None and self._cached[0] == len(self.checkpoints) - 1:
            self._cached = None

    def _interpolant(self, k: int) -> Any:
        if self._cached is not None and self._cached[0] == k:
            return self._cached[1]

        cp = self.checkpoints[k]
        order = np.argsort(cp.t)
        t = np.asarray(cp.t)[order]
        y = np.asarray(cp.y)[order]
        if self.interpolation == "hermite":
            yp = np.asarray(cp.yp)[order]
            spl = scipy.interpolate.CubicHermiteSpline(t, y, yp, axis=0)
        else:
            spl = scipy.interpolate.make_interp_spline(
                t, y, k=min(3, len(t) - 1), axis=0
            )
        self._cached = (k, spl)
        return spl

    def get_y(self, t: float) -> tuple[int, Optional[NDArray], Optional[NDArray]]:
        """
        Interpolated forward state at time t.

        Returns:
            (flag, y, yp); flag is GETY_BADT outside the taped interval
        """
        if not self.checkpoints or self.checkpoints[-1].n_steps < 1:
            return ReturnFlag.NO_FWD, None, None

        lo = min(self.t_first, self.t_last)
        hi = max(self.t_first, self.t_last)
        ttol = 100 * np.finfo(float).eps * max(abs(lo), abs(hi), 1.0)
        if t < lo - ttol or t > hi + ttol:
            return ReturnFlag.GETY_BADT, None, None
        t = min(max(t, lo), hi)

        starts = [min(cp.t0, cp.t1) for cp in self.checkpoints]
        k = max(bisect_right(starts, t) - 1, 0)
        if self.t_first > self.t_last:
            # Taped backward in time
            starts = [-max(cp.t0, cp.t1) for cp in self.checkpoints]
            k = max(bisect_right(starts, -t) - 1, 0)
        k = min(k, self.ncheck - 1)
        if self.checkpoints[k].n_steps < 1:
            k -= 1

        spl = self._interpolant(k)
        return ReturnFlag.SUCCESS, np.asarray(spl(t)), np.asarray(spl(t, 1))
