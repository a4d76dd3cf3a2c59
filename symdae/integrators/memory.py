"""Per-run integrator memory."""

from enum import Enum, auto
from typing import Any, Optional, TYPE_CHECKING
import numpy as np
from numpy.typing import NDArray

from symdae.core.stats import Statistics
from symdae.solvers.dae_solver import DaeSolver

if TYPE_CHECKING:
    from symdae.integrators.integrator import DaeIntegrator


class MemoryState(Enum):
    """Position of a memory in the integration sequence."""
    UNINITIALIZED = auto()  # allocated, no solver attached
    ALLOCATED = auto()      # solver created by init_memory
    RESET = auto()          # forward state set by reset
    ADVANCING = auto()      # forward integration in progress
    BACKWARD_RESET = auto() # backward state set by reset_b
    RETREATING = auto()     # backward integration in progress
    FREED = auto()


class DaeIntegratorMemory:
    """
    Solver handle, state vectors and counters of one integration run.

    Owned exclusively by its creator; several memories of the same
    integrator may be used independently. The solver is released by
    ``free()``, on destruction or when leaving a ``with`` block.
    """

    def __init__(self, integrator: "DaeIntegrator", n_arg: int = 9, n_res: int = 2):
        self.integrator = integrator
        nx, nz = integrator.nx, integrator.nz
        nrx, nrz = integrator.nrx, integrator.nrz

        # Forward state, derivatives and quadratures
        self.xz = np.zeros(nx + nz)
        self.xzdot: Optional[NDArray] = None
        self.q = np.zeros(integrator.nq)
        self.p = np.zeros(integrator.np)

        # Backward state
        self.rxz = np.zeros(nrx + nrz)
        self.rxzdot: Optional[NDArray] = None
        self.rq = np.zeros(integrator.nrq)
        self.rp = np.zeros(integrator.nrp)

        # Current time (forward or backward)
        self.t = 0.0

        # Argument and result slots of sub-function calls
        self.arg: list[Any] = [None] * n_arg
        self.res: list[Optional[NDArray]] = [None] * n_res

        # Newton matrices for jacF / jacB
        self.jac: Optional[NDArray] = None
        self.jacB: Optional[NDArray] = None

        # Linear solvers (by sub-function name) factorizing jac / jacB
        self.linsol: dict[str, Any] = {}

        self.solver: Optional[DaeSolver] = None
        self.stats = Statistics()
        self.ncheck = 0

        self.is_init_taping = False
        self.is_init_adj = False
        self.state = MemoryState.UNINITIALIZED

    def set_arg(self, *args: Any) -> None:
        """Fill the leading argument slots, clearing the rest."""
        self.arg[:len(args)] = args
        self.arg[len(args):] = [None] * (len(self.arg) - len(args))

    def set_res(self, *res: Optional[NDArray]) -> None:
        self.res[:len(res)] = res
        self.res[len(res):] = [None] * (len(self.res) - len(res))

    @property
    def is_freed(self) -> bool:
        return self.state == MemoryState.FREED

    def free(self) -> None:
        """Release the solver and buffers; safe to call repeatedly."""
        if self.state == MemoryState.FREED:
            return
        self.solver = None
        self.xzdot = self.rxzdot = None
        self.jac = self.jacB = None
        self.linsol = {}
        self.arg = [None] * len(self.arg)
        self.res = [None] * len(self.res)
        self.state = MemoryState.FREED

    def __enter__(self) -> "DaeIntegratorMemory":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.free()

    def __del__(self) -> None:
        if getattr(self, "state", MemoryState.FREED) != MemoryState.FREED:
            self.free()

    def __repr__(self) -> str:
        return (
            f"DaeIntegratorMemory({self.integrator.name!r}, t={self.t}, "
            f"state={self.state.name})"
        )
