"""DAE solver collaborator: stepping, linear modules and taping."""

from symdae.solvers.flags import ReturnFlag, get_return_flag_name, is_success
from symdae.solvers.dae_solver import DaeSolver
from symdae.solvers.linear import (
    LinearModule,
    DenseModule,
    BandedModule,
    IterativeModule,
    UserDefinedModule,
    create_linear_module,
)
from symdae.solvers.tape import Tape

__all__ = [
    "ReturnFlag",
    "get_return_flag_name",
    "is_success",
    "DaeSolver",
    "LinearModule",
    "DenseModule",
    "BandedModule",
    "IterativeModule",
    "UserDefinedModule",
    "create_linear_module",
    "Tape",
]
