"""DAE integrator with backward (adjoint) integration."""

from symdae.integrators.dae import (
    DaeIn,
    DaeOut,
    RDaeIn,
    RDaeOut,
    IntegratorIn,
    IntegratorOut,
    dae_function,
    backward_dae_function,
)
from symdae.integrators.requirements import SolverRequirements, deduce_requirements
from symdae.integrators.memory import DaeIntegratorMemory, MemoryState
from symdae.integrators.integrator import DaeIntegrator

__all__ = [
    "DaeIn",
    "DaeOut",
    "RDaeIn",
    "RDaeOut",
    "IntegratorIn",
    "IntegratorOut",
    "dae_function",
    "backward_dae_function",
    "SolverRequirements",
    "deduce_requirements",
    "DaeIntegratorMemory",
    "MemoryState",
    "DaeIntegrator",
]
