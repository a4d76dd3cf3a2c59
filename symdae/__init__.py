"""
Symdae: symbolic functions and DAE integration with adjoint sensitivities.

This library provides:
- Functions of matrix-valued inputs with forward and adjoint sensitivities
- Memoized Jacobian blocks and their sparsity
- Integration of semi-explicit index-1 DAEs with quadratures
- Backward (adjoint) integration along a checkpointed forward trajectory
"""

__version__ = "0.1.0"

from symdae.core.function import Function
from symdae.core.options import FunctionOptions, IntegratorOptions
from symdae.core.sparsity import Sparsity
from symdae.core.sx_function import SXFunction
from symdae.integrators.dae import dae_function, backward_dae_function
from symdae.integrators.integrator import DaeIntegrator

__all__ = [
    "Function",
    "FunctionOptions",
    "IntegratorOptions",
    "Sparsity",
    "SXFunction",
    "dae_function",
    "backward_dae_function",
    "DaeIntegrator",
]
