"""Function abstraction, sparsity and sensitivity propagation."""

from symdae.core.sparsity import Sparsity
from symdae.core.function_io import FunctionIO
from symdae.core.options import FunctionOptions, IntegratorOptions
from symdae.core.stats import Statistics
from symdae.core.function import Function
from symdae.core.sx_function import SXFunction
from symdae.core.jacobian import JacobianBlockCache
from symdae.core.sensitivity import (
    adjoint_sensitivities,
    derivative_function,
    forward_sensitivities,
)

__all__ = [
    "Sparsity",
    "FunctionIO",
    "FunctionOptions",
    "IntegratorOptions",
    "Statistics",
    "Function",
    "SXFunction",
    "JacobianBlockCache",
    "forward_sensitivities",
    "adjoint_sensitivities",
    "derivative_function",
]
