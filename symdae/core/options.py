"""Option containers for functions and integrators."""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional


LINEAR_SOLVERS = ("dense", "banded", "iterative", "user_defined")
ITERATIVE_SOLVERS = ("gmres", "bcgstab", "tfqmr")
INTERPOLATION_TYPES = ("hermite", "polynomial")


@dataclass
class FunctionOptions:
    """Options recognized by every Function."""

    name: str = "unnamed_function"
    sparse: bool = True
    number_of_fwd_dir: int = 1
    number_of_adj_dir: int = 1
    verbose: bool = False
    # Keep generated Jacobians to avoid building identical ones twice
    store_jacobians: bool = False

    def __post_init__(self) -> None:
        if self.number_of_fwd_dir < 0 or self.number_of_adj_dir < 0:
            raise ValueError("Number of directions must be nonnegative")

    def updated(self, **kwargs: Any) -> "FunctionOptions":
        """Copy with overrides; unknown keys raise TypeError."""
        known = {f.name for f in fields(self)}
        unknown = set(kwargs) - known
        if unknown:
            raise TypeError(f"Unknown option(s): {sorted(unknown)}")
        return replace(self, **kwargs)


@dataclass
class IntegratorOptions(FunctionOptions):
    """Integrator options; backward ("B") entries default to forward ones."""

    name: str = "integrator"
    t0: float = 0.0
    tf: float = 1.0

    # Tolerances
    abstol: float = 1e-8
    reltol: float = 1e-6
    abstolB: Optional[float] = None
    reltolB: Optional[float] = None
    abstolv: Optional[list[float]] = None

    # Stepping
    max_num_steps: int = 10000
    max_step_size: float = 0.0
    stop_at_end: bool = True
    suppress_algebraic: bool = False

    # Consistent initial conditions
    calc_ic: bool = True
    calc_icB: Optional[bool] = None
    first_time: Optional[float] = None
    init_xdot: Optional[list[float]] = None

    # Linear solvers
    linear_solver: str = "dense"
    linear_solverB: Optional[str] = None
    iterative_solver: str = "gmres"
    iterative_solverB: Optional[str] = None
    max_krylov: int = 10
    max_krylovB: Optional[int] = None
    use_preconditioner: bool = False
    use_preconditionerB: Optional[bool] = None
    upper_bandwidth: Optional[int] = None
    lower_bandwidth: Optional[int] = None
    upper_bandwidthB: Optional[int] = None
    lower_bandwidthB: Optional[int] = None
    exact_jacobian: bool = True
    exact_jacobianB: Optional[bool] = None
    cj_scaling: bool = False

    # Quadratures
    quad_err_con: bool = False

    # Adjoint taping
    steps_per_checkpoint: int = 20
    interpolation_type: str = "hermite"

    # Derived, filled by resolved()
    _resolved: bool = field(default=False, repr=False)

    def resolved(self) -> "IntegratorOptions":
        """Fill backward and dependent defaults from the forward values."""
        if self._resolved:
            return self
        return replace(
            self,
            abstolB=self.abstol if self.abstolB is None else self.abstolB,
            reltolB=self.reltol if self.reltolB is None else self.reltolB,
            calc_icB=self.calc_ic if self.calc_icB is None else self.calc_icB,
            first_time=self.tf if self.first_time is None else self.first_time,
            linear_solverB=(
                self.linear_solver
                if self.linear_solverB is None else self.linear_solverB
            ),
            iterative_solverB=(
                self.iterative_solver
                if self.iterative_solverB is None else self.iterative_solverB
            ),
            max_krylovB=(
                self.max_krylov if self.max_krylovB is None else self.max_krylovB
            ),
            use_preconditionerB=(
                self.use_preconditioner
                if self.use_preconditionerB is None
                else self.use_preconditionerB
            ),
            exact_jacobianB=(
                self.exact_jacobian
                if self.exact_jacobianB is None else self.exact_jacobianB
            ),
            _resolved=True,
        )
