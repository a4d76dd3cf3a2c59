"""Solver requirements deduction."""

from dataclasses import dataclass

from symdae.core.options import (
    INTERPOLATION_TYPES,
    ITERATIVE_SOLVERS,
    LINEAR_SOLVERS,
    IntegratorOptions,
)
from symdae.errors import ConfigurationError


@dataclass
class SolverRequirements:
    """Which sub-functions the callbacks need, per direction."""

    # Forward problem
    linear_solver: str
    needs_jacobian: bool   # jacF: dense/banded assembly or preconditioner
    needs_jtimes: bool     # jtimesF: exact Krylov products
    needs_linsol: bool     # linsolF: preconditioner or user-defined solve

    # Backward problem
    needs_backward: bool
    linear_solver_b: str
    needs_jacobian_b: bool
    needs_jtimes_b: bool
    needs_linsol_b: bool

    # Checkpointing of the forward trajectory
    needs_taping: bool


def _validate(options: IntegratorOptions) -> None:
    for key, allowed in (
        ("linear_solver", LINEAR_SOLVERS),
        ("linear_solverB", LINEAR_SOLVERS),
        ("iterative_solver", ITERATIVE_SOLVERS),
        ("iterative_solverB", ITERATIVE_SOLVERS),
        ("interpolation_type", INTERPOLATION_TYPES),
    ):
        value = getattr(options, key)
        if value not in allowed:
            raise ConfigurationError(
                f'"{key}" must be one of {allowed}, got {value!r}'
            )
    if options.steps_per_checkpoint < 1:
        raise ConfigurationError('"steps_per_checkpoint" must be positive')


def _needs(policy: str, exact_jacobian: bool, use_preconditioner: bool) -> tuple[bool, bool, bool]:
    """(jacobian, jtimes, linsol) for one direction."""
    if policy in ("dense", "banded"):
        return exact_jacobian, False, False

    if policy == "iterative":
        return use_preconditioner, exact_jacobian, use_preconditioner

    # User-defined: lsetup/lsolve go through jac + linsol
    return True, False, True


def deduce_requirements(
    options: IntegratorOptions,
    has_backward: bool,
) -> SolverRequirements:
    """
    Dispatch from the linear solver options to the generated sub-functions.

    Args:
        options: Resolved integrator options
        has_backward: Whether the problem has backward states

    Returns:
        Requirements for forward and (if present) backward problems
    """
    options = options.resolved()
    _validate(options)

    jac, jtimes, linsol = _needs(
        options.linear_solver,
        options.exact_jacobian,
        options.use_preconditioner,
    )

    if not has_backward:
        return SolverRequirements(
            linear_solver=options.linear_solver,
            needs_jacobian=jac,
            needs_jtimes=jtimes,
            needs_linsol=linsol,
            needs_backward=False,
            linear_solver_b=options.linear_solverB,
            needs_jacobian_b=False,
            needs_jtimes_b=False,
            needs_linsol_b=False,
            needs_taping=False,
        )

    jac_b, jtimes_b, linsol_b = _needs(
        options.linear_solverB,
        options.exact_jacobianB,
        options.use_preconditionerB,
    )
    return SolverRequirements(
        linear_solver=options.linear_solver,
        needs_jacobian=jac,
        needs_jtimes=jtimes,
        needs_linsol=linsol,
        needs_backward=True,
        linear_solver_b=options.linear_solverB,
        needs_jacobian_b=jac_b,
        needs_jtimes_b=jtimes_b,
        needs_linsol_b=linsol_b,
        needs_taping=True,
    )
