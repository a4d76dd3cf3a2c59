"""
Solver callbacks of DaeIntegrator.

Every callback receives the integrator memory as its ``user_data``, maps
the solver vectors onto the argument and result slots of a named
sub-function and evaluates it through ``DaeIntegrator.calc_function``.

Exceptions never reach the solver: a RecoverableError becomes its positive
flag, any other exception is logged and reported as -1.
"""

import functools
import logging
from typing import Any, Callable
import numpy as np
from numpy.typing import NDArray

from symdae.errors import InvalidStateError, RecoverableError
from symdae.integrators.memory import DaeIntegratorMemory

logger = logging.getLogger("symdae.integrators")


def to_mem(user_data: Any) -> DaeIntegratorMemory:
    """Recover the integrator memory from a callback's user data."""
    if not isinstance(user_data, DaeIntegratorMemory):
        raise TypeError(
            f"Expected DaeIntegratorMemory as user data, got "
            f"{type(user_data).__name__}"
        )
    if user_data.is_freed:
        raise InvalidStateError("Integrator memory has been freed")
    return user_data


def translate_errors(name: str) -> Callable[[Callable[..., Any]], Callable[..., int]]:
    """Turn a callback raising exceptions into one returning solver flags."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., int]:
        @functools.wraps(fn)
        def wrapper(*args: Any) -> int:
            try:
                flag = fn(*args)
            except RecoverableError as e:
                return e.flag
            except Exception as e:
                logger.warning("%s failed: %s", name, e)
                return -1
            return 0 if flag is None else int(flag)

        return wrapper

    return decorator


def _copy_band(src: NDArray, dst: NDArray, mu: int, ml: int) -> None:
    """Copy the entries of src within the band into dst."""
    i, j = np.indices(src.shape)
    band = (j - i <= mu) & (i - j <= ml)
    dst[band] = src[band]


# ----------------------------------------------------------------------
# Forward problem


@translate_errors("res")
def res(t, xz, xzdot, rr, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(xz[:nx], xz[nx:], m.p, t)
    m.set_res(rr[:nx], rr[nx:])
    s.calc_function(m, "daeF")

    # Subtract state derivative to get residual
    rr[:nx] -= xzdot[:nx]


@translate_errors("rhsQ")
def rhs_q(t, xz, xzdot, rhs_quad, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(xz[:nx], xz[nx:], m.p, t)
    m.set_res(rhs_quad)
    s.calc_function(m, "quadF")


@translate_errors("jtimes")
def jtimes(t, xz, xzdot, rr, v, Jv, cj, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(t, xz[:nx], xz[nx:], m.p, v[:nx], v[nx:])
    m.set_res(Jv[:nx], Jv[nx:])
    s.calc_function(m, "jtimesF")

    # Subtract state derivative
    Jv[:nx] -= cj * v[:nx]


@translate_errors("djac")
def djac(t, xz, xzdot, rr, cj, J, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(t, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jac)
    s.calc_function(m, "jacF")
    J[...] = m.jac


@translate_errors("bjac")
def bjac(t, xz, xzdot, rr, cj, mu, ml, J, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(t, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jac)
    s.calc_function(m, "jacF")
    _copy_band(m.jac, J, mu, ml)


@translate_errors("psetup")
def psetup(t, xz, xzdot, rr, cj, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx = s.nx
    m.set_arg(t, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jac)
    s.calc_function(m, "jacF")

    # Prepare the solution of the linear system (e.g. factorize)
    m.linsol["linsolF"].factorize(m.jac)


@translate_errors("psolve")
def psolve(t, xz, xzdot, rr, rvec, zvec, cj, delta, user_data):
    m = to_mem(user_data)
    s = m.integrator
    if rvec is not zvec:
        zvec[:] = rvec
    if len(zvec) != s.nx + s.nz:
        raise ValueError(f"psolve: got {len(zvec)} entries, expected {s.nx + s.nz}")
    zvec[:] = m.linsol["linsolF"].solve(zvec)


@translate_errors("lsetup")
def lsetup(solver, xz, xzdot, resp):
    if psetup(solver.tcur, xz, xzdot, resp, solver.cj, solver.user_data):
        return 1


@translate_errors("lsolve")
def lsolve(solver, b, weight, xz, xzdot, rr):
    m = to_mem(solver.user_data)
    if psolve(solver.tcur, xz, xzdot, rr, b, b, solver.cj, 0.0, m):
        return 1

    # Scale the correction to account for change in cj
    if m.integrator.options.cj_scaling and solver.cjratio != 1.0:
        b *= 2.0 / (1.0 + solver.cjratio)


# ----------------------------------------------------------------------
# Backward problem: (xz, xzdot) are the interpolated forward states


@translate_errors("resB")
def res_b(t, xz, xzdot, rxz, rxzdot, rr, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(rxz[:nrx], rxz[nrx:], m.rp, xz[:nx], xz[nx:], m.p, t)
    m.set_res(rr[:nrx], rr[nrx:])
    s.calc_function(m, "daeB")

    # Backward differential states enter with opposite sign
    rr[:nrx] += rxzdot[:nrx]


@translate_errors("rhsQB")
def rhs_qb(t, xz, xzdot, rxz, rxzdot, rqdot, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(rxz[:nrx], rxz[nrx:], m.rp, xz[:nx], xz[nx:], m.p, t)
    m.set_res(rqdot)
    s.calc_function(m, "quadB")

    # Quadratures integrated backward in time
    rqdot *= -1.0


@translate_errors("jtimesB")
def jtimes_b(t, xz, xzdot, rxz, rxzdot, rr, v, Jv, cj, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(
        t, xz[:nx], xz[nx:], m.p, rxz[:nrx], rxz[nrx:], m.rp, v[:nrx], v[nrx:]
    )
    m.set_res(Jv[:nrx], Jv[nrx:])
    s.calc_function(m, "jtimesB")

    # Add state derivative
    Jv[:nrx] += cj * v[:nrx]


@translate_errors("djacB")
def djac_b(t, xz, xzdot, rxz, rxzdot, rr, cj, J, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(t, rxz[:nrx], rxz[nrx:], m.rp, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jacB)
    s.calc_function(m, "jacB")
    J[...] = m.jacB


@translate_errors("bjacB")
def bjac_b(t, xz, xzdot, rxz, rxzdot, rr, cj, mu, ml, J, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(t, rxz[:nrx], rxz[nrx:], m.rp, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jacB)
    s.calc_function(m, "jacB")
    _copy_band(m.jacB, J, mu, ml)


@translate_errors("psetupB")
def psetup_b(t, xz, xzdot, rxz, rxzdot, rr, cj, user_data):
    m = to_mem(user_data)
    s = m.integrator
    nx, nrx = s.nx, s.nrx
    m.set_arg(t, rxz[:nrx], rxz[nrx:], m.rp, xz[:nx], xz[nx:], m.p, cj)
    m.set_res(m.jacB)
    s.calc_function(m, "jacB")
    m.linsol["linsolB"].factorize(m.jacB)


@translate_errors("psolveB")
def psolve_b(t, xz, xzdot, rxz, rxzdot, rr, rvec, zvec, cj, delta, user_data):
    m = to_mem(user_data)
    s = m.integrator
    if rvec is not zvec:
        zvec[:] = rvec
    if len(zvec) != s.nrx + s.nrz:
        raise ValueError(
            f"psolveB: got {len(zvec)} entries, expected {s.nrx + s.nrz}"
        )
    zvec[:] = m.linsol["linsolB"].solve(zvec)


def _forward_state(solver):
    flag, xz, xzdot = solver.forward_state(solver.tcur)
    if flag != 0:
        raise InvalidStateError("Could not interpolate forward states")
    return xz, xzdot


@translate_errors("lsetupB")
def lsetup_b(solver, rxz, rxzdot, resp):
    xz, xzdot = _forward_state(solver)
    if psetup_b(solver.tcur, xz, xzdot, rxz, rxzdot, resp, solver.cj, solver.user_data):
        return 1


@translate_errors("lsolveB")
def lsolve_b(solver, b, weight, rxz, rxzdot, rr):
    m = to_mem(solver.user_data)
    xz, xzdot = _forward_state(solver)
    if psolve_b(solver.tcur, xz, xzdot, rxz, rxzdot, rr, b, b, solver.cj, 0.0, m):
        return 1
    if m.integrator.options.cj_scaling and solver.cjratio != 1.0:
        b *= 2.0 / (1.0 + solver.cjratio)


# ----------------------------------------------------------------------
# Diagnostics


def ehfun(error_code, module, function, msg, eh_data):
    """Route solver error messages to the integrator logger."""
    try:
        to_mem(eh_data)
        logger.warning("[%s ERROR] %s: %s (flag %d)", module, function, msg, error_code)
    except Exception as e:
        logger.warning("ehfun failed: %s", e)
