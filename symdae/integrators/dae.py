"""Slot conventions of DAE functions and integrators."""

from enum import IntEnum
from typing import Any, Optional
import sympy

from symdae.core.sx_function import SXFunction
from symdae.core.symbolic import as_matrix, vec


class DaeIn(IntEnum):
    """Inputs of the forward DAE function."""
    X = 0
    Z = 1
    P = 2
    T = 3


class DaeOut(IntEnum):
    """Outputs of the forward DAE function: x' = ode, 0 = alg, q' = quad."""
    ODE = 0
    ALG = 1
    QUAD = 2


class RDaeIn(IntEnum):
    """Inputs of the backward DAE function."""
    RX = 0
    RZ = 1
    RP = 2
    X = 3
    Z = 4
    P = 5
    T = 6


class RDaeOut(IntEnum):
    """Outputs of the backward DAE function: -rx' = rode, 0 = ralg, -rq' = rquad."""
    ODE = 0
    ALG = 1
    QUAD = 2


class IntegratorIn(IntEnum):
    X0 = 0
    P = 1
    Z0 = 2
    RX0 = 3
    RP = 4
    RZ0 = 5


class IntegratorOut(IntEnum):
    XF = 0
    QF = 1
    ZF = 2
    RXF = 3
    RQF = 4
    RZF = 5


def _column(x: Any) -> sympy.MatrixBase:
    if x is None:
        return sympy.zeros(0, 1)
    return vec(as_matrix(x))


def dae_function(
    x: Any,
    ode: Any,
    z: Any = None,
    alg: Any = None,
    p: Any = None,
    t: Optional[sympy.Symbol] = None,
    quad: Any = None,
    name: str = "dae",
    **options: Any,
) -> SXFunction:
    """
    Forward DAE function with inputs (x, z, p, t) and outputs
    (ode, alg, quad).

    Example:
        >>> x = sympy.Symbol("x")
        >>> f = dae_function(x=x, ode=-x)
    """
    x, ode = _column(x), _column(ode)
    z, alg = _column(z), _column(alg)
    if ode.rows != x.rows:
        raise ValueError(f"ode has {ode.rows} entries, x has {x.rows}")
    if alg.rows != z.rows:
        raise ValueError(f"alg has {alg.rows} entries, z has {z.rows}")
    if t is None:
        t = sympy.Dummy("t")
    return SXFunction(
        [x, z, _column(p), t],
        [ode, alg, _column(quad)],
        name=name,
        **options,
    )


def backward_dae_function(
    rx: Any,
    rode: Any,
    x: Any = None,
    rz: Any = None,
    ralg: Any = None,
    rp: Any = None,
    z: Any = None,
    p: Any = None,
    t: Optional[sympy.Symbol] = None,
    rquad: Any = None,
    name: str = "backward_dae",
    **options: Any,
) -> SXFunction:
    """
    Backward DAE function with inputs (rx, rz, rp, x, z, p, t) and
    outputs (rode, ralg, rquad).

    Integrated from tf down to t0 as -rx' = rode, 0 = ralg, -rq' = rquad
    with rq(tf) = 0.
    """
    rx, rode = _column(rx), _column(rode)
    rz, ralg = _column(rz), _column(ralg)
    if rode.rows != rx.rows:
        raise ValueError(f"rode has {rode.rows} entries, rx has {rx.rows}")
    if ralg.rows != rz.rows:
        raise ValueError(f"ralg has {ralg.rows} entries, rz has {rz.rows}")
    if t is None:
        t = sympy.Dummy("t")
    return SXFunction(
        [rx, rz, _column(rp), _column(x), _column(z), _column(p), t],
        [rode, ralg, _column(rquad)],
        name=name,
        **options,
    )
