"""Forward and adjoint sensitivity propagation through Jacobian blocks."""

from typing import Any, Sequence, TYPE_CHECKING
import sympy

from symdae.core.symbolic import as_matrix, reshape, symbolic_matrix, vec

if TYPE_CHECKING:
    from symdae.core.function import Function


def _jacobian_blocks(
    fcn: "Function", args: Sequence[Any]
) -> dict[tuple[int, int], sympy.MatrixBase]:
    """Symbolic Jacobian blocks at args, structurally null blocks omitted."""
    blocks = {}
    for oind in range(fcn.n_out):
        for iind in range(fcn.n_in):
            J = fcn.jacobian_function(iind, oind)
            if J is not None:
                blocks[oind, iind] = J.call(args)[0]
    return blocks


def forward_sensitivities(
    fcn: "Function",
    args: Sequence[Any],
    seeds: Sequence[Sequence[Any]],
) -> list[list[sympy.MatrixBase]]:
    """
    Directional derivatives J @ seed, one list of outputs per direction.

    Args:
        fcn: Initialized function with symbolic call support
        args: Symbolic (or numeric) point of linearization, one per input
        seeds: seeds[d][i] is the direction d seed of input i

    Returns:
        sens[d][o], shaped like output o
    """
    blocks = _jacobian_blocks(fcn, args)
    sens = []
    for seed in seeds:
        d_sens = []
        for oind in range(fcn.n_out):
            sp = fcn.output_sparsity(oind)
            acc = sympy.zeros(sp.numel, 1)
            for iind in range(fcn.n_in):
                if (oind, iind) in blocks:
                    acc += blocks[oind, iind] * vec(as_matrix(seed[iind]))
            d_sens.append(reshape(acc, sp.shape))
        sens.append(d_sens)
    return sens


def adjoint_sensitivities(
    fcn: "Function",
    args: Sequence[Any],
    seeds: Sequence[Sequence[Any]],
) -> list[list[sympy.MatrixBase]]:
    """
    Transposed products J.T @ seed, one list of inputs per direction.

    seeds[d][o] is the direction d seed of output o; the result sens[d][i] is
    shaped like input i.
    """
    blocks = _jacobian_blocks(fcn, args)
    sens = []
    for seed in seeds:
        d_sens = []
        for iind in range(fcn.n_in):
            sp = fcn.input_sparsity(iind)
            acc = sympy.zeros(sp.numel, 1)
            for oind in range(fcn.n_out):
                if (oind, iind) in blocks:
                    acc += blocks[oind, iind].T * vec(as_matrix(seed[oind]))
            d_sens.append(reshape(acc, sp.shape))
        sens.append(d_sens)
    return sens


def derivative_function(fcn: "Function", nfdir: int, nadir: int) -> "Function":
    """
    Evaluator of outputs plus nfdir forward and nadir adjoint sensitivities.

    Inputs are ordered [inputs, fwd seeds (by direction, then input),
    adj seeds (by direction, then output)]; outputs are ordered [outputs,
    fwd sens (by direction, then output), adj sens (by direction, then
    input)]. The result is cached on fcn per (nfdir, nadir).
    """
    from symdae.core.sx_function import SXFunction

    key = (nfdir, nadir)
    if key in fcn.derivative_cache:
        return fcn.derivative_cache[key]

    fcn.log("derivative_function", f"building {nfdir} fwd, {nadir} adj")
    args = fcn.symbolic_input()
    fseeds = [
        [
            symbolic_matrix(f"fseed_{d}_{i}", fcn.input_sparsity(i).shape)
            for i in range(fcn.n_in)
        ]
        for d in range(nfdir)
    ]
    aseeds = [
        [
            symbolic_matrix(f"aseed_{d}_{o}", fcn.output_sparsity(o).shape)
            for o in range(fcn.n_out)
        ]
        for d in range(nadir)
    ]

    outputs = fcn.call(args)
    fsens = forward_sensitivities(fcn, args, fseeds) if nfdir else []
    asens = adjoint_sensitivities(fcn, args, aseeds) if nadir else []

    der = SXFunction(
        args + [s for d in fseeds for s in d] + [s for d in aseeds for s in d],
        outputs + [s for d in fsens for s in d] + [s for d in asens for s in d],
        name=f"{fcn.name}_der_{nfdir}_{nadir}",
        number_of_fwd_dir=0,
        number_of_adj_dir=0,
    )
    der.init()
    fcn.derivative_cache[key] = der
    return der
