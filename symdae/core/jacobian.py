"""Jacobian block cache and Jacobian construction."""

from typing import Callable, Optional, TYPE_CHECKING

from symdae.core.sparsity import Sparsity
from symdae.core.symbolic import vec

if TYPE_CHECKING:
    from symdae.core.function import Function


class JacobianBlockCache:
    """
    Memoizes Jacobian sparsity and Jacobian evaluators per (output, input).

    The sparsity table is always active. Evaluators are only kept when
    ``store_functions`` is set, trading memory for avoided symbolic
    construction. Entries are never invalidated: the structure of a
    function is fixed once it is initialized.
    """

    def __init__(self, n_out: int, n_in: int, store_functions: bool = False):
        self.n_out = n_out
        self.n_in = n_in
        self.store_functions = store_functions
        self._sparsity: dict[tuple[int, int], Sparsity] = {}
        self._functions: dict[tuple[int, int], Optional["Function"]] = {}

    def has_sparsity(self, oind: int, iind: int) -> bool:
        return (oind, iind) in self._sparsity

    def sparsity(
        self, oind: int, iind: int, generate: Callable[[], Sparsity]
    ) -> Sparsity:
        """Cached pattern of block (oind, iind), generated on first use."""
        key = (oind, iind)
        sp = self._sparsity.get(key)
        if sp is None:
            sp = generate()
            self._sparsity[key] = sp
        return sp

    def function(
        self,
        oind: int,
        iind: int,
        build: Callable[[], Optional["Function"]],
    ) -> Optional["Function"]:
        """Jacobian evaluator for (oind, iind); shared when storing."""
        if not self.store_functions:
            return build()
        key = (oind, iind)
        if key not in self._functions:
            self._functions[key] = build()
        return self._functions[key]

    def __len__(self) -> int:
        return len(self._sparsity)


def build_jacobian(fcn: "Function", iind: int, oind: int) -> "Function":
    """
    Jacobian of output oind w.r.t. input iind, as a new function of all
    inputs of fcn.

    The block is obtained by evaluating fcn symbolically on fresh
    placeholders. The result has shape (numel(output), numel(input)).
    """
    from symdae.core.sx_function import SXFunction

    j_in = fcn.symbolic_input()
    out = fcn.call(j_in)[oind]
    jac = vec(out).jacobian(vec(j_in[iind]))
    J = SXFunction(j_in, [jac], name=f"{fcn.name}_jac_{oind}_{iind}")
    J.init()
    return J
