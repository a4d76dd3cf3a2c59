"""Symbolic function variant backed by sympy expressions."""

from typing import Any, Optional, Sequence
import numpy as np
import sympy
from numpy.typing import NDArray

from symdae.core.function import Function
from symdae.core.function_io import as_slot_array
from symdae.core.options import FunctionOptions
from symdae.core.sparsity import Sparsity
from symdae.core.symbolic import as_matrix, reshape, vec


def structure(expr: sympy.MatrixBase) -> Sparsity:
    """Structural nonzero pattern of a sympy matrix."""
    nrow, ncol = expr.shape
    if nrow * ncol == 0:
        return Sparsity.dense(nrow, ncol)
    mask = np.array(
        [[expr[r, c] != 0 for c in range(ncol)] for r in range(nrow)],
        dtype=bool,
    )
    return Sparsity.from_mask(mask)


class SXFunction(Function):
    """
    Function defined by sympy expressions of symbolic inputs.

    Example:
        >>> x = sympy.Symbol("x")
        >>> f = SXFunction([x], [x**2], name="square")
        >>> f.init()
        >>> f(3.0)[0]
        array([[9.]])
    """

    supports_symbolic_call = True
    supports_hessian = True
    supports_custom_jac_sparsity = True

    def __init__(
        self,
        inputs: Sequence[Any],
        outputs: Sequence[Any],
        options: Optional[FunctionOptions] = None,
        **kwargs: Any,
    ):
        super().__init__(options, **kwargs)
        self.sym_inputs = [as_matrix(x) for x in inputs]
        self.sym_outputs = [as_matrix(e) for e in outputs]

        seen = set()
        for i, x in enumerate(self.sym_inputs):
            for el in x:
                if not isinstance(el, sympy.Symbol):
                    raise ValueError(
                        f"{self.name}: input {i} must consist of symbols, "
                        f"got {el!r}"
                    )
                if el in seen:
                    raise ValueError(
                        f"{self.name}: symbol {el} appears more than once"
                    )
                seen.add(el)

        self.set_num_inputs(len(self.sym_inputs))
        self.set_num_outputs(len(self.sym_outputs))
        for i, x in enumerate(self.sym_inputs):
            self.set_input_sparsity(i, Sparsity.dense(*x.shape))
        for o, e in enumerate(self.sym_outputs):
            sp = structure(e) if self.options.sparse else Sparsity.dense(*e.shape)
            self.set_output_sparsity(o, sp)

        self._compiled = None

    def _compile(self):
        """Lazily lambdify all outputs as one flat numpy callable."""
        if self._compiled is None:
            syms = [el for x in self.sym_inputs for el in vec(x)]
            exprs = [el for e in self.sym_outputs for el in vec(e)]
            self._compiled = sympy.lambdify(syms, exprs, modules="numpy")
        return self._compiled

    def numeric(self, args: Sequence[Any]) -> list[NDArray]:
        """
        Evaluate on numeric arguments without touching the input and output
        slots. A None argument stands for zeros.
        """
        self._assert_init()
        if len(args) != self.n_in:
            raise ValueError(
                f"{self.name}: expected {self.n_in} arguments, got {len(args)}"
            )
        flat = []
        for i, a in enumerate(args):
            shape = self.input_sparsity(i).shape
            if a is None:
                flat.extend([0.0] * (shape[0] * shape[1]))
            else:
                flat.extend(as_slot_array(a, shape).ravel(order="F"))
        values = np.array(self._compile()(*flat), dtype=float).ravel()

        ret = []
        k = 0
        for o in range(self.n_out):
            shape = self.output_sparsity(o).shape
            n = shape[0] * shape[1]
            ret.append(values[k:k + n].reshape(shape, order="F"))
            k += n
        return ret

    def _evaluate(self) -> None:
        values = self.numeric([self.input(i) for i in range(self.n_in)])
        for o, v in enumerate(values):
            self.output(o)[...] = v

    def call(self, args: Sequence[Any]) -> list[sympy.MatrixBase]:
        """Substitute args for the inputs in every output expression."""
        if len(args) != self.n_in:
            raise ValueError(
                f"{self.name}: expected {self.n_in} arguments, got {len(args)}"
            )
        mapping = {}
        for i, (x, a) in enumerate(zip(self.sym_inputs, args)):
            a = as_matrix(a)
            if a.shape != x.shape:
                if a.rows * a.cols != x.rows * x.cols:
                    raise ValueError(
                        f"{self.name}: argument {i} has shape {a.shape}, "
                        f"expected {x.shape}"
                    )
                a = reshape(a, x.shape)
            mapping.update(zip(vec(x), vec(a)))
        return [e.xreplace(mapping) for e in self.sym_outputs]

    def get_jac_sparsity(self, iind: int, oind: int) -> Optional[Sparsity]:
        if not self.options.sparse:
            return super().get_jac_sparsity(iind, oind)
        out = vec(self.sym_outputs[oind])
        arg = vec(self.sym_inputs[iind])
        if out.rows == 0 or arg.rows == 0:
            return None
        sp = structure(out.jacobian(arg))
        return None if sp.is_empty() else sp

    def _hessian(self, iind: int, oind: int) -> Function:
        """Outputs [hessian, gradient, value] of a scalar output."""
        self._assert_init()
        f = self.sym_outputs[oind]
        if f.shape != (1, 1):
            raise ValueError(
                f"{self.name}: hessian requires a scalar output, "
                f"output {oind} has shape {f.shape}"
            )
        x = vec(self.sym_inputs[iind])
        if x.rows == 0:
            raise ValueError(f"{self.name}: input {iind} is empty")
        grad = f.jacobian(x).T
        hess = grad.jacobian(x)
        H = SXFunction(
            self.sym_inputs,
            [hess, grad, f],
            name=f"{self.name}_hess_{oind}_{iind}",
        )
        H.init()
        return H
