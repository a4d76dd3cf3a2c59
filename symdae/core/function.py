"""Function abstraction: evaluation, sensitivities and Jacobian blocks."""

from abc import ABC, abstractmethod
import logging
import time
from typing import Any, Optional, Sequence
import sympy
from numpy.typing import ArrayLike, NDArray

from symdae.core.function_io import FunctionIO
from symdae.core.jacobian import JacobianBlockCache
from symdae.core.options import FunctionOptions
from symdae.core.sparsity import Sparsity
from symdae.core.stats import Statistics
from symdae.core.symbolic import symbolic_matrix
from symdae.errors import (
    InvalidStateError,
    SlotIndexError,
    UnsupportedOperationError,
)

logger = logging.getLogger("symdae.function")


class Function(ABC):
    """
    Polymorphic callable with per-slot value and sensitivity buffers.

    Variants advertise optional capabilities through class flags, which are
    checked before dispatch:

    - ``supports_symbolic_call``: ``call`` evaluates on sympy matrices
    - ``supports_hessian``: ``hessian`` is available
    - ``supports_custom_jac_sparsity``: ``get_jac_sparsity`` is more precise
      than the dense default

    ``init()`` must be called before any evaluation, sensitivity or Jacobian
    operation.
    """

    supports_symbolic_call: bool = False
    supports_hessian: bool = False
    supports_custom_jac_sparsity: bool = False

    def __init__(self, options: Optional[FunctionOptions] = None, **kwargs: Any):
        base = options if options is not None else self._default_options()
        self.options = base.updated(**kwargs) if kwargs else base
        self._input: list[FunctionIO] = []
        self._output: list[FunctionIO] = []
        self._is_init = False
        self._nfdir = 0
        self._nadir = 0
        self._jac_cache: Optional[JacobianBlockCache] = None
        self.derivative_cache: dict[tuple[int, int], "Function"] = {}
        self.stats = Statistics()

    @staticmethod
    def _default_options() -> FunctionOptions:
        return FunctionOptions()

    # ------------------------------------------------------------------
    # Structure

    @property
    def name(self) -> str:
        return self.options.name

    @property
    def verbose(self) -> bool:
        return self.options.verbose

    @property
    def n_in(self) -> int:
        return len(self._input)

    @property
    def n_out(self) -> int:
        return len(self._output)

    @property
    def nfdir(self) -> int:
        """Configured number of forward directions (after init)."""
        return self._nfdir

    @property
    def nadir(self) -> int:
        """Configured number of adjoint directions (after init)."""
        return self._nadir

    def set_num_inputs(self, n: int) -> None:
        self._input = self._input[:n] + [
            FunctionIO() for _ in range(n - len(self._input))
        ]

    def set_num_outputs(self, n: int) -> None:
        self._output = self._output[:n] + [
            FunctionIO() for _ in range(n - len(self._output))
        ]

    def set_input_sparsity(self, iind: int, sp: Sparsity) -> None:
        self._input_struct(iind)
        self._input[iind] = FunctionIO(sparsity=sp)

    def set_output_sparsity(self, oind: int, sp: Sparsity) -> None:
        self._output_struct(oind)
        self._output[oind] = FunctionIO(sparsity=sp)

    def input_sparsity(self, iind: int = 0) -> Sparsity:
        return self._input_struct(iind).sparsity

    def output_sparsity(self, oind: int = 0) -> Sparsity:
        return self._output_struct(oind).sparsity

    def init(self) -> None:
        """Allocate sensitivity storage and the Jacobian tables."""
        self._nfdir = self.options.number_of_fwd_dir
        self._nadir = self.options.number_of_adj_dir

        for io in self._input:
            io.init(self._nfdir, self._nadir)
        for io in self._output:
            io.init(self._nfdir, self._nadir)

        self._jac_cache = JacobianBlockCache(
            self.n_out, self.n_in, store_functions=self.options.store_jacobians
        )
        self.derivative_cache.clear()
        self._is_init = True

    def is_init(self) -> bool:
        return self._is_init

    def _assert_init(self) -> None:
        if not self._is_init:
            raise InvalidStateError(f"Function {self.name} not initialized.")

    # ------------------------------------------------------------------
    # Slot access

    def _input_struct(self, iind: int) -> FunctionIO:
        if not 0 <= iind < len(self._input):
            raise SlotIndexError(self.name, "input", iind, len(self._input))
        return self._input[iind]

    def _output_struct(self, oind: int) -> FunctionIO:
        if not 0 <= oind < len(self._output):
            raise SlotIndexError(self.name, "output", oind, len(self._output))
        return self._output[oind]

    def _direction(self, buffers: list[NDArray], kind: str, d: int) -> NDArray:
        if not 0 <= d < len(buffers):
            raise SlotIndexError(self.name, kind, d, len(buffers))
        return buffers[d]

    def input(self, iind: int = 0) -> NDArray:
        return self._input_struct(iind).data

    def output(self, oind: int = 0) -> NDArray:
        return self._output_struct(oind).data

    def set_input(self, value: ArrayLike, iind: int = 0) -> None:
        self._input_struct(iind).set(value)

    def get_output(self, oind: int = 0) -> NDArray:
        return self.output(oind).copy()

    def fwd_seed(self, iind: int = 0, d: int = 0) -> NDArray:
        return self._direction(self._input_struct(iind).fwd, "forward direction", d)

    def fwd_sens(self, oind: int = 0, d: int = 0) -> NDArray:
        return self._direction(self._output_struct(oind).fwd, "forward direction", d)

    def adj_seed(self, oind: int = 0, d: int = 0) -> NDArray:
        return self._direction(self._output_struct(oind).adj, "adjoint direction", d)

    def adj_sens(self, iind: int = 0, d: int = 0) -> NDArray:
        return self._direction(self._input_struct(iind).adj, "adjoint direction", d)

    def set_fwd_seed(self, value: ArrayLike, iind: int = 0, d: int = 0) -> None:
        io = self._input_struct(iind)
        io.set(value, target=self.fwd_seed(iind, d))

    def set_adj_seed(self, value: ArrayLike, oind: int = 0, d: int = 0) -> None:
        io = self._output_struct(oind)
        io.set(value, target=self.adj_seed(oind, d))

    # ------------------------------------------------------------------
    # Evaluation

    def evaluate(self, nfdir: int = 0, nadir: int = 0) -> None:
        """
        Evaluate outputs and the first nfdir/nadir sensitivity directions.

        Args:
            nfdir: Number of forward directions to propagate
            nadir: Number of adjoint directions to propagate
        """
        self._assert_init()
        if nfdir > self._nfdir:
            raise SlotIndexError(
                self.name, "forward direction", nfdir - 1, self._nfdir
            )
        if nadir > self._nadir:
            raise SlotIndexError(
                self.name, "adjoint direction", nadir - 1, self._nadir
            )

        t_start = time.perf_counter()
        if nfdir == 0 and nadir == 0:
            self._evaluate()
        else:
            self._evaluate_derivatives(nfdir, nadir)
        self.stats["n_eval"] = self.stats.get("n_eval", 0) + 1
        self.stats["t_eval"] = time.perf_counter() - t_start

    @abstractmethod
    def _evaluate(self) -> None:
        """Compute all outputs from the current inputs."""
        ...

    def _evaluate_derivatives(self, nfdir: int, nadir: int) -> None:
        """Outputs and sensitivities through the derivative evaluator."""
        from symdae.core.sensitivity import derivative_function

        der = derivative_function(self, nfdir, nadir)

        k = 0
        for i in range(self.n_in):
            der.set_input(self.input(i), k)
            k += 1
        for d in range(nfdir):
            for i in range(self.n_in):
                der.set_input(self.fwd_seed(i, d), k)
                k += 1
        for d in range(nadir):
            for o in range(self.n_out):
                der.set_input(self.adj_seed(o, d), k)
                k += 1

        der.evaluate()

        k = 0
        for o in range(self.n_out):
            self.output(o)[...] = der.output(k)
            k += 1
        for d in range(nfdir):
            for o in range(self.n_out):
                self.fwd_sens(o, d)[...] = der.output(k)
                k += 1
        for d in range(nadir):
            for i in range(self.n_in):
                self.adj_sens(i, d)[...] = der.output(k)
                k += 1

    def __call__(self, *args: ArrayLike) -> list[NDArray]:
        """Numeric shorthand: set inputs, evaluate, return output copies."""
        if len(args) != self.n_in:
            raise ValueError(
                f"{self.name}: expected {self.n_in} inputs, got {len(args)}"
            )
        for i, a in enumerate(args):
            self.set_input(a, i)
        self.evaluate()
        return [self.get_output(o) for o in range(self.n_out)]

    # ------------------------------------------------------------------
    # Symbolic

    def symbolic_input(self) -> list[sympy.MatrixBase]:
        """Fresh symbolic placeholders shaped like each input."""
        self._assert_init()
        return [
            symbolic_matrix(f"x_{i}", self.input_sparsity(i).shape)
            for i in range(self.n_in)
        ]

    def call(self, args: Sequence[Any]) -> list[sympy.MatrixBase]:
        """Evaluate symbolically on sympy matrices."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} cannot be evaluated symbolically"
        )

    def jacobian(self, blocks: Sequence[tuple[int, int]]) -> "Function":
        """
        Function returning the requested Jacobian blocks, in request order.

        Args:
            blocks: (output index, input index) pairs. An input index of -1
                requests the nondifferentiated output.

        Returns:
            Initialized function of the same inputs
        """
        from symdae.core.sx_function import SXFunction

        self._check_symbolic("jacobian")
        blocks = [(int(o), int(i)) for o, i in blocks]
        if not blocks:
            raise ValueError("At least one Jacobian block must be requested")

        # Symbolic input
        j_in = self.symbolic_input()

        # Less overhead if only a Jacobian is requested
        if len(blocks) == 1 and blocks[0][1] >= 0:
            oind, iind = blocks[0]
            J = self.jacobian_function(iind, oind)
            if J is not None:
                return J
            ret = SXFunction(
                j_in,
                [self._zero_block(iind, oind)],
                name=f"{self.name}_jac",
            )
            ret.init()
            return ret

        fcn_eval = self.call(j_in)

        j_out = []
        for oind, iind in blocks:
            self._output_struct(oind)
            if iind == -1:
                j_out.append(fcn_eval[oind])
                continue
            J = self.jacobian_function(iind, oind)
            if J is not None:
                j_out.append(J.call(j_in)[0])
            else:
                j_out.append(self._zero_block(iind, oind))

        ret = SXFunction(j_in, j_out, name=f"{self.name}_jac")
        ret.init()
        return ret

    def _check_symbolic(self, what: str) -> None:
        if not self.supports_symbolic_call:
            raise UnsupportedOperationError(
                f"{what} not defined for class {type(self).__name__}"
            )

    def _zero_block(self, iind: int, oind: int) -> sympy.MatrixBase:
        return sympy.zeros(
            self.output_sparsity(oind).numel, self.input_sparsity(iind).numel
        )

    def jacobian_function(self, iind: int, oind: int) -> Optional["Function"]:
        """Evaluator for one Jacobian block, None if structurally null."""
        self._assert_init()
        self._check_symbolic("jacobian")
        assert self._jac_cache is not None

        def build() -> Optional[Function]:
            if self.jac_sparsity(iind, oind).is_empty():
                return None
            from symdae.core.jacobian import build_jacobian

            self.log("jacobian_function", f"building block ({oind}, {iind})")
            return build_jacobian(self, iind, oind)

        return self._jac_cache.function(oind, iind, build)

    def get_jac_sparsity(self, iind: int, oind: int) -> Optional[Sparsity]:
        """Sparsity of a Jacobian block; dense by default."""
        return Sparsity.dense(
            self.output_sparsity(oind).numel, self.input_sparsity(iind).numel
        )

    def jac_sparsity(self, iind: int, oind: int) -> Sparsity:
        """Memoized sparsity of the Jacobian of output oind w.r.t. input iind."""
        if not self._is_init:
            raise InvalidStateError("Function not initialized.")
        assert self._jac_cache is not None
        self._input_struct(iind)
        self._output_struct(oind)

        def generate() -> Sparsity:
            if self.supports_custom_jac_sparsity:
                sp = self.get_jac_sparsity(iind, oind)
            else:
                sp = Function.get_jac_sparsity(self, iind, oind)

            # If still null, not dependent
            if sp is None:
                sp = Sparsity.empty(
                    self.output_sparsity(oind).numel,
                    self.input_sparsity(iind).numel,
                )
            return sp

        return self._jac_cache.sparsity(oind, iind, generate)

    def hessian(self, iind: int = 0, oind: int = 0) -> "Function":
        if not self.supports_hessian:
            raise UnsupportedOperationError(
                f"hessian not defined for class {type(self).__name__}"
            )
        return self._hessian(iind, oind)

    def _hessian(self, iind: int, oind: int) -> "Function":
        raise UnsupportedOperationError(
            f"hessian not defined for class {type(self).__name__}"
        )

    # ------------------------------------------------------------------
    # Diagnostics

    def get_stats(self) -> Statistics:
        return self.stats

    def get_stat(self, name: str) -> Any:
        return self.stats.get_stat(name)

    def log(self, fcn: str, msg: str) -> None:
        if self.verbose:
            logger.info('In "%s" --- %s', fcn, msg)

    def __repr__(self) -> str:
        return f'function("{self.name}")'
