"""
DAE integrator with adjoint (backward) integration.

The forward problem

    x' = ode(x, z, p, t),  0 = alg(x, z, p, t),  q' = quad(x, z, p, t)

is integrated from t0 to tf, then optionally the backward problem

    -rx' = rode(rx, rz, rp, x, z, p, t),  0 = ralg(...),  -rq' = rquad(...)

from tf back to t0 along the taped forward trajectory. The solver callbacks
(see ``callbacks``) evaluate sub-functions generated once in ``init()`` from
the user's DAE functions.
"""

from typing import Any, Optional
import numpy as np
import sympy
from numpy.typing import ArrayLike, NDArray

from symdae.algebra.dense import DenseLinearSolver
from symdae.core.function import Function
from symdae.core.options import IntegratorOptions
from symdae.core.sensitivity import forward_sensitivities
from symdae.core.sparsity import Sparsity
from symdae.core.stats import Statistics
from symdae.core.sx_function import SXFunction
from symdae.core.symbolic import symbolic_matrix
from symdae.errors import (
    ConfigurationError,
    ConsistencyError,
    IntegratorInitError,
    InvalidStateError,
    SolverStepError,
    UnsupportedOperationError,
)
from symdae.integrators import callbacks
from symdae.integrators.dae import (
    DaeIn,
    DaeOut,
    IntegratorIn,
    IntegratorOut,
    RDaeIn,
    RDaeOut,
)
from symdae.integrators.memory import DaeIntegratorMemory, MemoryState
from symdae.integrators.requirements import SolverRequirements, deduce_requirements
from symdae.solvers.dae_solver import DaeSolver
from symdae.solvers.flags import ReturnFlag, get_return_flag_name, is_success
from symdae.solvers.linear import LinearModule, create_linear_module

# Times closer than this are considered equal by advance
TIME_TOL = 1e-9

COMMON_CAUSES = [
    "The algebraic equations are not invertible with respect to z",
    "The DAE has a differential index higher than one",
    "The tolerances abstol and reltol are too small",
    "calc_ic only applies to semi-explicit index-1 systems; supply "
    "consistent initial conditions and set calc_ic=False otherwise",
    "The problem is too hard for calc_ic; supply consistent initial "
    "conditions and set calc_ic=False",
]

_IC_HINT_FLAGS = (
    ReturnFlag.CONV_FAIL,
    ReturnFlag.NO_RECOVERY,
    ReturnFlag.LINESEARCH_FAIL,
)


def solver_error(module: str, flag: int) -> SolverStepError:
    """Exception for a failed solver call, with hints for common flags."""
    name = get_return_flag_name(flag)
    if module.startswith("calc_ic"):
        hints = COMMON_CAUSES if flag in _IC_HINT_FLAGS else []
        return ConsistencyError(module, flag, name, hints)
    hints = COMMON_CAUSES if flag == ReturnFlag.ERR_FAIL else []
    return SolverStepError(module, flag, name, hints)


def _check_init(module: str, flag: int) -> None:
    if flag != ReturnFlag.SUCCESS:
        raise IntegratorInitError(str(solver_error(module, flag)))


def _vector(value: Optional[ArrayLike], n: int, what: str) -> NDArray:
    if value is None:
        return np.zeros(n)
    v = np.asarray(value, dtype=float).ravel(order="F")
    if v.size != n:
        raise ValueError(f"{what} has {v.size} entries, expected {n}")
    return v


def _newton_sparsity(
    fcn: Function,
    diff_in: int,
    alg_in: int,
    ode_out: int,
    alg_out: int,
) -> Sparsity:
    """Structure of the Newton matrix [[ode_x + cj I, ode_z], [alg_x, alg_z]]."""
    nd = fcn.input_sparsity(diff_in).numel
    na = fcn.input_sparsity(alg_in).numel
    mask = np.zeros((nd + na, nd + na), dtype=bool)
    mask[:nd, :nd] = np.eye(nd, dtype=bool)
    mask[:nd, :nd] |= fcn.jac_sparsity(diff_in, ode_out).to_mask()
    mask[:nd, nd:] = fcn.jac_sparsity(alg_in, ode_out).to_mask()
    mask[nd:, :nd] = fcn.jac_sparsity(diff_in, alg_out).to_mask()
    mask[nd:, nd:] = fcn.jac_sparsity(alg_in, alg_out).to_mask()
    return Sparsity.from_mask(mask)


def _newton_matrix(
    fcn: Function,
    args: list[sympy.MatrixBase],
    diff_in: int,
    alg_in: int,
    ode_out: int,
    alg_out: int,
    cj_sign: float,
) -> tuple[sympy.Symbol, sympy.MatrixBase]:
    """Symbolic Newton matrix and its cj placeholder."""
    J = fcn.jacobian([
        (ode_out, diff_in),
        (ode_out, alg_in),
        (alg_out, diff_in),
        (alg_out, alg_in),
    ])
    dode_dx, dode_dz, dalg_dx, dalg_dz = J.call(args)
    cj = sympy.Dummy("cj")
    nd = dode_dx.rows
    top = dode_dx + cj_sign * cj * sympy.eye(nd)
    if dalg_dz.rows == 0:
        return cj, top
    return cj, sympy.Matrix.vstack(
        sympy.Matrix.hstack(top, dode_dz),
        sympy.Matrix.hstack(dalg_dx, dalg_dz),
    )


class DaeIntegrator(Function):
    """
    Integrator of a semi-explicit index-1 DAE, with optional backward problem.

    Inputs are (x0, p, z0, rx0, rp, rz0), outputs (xf, qf, zf, rxf, rqf, rzf),
    see ``IntegratorIn`` and ``IntegratorOut``. Evaluating the function runs a
    complete forward (and backward) integration; finer control is available
    through explicitly allocated memories:

        >>> m = integrator.alloc_memory()
        >>> integrator.init_memory(m)
        >>> integrator.reset(m, t0, x0, z0, p)
        >>> xf, zf, qf = integrator.advance(m, tf)

    Args:
        f: Forward DAE function, see ``dae_function``
        g: Backward DAE function, see ``backward_dae_function``
        options: Integrator options; keyword arguments override them
    """

    def __init__(
        self,
        f: Function,
        g: Optional[Function] = None,
        options: Optional[IntegratorOptions] = None,
        **kwargs: Any,
    ):
        if options is not None and not isinstance(options, IntegratorOptions):
            raise TypeError("DaeIntegrator expects IntegratorOptions")
        super().__init__(options, **kwargs)

        if f.n_in != len(DaeIn) or f.n_out != len(DaeOut):
            raise ValueError(
                f"DAE function must have {len(DaeIn)} inputs and {len(DaeOut)} "
                f"outputs, got {f.n_in} and {f.n_out}"
            )
        if not f.is_init():
            f.init()
        self.f = f

        self.nx = f.input_sparsity(DaeIn.X).numel
        self.nz = f.input_sparsity(DaeIn.Z).numel
        self.np = f.input_sparsity(DaeIn.P).numel
        self.nq = f.output_sparsity(DaeOut.QUAD).numel

        self.g = g
        self.nrx = self.nrz = self.nrp = self.nrq = 0
        if g is not None:
            if g.n_in != len(RDaeIn) or g.n_out != len(RDaeOut):
                raise ValueError(
                    f"Backward DAE function must have {len(RDaeIn)} inputs and "
                    f"{len(RDaeOut)} outputs, got {g.n_in} and {g.n_out}"
                )
            for rin, fin in ((RDaeIn.X, DaeIn.X), (RDaeIn.Z, DaeIn.Z), (RDaeIn.P, DaeIn.P)):
                if g.input_sparsity(rin).numel != f.input_sparsity(fin).numel:
                    raise ValueError(
                        f"Backward DAE input {rin.name} does not match the "
                        f"forward DAE"
                    )
            if not g.is_init():
                g.init()
            self.nrx = g.input_sparsity(RDaeIn.RX).numel
            self.nrz = g.input_sparsity(RDaeIn.RZ).numel
            self.nrp = g.input_sparsity(RDaeIn.RP).numel
            self.nrq = g.output_sparsity(RDaeOut.QUAD).numel

        self.set_num_inputs(len(IntegratorIn))
        self.set_input_sparsity(IntegratorIn.X0, Sparsity.dense(self.nx))
        self.set_input_sparsity(IntegratorIn.P, Sparsity.dense(self.np))
        self.set_input_sparsity(IntegratorIn.Z0, Sparsity.dense(self.nz))
        self.set_input_sparsity(IntegratorIn.RX0, Sparsity.dense(self.nrx))
        self.set_input_sparsity(IntegratorIn.RP, Sparsity.dense(self.nrp))
        self.set_input_sparsity(IntegratorIn.RZ0, Sparsity.dense(self.nrz))

        self.set_num_outputs(len(IntegratorOut))
        self.set_output_sparsity(IntegratorOut.XF, Sparsity.dense(self.nx))
        self.set_output_sparsity(IntegratorOut.QF, Sparsity.dense(self.nq))
        self.set_output_sparsity(IntegratorOut.ZF, Sparsity.dense(self.nz))
        self.set_output_sparsity(IntegratorOut.RXF, Sparsity.dense(self.nrx))
        self.set_output_sparsity(IntegratorOut.RQF, Sparsity.dense(self.nrq))
        self.set_output_sparsity(IntegratorOut.RZF, Sparsity.dense(self.nrz))

        self._functions: dict[str, Any] = {}
        self._bandwidth = (0, 0)
        self._bandwidth_b = (0, 0)
        self.requirements: Optional[SolverRequirements] = None
        self._mem: Optional[DaeIntegratorMemory] = None

    @staticmethod
    def _default_options() -> IntegratorOptions:
        return IntegratorOptions()

    # ------------------------------------------------------------------
    # Initialization

    def init(self) -> None:
        """Validate options and generate the sub-functions of the callbacks."""
        self.options = self.options.resolved()
        o = self.options

        if o.init_xdot is not None and len(o.init_xdot) != self.nx:
            raise ConfigurationError(
                f'"init_xdot" has {len(o.init_xdot)} entries, expected {self.nx}'
            )
        if o.abstolv is not None and len(o.abstolv) != self.nx + self.nz:
            raise ConfigurationError(
                f'"abstolv" has {len(o.abstolv)} entries, expected '
                f"{self.nx + self.nz}"
            )
        self.requirements = deduce_requirements(o, self.nrx > 0)

        super().init()
        if self._mem is not None:
            self._mem.free()
            self._mem = None

        self._functions = {}
        self._init_forward()
        if self.requirements.needs_backward:
            self._init_backward()
        self.log("DaeIntegrator.init", f"sub-functions {sorted(self._functions)}")

    def _init_forward(self) -> None:
        f = self.f
        o = self.options
        req = self.requirements
        assert req is not None

        self._functions["daeF"] = f.jacobian([(DaeOut.ODE, -1), (DaeOut.ALG, -1)])
        if self.nq > 0:
            self._functions["quadF"] = f.jacobian([(DaeOut.QUAD, -1)])

        args = f.symbolic_input()
        x, z, p, t = args
        if req.needs_jacobian:
            cj, jac = _newton_matrix(
                f, args, DaeIn.X, DaeIn.Z, DaeOut.ODE, DaeOut.ALG, -1.0
            )
            self._register(SXFunction([t, x, z, p, cj], [jac], name="jacF"))

        if req.needs_jtimes:
            v_x = symbolic_matrix("v_x", (self.nx, 1))
            v_z = symbolic_matrix("v_z", (self.nz, 1))
            seed = [v_x, v_z, sympy.zeros(self.np, 1), sympy.zeros(1, 1)]
            sens = forward_sensitivities(f, args, [seed])[0]
            self._register(SXFunction(
                [t, x, z, p, v_x, v_z],
                [sens[DaeOut.ODE], sens[DaeOut.ALG]],
                name="jtimesF",
            ))

        if req.needs_linsol:
            # Factory, each memory factorizes into its own instance
            self._functions["linsolF"] = DenseLinearSolver

        if req.linear_solver == "banded":
            self._bandwidth = self._bandwidths(
                o.upper_bandwidth,
                o.lower_bandwidth,
                lambda: _newton_sparsity(f, DaeIn.X, DaeIn.Z, DaeOut.ODE, DaeOut.ALG),
            )

    def _init_backward(self) -> None:
        g = self.g
        o = self.options
        req = self.requirements
        assert g is not None and req is not None

        self._functions["daeB"] = g.jacobian([(RDaeOut.ODE, -1), (RDaeOut.ALG, -1)])
        if self.nrq > 0:
            self._functions["quadB"] = g.jacobian([(RDaeOut.QUAD, -1)])

        args = g.symbolic_input()
        rx, rz, rp, x, z, p, t = args
        if req.needs_jacobian_b:
            cj, jac = _newton_matrix(
                g, args, RDaeIn.RX, RDaeIn.RZ, RDaeOut.ODE, RDaeOut.ALG, 1.0
            )
            self._register(SXFunction([t, rx, rz, rp, x, z, p, cj], [jac], name="jacB"))

        if req.needs_jtimes_b:
            v_rx = symbolic_matrix("v_rx", (self.nrx, 1))
            v_rz = symbolic_matrix("v_rz", (self.nrz, 1))
            seed = [
                v_rx,
                v_rz,
                sympy.zeros(self.nrp, 1),
                sympy.zeros(self.nx, 1),
                sympy.zeros(self.nz, 1),
                sympy.zeros(self.np, 1),
                sympy.zeros(1, 1),
            ]
            sens = forward_sensitivities(g, args, [seed])[0]
            self._register(SXFunction(
                [t, x, z, p, rx, rz, rp, v_rx, v_rz],
                [sens[RDaeOut.ODE], sens[RDaeOut.ALG]],
                name="jtimesB",
            ))

        if req.needs_linsol_b:
            self._functions["linsolB"] = DenseLinearSolver

        if req.linear_solver_b == "banded":
            self._bandwidth_b = self._bandwidths(
                o.upper_bandwidthB,
                o.lower_bandwidthB,
                lambda: _newton_sparsity(
                    g, RDaeIn.RX, RDaeIn.RZ, RDaeOut.ODE, RDaeOut.ALG
                ),
            )

    def _register(self, fcn: SXFunction) -> None:
        fcn.init()
        self._functions[fcn.name] = fcn

    @staticmethod
    def _bandwidths(upper, lower, sparsity) -> tuple[int, int]:
        """Bandwidths from options, else from the Newton matrix structure."""
        if upper is not None and lower is not None:
            return upper, lower
        u, l = sparsity().bandwidth()
        return (u if upper is None else upper), (l if lower is None else lower)

    # ------------------------------------------------------------------
    # Sub-functions

    def has_function(self, name: str) -> bool:
        return name in self._functions

    def get_function(self, name: str) -> Any:
        """Generated sub-function (or linear solver class) by name."""
        try:
            return self._functions[name]
        except KeyError:
            raise ConfigurationError(
                f'No function "{name}" in {self.name}, available: '
                f"{sorted(self._functions)}"
            ) from None

    def calc_function(self, m: DaeIntegratorMemory, name: str) -> None:
        """Evaluate a sub-function from m.arg into m.res (None: zero/skip)."""
        fcn = self.get_function(name)
        values = fcn.numeric(m.arg[:fcn.n_in])
        for r, v in zip(m.res, values):
            if r is not None:
                r[...] = v.reshape(r.shape, order="F")

    # ------------------------------------------------------------------
    # Memory

    def alloc_memory(self) -> DaeIntegratorMemory:
        self._assert_init()
        n_arg = max(
            [f.n_in for f in self._functions.values() if isinstance(f, Function)]
            + [1]
        )
        return DaeIntegratorMemory(self, n_arg=n_arg)

    def _check_memory(self, m: DaeIntegratorMemory, *states: MemoryState) -> None:
        if not isinstance(m, DaeIntegratorMemory) or m.integrator is not self:
            raise InvalidStateError("Memory was not allocated by this integrator")
        if m.is_freed:
            raise InvalidStateError("Integrator memory has been freed")
        if m.solver is None:
            raise InvalidStateError("init_memory must be called first")
        if states and m.state not in states:
            raise InvalidStateError(
                f"Operation not allowed in state {m.state.name}, expected one "
                f"of {[s.name for s in states]}"
            )

    def _linear_module(self, backward: bool) -> LinearModule:
        o = self.options
        if backward:
            policy, exact, precon = (
                o.linear_solverB, o.exact_jacobianB, o.use_preconditionerB
            )
            upper, lower = self._bandwidth_b
            return create_linear_module(
                policy,
                jac=callbacks.djac_b if exact else None,
                bjac=callbacks.bjac_b if exact else None,
                jtimes=callbacks.jtimes_b if exact else None,
                psetup=callbacks.psetup_b if precon else None,
                psolve=callbacks.psolve_b if precon else None,
                lsetup=callbacks.lsetup_b,
                lsolve=callbacks.lsolve_b,
                iterative_solver=o.iterative_solverB,
                max_krylov=o.max_krylovB,
                upper_bandwidth=upper,
                lower_bandwidth=lower,
            )

        upper, lower = self._bandwidth
        return create_linear_module(
            o.linear_solver,
            jac=callbacks.djac if o.exact_jacobian else None,
            bjac=callbacks.bjac if o.exact_jacobian else None,
            jtimes=callbacks.jtimes if o.exact_jacobian else None,
            psetup=callbacks.psetup if o.use_preconditioner else None,
            psolve=callbacks.psolve if o.use_preconditioner else None,
            lsetup=callbacks.lsetup,
            lsolve=callbacks.lsolve,
            iterative_solver=o.iterative_solver,
            max_krylov=o.max_krylov,
            upper_bandwidth=upper,
            lower_bandwidth=lower,
        )

    def init_memory(self, m: DaeIntegratorMemory) -> None:
        """Create and configure the solver of m."""
        self._assert_init()
        if m.state != MemoryState.UNINITIALIZED:
            raise InvalidStateError(f"Memory already initialized ({m.state.name})")
        o = self.options
        req = self.requirements
        assert req is not None
        n = self.nx + self.nz

        s = DaeSolver(name=self.name)
        m.xzdot = np.zeros(n)
        _check_init("init", s.init(callbacks.res, o.t0, m.xz, m.xzdot))
        _check_init("set_err_handler_fn", s.set_err_handler_fn(callbacks.ehfun))
        _check_init("set_suppress_alg", s.set_suppress_alg(o.suppress_algebraic))
        _check_init("set_user_data", s.set_user_data(m))
        _check_init("set_max_step", s.set_max_step(o.max_step_size))
        if o.abstolv is not None:
            _check_init("sv_tolerances", s.sv_tolerances(o.reltol, o.abstolv))
        else:
            _check_init("ss_tolerances", s.ss_tolerances(o.reltol, o.abstol))
        _check_init("set_max_num_steps", s.set_max_num_steps(o.max_num_steps))
        _check_init("set_id", s.set_id([1.0] * self.nx + [0.0] * self.nz))

        try:
            module = self._linear_module(backward=False)
        except ConfigurationError as e:
            raise IntegratorInitError(f"Linear solver: {e}") from e
        _check_init("attach_linear_solver", s.attach_linear_solver(module))

        if self.nq > 0:
            _check_init("quad_init", s.quad_init(callbacks.rhs_q, m.q))
            if o.quad_err_con:
                _check_init("set_quad_err_con", s.set_quad_err_con(True))
                _check_init("quad_ss_tolerances", s.quad_ss_tolerances(o.reltol, o.abstol))

        if req.needs_jacobian:
            m.jac = np.zeros((n, n))
        if req.needs_backward:
            nb = self.nrx + self.nrz
            m.rxzdot = np.zeros(nb)
            if req.needs_jacobian_b:
                m.jacB = np.zeros((nb, nb))

        m.linsol = {
            name: self.get_function(name)()
            for name in ("linsolF", "linsolB")
            if self.has_function(name)
        }
        m.solver = s
        m.is_init_taping = False
        m.is_init_adj = False
        m.state = MemoryState.ALLOCATED
        self.log("DaeIntegrator.init_memory", f"{module.name} linear solver attached")

    # ------------------------------------------------------------------
    # Forward integration

    def reset(
        self,
        m: DaeIntegratorMemory,
        t: float,
        x: ArrayLike,
        z: Optional[ArrayLike] = None,
        p: Optional[ArrayLike] = None,
    ) -> None:
        """Set the initial state at t and prepare forward integration."""
        self._check_memory(m)
        o = self.options
        s = m.solver
        nx = self.nx
        self.log("DaeIntegrator.reset", "begin")

        m.t = float(t)
        m.xz[:nx] = _vector(x, nx, "x")
        m.xz[nx:] = _vector(z, self.nz, "z")
        m.p[:] = _vector(p, self.np, "p")
        m.q[:] = 0.0

        if self.requirements.needs_taping and not m.is_init_taping:
            flag = s.adj_init(o.steps_per_checkpoint, o.interpolation_type)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("adj_init", flag)
            m.is_init_taping = True

        # Initial guess for the state derivative
        m.xzdot[:] = 0.0
        if o.init_xdot is not None:
            m.xzdot[:nx] = o.init_xdot

        flag = s.reinit(m.t, m.xz, m.xzdot)
        if flag != ReturnFlag.SUCCESS:
            raise solver_error("reinit", flag)
        if self.nq > 0:
            flag = s.quad_reinit(m.q)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("quad_reinit", flag)

        if o.calc_ic:
            self.log("DaeIntegrator.reset", "calculating consistent initial conditions")
            flag = s.calc_ic(o.first_time)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("calc_ic", flag)
            xz, xzdot = s.get_consistent_ic()
            m.xz[:] = xz
            m.xzdot[:] = xzdot

        if self.requirements.needs_taping:
            flag = s.adj_reinit()
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("adj_reinit", flag)

        if o.stop_at_end:
            s.set_stop_time(o.tf)

        m.ncheck = 0
        m.state = MemoryState.RESET
        self.log("DaeIntegrator.reset", "end")

    def advance(self, m: DaeIntegratorMemory, t: float) -> tuple[NDArray, NDArray, NDArray]:
        """
        Integrate forward to t.

        Returns:
            Copies of (x, z, q) at t
        """
        o = self.options
        if t < o.t0:
            raise ValueError(
                f"advance({t}): Cannot integrate to a time earlier than "
                f"t0 ({o.t0})"
            )
        if o.stop_at_end and t > o.tf:
            raise ValueError(
                f"advance({t}): Cannot integrate past a time later than "
                f"tf ({o.tf}) unless stop_at_end is False"
            )
        self._check_memory(m, MemoryState.RESET, MemoryState.ADVANCING)
        if t < m.t - TIME_TOL:
            raise ValueError(
                f"advance({t}): Cannot integrate backward from the current "
                f"time ({m.t}); call reset first"
            )
        s = m.solver
        nx = self.nx

        if abs(m.t - t) >= TIME_TOL:
            if self.requirements.needs_taping:
                module = "solve_f"
                flag, m.t, m.ncheck = s.solve_f(t)
            else:
                module = "solve"
                flag, m.t = s.solve(t)
            if not is_success(flag):
                raise solver_error(module, flag)
            m.xz[:] = s.y
            m.xzdot[:] = s.yp
            if self.nq > 0:
                _, q = s.get_quad()
                m.q[:] = q

        m.state = MemoryState.ADVANCING
        m.stats.update(s.get_integrator_stats())
        m.stats["ncheck"] = m.ncheck
        self.log("DaeIntegrator.advance", f"reached t = {m.t}")
        return m.xz[:nx].copy(), m.xz[nx:].copy(), m.q.copy()

    # ------------------------------------------------------------------
    # Backward integration

    def reset_b(
        self,
        m: DaeIntegratorMemory,
        t: float,
        rx: ArrayLike,
        rz: Optional[ArrayLike] = None,
        rp: Optional[ArrayLike] = None,
    ) -> None:
        """Set the backward state at t (end of the taped interval)."""
        self._assert_init()
        if not self.requirements.needs_backward:
            raise InvalidStateError(f"{self.name} has no backward problem")
        self._check_memory(
            m,
            MemoryState.ADVANCING,
            MemoryState.BACKWARD_RESET,
            MemoryState.RETREATING,
        )
        o = self.options
        s = m.solver
        nrx = self.nrx
        self.log("DaeIntegrator.reset_b", "begin")

        m.t = float(t)
        m.rxz[:nrx] = _vector(rx, nrx, "rx")
        m.rxz[nrx:] = _vector(rz, self.nrz, "rz")
        m.rp[:] = _vector(rp, self.nrp, "rp")
        m.rq[:] = 0.0
        m.rxzdot[:] = 0.0

        if not m.is_init_adj:
            flag = s.create_b(m.t, m.rxz, m.rxzdot, callbacks.res_b)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("create_b", flag)
            b = s.backward
            _check_init("ss_tolerances_b", b.ss_tolerances(o.reltolB, o.abstolB))
            _check_init("set_user_data_b", b.set_user_data(m))
            _check_init("set_max_num_steps_b", b.set_max_num_steps(o.max_num_steps))
            _check_init("set_id_b", b.set_id([1.0] * nrx + [0.0] * self.nrz))
            try:
                module = self._linear_module(backward=True)
            except ConfigurationError as e:
                raise IntegratorInitError(f"Backward linear solver: {e}") from e
            _check_init("attach_linear_solver_b", b.attach_linear_solver(module))
            if self.nrq > 0:
                _check_init("quad_init_b", b.quad_init(callbacks.rhs_qb, m.rq))
                if o.quad_err_con:
                    _check_init("set_quad_err_con_b", b.set_quad_err_con(True))
                    _check_init(
                        "quad_ss_tolerances_b",
                        b.quad_ss_tolerances(o.reltolB, o.abstolB),
                    )
            m.is_init_adj = True
        else:
            b = s.backward
            flag = b.reinit(m.t, m.rxz, m.rxzdot)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("reinit_b", flag)
            if self.nrq > 0:
                flag = b.quad_reinit(m.rq)
                if flag != ReturnFlag.SUCCESS:
                    raise solver_error("quad_reinit_b", flag)

        if o.calc_icB:
            self.log("DaeIntegrator.reset_b", "calculating consistent initial conditions")
            flag = b.calc_ic(o.t0)
            if flag != ReturnFlag.SUCCESS:
                raise solver_error("calc_ic_b", flag)
            rxz, rxzdot = b.get_consistent_ic()
            m.rxz[:] = rxz
            m.rxzdot[:] = rxzdot

        m.state = MemoryState.BACKWARD_RESET
        self.log("DaeIntegrator.reset_b", "end")

    def retreat(self, m: DaeIntegratorMemory, t: float) -> tuple[NDArray, NDArray, NDArray]:
        """
        Integrate the backward problem down to t.

        Returns:
            Copies of (rx, rz, rq) at t
        """
        self._check_memory(m, MemoryState.BACKWARD_RESET, MemoryState.RETREATING)
        if t < self.options.t0:
            raise ValueError(
                f"retreat({t}): Cannot integrate to a time earlier than "
                f"t0 ({self.options.t0})"
            )
        s = m.solver
        nrx = self.nrx

        if t < m.t:
            flag = s.solve_b(t)
            if flag < 0:
                raise solver_error("solve_b", flag)
            m.t, rxz, rxzdot = s.get_b()
            m.rxz[:] = rxz
            m.rxzdot[:] = rxzdot
            if self.nrq > 0:
                _, rq = s.get_quad_b()
                m.rq[:] = rq

        m.state = MemoryState.RETREATING
        for key, value in s.backward.get_integrator_stats().items():
            m.stats[key + "B"] = value
        self.log("DaeIntegrator.retreat", f"reached t = {m.t}")
        return m.rxz[:nrx].copy(), m.rxz[nrx:].copy(), m.rq.copy()

    # ------------------------------------------------------------------
    # Function interface

    def get_stats(self, m: Optional[DaeIntegratorMemory] = None) -> Statistics:
        """Counters of memory m, or of the last evaluate call."""
        if m is None:
            return self.stats
        return m.stats

    def _evaluate(self) -> None:
        o = self.options
        if self._mem is None or self._mem.is_freed:
            self._mem = self.alloc_memory()
            self.init_memory(self._mem)
        m = self._mem

        self.reset(
            m,
            o.t0,
            self.input(IntegratorIn.X0),
            self.input(IntegratorIn.Z0),
            self.input(IntegratorIn.P),
        )
        xf, zf, qf = self.advance(m, o.tf)
        self.output(IntegratorOut.XF)[:, 0] = xf
        self.output(IntegratorOut.ZF)[:, 0] = zf
        self.output(IntegratorOut.QF)[:, 0] = qf

        if self.requirements.needs_backward:
            self.reset_b(
                m,
                m.t,
                self.input(IntegratorIn.RX0),
                self.input(IntegratorIn.RZ0),
                self.input(IntegratorIn.RP),
            )
            rxf, rzf, rqf = self.retreat(m, o.t0)
            self.output(IntegratorOut.RXF)[:, 0] = rxf
            self.output(IntegratorOut.RZF)[:, 0] = rzf
            self.output(IntegratorOut.RQF)[:, 0] = rqf

        self.stats.update(m.stats)

    def _evaluate_derivatives(self, nfdir: int, nadir: int) -> None:
        raise UnsupportedOperationError(
            f"{type(self).__name__} does not propagate sensitivities; "
            "use a backward problem instead"
        )
