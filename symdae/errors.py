"""Error taxonomy."""

from typing import Optional


class SymdaeError(Exception):
    """Base class for all symdae errors."""


class SlotIndexError(SymdaeError, IndexError):
    """Input/output slot or sensitivity direction out of range."""

    def __init__(self, function_name: str, kind: str, index: int, count: int):
        self.function_name = function_name
        self.kind = kind
        self.index = index
        self.count = count
        super().__init__(
            f"In function {function_name}: {kind} {index} not in interval "
            f"[0,{count})"
        )


class InvalidStateError(SymdaeError):
    """Operation invoked before the required initialization."""


class UnsupportedOperationError(SymdaeError, NotImplementedError):
    """Capability not provided by a function variant."""


class ConfigurationError(SymdaeError):
    """Bad option value or missing named sub-function."""


class IntegratorInitError(SymdaeError):
    """Fatal failure while allocating or setting up integrator memory."""


class SolverStepError(SymdaeError):
    """A solver call returned a non-success flag."""

    def __init__(
        self,
        module: str,
        flag: int,
        flag_name: str,
        hints: Optional[list[str]] = None,
    ):
        self.module = module
        self.flag = flag
        self.flag_name = flag_name
        self.hints = list(hints or [])
        msg = (
            f'Module "{module}" returned flag {flag} ("{flag_name}"). '
            "Consult the solver documentation."
        )
        if self.hints:
            msg += "\nSome common causes for this error:\n"
            msg += "\n".join(f"  - {h}" for h in self.hints)
        super().__init__(msg)


class ConsistencyError(SolverStepError):
    """Consistent initial conditions could not be computed.

    Not fatal for the integrator: the caller may retry with a different
    initial guess.
    """


class StatNotSetError(SymdaeError, KeyError):
    """Statistic requested before any evaluate/advance call set it."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Statistic: {name} has not been set.\n"
            "Note: statistics are only set after an evaluate call"
        )

    def __str__(self) -> str:
        return self.args[0]


class RecoverableError(SymdaeError):
    """Raised inside a solver callback to request a smaller step.

    The positive ``flag`` is handed back to the solver unchanged.
    """

    def __init__(self, flag: int = 1, msg: str = ""):
        if flag <= 0:
            raise ValueError("Recoverable flags must be positive")
        self.flag = flag
        super().__init__(msg or f"recoverable error {flag}")
