from __future__ import annotations

from typing import Optional, Sequence


class PlanError(RuntimeError):
    pass


class DuplicateName(PlanError):
    def __init__(self, name: str):
        super().__init__(f"Target '{name}' is already declared")
        self.name = name


class CycleDetected(PlanError):
    def __init__(self, cycle: Sequence[str]):
        path = " -> ".join(cycle)
        super().__init__(f"Dependency cycle detected: {path}")
        self.cycle = list(cycle)


class MissingDependency(PlanError):
    def __init__(self, name: str, missing: Sequence[str]):
        super().__init__(f"Target '{name}' depends on undeclared target(s): {', '.join(missing)}")
        self.name = name
        self.missing = list(missing)


class UnknownCommand(PlanError):
    pass


class StoreUnavailable(PlanError):
    """The persistence backend could not be read or written.

    Fatal to the current run; the caller may retry once the backend is back.
    """


class ExecutionFailure(PlanError):
    """A target's executor raised, or one of its upstream targets failed.

    Never raised out of a run: instances are attached to the run record.
    """

    def __init__(self, name: str, cause: BaseException | str, *, upstream: Optional[str] = None):
        self.name = name
        self.upstream = upstream
        if isinstance(cause, BaseException):
            self.cause: Optional[BaseException] = cause
            reason = f"{type(cause).__name__}: {cause}"
        else:
            self.cause = None
            reason = str(cause)
        self.reason = reason
        super().__init__(f"Target '{name}' failed: {reason}")


class UnknownTarget(PlanError, KeyError):
    def __init__(self, name: str):
        super().__init__(f"Unknown target '{name}'")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class UnstorableResult(PlanError):
    """A target produced a value the store backend cannot serialize."""
