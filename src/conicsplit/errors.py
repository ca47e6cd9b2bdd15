"""Exception types raised by the partitioning engine and solver backends."""

from __future__ import annotations

from typing import Any


class ConicSplitError(Exception):
    """Base exception for all conicsplit errors."""


class NotRegisteredError(ConicSplitError, LookupError):
    """Raised when a variable, cone or constraint is not part of a program."""

    def __init__(self, obj: Any, what: str | None = None) -> None:
        self.obj = obj
        label = what or type(obj).__name__
        super().__init__(f"{label} {obj!r} is not registered with this conic program.")


class UnsupportedConeError(ConicSplitError, TypeError):
    """Raised when a cone kind has no rule in a weighting strategy or solver."""

    def __init__(self, cone: Any, context: str = "") -> None:
        self.cone = cone
        kind = getattr(cone, "kind", type(cone).__name__)
        msg = f"Unsupported cone kind {kind!s}"
        if context:
            msg += f" in {context}"
        super().__init__(msg + ".")


class PreconditionError(ConicSplitError, RuntimeError):
    """Raised when an operation is invoked in a state that does not allow it."""


class SolveError(ConicSplitError, RuntimeError):
    """Raised when a solver finishes with an infeasible or non-optimal status."""

    def __init__(self, status: str, message: str | None = None) -> None:
        self.status = str(status)
        super().__init__(message or f"Solver finished with status '{self.status}'.")
