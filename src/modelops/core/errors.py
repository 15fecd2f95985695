"""Error taxonomy for the model execution engine.

Definition and planning errors are fatal and abort an invocation before any
statement reaches the warehouse. Execution errors are caught per model by the
run coordinator and recorded in that model's run record; they never unwind
the coordinator itself.
"""

from __future__ import annotations

from typing import Sequence


class ModelOpsError(RuntimeError):
    """Base class for all engine errors."""


class DefinitionError(ModelOpsError):
    """Raised when a catalog entry is invalid."""


class SelectionError(DefinitionError):
    """Raised when a selection expression cannot be parsed."""


class CycleError(ModelOpsError):
    """Raised when model dependencies form a cycle."""

    def __init__(self, path: Sequence[str]):
        self.path = tuple(path)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.path)}")


class UnknownReferenceError(ModelOpsError):
    """Raised when an upstream reference is neither a model nor a source."""

    def __init__(self, name: str, referenced_by: str | None = None):
        self.name = name
        self.referenced_by = referenced_by
        where = f" (referenced by '{referenced_by}')" if referenced_by else ""
        super().__init__(f"Unknown upstream reference '{name}'{where}")


class MissingUpstreamError(ModelOpsError):
    """Raised when a selected model depends on an unselected, unbuilt model."""

    def __init__(self, model: str, upstream: str):
        self.model = model
        self.upstream = upstream
        super().__init__(
            f"Model '{model}' requires '{upstream}', which is neither selected "
            "nor materialized in the warehouse. Select it (e.g. +"
            f"{model}) or build it first."
        )


class ExecutionError(ModelOpsError):
    """
    Raised when a warehouse statement fails.

    Attributes:
        transient: True for failures worth retrying (timeouts, rate limits,
                   temporarily unavailable warehouse).
        statement: The statement that failed, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        statement: str | None = None,
    ):
        self.transient = transient
        self.statement = statement
        super().__init__(message)


class CancellationError(ModelOpsError):
    """Raised when a run is cancelled by an external signal."""
