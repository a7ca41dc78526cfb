"""Error types shared across the act harness package."""

from __future__ import annotations

__all__ = [
    "ActError",
    "HarnessError",
    "LinkingError",
    "MutationError",
    "NotFoundError",
    "ParseError",
    "StorageError",
    "VersionLookupError",
]


class HarnessError(RuntimeError):
    """Base class for errors raised while building or running test workflows.

    Parameters
    ----------
    message
        Human readable description of the failure.
    node
        File name of the composition tree node involved, if any.
    job_id
        Identifier of the job involved, if any.
    step_index
        Position of the step involved inside its job, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        node: str | None = None,
        job_id: str | None = None,
        step_index: int | None = None,
    ) -> None:
        self.node = node
        self.job_id = job_id
        self.step_index = step_index
        super().__init__(self._with_context(message))

    def _with_context(self, message: str) -> str:
        parts: list[str] = []
        if self.node is not None:
            parts.append(f"workflow={self.node}")
        if self.job_id is not None:
            parts.append(f"job={self.job_id}")
        if self.step_index is not None:
            parts.append(f"step={self.step_index}")
        if not parts:
            return message
        return f"{message} ({', '.join(parts)})"


class ParseError(HarnessError):
    """Raised when a workflow document is malformed."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class LinkingError(HarnessError):
    """Raised when a child workflow cannot be linked into its parent."""


class MutationError(HarnessError):
    """Raised when a step or job cannot be mutated as requested."""


class NotFoundError(HarnessError, LookupError):
    """Raised when a required child workflow, job or step does not exist."""


class VersionLookupError(HarnessError):
    """Raised when a tool release index cannot be fetched or understood."""


class ActError(HarnessError):
    """Raised when the act executable cannot be prepared or launched."""


class StorageError(HarnessError):
    """Raised when an uploaded artifact or mock GCS object cannot be read."""
