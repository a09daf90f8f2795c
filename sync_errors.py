"""
Error types for the Asana <-> Google Tasks sync and the policy that decides
which of them end the process.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""
    pass


class ConfigurationError(SyncError):
    """Missing or invalid setting, or a remote resource that must exist at startup."""
    pass


class DataShapeError(SyncError):
    """A record reached a step it should have been filtered out before."""
    pass


class MissingDueDateError(DataShapeError):
    """An Asana task without due_on or due_at reached due date formatting."""
    pass


class RemoteRequestError(SyncError):
    """A call to Asana or Google Tasks failed.

    Args:
        message: Human readable description
        operation: Name of the failing operation, e.g. 'list Asana tasks'
        status_code: HTTP status when the remote answered, else None
    """

    def __init__(self, message: str, operation: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


class AsanaAPIError(RemoteRequestError):
    """Raised when the Asana API call fails."""
    pass


class UnsupportedPaginationError(AsanaAPIError):
    """Asana reported a further page of tasks, which the client does not follow."""
    pass


class GoogleTasksAPIError(RemoteRequestError):
    """Raised when a Google Tasks API call fails."""
    pass


class ErrorPolicy:
    """Decides whether an error raised during a sync cycle ends the process.

    Remote request errors are retried on the next cycle. Everything else
    (configuration, data shape, authorization, unexpected exceptions) is fatal.
    With exit_on_error set, remote errors are fatal too.
    """

    def __init__(self, exit_on_error: bool = False):
        self.exit_on_error = exit_on_error

    def is_retryable(self, exc: BaseException) -> bool:
        if self.exit_on_error:
            return False
        return isinstance(exc, RemoteRequestError)

    def is_fatal(self, exc: BaseException) -> bool:
        return not self.is_retryable(exc)
