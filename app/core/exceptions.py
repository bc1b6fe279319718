"""Custom exception hierarchy."""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class UpstreamError(APIClientError):
    """Raised when an upstream service answers with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error=original_error)
        self.status_code = status_code


class NDRError(UpstreamError):
    """Raised when the node/document store rejects a request."""
    pass


class PrefectError(UpstreamError):
    """Raised when the Prefect API rejects a request."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails or a state transition is illegal."""
    pass


class ConflictError(AppError):
    """Raised when an operation conflicts with current state."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class NotFoundError(AppError):
    """Raised when a requested record does not exist."""
    pass


class WorkflowRunNotFoundError(NotFoundError):
    """Raised when a workflow run is not found."""

    def __init__(self, run_id: int):
        super().__init__(f"workflow run not found: {run_id}")
        self.run_id = run_id


class BatchNotFoundError(NotFoundError):
    """Raised when a workflow or sync batch is not found."""

    def __init__(self, batch_id: str):
        super().__init__(f"batch not found: {batch_id}")
        self.batch_id = batch_id
