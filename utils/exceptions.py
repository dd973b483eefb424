"""
Custom Exceptions
Error taxonomy shared by the pipeline, its collaborators and the web layer.
"""
from typing import Optional


class BooktureError(Exception):
    """Base error for the illustration pipeline."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BooktureError):
    """Missing or invalid configuration."""
    pass


class InputError(BooktureError):
    """Missing/empty document, no extractable pages, or similar bad input."""
    pass


class JobNotFoundError(BooktureError):
    """Unknown job id."""

    def __init__(self, job_id: str, **kwargs):
        super().__init__(f"Job not found: {job_id}", kwargs)
        self.job_id = job_id


class ConsistencyError(BooktureError):
    """Persisted state contradicts what a stage requires."""
    pass


class InvalidTransitionError(ConsistencyError):
    """Stage change that the state machine does not allow."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(f"Invalid stage transition: {current} -> {target}", kwargs)
        self.current = current
        self.target = target


class ExternalServiceError(BooktureError):
    """Failure reported by an external collaborator."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, kwargs)
        self.service = service
        self.status_code = status_code


class TransientServiceError(ExternalServiceError):
    """Overloaded or rate-limited; safe to retry."""
    pass


class PermanentServiceError(ExternalServiceError):
    """Will fail the same way on retry."""
    pass


class MalformedOutputError(PermanentServiceError):
    """Model answered, but the answer cannot be parsed."""
    pass


class RetryExhaustedError(ExternalServiceError):
    """Transient failures outlasted the attempt budget."""

    def __init__(self, message: str, service: Optional[str] = None, attempts: int = 0, **kwargs):
        super().__init__(message, service=service, **kwargs)
        self.attempts = attempts


class StorageError(BooktureError):
    """Artifact or job persistence failure."""
    pass
