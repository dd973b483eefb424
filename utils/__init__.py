"""
Utils Module
Logging and the shared error taxonomy.
"""
from .logger import setup_logger, get_logger
from .exceptions import (
    BooktureError,
    ConfigurationError,
    ConsistencyError,
    ExternalServiceError,
    InputError,
    InvalidTransitionError,
    JobNotFoundError,
    MalformedOutputError,
    PermanentServiceError,
    RetryExhaustedError,
    StorageError,
    TransientServiceError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "BooktureError",
    "ConfigurationError",
    "ConsistencyError",
    "ExternalServiceError",
    "InputError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "MalformedOutputError",
    "PermanentServiceError",
    "RetryExhaustedError",
    "StorageError",
    "TransientServiceError",
]
