"""Utilities module for the Workspace Runtime."""

from utils.errors import (
    WorkspaceError,
    ValidationError,
    ConfigurationError,
    EmbeddingError,
    StorageError,
    NotFoundError,
    PathTraversalError,
    PathEscapeError,
    ReadRequiredError,
    StaleReadError,
    OperationCancelledError,
    OperationTimeoutError,
    ToolDisabledError,
    ApprovalRequiredError,
    ReadOnlyWorkspaceError,
    FileTooLargeError,
    EditError,
    error_response,
)
from utils.logging import setup_logging, StructuredLogger

__all__ = [
    "WorkspaceError",
    "ValidationError",
    "ConfigurationError",
    "EmbeddingError",
    "StorageError",
    "NotFoundError",
    "PathTraversalError",
    "PathEscapeError",
    "ReadRequiredError",
    "StaleReadError",
    "OperationCancelledError",
    "OperationTimeoutError",
    "ToolDisabledError",
    "ApprovalRequiredError",
    "ReadOnlyWorkspaceError",
    "FileTooLargeError",
    "EditError",
    "error_response",
    "setup_logging",
    "StructuredLogger",
]
