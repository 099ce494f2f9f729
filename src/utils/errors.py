"""Custom exception classes for the Workspace Runtime."""

from typing import Any, Dict


class WorkspaceError(Exception):
    """Base exception for all workspace runtime errors."""
    error_code = "WORKSPACE_ERROR"
    recoverable = False


class ValidationError(WorkspaceError):
    """Raised when tool input validation fails."""
    error_code = "INVALID_PARAMETER"


class ConfigurationError(WorkspaceError):
    """Raised when configuration is invalid."""
    error_code = "CONFIGURATION_ERROR"


class EmbeddingError(WorkspaceError):
    """Raised when embedding generation fails."""
    error_code = "EMBEDDING_ERROR"


class StorageError(WorkspaceError):
    """Raised when vector storage operations fail."""
    error_code = "STORAGE_ERROR"


class NotFoundError(WorkspaceError):
    """Raised when a workspace path does not exist."""
    error_code = "NOT_FOUND"


class PathTraversalError(WorkspaceError):
    """Raised when a workspace path contains '..' or starts with '~'."""
    error_code = "PATH_TRAVERSAL"


class PathEscapeError(WorkspaceError):
    """Raised when a resolved path lands outside its sandbox root."""
    error_code = "PATH_ESCAPE"


class ReadRequiredError(WorkspaceError):
    """Raised when a write is attempted without a prior read in the operation."""
    error_code = "READ_REQUIRED"
    recoverable = True


class StaleReadError(WorkspaceError):
    """Raised when a file changed (or vanished) since it was last read."""
    error_code = "STALE_READ"
    recoverable = True


class OperationCancelledError(WorkspaceError):
    """Raised when a tool call starts after its operation was aborted."""
    error_code = "OPERATION_CANCELLED"


class OperationTimeoutError(WorkspaceError):
    """Raised when workspace I/O exceeds the operation timeout."""
    error_code = "OPERATION_TIMEOUT"


class ToolDisabledError(WorkspaceError):
    """Raised when policy disables the invoked tool."""
    error_code = "TOOL_DISABLED"


class ApprovalRequiredError(WorkspaceError):
    """Raised when policy requires approval the caller has not granted."""
    error_code = "APPROVAL_REQUIRED"


class ReadOnlyWorkspaceError(WorkspaceError):
    """Raised when a mutating tool runs against a read-only workspace."""
    error_code = "READ_ONLY"


class FileTooLargeError(WorkspaceError):
    """Raised when a file exceeds the configured read size limit."""
    error_code = "FILE_TOO_LARGE"


class EditError(WorkspaceError):
    """Raised when a string replacement cannot be applied."""
    error_code = "EDIT_FAILED"


def error_response(error: WorkspaceError) -> Dict[str, Any]:
    """
    Convert a workspace error into the structured tool failure result.

    Args:
        error: Raised workspace error

    Returns:
        Dict with error message, error_code and recoverable flag
    """
    return {
        "error": str(error),
        "error_code": error.error_code,
        "recoverable": error.recoverable,
    }
