"""
Error Handling - Centralized error policies and custom exceptions.

Per-file problems are resolved locally: crawl errors through
ERROR_POLICIES, read errors through READ_ERROR_POLICIES. Everything else is raised as a
FileSeekError subclass and converted to a typed status at the query
boundary, except store initialization failures, which abort startup.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    FALLBACK = auto()       # Hash the item by its path instead of its content
    ABORT = auto()          # Stop the entire pipeline


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


# Crawl-time errors: the entry is left out of the scan.
# Order matters: subclasses before OSError.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error while crawling: {file} - {error}"
    ),
}

# Read-time errors: the file is still indexed, hashed by its path.
READ_ERROR_POLICIES: dict[type, ErrorPolicy] = {
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?), hashing by path: {file}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.WARNING,
        message_template="Permission denied, hashing by path: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted), hashing by path: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.FALLBACK,
        log_level=logging.WARNING,
        message_template="OS error reading file, hashing by path: {file} - {error}"
    ),
}


class FileSeekError(Exception):
    """Base exception for fileseek errors."""
    pass


class ResourceNotFoundError(FileSeekError):
    """Crawl root does not exist or is not a directory."""
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Crawl root not found: {path}")


class EmbeddingError(FileSeekError):
    """Error during embedding generation."""
    pass


class ModelUnavailableError(EmbeddingError):
    """Embedding model is still loading or failed permanently."""
    pass


class StoreError(FileSeekError):
    """Error during index store operations."""
    pass


class StoreInitError(StoreError):
    """Schema or vector index setup failed. Fatal at startup."""
    pass


class StoreWriteError(StoreError):
    """An upsert batch was rolled back."""
    pass


class StoreEmptyError(StoreError):
    """The store holds no items yet (still seeding)."""
    pass


class DimensionMismatchError(StoreError):
    """Embedding width differs from the configured vector index dimension."""
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected}-dim embedding, got {actual}")


class VectorIndexError(StoreError):
    """The vector index capability failed to prepare or scan."""
    pass


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = "",
    policies: Optional[dict[type, ErrorPolicy]] = None,
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging
        policies: Policy table to consult (default: ERROR_POLICIES)

    Returns:
        The action the caller must take (SKIP, FALLBACK or ABORT)
    """
    if policies is None:
        policies = ERROR_POLICIES

    # Look up policy for this error type (or its base classes)
    policy = None
    for error_type, p in policies.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.ABORT,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
