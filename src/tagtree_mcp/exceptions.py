"""Custom exceptions for the TagTree MCP server.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Tag errors (3xxx)
    TAG_NOT_FOUND = 3001
    TAG_INVALID = 3002
    TAG_ALREADY_EXISTS = 3003
    TAG_NAME_REQUIRED = 3004
    TAG_COLOR_INVALID = 3005

    # Structure errors (35xx)
    STRUCTURE_CONFLICT = 3501
    STRUCTURE_CYCLE = 3502

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Cascade errors (45xx)
    CASCADE_PARTIAL = 4502

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class TagTreeError(Exception):
    """Base exception for all TagTree errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class TagValidationError(TagTreeError):
    """Raised when tag data is rejected before any mutation happens."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.TAG_INVALID
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class TagNotFoundError(TagTreeError):
    """Raised when a tag id does not resolve to a stored tag."""

    def __init__(self, tag_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Tag with ID '{tag_id}' not found",
            code=ErrorCode.TAG_NOT_FOUND,
            details={"tag_id": tag_id}
        )
        self.tag_id = tag_id


class PersistenceError(TagTreeError):
    """Raised for transport/storage failures during a read or write."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class CascadeError(PersistenceError):
    """Raised when an attribute cascade stops partway.

    Writes are independent, so the tags listed in ``updated_ids`` keep the
    new value while ``failed_ids`` (and anything after them) do not.

    Attributes:
        attribute: The cascaded attribute ("is_favorite" or "is_pinned")
        updated_ids: Tag IDs that received the new value
        failed_ids: Tag IDs whose write failed
    """

    def __init__(
        self,
        message: str,
        attribute: str,
        updated_ids: Optional[List[str]] = None,
        failed_ids: Optional[List[str]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            operation=f"cascade_{attribute}",
            code=ErrorCode.CASCADE_PARTIAL,
            original_error=original_error
        )
        self.attribute = attribute
        self.updated_ids: List[str] = list(updated_ids) if updated_ids else []
        self.failed_ids: List[str] = list(failed_ids) if failed_ids else []
        self.details["updated_count"] = len(self.updated_ids)
        self.details["failed_ids"] = self.failed_ids[:10]


class StructuralConflict(TagTreeError):
    """Raised for drag/drop combinations the reparent rules reject."""

    def __init__(
        self,
        message: str,
        active_id: Optional[str] = None,
        over_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.STRUCTURE_CONFLICT
    ):
        details = {}
        if active_id:
            details["active_id"] = active_id
        if over_id:
            details["over_id"] = over_id

        super().__init__(message, code=code, details=details)
        self.active_id = active_id
        self.over_id = over_id


class ConfigurationError(TagTreeError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
