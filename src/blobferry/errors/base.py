"""
Base exception class for blobferry.

All upload-saga exceptions inherit from BlobFerryError, which provides
structured error information including error codes, transaction ids,
and additional context details.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BlobFerryError(Exception):
    """
    Base exception for all blobferry errors.

    Provides structured error information that can be serialized and logged.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code (e.g., "INSUFFICIENT_BALANCE").
        tx_id: Optional transaction id/digest related to the error.
        details: Optional dictionary with additional error context.

    Example:
        >>> raise BlobFerryError(
        ...     "Certify transaction failed",
        ...     code="CERTIFY_FAILED",
        ...     tx_id="9xQeWvG816bUx9EP...",
        ...     details={"status": "failure"}
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "BLOBFERRY_ERROR",
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.tx_id = tx_id
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [f"[{self.code}] {self.message}"]
        if self.tx_id:
            parts.append(f"(tx: {self.tx_id[:10]}...)")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"tx_id={self.tx_id!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to a dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "tx_id": self.tx_id,
            "details": self.details,
        }


class ValidationError(BlobFerryError):
    """
    Raised when an upload request or parameter is malformed.

    Validation errors fail fast: no retry, no side effect.

    Example:
        >>> raise ValidationError("epochs must be positive", field="epochs")
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, code="VALIDATION_ERROR", details=details)
        self.field = field


class InvalidTransitionError(BlobFerryError):
    """Raised when an artifact is moved to a phase it cannot reach."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Invalid transition: {current} -> {target}",
            code="INVALID_TRANSITION",
            details={"from": current, "to": target},
        )
        self.current = current
        self.target = target
