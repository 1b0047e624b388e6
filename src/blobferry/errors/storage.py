"""
Storage-network and aggregator exceptions.

These exceptions are raised while finalizing a blob on the destination
storage network (encode, register, distribute, certify, delete) and while
talking to the sponsored-route aggregator over HTTP.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from blobferry.errors.base import BlobFerryError


class StorageError(BlobFerryError):
    """
    Base exception for storage-network operations.

    Example:
        >>> raise StorageError("Storage node rejected sliver", blob_id="Xy9...")
    """

    def __init__(
        self,
        message: str,
        *,
        blob_id: Optional[str] = None,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if blob_id:
            details["blob_id"] = blob_id

        super().__init__(
            message,
            code="STORAGE_ERROR",
            tx_id=tx_id,
            details=details,
        )
        self.blob_id = blob_id


class FinalizationError(StorageError):
    """
    Raised when one finalization sub-step fails.

    Example:
        >>> raise FinalizationError("register", "Blob object not found in transaction result")
    """

    def __init__(
        self,
        sub_step: str,
        message: str,
        *,
        blob_id: Optional[str] = None,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["sub_step"] = sub_step
        super().__init__(
            f"{sub_step} failed: {message}",
            blob_id=blob_id,
            tx_id=tx_id,
            details=details,
        )
        self.code = "FINALIZATION_ERROR"
        self.sub_step = sub_step


class QuorumNotReachedError(FinalizationError):
    """Raised when fewer storage nodes confirmed than the quorum requires."""

    def __init__(
        self,
        received: int,
        required: int,
        *,
        blob_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            "distribute",
            f"received {received} confirmations, quorum is {required}",
            blob_id=blob_id,
            details={"received": received, "required": required},
        )
        self.code = "QUORUM_NOT_REACHED"
        self.received = received
        self.required = required


class CertificationFailedError(FinalizationError):
    """
    Raised when the certify transaction does not report success.

    A returned digest is not proof of success; the blob is not finalized.
    """

    def __init__(
        self,
        status: str,
        *,
        blob_id: Optional[str] = None,
        tx_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {"status": status}
        if error:
            details["error"] = error
        super().__init__(
            "certify",
            f"transaction status is {status!r}",
            blob_id=blob_id,
            tx_id=tx_id,
            details=details,
        )
        self.code = "CERTIFICATION_FAILED"
        self.status = status


class DeleteFailedError(StorageError):
    """Raised when a blob deletion transaction does not report success."""

    def __init__(
        self,
        blob_object_id: str,
        status: str,
        *,
        tx_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Delete of blob object {blob_object_id} failed with status {status!r}",
            tx_id=tx_id,
            details={"blob_object_id": blob_object_id, "status": status},
        )
        self.code = "DELETE_FAILED"
        self.blob_object_id = blob_object_id
        self.status = status


class BlobNotFoundError(StorageError):
    """
    Raised when a blob or its attributes cannot be found.

    Example:
        >>> raise BlobNotFoundError("0x5e2f...")
    """

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Blob not found: {identifier}")
        self.code = "BLOB_NOT_FOUND"
        self.identifier = identifier


# ============================================================================
# Aggregator Errors
# ============================================================================


class AggregatorError(BlobFerryError):
    """
    Raised when the sponsored-route aggregator returns an error.

    Example:
        >>> raise AggregatorError("Failed to query route: HTTP 503", status_code=503)
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        base_url: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        if base_url:
            details["base_url"] = base_url
        super().__init__(message, code="AGGREGATOR_ERROR", details=details)
        self.status_code = status_code
        self.base_url = base_url


class CircuitBreakerOpenError(BlobFerryError):
    """
    Raised when circuit breaker is open for an endpoint.

    Example:
        >>> raise CircuitBreakerOpenError("https://aggregator.astroswap.org")
    """

    def __init__(
        self,
        endpoint: str,
        *,
        reset_at: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["endpoint"] = endpoint
        if reset_at is not None:
            details["reset_at"] = reset_at

        super().__init__(
            f"Circuit breaker open for endpoint: {endpoint}",
            code="CIRCUIT_BREAKER_OPEN",
            details=details,
        )
        self.endpoint = endpoint
        self.reset_at = reset_at
