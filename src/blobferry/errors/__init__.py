"""
Exception hierarchy for blobferry.

All exceptions inherit from BlobFerryError.
"""

from blobferry.errors.base import (
    BlobFerryError,
    InvalidTransitionError,
    ValidationError,
)
from blobferry.errors.saga import (
    AttestationTimeoutError,
    BridgeClaimError,
    BridgeSubmissionError,
    InsufficientBalanceError,
    LedgerNetworkError,
    QuoteUnavailableError,
    SagaFailedError,
    SwapAuthorizationError,
    SwapExecutionError,
    SwapRouteUnavailableError,
)
from blobferry.errors.storage import (
    AggregatorError,
    BlobNotFoundError,
    CertificationFailedError,
    CircuitBreakerOpenError,
    DeleteFailedError,
    FinalizationError,
    QuorumNotReachedError,
    StorageError,
)

__all__ = [
    # Base
    "BlobFerryError",
    "ValidationError",
    "InvalidTransitionError",
    # Saga steps
    "QuoteUnavailableError",
    "InsufficientBalanceError",
    "LedgerNetworkError",
    "BridgeSubmissionError",
    "AttestationTimeoutError",
    "BridgeClaimError",
    "SwapRouteUnavailableError",
    "SwapAuthorizationError",
    "SwapExecutionError",
    "SagaFailedError",
    # Storage
    "StorageError",
    "FinalizationError",
    "QuorumNotReachedError",
    "CertificationFailedError",
    "DeleteFailedError",
    "BlobNotFoundError",
    # Aggregator
    "AggregatorError",
    "CircuitBreakerOpenError",
]
