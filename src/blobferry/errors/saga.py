"""
Upload-saga step exceptions.

Each class maps to one entry of the saga's error taxonomy. Whether a step
retries on an error is decided by the RetryPolicy classifiers in
``blobferry.steps``; the classes here only describe what went wrong.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from blobferry.errors.base import BlobFerryError

if TYPE_CHECKING:
    from blobferry.types import BridgeTransferHandle


# ============================================================================
# Quote
# ============================================================================


class QuoteUnavailableError(BlobFerryError):
    """
    Raised when the storage-quote provider times out or is unreachable.

    Retryable, bounded.
    """

    def __init__(
        self,
        message: str = "Storage quote provider unavailable",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="QUOTE_UNAVAILABLE", details=details)


# ============================================================================
# Fee collection (source ledger)
# ============================================================================


class InsufficientBalanceError(BlobFerryError):
    """
    Raised when the payer cannot cover the protocol fee.

    Terminal and user-actionable: top up the payer account and retry.

    Example:
        >>> raise InsufficientBalanceError(Decimal("0.05"), Decimal("0.1"), address="GBMT...")
    """

    def __init__(
        self,
        balance: Decimal,
        required: Decimal,
        *,
        address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["balance"] = str(balance)
        details["required"] = str(required)
        details["deficit"] = str(required - balance)
        if address:
            details["address"] = address

        super().__init__(
            f"Insufficient balance: {balance} < {required}",
            code="INSUFFICIENT_BALANCE",
            details=details,
        )
        self.balance = balance
        self.required = required
        self.address = address


class LedgerNetworkError(BlobFerryError):
    """
    Raised when a source-ledger RPC call or confirmation times out.

    Retryable. The submitted transaction may still have landed, so the
    caller must check the idempotency key before resubmitting.
    """

    def __init__(
        self,
        message: str,
        *,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message, code="LEDGER_NETWORK_ERROR", tx_id=tx_id, details=details
        )


# ============================================================================
# Bridge
# ============================================================================


class BridgeSubmissionError(BlobFerryError):
    """
    Raised when initiating a bridge transfer fails.

    ``accepted`` tells whether the source chain accepted the transfer before
    the error surfaced. Only pre-acceptance failures may be retried.
    """

    def __init__(
        self,
        message: str,
        *,
        accepted: bool = False,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["accepted"] = accepted
        super().__init__(
            message, code="BRIDGE_SUBMISSION_ERROR", tx_id=tx_id, details=details
        )
        self.accepted = accepted


class AttestationTimeoutError(BlobFerryError):
    """
    Raised when the bridge attestation does not arrive within the hard timeout.

    Terminal for the current run. The handle is attached so the caller can
    re-poll for the attestation instead of restarting the saga.
    """

    def __init__(
        self,
        timeout_seconds: float,
        *,
        handle: Optional["BridgeTransferHandle"] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["timeout_seconds"] = timeout_seconds
        super().__init__(
            f"Bridge attestation not received after {timeout_seconds}s",
            code="ATTESTATION_TIMEOUT",
            tx_id=handle.source_tx_id if handle else None,
            details=details,
        )
        self.timeout_seconds = timeout_seconds
        self.handle = handle


class BridgeClaimError(BlobFerryError):
    """
    Raised when claiming a bridged transfer on the destination chain fails.

    ``transient`` is set when the message matched the known race-condition
    allow-list; otherwise the destination error is surfaced verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["transient"] = transient
        super().__init__(
            message, code="BRIDGE_CLAIM_ERROR", tx_id=tx_id, details=details
        )
        self.transient = transient


# ============================================================================
# Swap
# ============================================================================


class SwapRouteUnavailableError(BlobFerryError):
    """Raised when a swap router has no liquidity or route for the pair."""

    def __init__(
        self,
        message: str = "No viable trade route found",
        *,
        route: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if route:
            details["route"] = route
        super().__init__(message, code="SWAP_ROUTE_UNAVAILABLE", details=details)
        self.route = route


class SwapAuthorizationError(BlobFerryError):
    """Raised on signature or authorization failures during a swap. Terminal."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="SWAP_AUTHORIZATION_ERROR", details=details)


class SwapExecutionError(BlobFerryError):
    """Raised when a swap transaction executes but does not report success."""

    def __init__(
        self,
        message: str,
        *,
        tx_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message, code="SWAP_EXECUTION_ERROR", tx_id=tx_id, details=details
        )


# ============================================================================
# Saga
# ============================================================================


class SagaFailedError(BlobFerryError):
    """
    Terminal failure of an upload saga.

    Carries the state that failed, the last successfully completed state and
    its artifact, so the caller can compensate (e.g. request a fee refund)
    or resume.

    Attributes:
        state: Saga state in which the failure happened
        last_completed_state: Last state that exited successfully (or None)
        last_artifact: Artifact produced by ``last_completed_state``
        cause: The underlying exception
    """

    def __init__(
        self,
        state: str,
        cause: BaseException,
        *,
        digest: Optional[str] = None,
        last_completed_state: Optional[str] = None,
        last_artifact: Any = None,
    ) -> None:
        details: Dict[str, Any] = {
            "state": state,
            "last_completed_state": last_completed_state,
            "cause": type(cause).__name__,
        }
        if digest:
            details["digest"] = digest
        if isinstance(cause, BlobFerryError):
            details["cause_code"] = cause.code

        super().__init__(
            f"Upload failed in {state}: {cause}",
            code="SAGA_FAILED",
            tx_id=getattr(cause, "tx_id", None),
            details=details,
        )
        self.state = state
        self.cause = cause
        self.digest = digest
        self.last_completed_state = last_completed_state
        self.last_artifact = last_artifact
