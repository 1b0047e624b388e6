"""
Bridge step adapter: initiate, await attestation, claim.

Only the claim has a domain-specific transient classifier. Right after a
bridge package upgrade or while the destination indexer lags, claims fail
with a handful of recognizable messages; those get a short fixed delay and
a bounded number of retries. Anything else is surfaced as-is.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Tuple

from blobferry.errors import (
    AttestationTimeoutError,
    BlobFerryError,
    BridgeClaimError,
    BridgeSubmissionError,
    InvalidTransitionError,
    ValidationError,
)
from blobferry.interfaces import BridgeTransport
from blobferry.signing import Signer
from blobferry.types import BridgeAmount, BridgePhase, BridgeTransferHandle
from blobferry.utils.logging import get_logger
from blobferry.utils.retry import AttemptHook, RetryPolicy, retry_async

_logger = get_logger(__name__)

TRANSIENT_CLAIM_ERRORS: Tuple[str, ...] = (
    "object does not exist",
    "package upgrade pending",
    "decimals lookup failed",
    "coin::update_symbol",
    "assert_package_upgrade_cap",
    "get_decimals",
    "token_address",
)
"""Destination-chain error substrings known to clear up on their own."""


def is_transient_claim_error(error: BaseException) -> bool:
    """Whether a claim error matches the transient allow-list."""
    if isinstance(error, BridgeClaimError) and error.transient:
        return True
    message = str(getattr(error, "message", error)).lower()
    return any(marker in message for marker in TRANSIENT_CLAIM_ERRORS)


def _is_pre_acceptance_failure(error: BaseException) -> bool:
    return isinstance(error, BridgeSubmissionError) and not error.accepted


class BridgeAdapter:
    """
    Drives one bridge transfer through its three phases.

    Example:
        ```python
        adapter = BridgeAdapter(wormhole_transport)
        handle = await adapter.initiate(fee.bridge_amount(), payer, receiver, payer_signer, key)
        handle = await adapter.await_attestation(handle, timeout=600)
        handle = await adapter.claim(handle, receiver_signer)
        ```
    """

    def __init__(
        self,
        transport: BridgeTransport,
        *,
        initiate_policy: Optional[RetryPolicy] = None,
        claim_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._transport = transport
        self._initiate_policy = (initiate_policy or RetryPolicy()).with_overrides(
            retryable_errors=(BridgeSubmissionError,),
            classifier=_is_pre_acceptance_failure,
        )
        self._claim_policy = (
            claim_policy or RetryPolicy.fixed(delay_ms=5000, max_attempts=5)
        ).with_overrides(
            retryable_errors=(BridgeClaimError,),
            classifier=is_transient_claim_error,
        )

    async def initiate(
        self,
        amount: BridgeAmount,
        source_address: str,
        destination_address: str,
        signer: Signer,
        *,
        idempotency_key: str,
        on_attempt: Optional[AttemptHook] = None,
    ) -> BridgeTransferHandle:
        """
        Submit the transfer on the source chain.

        Retries only while the source chain has not accepted the transfer.

        Raises:
            ValidationError: ``amount`` is not a BridgeAmount
            BridgeSubmissionError: Submission failed for good
        """
        if not isinstance(amount, BridgeAmount):
            raise ValidationError(
                "bridge amount must come from the fee outcome", field="amount"
            )

        handle = BridgeTransferHandle(
            amount=amount.value,
            source_address=source_address,
            destination_address=destination_address,
        )

        async def attempt() -> BridgeTransferHandle:
            existing = await self._transport.find_transfer(idempotency_key)
            if existing is not None:
                _logger.info(
                    "Bridge transfer already submitted, reusing it",
                    extra={"source_tx_id": existing.source_tx_id},
                )
                return handle.with_initiated(existing.source_tx_id, existing.bridge_tx_id)

            submission = await self._transport.initiate(
                amount.value,
                source_address,
                destination_address,
                signer,
                idempotency_key,
            )
            return handle.with_initiated(submission.source_tx_id, submission.bridge_tx_id)

        initiated = await retry_async(attempt, self._initiate_policy, on_attempt=on_attempt)
        _logger.info(
            "Bridge transfer initiated",
            extra={
                "source_tx_id": initiated.source_tx_id,
                "bridge_tx_id": initiated.bridge_tx_id,
                "amount": str(initiated.amount),
            },
        )
        return initiated

    async def await_attestation(
        self,
        handle: BridgeTransferHandle,
        timeout: float,
    ) -> BridgeTransferHandle:
        """
        Block until the attestation arrives or ``timeout`` seconds pass.

        Cancelling the calling task aborts the wait; nothing already on
        chain is touched.

        Raises:
            AttestationTimeoutError: Hard timeout hit (terminal)
        """
        if handle.phase != BridgePhase.INITIATED or handle.bridge_tx_id is None:
            raise InvalidTransitionError(handle.phase.value, BridgePhase.ATTESTED.value)

        _logger.info(
            "Waiting for bridge attestation",
            extra={"bridge_tx_id": handle.bridge_tx_id, "timeout_seconds": timeout},
        )
        try:
            attestation = await asyncio.wait_for(
                self._transport.fetch_attestation(handle.bridge_tx_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise AttestationTimeoutError(timeout, handle=handle) from None

        return handle.with_attestation(attestation)

    async def claim(
        self,
        handle: BridgeTransferHandle,
        signer: Signer,
        *,
        on_attempt: Optional[AttemptHook] = None,
    ) -> BridgeTransferHandle:
        """
        Redeem the attested transfer on the destination chain.

        A transfer the destination chain already redeemed (an earlier attempt
        that landed before its result was seen) is picked up instead of
        being redeemed again.

        Raises:
            BridgeClaimError: Non-transient failure, or transient retries
                exhausted
        """
        if handle.phase != BridgePhase.ATTESTED or handle.attestation is None:
            raise InvalidTransitionError(handle.phase.value, BridgePhase.CLAIMED.value)
        attestation = handle.attestation

        async def attempt() -> BridgeTransferHandle:
            try:
                receipt = await self._transport.find_claim(attestation)
                if receipt is not None:
                    _logger.info(
                        "Bridge transfer already claimed, reusing it",
                        extra={"destination_tx_id": receipt.destination_tx_id},
                    )
                else:
                    receipt = await self._transport.complete(attestation, signer)
            except BridgeClaimError as e:
                if e.transient or not is_transient_claim_error(e):
                    raise
                raise BridgeClaimError(
                    e.message, transient=True, tx_id=e.tx_id, details=dict(e.details)
                ) from e
            except BlobFerryError as e:
                raise BridgeClaimError(
                    e.message, transient=is_transient_claim_error(e), tx_id=e.tx_id
                ) from e
            except Exception as e:
                raise BridgeClaimError(str(e), transient=is_transient_claim_error(e)) from e
            return handle.with_claim(receipt.destination_tx_id, receipt.amount)

        claimed = await retry_async(
            attempt,
            self._claim_policy,
            on_attempt=on_attempt,
            on_retry=lambda n, e: _logger.warning(
                "Transient claim error, retrying",
                extra={"attempt": n, "error": str(e)},
            ),
        )
        _logger.info(
            "Bridge transfer claimed",
            extra={
                "destination_tx_id": claimed.destination_tx_id,
                "claimed_amount": str(claimed.claimed_amount),
            },
        )
        return claimed
