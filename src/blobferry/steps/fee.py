"""
Fee collection on the source ledger.

The protocol fee is a fixed fraction of the quoted total, sent from the
payer to the treasury in one signed, submitted and confirmed transfer.
Every attempt first looks the idempotency key up on the ledger, so a
transfer whose confirmation timed out but actually landed is reconciled
instead of being paid twice.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Optional

from blobferry.errors import (
    InsufficientBalanceError,
    LedgerNetworkError,
    ValidationError,
)
from blobferry.interfaces import SourceLedger
from blobferry.signing import Signer
from blobferry.types import FeeOutcome, LedgerTransfer, QuoteResult
from blobferry.utils.amounts import split_fee
from blobferry.utils.logging import get_logger
from blobferry.utils.retry import AttemptHook, RetryPolicy, retry_async

_logger = get_logger(__name__)

FEE_RETRYABLE_ERRORS = (LedgerNetworkError, asyncio.TimeoutError, ConnectionError)

_INSUFFICIENT_MARKERS = ("insufficient funds", "insufficient lamports", "insufficient balance")


class FeeCollector:
    """
    Debits ``total × fee_percent`` from the payer to the treasury.

    Example:
        ```python
        collector = FeeCollector(ledger, treasury_address=config.treasury_address)
        outcome = await collector.collect(
            quote, Decimal("0.01"), payer_signer, idempotency_key=key
        )
        bridge_amount = outcome.bridge_amount()
        ```
    """

    def __init__(
        self,
        ledger: SourceLedger,
        *,
        treasury_address: str,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._ledger = ledger
        self._treasury = treasury_address
        self._policy = policy or RetryPolicy(
            max_attempts=4,
            base_delay_ms=2000,
            retryable_errors=FEE_RETRYABLE_ERRORS,
        )

    @property
    def treasury_address(self) -> str:
        return self._treasury

    async def collect(
        self,
        quote: QuoteResult,
        fee_percent: Decimal,
        signer: Signer,
        *,
        idempotency_key: str,
        on_attempt: Optional[AttemptHook] = None,
    ) -> FeeOutcome:
        """
        Collect the protocol fee.

        Args:
            quote: Quote whose payable total the fee is computed on
            fee_percent: Fraction already fixed by the sponsorship tier
            signer: Payer signer
            idempotency_key: Memo attached to the transfer and looked up
                before every submission
            on_attempt: Attempt counter hook

        Raises:
            InsufficientBalanceError: Payer cannot cover the total (terminal)
            LedgerNetworkError: Retries exhausted on RPC/confirmation failures
        """
        if not 0 <= fee_percent < 1:
            raise ValidationError("fee_percent must be in [0, 1)", field="fee_percent")

        total = quote.payable_total
        fee, remaining = split_fee(total, fee_percent)
        payer = signer.address

        def outcome(tx_id: Optional[str]) -> FeeOutcome:
            return FeeOutcome(
                amount_debited=fee,
                remaining_for_bridge=remaining,
                fee_percent=fee_percent,
                treasury_address=self._treasury,
                tx_id=tx_id,
            )

        async def attempt() -> FeeOutcome:
            existing = await self._ledger.find_transfer(idempotency_key)
            if existing is not None:
                return self._reconcile(existing, fee, outcome)

            balance = await self._ledger.get_balance(payer)
            if balance < total:
                raise InsufficientBalanceError(balance, total, address=payer)

            if fee == 0:
                return outcome(None)

            request = await self._ledger.build_transfer(
                payer, self._treasury, fee, idempotency_key
            )
            signed = await signer.sign(request)
            tx_id = await self._ledger.submit(signed)
            result = await self._ledger.confirm(tx_id)

            if not result.succeeded:
                message = result.error or result.status
                if any(marker in message.lower() for marker in _INSUFFICIENT_MARKERS):
                    raise InsufficientBalanceError(balance, total, address=payer)
                raise LedgerNetworkError(
                    f"Fee transfer not confirmed: {message}", tx_id=tx_id
                )

            _logger.info(
                "Protocol fee collected",
                extra={
                    "tx_id": tx_id,
                    "fee": str(fee),
                    "remaining": str(remaining),
                    "fee_percent": str(fee_percent),
                },
            )
            return outcome(tx_id)

        return await retry_async(
            attempt,
            self._policy,
            on_attempt=on_attempt,
            on_retry=lambda n, e: _logger.warning(
                "Fee collection attempt failed, retrying",
                extra={"attempt": n, "error": str(e)},
            ),
        )

    def _reconcile(self, existing: LedgerTransfer, fee: Decimal, outcome) -> FeeOutcome:
        if existing.amount != fee or existing.recipient != self._treasury:
            raise ValidationError(
                "Ledger holds a transfer for this idempotency key with different terms",
                field="idempotency_key",
            )
        _logger.info(
            "Fee already on ledger, reconciled without resubmitting",
            extra={"tx_id": existing.tx_id, "fee": str(fee)},
        )
        return outcome(existing.tx_id)
