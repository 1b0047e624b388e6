"""
Upload saga orchestrator.

Drives one ``UploadRequest`` through

    QUOTING -> FEE_COLLECTING -> BRIDGE_INITIATING -> BRIDGE_ATTESTING
    -> BRIDGE_CLAIMING -> SWAPPING -> FINALIZING -> DONE

checkpointing the artifact of every successful step to a ``SagaStore``.
A state that exited successfully is never entered again for the same
request: running the same request after a crash or a failure reloads the
stored artifacts and continues from where the record stopped.

Any error a step does not retry ends the run in FAILED and is raised to
the caller as ``SagaFailedError`` carrying the last completed state and its
artifact.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from blobferry.config import SagaConfig
from blobferry.errors import (
    AggregatorError,
    BridgeClaimError,
    BridgeSubmissionError,
    CircuitBreakerOpenError,
    InvalidTransitionError,
    SagaFailedError,
    ValidationError,
)
from blobferry.interfaces import (
    BridgeTransport,
    QuoteProvider,
    RateOracle,
    SourceLedger,
    SponsorshipOracle,
    StorageNetwork,
    SwapRouter,
)
from blobferry.saga.idempotency import idempotency_key
from blobferry.saga.locks import PayerLocks
from blobferry.saga.store import InMemorySagaStore, SagaRecord, SagaStore
from blobferry.signing import SignerProvider
from blobferry.steps.bridge import BridgeAdapter, is_transient_claim_error
from blobferry.steps.fee import FEE_RETRYABLE_ERRORS, FeeCollector
from blobferry.steps.finalize import (
    FINALIZE_RETRYABLE_ERRORS,
    FinalizeProgress,
    StorageFinalizer,
)
from blobferry.steps.quote import QUOTE_RETRYABLE_ERRORS, QuoteStep
from blobferry.steps.swap import SwapAdapter
from blobferry.types import (
    BridgeTransferHandle,
    FeeOutcome,
    FinalizedBlob,
    QuoteResult,
    SagaState,
    SwapOutcome,
    UploadRequest,
)
from blobferry.utils.amounts import to_base_units
from blobferry.utils.logging import LogContext, get_logger

_logger = get_logger(__name__)

StepHandler = Callable[[UploadRequest, SagaRecord], Awaitable[BaseModel]]


@dataclass
class SagaContext:
    """
    Collaborators and configuration of the upload saga.

    Nothing in the saga reaches for a module-level client; everything it
    talks to is handed in here.
    """

    config: SagaConfig
    quote_provider: QuoteProvider
    ledger: SourceLedger
    bridge: BridgeTransport
    direct_router: SwapRouter
    storage: StorageNetwork
    signers: SignerProvider
    store: SagaStore = field(default_factory=InMemorySagaStore)
    sponsored_router: Optional[SwapRouter] = None
    sponsorship: Optional[SponsorshipOracle] = None
    rate_oracle: Optional[RateOracle] = None
    locks: PayerLocks = field(default_factory=PayerLocks)


class UploadSaga:
    """
    Runs upload sagas against one ``SagaContext``.

    Example:
        ```python
        saga = UploadSaga(context)
        try:
            blob = await saga.run(request)
        except SagaFailedError as e:
            print(e.state, e.last_completed_state, e.last_artifact)
        ```
    """

    def __init__(self, context: SagaContext) -> None:
        self._ctx = context
        config = context.config
        network = config.network_config

        self._quote = QuoteStep(
            context.quote_provider,
            policy=config.quote.to_retry_policy(QUOTE_RETRYABLE_ERRORS),
            destination_tx_cost=config.destination_tx_cost,
            rate_oracle=context.rate_oracle,
            storage_token=network.storage_token,
        )
        self._fee = FeeCollector(
            context.ledger,
            treasury_address=config.treasury_address,
            policy=config.fee.to_retry_policy(FEE_RETRYABLE_ERRORS),
        )
        self._bridge = BridgeAdapter(
            context.bridge,
            initiate_policy=config.bridge_initiate.to_retry_policy((BridgeSubmissionError,)),
            claim_policy=config.claim.to_retry_policy(
                (BridgeClaimError,), is_transient_claim_error
            ),
        )
        self._swap = SwapAdapter(context.direct_router, context.sponsored_router)
        self._finalizer = StorageFinalizer(
            context.storage,
            policy=config.finalize.to_retry_policy(FINALIZE_RETRYABLE_ERRORS),
            min_confirmations=config.min_confirmations,
        )
        self._running = PayerLocks()

        self._handlers: Dict[SagaState, StepHandler] = {
            SagaState.QUOTING: self._run_quote,
            SagaState.FEE_COLLECTING: self._run_fee,
            SagaState.BRIDGE_INITIATING: self._run_bridge_initiate,
            SagaState.BRIDGE_ATTESTING: self._run_bridge_attest,
            SagaState.BRIDGE_CLAIMING: self._run_bridge_claim,
            SagaState.SWAPPING: self._run_swap,
            SagaState.FINALIZING: self._run_finalize,
        }

    @property
    def finalizer(self) -> StorageFinalizer:
        return self._finalizer

    @property
    def quote_step(self) -> QuoteStep:
        return self._quote

    async def status(self, digest: str) -> Optional[SagaRecord]:
        """Stored record for a request digest, if any."""
        return await self._ctx.store.get(digest)

    async def run(self, request: UploadRequest) -> FinalizedBlob:
        """
        Run (or continue) the saga for ``request``.

        Returns:
            The finalized blob

        Raises:
            ValidationError: Configuration cannot serve this request
            SagaFailedError: A step failed for good
        """
        network = self._ctx.config.network_config
        if not network.bridged_token or not network.storage_token:
            raise ValidationError(
                "bridged and storage token coin types must be configured",
                field="bridged_token",
            )

        digest = request.digest()
        with LogContext(digest=digest[:16], payer=request.payer):
            async with self._running.hold(digest):
                return await self._drive(request, digest)

    async def _drive(self, request: UploadRequest, digest: str) -> FinalizedBlob:
        store = self._ctx.store
        record = await store.get(digest)

        if record is None:
            record = SagaRecord(digest=digest, payer=request.payer)
            _logger.info("Upload saga started", extra={"size_bytes": request.file_size_bytes})
        elif record.current_state == SagaState.DONE:
            _logger.info("Upload already finalized, returning stored blob")
            return self._artifact(record, SagaState.FINALIZING, FinalizedBlob)
        else:
            _logger.info(
                "Resuming upload saga",
                extra={
                    "resume_state": record.resume_state.value,
                    "last_completed_state": (
                        record.last_completed_state.value
                        if record.last_completed_state
                        else None
                    ),
                },
            )

        state = record.resume_state
        record.current_state = state
        record.failed_state = None
        await store.save(record)

        while state != SagaState.DONE:
            _logger.info("Saga step started", extra={"state": state.value})
            try:
                artifact = await self._handlers[state](request, record)
            except asyncio.CancelledError:
                _logger.warning("Saga cancelled", extra={"state": state.value})
                await store.save(record)
                raise
            except Exception as e:
                record.fail(state, e)
                await store.save(record)
                _logger.error(
                    "Saga step failed",
                    extra={"state": state.value, "error": str(e)},
                )
                raise SagaFailedError(
                    state.value,
                    e,
                    digest=digest,
                    last_completed_state=(
                        record.last_completed_state.value
                        if record.last_completed_state
                        else None
                    ),
                    last_artifact=record.last_artifact,
                ) from e

            record.complete(state, artifact)
            await store.save(record)
            state = record.current_state

        blob = self._artifact(record, SagaState.FINALIZING, FinalizedBlob)
        _logger.info(
            "Upload saga finished",
            extra={"blob_id": blob.blob_id, "blob_object_id": blob.blob_object_id},
        )
        return blob

    @staticmethod
    def _artifact(record: SagaRecord, state: SagaState, kind: type):
        artifact = record.artifact(state)
        if not isinstance(artifact, kind):
            raise InvalidTransitionError(state.value, state.next().value)
        return artifact

    @staticmethod
    def _counter(record: SagaRecord, state: SagaState) -> Callable[[int], None]:
        return lambda _attempt: record.count_attempt(state)

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    async def _run_quote(self, request: UploadRequest, record: SagaRecord) -> QuoteResult:
        return await self._quote.quote(
            request.file_size_bytes,
            request.epochs,
            on_attempt=self._counter(record, SagaState.QUOTING),
        )

    async def _run_fee(self, request: UploadRequest, record: SagaRecord) -> FeeOutcome:
        quote = self._artifact(record, SagaState.QUOTING, QuoteResult)

        if record.fee_percent is None:
            sponsored = await self._check_sponsorship(request, quote.payable_total)
            record.sponsored = sponsored
            record.fee_percent = self._ctx.config.fees.percent_for(sponsored)
            await self._ctx.store.save(record)
            _logger.info(
                "Fee tier selected",
                extra={"sponsored": sponsored, "fee_percent": str(record.fee_percent)},
            )

        signer = self._ctx.signers.get(request.payer)
        async with self._ctx.locks.hold(request.payer):
            return await self._fee.collect(
                quote,
                record.fee_percent,
                signer,
                idempotency_key=idempotency_key(record.digest, SagaState.FEE_COLLECTING),
                on_attempt=self._counter(record, SagaState.FEE_COLLECTING),
            )

    async def _check_sponsorship(self, request: UploadRequest, amount: Decimal) -> bool:
        oracle = self._ctx.sponsorship
        if oracle is None or self._ctx.sponsored_router is None:
            return False

        network = self._ctx.config.network_config
        if network.bridged_token == network.storage_token:
            return False

        try:
            return await oracle.is_gas_free(
                network.bridged_token,
                network.storage_token,
                to_base_units(amount),
                request.resolved_receiver(),
            )
        except (AggregatorError, CircuitBreakerOpenError) as e:
            _logger.warning(
                "Sponsorship check failed, using unsponsored fee tier",
                extra={"error": str(e)},
            )
            return False

    async def _run_bridge_initiate(
        self, request: UploadRequest, record: SagaRecord
    ) -> BridgeTransferHandle:
        fee = self._artifact(record, SagaState.FEE_COLLECTING, FeeOutcome)
        signer = self._ctx.signers.get(request.payer)
        async with self._ctx.locks.hold(request.payer):
            return await self._bridge.initiate(
                fee.bridge_amount(),
                request.payer,
                request.resolved_receiver(),
                signer,
                idempotency_key=idempotency_key(record.digest, SagaState.BRIDGE_INITIATING),
                on_attempt=self._counter(record, SagaState.BRIDGE_INITIATING),
            )

    async def _run_bridge_attest(
        self, request: UploadRequest, record: SagaRecord
    ) -> BridgeTransferHandle:
        handle = self._artifact(record, SagaState.BRIDGE_INITIATING, BridgeTransferHandle)
        record.count_attempt(SagaState.BRIDGE_ATTESTING)
        return await self._bridge.await_attestation(
            handle, timeout=self._ctx.config.attestation_timeout_seconds
        )

    async def _run_bridge_claim(
        self, request: UploadRequest, record: SagaRecord
    ) -> BridgeTransferHandle:
        handle = self._artifact(record, SagaState.BRIDGE_ATTESTING, BridgeTransferHandle)
        delay = self._ctx.config.claim_settle_delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        signer = self._ctx.signers.get(request.resolved_receiver())
        return await self._bridge.claim(
            handle,
            signer,
            on_attempt=self._counter(record, SagaState.BRIDGE_CLAIMING),
        )

    async def _run_swap(self, request: UploadRequest, record: SagaRecord) -> SwapOutcome:
        handle = self._artifact(record, SagaState.BRIDGE_CLAIMING, BridgeTransferHandle)
        network = self._ctx.config.network_config
        signer = self._ctx.signers.get(request.resolved_receiver())
        record.count_attempt(SagaState.SWAPPING)
        # Eligibility follows the amount actually claimed; the fee tier does not change.
        eligible = await self._check_sponsorship(request, handle.claimed_amount)
        return await self._swap.swap(
            network.bridged_token,
            network.storage_token,
            handle.claimed_amount,
            signer,
            sponsored_eligible=eligible,
            idempotency_key=idempotency_key(record.digest, SagaState.SWAPPING),
        )

    async def _run_finalize(self, request: UploadRequest, record: SagaRecord) -> FinalizedBlob:
        self._artifact(record, SagaState.SWAPPING, SwapOutcome)
        progress = FinalizeProgress.from_checkpoint(record.finalize_progress)
        receiver = request.resolved_receiver()

        async def checkpoint(current: FinalizeProgress) -> None:
            record.finalize_progress = current.to_checkpoint()
            await self._ctx.store.save(record)

        return await self._finalizer.finalize(
            request.content,
            owner=receiver,
            epochs=request.epochs,
            deletable=request.deletable,
            signer=self._ctx.signers.get(receiver),
            progress=progress,
            idempotency_key=idempotency_key(record.digest, SagaState.FINALIZING),
            on_attempt=lambda sub_step, _n: record.count_attempt(
                SagaState.FINALIZING, sub_step
            ),
            on_checkpoint=checkpoint,
        )
