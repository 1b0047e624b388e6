"""
End-to-end tests for the upload saga.

Tests cover:
- Happy path through every state with the sponsored fee tier
- Fee tier selection and its stability across the run
- Transient claim retries
- Terminal failures carrying the last completed state
- Resuming after failure, timeout and cancellation without repeating side effects
- Concurrent runs of the same request and of different payers
"""

import asyncio
import dataclasses
from decimal import Decimal

import pytest

from blobferry.config import SagaConfig
from blobferry.errors import (
    AggregatorError,
    AttestationTimeoutError,
    BridgeClaimError,
    CertificationFailedError,
    InsufficientBalanceError,
    SagaFailedError,
    ValidationError,
)
from blobferry.mock import (
    MockBridge,
    MockLedger,
    MockQuoteProvider,
    MockSignerProvider,
    MockStorageNetwork,
    MockSwapRouter,
)
from blobferry.saga import SagaContext, UploadSaga
from blobferry.types import (
    BridgePhase,
    BridgeTransferHandle,
    FeeOutcome,
    FinalizedBlob,
    QuoteResult,
    SagaState,
    UploadRequest,
)

from tests.conftest import CONTENT_1K, OTHER_PAYER, PAYER, TREASURY


def _with_config(context, **changes) -> UploadSaga:
    config = context.config.model_copy(update=changes)
    return UploadSaga(dataclasses.replace(context, config=config))


def _independent_saga(config: SagaConfig) -> UploadSaga:
    """Saga with its own collaborators and store, sharing nothing with fixtures."""
    return UploadSaga(
        SagaContext(
            config=config,
            quote_provider=MockQuoteProvider(),
            ledger=MockLedger({PAYER: Decimal(50), OTHER_PAYER: Decimal(50)}),
            bridge=MockBridge(),
            direct_router=MockSwapRouter(),
            storage=MockStorageNetwork(),
            signers=MockSignerProvider(),
        )
    )


# =============================================================================
# Happy Path
# =============================================================================


class TestHappyPath:
    """Tests for a run without failures."""

    @pytest.mark.asyncio
    async def test_upload_reaches_done(self, saga, request_1k, store, storage) -> None:
        """Test a 1 KiB, 3-epoch upload ends DONE with a readable blob."""
        blob = await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert record.last_completed_state == SagaState.FINALIZING
        assert record.artifact(SagaState.FINALIZING) == blob
        assert storage.blobs[blob.blob_id] == CONTENT_1K

    @pytest.mark.asyncio
    async def test_sponsored_fee_split(
        self, saga, request_1k, store, ledger, bridge, sponsored_router, direct_router
    ) -> None:
        """Test a total of 10 pays 0.1 to the treasury and bridges 9.9."""
        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        fee = record.artifact(SagaState.FEE_COLLECTING)
        assert record.sponsored is True
        assert record.fee_percent == Decimal("0.01")
        assert fee.amount_debited == Decimal("0.1")
        assert fee.remaining_for_bridge == Decimal("9.9")
        assert ledger.balances[TREASURY] == Decimal("0.1")
        assert ledger.balances[PAYER] == Decimal("49.9")
        assert bridge.initiated == [Decimal("9.9")]
        assert sponsored_router.amounts == [Decimal("9.9")]
        assert direct_router.amounts == []

    @pytest.mark.asyncio
    async def test_every_state_has_its_artifact(self, saga, request_1k, store) -> None:
        """Test each state stored an artifact of its own type."""
        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert isinstance(record.artifact(SagaState.QUOTING), QuoteResult)
        assert isinstance(record.artifact(SagaState.FEE_COLLECTING), FeeOutcome)
        assert record.artifact(SagaState.BRIDGE_INITIATING).phase == BridgePhase.INITIATED
        assert record.artifact(SagaState.BRIDGE_ATTESTING).phase == BridgePhase.ATTESTED
        assert record.artifact(SagaState.BRIDGE_CLAIMING).phase == BridgePhase.CLAIMED
        assert record.artifact(SagaState.SWAPPING).route == "sponsored"
        assert isinstance(record.artifact(SagaState.FINALIZING), FinalizedBlob)

    @pytest.mark.asyncio
    async def test_done_record_returns_stored_blob(
        self, saga, request_1k, ledger, storage
    ) -> None:
        """Test running a finished request again performs no new side effects."""
        first = await saga.run(request_1k)

        second = await saga.run(request_1k)

        assert second == first
        assert len(ledger.transfers) == 1
        assert storage.calls["register"] == 1

    @pytest.mark.asyncio
    async def test_swap_uses_claimed_amount(self, saga, request_1k, bridge, sponsored_router) -> None:
        """Test the swap input is what the claim delivered, not the quote."""
        bridge.claim_shortfall = Decimal("0.001")

        await saga.run(request_1k)

        assert sponsored_router.amounts == [Decimal("9.899")]

    @pytest.mark.asyncio
    async def test_blob_id_stable_across_independent_runs(self, saga_config) -> None:
        """Test the same content, epochs and deletable flag give the same blob id anywhere."""
        first = await _independent_saga(saga_config).run(
            UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, epochs=3, deletable=True)
        )
        second = await _independent_saga(saga_config).run(
            UploadRequest.from_bytes(CONTENT_1K, payer=OTHER_PAYER, epochs=3, deletable=True)
        )

        assert first.blob_id == second.blob_id

    @pytest.mark.asyncio
    async def test_blob_owned_by_derived_receiver(self, saga, request_1k, storage) -> None:
        """Test the blob object belongs to the payer's derived receiver."""
        blob = await saga.run(request_1k)

        owner = storage.objects[blob.blob_object_id]["owner"]
        assert owner == request_1k.resolved_receiver()


# =============================================================================
# Fee Tier
# =============================================================================


class TestFeeTier:
    """Tests for sponsorship-dependent fee selection."""

    @pytest.mark.asyncio
    async def test_unsponsored_tier(
        self, saga, request_1k, store, sponsorship, direct_router, sponsored_router
    ) -> None:
        """Test a non-sponsored swap pays 2% and swaps directly."""
        sponsorship.gas_free = False

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        fee = record.artifact(SagaState.FEE_COLLECTING)
        assert fee.amount_debited == Decimal("0.2")
        assert fee.remaining_for_bridge == Decimal("9.8")
        assert direct_router.amounts == [Decimal("9.8")]
        assert sponsored_router.amounts == []

    @pytest.mark.asyncio
    async def test_oracle_failure_means_unsponsored(
        self, saga, request_1k, store, sponsorship
    ) -> None:
        """Test an aggregator error during the tier check picks the unsponsored tier."""
        sponsorship.inject("is_gas_free", AggregatorError("HTTP 503", status_code=503))

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.sponsored is False
        assert record.fee_percent == Decimal("0.02")

    @pytest.mark.asyncio
    async def test_tier_not_revised_at_swap(
        self, saga, request_1k, store, sponsorship, sponsored_router
    ) -> None:
        """Test a later sponsored swap does not change the fee already charged."""
        sponsorship.inject("is_gas_free", AggregatorError("timeout"))

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.fee_percent == Decimal("0.02")
        assert record.artifact(SagaState.SWAPPING).route == "sponsored"
        assert sponsored_router.amounts == [Decimal("9.8")]

    @pytest.mark.asyncio
    async def test_no_oracle_means_unsponsored(self, saga_context, request_1k) -> None:
        """Test a context without a sponsorship oracle never uses the sponsored tier."""
        saga = UploadSaga(dataclasses.replace(saga_context, sponsorship=None))

        await saga.run(request_1k)

        record = await saga.status(request_1k.digest())
        assert record.sponsored is False


# =============================================================================
# Retries
# =============================================================================


class TestRetries:
    """Tests for bounded in-step retries."""

    @pytest.mark.asyncio
    async def test_transient_claim_errors(self, saga, request_1k, store, bridge) -> None:
        """Test two 'object does not exist' errors end in a successful third claim."""
        bridge.inject(
            "complete",
            RuntimeError("Object does not exist"),
            RuntimeError("Object does not exist"),
        )

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert record.attempts(SagaState.BRIDGE_CLAIMING) == 3

    @pytest.mark.asyncio
    async def test_certify_retry_counts_sub_steps(self, saga, request_1k, store, storage) -> None:
        """Test a certify retry is counted per sub-step and never re-registers."""
        storage.certify_statuses.append("failure")

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.attempts(SagaState.FINALIZING, "certify") == 2
        assert record.attempts(SagaState.FINALIZING, "register") == 1
        assert storage.calls["register"] == 1


# =============================================================================
# Failures and Resume
# =============================================================================


class TestFailures:
    """Tests for terminal failures."""

    @pytest.mark.asyncio
    async def test_unrelated_claim_error_fails_saga(self, saga, request_1k, store, bridge) -> None:
        """Test a claim error outside the allow-list fails after one attempt."""
        bridge.inject("complete", RuntimeError("random unrelated failure"))

        with pytest.raises(SagaFailedError) as exc_info:
            await saga.run(request_1k)

        error = exc_info.value
        assert error.state == "BRIDGE_CLAIMING"
        assert error.last_completed_state == "BRIDGE_ATTESTING"
        assert isinstance(error.last_artifact, BridgeTransferHandle)
        assert error.last_artifact.phase == BridgePhase.ATTESTED
        assert isinstance(error.cause, BridgeClaimError)
        assert bridge.calls["complete"] == 1

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.FAILED
        assert record.failed_state == SagaState.BRIDGE_CLAIMING
        assert record.last_error["code"] == "BRIDGE_CLAIM_ERROR"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, saga_context, request_1k, bridge) -> None:
        """Test a payer who cannot cover the total fails in FEE_COLLECTING."""
        saga = UploadSaga(
            dataclasses.replace(saga_context, ledger=MockLedger({PAYER: Decimal(5)}))
        )

        with pytest.raises(SagaFailedError) as exc_info:
            await saga.run(request_1k)

        assert exc_info.value.state == "FEE_COLLECTING"
        assert exc_info.value.last_completed_state == "QUOTING"
        assert isinstance(exc_info.value.last_artifact, QuoteResult)
        assert isinstance(exc_info.value.cause, InsufficientBalanceError)
        assert bridge.initiated == []

    @pytest.mark.asyncio
    async def test_missing_bridged_token(self, saga_context, request_1k, ledger) -> None:
        """Test a network without a bridged token is rejected before any side effect."""
        saga = UploadSaga(dataclasses.replace(saga_context, config=SagaConfig()))

        with pytest.raises(ValidationError):
            await saga.run(request_1k)

        assert ledger.calls["get_balance"] == 0
        assert await saga.status(request_1k.digest()) is None


class TestResume:
    """Tests for continuing a saga without repeating side effects."""

    @pytest.mark.asyncio
    async def test_resume_after_claim_failure(
        self, saga, request_1k, store, ledger, bridge, direct_router, sponsored_router
    ) -> None:
        """Test a rerun continues at the failed claim and pays nothing twice."""
        bridge.inject("complete", RuntimeError("random unrelated failure"))
        with pytest.raises(SagaFailedError):
            await saga.run(request_1k)

        blob = await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert record.artifact(SagaState.FINALIZING) == blob
        assert len(ledger.transfers) == 1
        assert bridge.calls["initiate"] == 1
        assert bridge.calls["complete"] == 2
        assert len(sponsored_router.amounts) + len(direct_router.amounts) == 1

    @pytest.mark.asyncio
    async def test_resume_reuses_quote(self, saga, saga_context, request_1k, bridge) -> None:
        """Test the stored quote is reused rather than asked for again."""
        bridge.inject("complete", RuntimeError("random unrelated failure"))
        with pytest.raises(SagaFailedError):
            await saga.run(request_1k)
        provider = saga_context.quote_provider
        assert provider.calls["storage_cost"] == 1

        await saga.run(request_1k)

        assert provider.calls["storage_cost"] == 1

    @pytest.mark.asyncio
    async def test_resume_after_attestation_timeout(
        self, saga_context, request_1k, bridge, ledger
    ) -> None:
        """Test an attestation timeout can be resumed without a second bridge transfer."""
        saga = _with_config(saga_context, attestation_timeout_seconds=0.05)
        bridge.attestation_delay = 5

        with pytest.raises(SagaFailedError) as exc_info:
            await saga.run(request_1k)
        assert exc_info.value.state == "BRIDGE_ATTESTING"
        assert isinstance(exc_info.value.cause, AttestationTimeoutError)

        bridge.attestation_delay = 0
        await saga.run(request_1k)

        assert bridge.calls["initiate"] == 1
        assert len(ledger.transfers) == 1

    @pytest.mark.asyncio
    async def test_resume_after_certify_failure(
        self, saga, request_1k, store, storage
    ) -> None:
        """Test a finalization retry reuses the checkpointed registration."""
        storage.certify_statuses.extend(["failure"] * 3)

        with pytest.raises(SagaFailedError) as exc_info:
            await saga.run(request_1k)
        assert isinstance(exc_info.value.cause, CertificationFailedError)
        record = await store.get(request_1k.digest())
        assert record.finalize_progress["registered"] is not None

        await saga.run(request_1k)

        assert storage.calls["register"] == 1
        assert storage.calls["distribute"] == 1
        record = await store.get(request_1k.digest())
        assert record.attempts(SagaState.FINALIZING, "certify") == 4

    @pytest.mark.asyncio
    async def test_resume_after_claim_landed(self, saga, request_1k, store, bridge) -> None:
        """Test a claim that landed before its error is picked up, not redeemed again."""
        complete = bridge.complete

        async def lands_then_drops(attestation, signer):
            await complete(attestation, signer)
            raise ConnectionError("connection reset by peer")

        bridge.complete = lands_then_drops
        with pytest.raises(SagaFailedError) as exc_info:
            await saga.run(request_1k)
        assert exc_info.value.state == "BRIDGE_CLAIMING"

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert bridge.calls["complete"] == 1
        assert len(bridge.claimed) == 1

    @pytest.mark.asyncio
    async def test_resume_after_swap_landed(
        self, saga, request_1k, store, direct_router, sponsored_router
    ) -> None:
        """Test a swap that landed before the run stopped is not executed again."""
        swap = sponsored_router.swap

        async def lands_then_cancelled(*args, **kwargs):
            await swap(*args, **kwargs)
            raise asyncio.CancelledError()

        sponsored_router.swap = lands_then_cancelled
        with pytest.raises(asyncio.CancelledError):
            await saga.run(request_1k)
        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.SWAPPING

        await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert record.artifact(SagaState.SWAPPING).route == "sponsored"
        assert len(sponsored_router.amounts) == 1
        assert direct_router.amounts == []

    @pytest.mark.asyncio
    async def test_resume_after_registration_landed(
        self, saga, request_1k, store, storage
    ) -> None:
        """Test a blob object registered before the run stopped is reused."""
        register = storage.register

        async def lands_then_cancelled(encoded, **kwargs):
            await register(encoded, **kwargs)
            raise asyncio.CancelledError()

        storage.register = lands_then_cancelled
        with pytest.raises(asyncio.CancelledError):
            await saga.run(request_1k)

        blob = await saga.run(request_1k)

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.DONE
        assert storage.calls["register"] == 1
        assert list(storage.objects) == [blob.blob_object_id]

    @pytest.mark.asyncio
    async def test_cancellation_checkpoints_progress(
        self, saga, request_1k, store, bridge, ledger
    ) -> None:
        """Test a cancelled run keeps completed steps and resumes at the interrupted one."""
        bridge.attestation_delay = 5
        task = asyncio.ensure_future(saga.run(request_1k))
        while bridge.calls["fetch_attestation"] == 0:
            await asyncio.sleep(0.001)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        record = await store.get(request_1k.digest())
        assert record.current_state == SagaState.BRIDGE_ATTESTING
        assert record.last_completed_state == SagaState.BRIDGE_INITIATING

        bridge.attestation_delay = 0
        await saga.run(request_1k)

        assert bridge.calls["initiate"] == 1
        assert len(ledger.transfers) == 1


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    """Tests for concurrent sagas."""

    @pytest.mark.asyncio
    async def test_same_request_runs_once(self, saga, request_1k, ledger, storage) -> None:
        """Test concurrent runs of one request share a single execution."""
        first, second = await asyncio.gather(saga.run(request_1k), saga.run(request_1k))

        assert first == second
        assert len(ledger.transfers) == 1
        assert storage.calls["register"] == 1

    @pytest.mark.asyncio
    async def test_different_payers(self, saga, request_1k, ledger) -> None:
        """Test uploads from different payers both complete."""
        other = UploadRequest.from_bytes(CONTENT_1K, payer=OTHER_PAYER, epochs=3)

        blobs = await asyncio.gather(saga.run(request_1k), saga.run(other))

        assert len(blobs) == 2
        assert blobs[0].blob_object_id != blobs[1].blob_object_id
        assert {t.sender for t in ledger.transfers} == {PAYER, OTHER_PAYER}

    @pytest.mark.asyncio
    async def test_same_payer_different_files(self, saga, ledger) -> None:
        """Test two uploads from one payer are both charged, one after the other."""
        a = UploadRequest.from_bytes(b"first file", payer=PAYER)
        b = UploadRequest.from_bytes(b"second file", payer=PAYER)

        await asyncio.gather(saga.run(a), saga.run(b))

        assert len(ledger.transfers) == 2
        assert ledger.balances[PAYER] == Decimal("49.8")
