"""
Tests for upload saga types.

Tests cover:
- UploadRequest validation and digest stability
- Receiver derivation
- Saga state ordering
- Bridge handle phase transitions
- Fee outcome bridge amounts
"""

import hashlib
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from blobferry.errors import InvalidTransitionError
from blobferry.signing import derive_receiver_address
from blobferry.types import (
    BridgeAmount,
    BridgePhase,
    BridgeTransferHandle,
    FeeOutcome,
    QuoteResult,
    SagaState,
    StorageConfirmation,
    UploadRequest,
)

from tests.conftest import CONTENT_1K, OTHER_PAYER, PAYER, RECEIVER, TREASURY


# =============================================================================
# UploadRequest Tests
# =============================================================================


class TestUploadRequest:
    """Tests for UploadRequest."""

    def test_from_bytes(self) -> None:
        """Test hash and size are computed from content."""
        request = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER)

        assert request.file_size_bytes == 1024
        assert request.file_hash == hashlib.sha256(CONTENT_1K).hexdigest()
        assert request.epochs == 3
        assert request.deletable is True

    def test_rejects_mismatched_hash(self) -> None:
        """Test a hash that does not match content is rejected."""
        with pytest.raises(PydanticValidationError, match="file_hash"):
            UploadRequest(
                file_hash="0" * 64,
                file_size_bytes=1024,
                payer=PAYER,
                content=CONTENT_1K,
            )

    def test_rejects_mismatched_size(self) -> None:
        """Test a size that does not match content is rejected."""
        with pytest.raises(PydanticValidationError, match="file_size_bytes"):
            UploadRequest(
                file_hash=hashlib.sha256(CONTENT_1K).hexdigest(),
                file_size_bytes=10,
                payer=PAYER,
                content=CONTENT_1K,
            )

    def test_rejects_empty_content(self) -> None:
        """Test empty files cannot be uploaded."""
        with pytest.raises(PydanticValidationError):
            UploadRequest.from_bytes(b"", payer=PAYER)

    def test_rejects_zero_epochs(self) -> None:
        """Test epochs must be at least 1."""
        with pytest.raises(PydanticValidationError):
            UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, epochs=0)

    def test_rejects_bad_payer(self) -> None:
        """Test the payer must be a base58 Solana address."""
        with pytest.raises(PydanticValidationError):
            UploadRequest.from_bytes(CONTENT_1K, payer="0x" + "ab" * 20)

    def test_rejects_bad_receiver(self) -> None:
        """Test an explicit receiver must be a Sui address."""
        with pytest.raises(PydanticValidationError):
            UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, receiver="0x1234")

    def test_request_is_frozen(self) -> None:
        """Test requests cannot be mutated."""
        request = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER)

        with pytest.raises(PydanticValidationError):
            request.epochs = 5

    def test_content_excluded_from_dump(self) -> None:
        """Test file content never ends up in serialized requests."""
        request = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER)

        assert "content" not in request.model_dump()


class TestDigest:
    """Tests for UploadRequest.digest."""

    def test_same_parameters_same_digest(self) -> None:
        """Test equal requests share a digest."""
        a = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, epochs=3)
        b = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, epochs=3)

        assert a.digest() == b.digest()

    @pytest.mark.parametrize(
        "changes",
        [
            {"epochs": 4},
            {"deletable": False},
            {"payer": OTHER_PAYER},
            {"receiver": RECEIVER},
        ],
    )
    def test_parameter_changes_digest(self, changes) -> None:
        """Test any parameter change yields a different digest."""
        base = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER)
        other = UploadRequest.from_bytes(
            CONTENT_1K, **{"payer": PAYER, **changes}
        )

        assert base.digest() != other.digest()

    def test_explicit_derived_receiver_same_digest(self) -> None:
        """Test passing the derived receiver explicitly keeps the digest."""
        implicit = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER)
        explicit = UploadRequest.from_bytes(
            CONTENT_1K, payer=PAYER, receiver=derive_receiver_address(PAYER)
        )

        assert implicit.digest() == explicit.digest()


class TestReceiverDerivation:
    """Tests for derive_receiver_address."""

    def test_deterministic(self) -> None:
        """Test the same payer always maps to the same receiver."""
        assert derive_receiver_address(PAYER) == derive_receiver_address(PAYER)

    def test_format(self) -> None:
        """Test the receiver is a 0x-prefixed 32-byte hex address."""
        receiver = derive_receiver_address(PAYER)

        assert receiver.startswith("0x")
        assert len(receiver) == 66
        int(receiver, 16)

    def test_distinct_payers(self) -> None:
        """Test different payers get different receivers."""
        assert derive_receiver_address(PAYER) != derive_receiver_address(OTHER_PAYER)

    def test_explicit_receiver_wins(self) -> None:
        """Test resolved_receiver prefers the explicit receiver."""
        request = UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, receiver=RECEIVER)

        assert request.resolved_receiver() == RECEIVER


# =============================================================================
# Saga State Tests
# =============================================================================


class TestSagaState:
    """Tests for SagaState ordering."""

    def test_next_follows_order(self) -> None:
        """Test next() walks the documented sequence."""
        state = SagaState.QUOTING
        seen = [state]
        while state != SagaState.DONE:
            state = state.next()
            seen.append(state)

        assert [s.value for s in seen] == [
            "QUOTING",
            "FEE_COLLECTING",
            "BRIDGE_INITIATING",
            "BRIDGE_ATTESTING",
            "BRIDGE_CLAIMING",
            "SWAPPING",
            "FINALIZING",
            "DONE",
        ]

    @pytest.mark.parametrize("state", [SagaState.DONE, SagaState.FAILED])
    def test_terminal_states_have_no_next(self, state: SagaState) -> None:
        """Test terminal states cannot advance."""
        assert state.is_terminal is True
        with pytest.raises(InvalidTransitionError):
            state.next()


# =============================================================================
# Artifact Tests
# =============================================================================


class TestQuoteResult:
    """Tests for QuoteResult."""

    def test_amounts_quantized(self) -> None:
        """Test amounts are quantized on construction."""
        quote = QuoteResult(
            storage_cost="1.0000000004",
            write_cost=0,
            total_cost="1.0000000004",
            encoded_size_bytes=10,
            epochs=1,
        )

        assert quote.storage_cost == Decimal("1.000000000")

    def test_payable_total_applies_rate(self) -> None:
        """Test payable_total converts to source-ledger units."""
        quote = QuoteResult(
            storage_cost=Decimal(9),
            write_cost=Decimal(1),
            total_cost=Decimal(10),
            encoded_size_bytes=10,
            epochs=1,
            conversion_rate=Decimal("0.25"),
        )

        assert quote.payable_total == Decimal("2.5")


class TestFeeOutcome:
    """Tests for FeeOutcome."""

    def test_bridge_amount_carries_remainder(self) -> None:
        """Test bridge_amount is the remainder, tagged with the fee tx."""
        fee = FeeOutcome(
            amount_debited=Decimal("0.1"),
            remaining_for_bridge=Decimal("9.9"),
            fee_percent=Decimal("0.01"),
            treasury_address=TREASURY,
            tx_id="sol123",
        )

        amount = fee.bridge_amount()

        assert isinstance(amount, BridgeAmount)
        assert amount.value == Decimal("9.9")
        assert amount.fee_tx_id == "sol123"
        assert fee.total == Decimal(10)


class TestBridgeTransferHandle:
    """Tests for BridgeTransferHandle transitions."""

    def _handle(self) -> BridgeTransferHandle:
        return BridgeTransferHandle(
            amount=Decimal("9.9"), source_address=PAYER, destination_address=RECEIVER
        )

    def test_forward_transitions(self) -> None:
        """Test initiate -> attest -> claim, one phase at a time."""
        handle = self._handle().with_initiated("sol1", "wh1")
        assert handle.phase == BridgePhase.INITIATED

        handle = handle.with_attestation("vaa:wh1")
        assert handle.phase == BridgePhase.ATTESTED

        handle = handle.with_claim("sui1", Decimal("9.899999999"))
        assert handle.phase == BridgePhase.CLAIMED
        assert handle.claimed_amount == Decimal("9.899999999")

    def test_transitions_return_new_handles(self) -> None:
        """Test the original handle is left untouched."""
        original = self._handle()
        original.with_initiated("sol1", "wh1")

        assert original.phase == BridgePhase.UNINITIATED

    def test_cannot_skip_phase(self) -> None:
        """Test claiming an unattested transfer is rejected."""
        with pytest.raises(InvalidTransitionError):
            self._handle().with_initiated("sol1", "wh1").with_claim("sui1", Decimal(1))

    def test_cannot_go_back(self) -> None:
        """Test an attested handle cannot be initiated again."""
        attested = self._handle().with_initiated("sol1", "wh1").with_attestation("vaa")

        with pytest.raises(InvalidTransitionError):
            attested.with_initiated("sol2", "wh2")


class TestStorageConfirmation:
    """Tests for StorageConfirmation."""

    def test_rejects_empty_signature(self) -> None:
        """Test a confirmation must carry a signature."""
        with pytest.raises(PydanticValidationError):
            StorageConfirmation(node_id="node-0", signature="")
