"""
Upload Saga Types

Request, step artifacts and sub-step results of the upload saga.

Every model is frozen: artifacts are produced once by the step that owns
them and then only read. Amounts are ``Decimal`` whole units quantized to
9 decimal places.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blobferry.errors import InvalidTransitionError
from blobferry.signing import derive_receiver_address
from blobferry.utils.amounts import quantize

SOLANA_ADDRESS_PATTERN = r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"
SUI_ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{64}$"
SHA256_HEX_PATTERN = r"^[0-9a-f]{64}$"

DEFAULT_EPOCHS = 3


# ============================================================================
# Saga State
# ============================================================================


class SagaState(str, Enum):
    """Upload saga states, in execution order."""

    QUOTING = "QUOTING"
    FEE_COLLECTING = "FEE_COLLECTING"
    BRIDGE_INITIATING = "BRIDGE_INITIATING"
    BRIDGE_ATTESTING = "BRIDGE_ATTESTING"
    BRIDGE_CLAIMING = "BRIDGE_CLAIMING"
    SWAPPING = "SWAPPING"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SagaState.DONE, SagaState.FAILED)

    def next(self) -> "SagaState":
        """State that follows this one on success."""
        if self.is_terminal:
            raise InvalidTransitionError(self.value, "next")
        return SAGA_ORDER[SAGA_ORDER.index(self) + 1]


SAGA_ORDER: List[SagaState] = [
    SagaState.QUOTING,
    SagaState.FEE_COLLECTING,
    SagaState.BRIDGE_INITIATING,
    SagaState.BRIDGE_ATTESTING,
    SagaState.BRIDGE_CLAIMING,
    SagaState.SWAPPING,
    SagaState.FINALIZING,
    SagaState.DONE,
]


class _Amounts(BaseModel):
    """Quantizes every Decimal field on the way in."""

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _quantize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: quantize(Decimal(str(v)))
                if k in cls._amount_fields() and v is not None
                else v
                for k, v in data.items()
            }
        return data

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset()


# ============================================================================
# Request
# ============================================================================


class UploadRequest(BaseModel):
    """
    One upload. Created once per call and never mutated.

    Example:
        ```python
        request = UploadRequest.from_bytes(
            data,
            payer="GBMTWhsnLAPxLXcwDoFu45VrzBYuCyGU5eLSavksR1Qc",
            epochs=3,
            deletable=True,
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    file_hash: str = Field(
        ...,
        pattern=SHA256_HEX_PATTERN,
        description="Lowercase hex SHA-256 of the file content",
    )
    file_size_bytes: int = Field(..., gt=0, description="Size of the file content")
    epochs: int = Field(default=DEFAULT_EPOCHS, ge=1, description="Storage duration")
    deletable: bool = Field(default=True, description="Whether the blob can be deleted")
    payer: str = Field(
        ...,
        pattern=SOLANA_ADDRESS_PATTERN,
        description="Source-chain (Solana) address of the payer",
    )
    receiver: Optional[str] = Field(
        default=None,
        pattern=SUI_ADDRESS_PATTERN,
        description="Destination (Sui) address; derived from payer if absent",
    )
    content: bytes = Field(..., repr=False, exclude=True, description="File content")

    @model_validator(mode="after")
    def _check_content(self) -> "UploadRequest":
        if not self.content:
            raise ValueError("file content is required")
        if len(self.content) != self.file_size_bytes:
            raise ValueError(
                f"file_size_bytes ({self.file_size_bytes}) does not match "
                f"content length ({len(self.content)})"
            )
        if hashlib.sha256(self.content).hexdigest() != self.file_hash:
            raise ValueError("file_hash does not match content")
        return self

    @classmethod
    def from_bytes(
        cls,
        content: bytes,
        *,
        payer: str,
        epochs: int = DEFAULT_EPOCHS,
        deletable: bool = True,
        receiver: Optional[str] = None,
    ) -> "UploadRequest":
        return cls(
            file_hash=hashlib.sha256(content).hexdigest(),
            file_size_bytes=len(content),
            epochs=epochs,
            deletable=deletable,
            payer=payer,
            receiver=receiver,
            content=content,
        )

    def resolved_receiver(self) -> str:
        return self.receiver or derive_receiver_address(self.payer)

    def digest(self) -> str:
        """
        Stable digest of the request parameters.

        Keys the saga record and every idempotency key. Two requests with
        the same content and parameters share a digest.
        """
        canonical = json.dumps(
            {
                "file_hash": self.file_hash,
                "file_size_bytes": self.file_size_bytes,
                "epochs": self.epochs,
                "deletable": self.deletable,
                "payer": self.payer,
                "receiver": self.resolved_receiver(),
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ============================================================================
# Step Artifacts
# ============================================================================


class QuoteResult(_Amounts):
    """Storage cost estimate for one request."""

    storage_cost: Decimal = Field(..., ge=0)
    write_cost: Decimal = Field(..., ge=0)
    total_cost: Decimal = Field(..., ge=0, description="Storage-network units")
    encoded_size_bytes: int = Field(..., ge=0)
    epochs: int = Field(..., ge=1)
    conversion_rate: Decimal = Field(
        default=Decimal(1),
        gt=0,
        description="Source-ledger units per storage-network unit",
    )

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"storage_cost", "write_cost", "total_cost"})

    @property
    def payable_total(self) -> Decimal:
        """Total in source-ledger units, the amount fees are computed on."""
        return quantize(self.total_cost * self.conversion_rate)


class BridgeAmount(BaseModel):
    """
    Amount the bridge step is allowed to move.

    Only ``FeeOutcome.bridge_amount()`` creates these; the bridge adapter
    refuses plain numbers, so nothing after fee collection can recompute
    the amount on its own.
    """

    model_config = ConfigDict(frozen=True)

    value: Decimal = Field(..., gt=0)
    fee_tx_id: Optional[str] = None


class FeeOutcome(_Amounts):
    """Result of collecting the protocol fee on the source ledger."""

    amount_debited: Decimal = Field(..., ge=0)
    remaining_for_bridge: Decimal = Field(..., gt=0)
    fee_percent: Decimal = Field(..., ge=0, lt=1)
    treasury_address: str
    tx_id: Optional[str] = None

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"amount_debited", "remaining_for_bridge"})

    @property
    def total(self) -> Decimal:
        return self.amount_debited + self.remaining_for_bridge

    def bridge_amount(self) -> BridgeAmount:
        return BridgeAmount(value=self.remaining_for_bridge, fee_tx_id=self.tx_id)


class BridgePhase(str, Enum):
    UNINITIATED = "UNINITIATED"
    INITIATED = "INITIATED"
    ATTESTED = "ATTESTED"
    CLAIMED = "CLAIMED"


class BridgeTransferHandle(_Amounts):
    """
    Three-phase cross-chain transfer: initiate, attest, claim.

    Phases only move forward, one step at a time; each ``with_*`` method
    returns a new handle.
    """

    amount: Decimal = Field(..., gt=0)
    source_address: str
    destination_address: str
    phase: BridgePhase = BridgePhase.UNINITIATED
    source_tx_id: Optional[str] = None
    bridge_tx_id: Optional[str] = None
    attestation: Optional[str] = None
    destination_tx_id: Optional[str] = None
    claimed_amount: Optional[Decimal] = None

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"amount", "claimed_amount"})

    def _advance(self, expected: BridgePhase, target: BridgePhase, **changes: Any) -> "BridgeTransferHandle":
        if self.phase != expected:
            raise InvalidTransitionError(self.phase.value, target.value)
        return self.model_copy(update={"phase": target, **changes})

    def with_initiated(self, source_tx_id: str, bridge_tx_id: str) -> "BridgeTransferHandle":
        return self._advance(
            BridgePhase.UNINITIATED,
            BridgePhase.INITIATED,
            source_tx_id=source_tx_id,
            bridge_tx_id=bridge_tx_id,
        )

    def with_attestation(self, attestation: str) -> "BridgeTransferHandle":
        return self._advance(BridgePhase.INITIATED, BridgePhase.ATTESTED, attestation=attestation)

    def with_claim(self, destination_tx_id: str, claimed_amount: Decimal) -> "BridgeTransferHandle":
        return self._advance(
            BridgePhase.ATTESTED,
            BridgePhase.CLAIMED,
            destination_tx_id=destination_tx_id,
            claimed_amount=quantize(claimed_amount),
        )


SwapRoute = Literal["sponsored", "direct", "skipped"]


class SwapOutcome(_Amounts):
    """Conversion of the bridged asset into the storage token."""

    input_amount: Decimal = Field(..., gt=0)
    output_amount: Decimal = Field(..., ge=0)
    sponsored: bool = False
    route: SwapRoute = "direct"
    tx_id: Optional[str] = None

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"input_amount", "output_amount"})


class FinalizedBlob(BaseModel):
    """Terminal artifact of a successful upload."""

    model_config = ConfigDict(frozen=True)

    blob_id: str = Field(..., min_length=1)
    blob_object_id: str = Field(..., min_length=1)
    registration_tx_id: str = Field(..., min_length=1)
    certification_tx_id: str = Field(..., min_length=1)


# ============================================================================
# Collaborator Results
# ============================================================================


class TransactionResult(BaseModel):
    """Executed transaction as reported by a ledger."""

    model_config = ConfigDict(frozen=True)

    digest: str
    status: str = Field(..., description='"success" or a failure status')
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class RawStorageCost(BaseModel):
    """Storage-oracle answer in base units (FROST)."""

    model_config = ConfigDict(frozen=True)

    storage_cost: int = Field(..., ge=0)
    write_cost: int = Field(..., ge=0)
    total_cost: int = Field(..., ge=0)
    encoded_size_bytes: Optional[int] = Field(default=None, ge=0)


class LedgerTransfer(_Amounts):
    """A confirmed source-ledger transfer, looked up by memo."""

    tx_id: str
    sender: str
    recipient: str
    amount: Decimal = Field(..., ge=0)
    memo: str

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"amount"})


class BridgeSubmission(BaseModel):
    """Identifiers returned once the source chain accepted a bridge transfer."""

    model_config = ConfigDict(frozen=True)

    source_tx_id: str
    bridge_tx_id: str


class ClaimReceipt(_Amounts):
    """Destination-chain claim of a bridged transfer."""

    destination_tx_id: str
    amount: Decimal = Field(..., gt=0, description="Amount actually received")

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"amount"})


class SwapReceipt(_Amounts):
    """Router execution result."""

    tx: TransactionResult
    output_amount: Decimal = Field(..., ge=0)

    @classmethod
    def _amount_fields(cls) -> frozenset:
        return frozenset({"output_amount"})


class EncodedBlob(BaseModel):
    """Erasure-coded blob, ready for registration."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    blob_id: str = Field(..., min_length=1)
    root_hash: str
    unencoded_size: int = Field(..., ge=0)
    shard_plan: Any = Field(default=None, repr=False, description="Slivers by node + metadata")


class RegisteredBlob(BaseModel):
    """On-chain blob object created by registration."""

    model_config = ConfigDict(frozen=True)

    blob_id: str
    blob_object_id: str
    registration_tx_id: str


class RegistrationReceipt(BaseModel):
    """Raw register result: transaction plus the created blob object, if found."""

    model_config = ConfigDict(frozen=True)

    tx: TransactionResult
    blob_object_id: Optional[str] = None


class StorageConfirmation(BaseModel):
    """One storage node's acknowledgment that it holds its slivers."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    signature: str

    @field_validator("signature")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("signature must not be empty")
        return value


STATE_ARTIFACTS: Dict[SagaState, type] = {
    SagaState.QUOTING: QuoteResult,
    SagaState.FEE_COLLECTING: FeeOutcome,
    SagaState.BRIDGE_INITIATING: BridgeTransferHandle,
    SagaState.BRIDGE_ATTESTING: BridgeTransferHandle,
    SagaState.BRIDGE_CLAIMING: BridgeTransferHandle,
    SagaState.SWAPPING: SwapOutcome,
    SagaState.FINALIZING: FinalizedBlob,
}
"""Artifact type produced by each non-terminal state."""
