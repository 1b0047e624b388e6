"""
In-memory collaborators for tests and local runs.

Every mock keeps just enough state to behave like the real system from the
saga's point of view (balances, memo lookups, registered blob objects) and
lets a test queue errors per operation:

    ```python
    ledger = MockLedger({payer: Decimal("50")})
    ledger.inject("confirm", LedgerNetworkError("timeout"))
    bridge.inject("complete", BridgeClaimError("Object does not exist"))
    ```

Queued errors are raised in order, one per call, before the operation runs.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
from collections import defaultdict, deque
from decimal import Decimal
from typing import Deque, Dict, List, Optional

from blobferry.errors import BridgeClaimError
from blobferry.signing import Signer, SigningRequest
from blobferry.types import (
    BridgeSubmission,
    ClaimReceipt,
    EncodedBlob,
    LedgerTransfer,
    RawStorageCost,
    RegistrationReceipt,
    StorageConfirmation,
    SwapReceipt,
    TransactionResult,
)
from blobferry.utils.amounts import quantize

MOCK_PAYER = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
MOCK_BRIDGED_TOKEN = "0x" + "b7" * 32 + "::coin::COIN"
MOCK_STORAGE_TOKEN = "0x" + "35" * 32 + "::wal::WAL"

_SIGNATURE_SIZE = 32


def _hex_id(prefix: str, *parts: object) -> str:
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"


class _Injectable:
    """Per-operation error queue and call counter."""

    def __init__(self) -> None:
        self._errors: Dict[str, Deque[BaseException]] = defaultdict(deque)
        self.calls: Dict[str, int] = defaultdict(int)

    def inject(self, operation: str, *errors: BaseException) -> None:
        self._errors[operation].extend(errors)

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        queue = self._errors.get(operation)
        if queue:
            raise queue.popleft()


# ============================================================================
# Signing
# ============================================================================


class MockSigner:
    """Signs by appending a keyed SHA-256 of the payload."""

    def __init__(self, address: str) -> None:
        self._address = address
        self.requests: List[SigningRequest] = []

    @property
    def address(self) -> str:
        return self._address

    async def sign(self, request: SigningRequest) -> bytes:
        self.requests.append(request)
        mac = hashlib.sha256(self._address.encode("utf-8") + request.payload).digest()
        return request.payload + mac[:_SIGNATURE_SIZE]


class MockSignerProvider:
    """Hands out one ``MockSigner`` per address, created on first use."""

    def __init__(self) -> None:
        self._signers: Dict[str, MockSigner] = {}

    def get(self, address: str) -> MockSigner:
        signer = self._signers.get(address)
        if signer is None:
            signer = MockSigner(address)
            self._signers[address] = signer
        return signer


# ============================================================================
# Quote
# ============================================================================


class MockQuoteProvider(_Injectable):
    """Fixed storage price in FROST, independent of size."""

    def __init__(
        self,
        storage_cost_units: int = 9_000_000_000,
        write_cost_units: int = 1_000_000_000,
    ) -> None:
        super().__init__()
        self.storage_cost_units = storage_cost_units
        self.write_cost_units = write_cost_units

    async def storage_cost(self, size_bytes: int, epochs: int) -> RawStorageCost:
        self._enter("storage_cost")
        return RawStorageCost(
            storage_cost=self.storage_cost_units,
            write_cost=self.write_cost_units,
            total_cost=self.storage_cost_units + self.write_cost_units,
            encoded_size_bytes=size_bytes * 5,
        )


# ============================================================================
# Source ledger
# ============================================================================


class MockLedger(_Injectable):
    """
    Source ledger with balances and memo-indexed transfers.

    With ``land_before_confirm_error`` set, an injected ``confirm`` error is
    raised after the transfer has been applied, which is what a confirmation
    timeout on a transaction that did land looks like.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, Decimal]] = None,
        *,
        land_before_confirm_error: bool = False,
    ) -> None:
        super().__init__()
        self.balances: Dict[str, Decimal] = {
            k: quantize(Decimal(v)) for k, v in (balances or {}).items()
        }
        self.transfers: List[LedgerTransfer] = []
        self._pending: Dict[str, dict] = {}
        self._land_before_confirm_error = land_before_confirm_error

    async def get_balance(self, address: str) -> Decimal:
        self._enter("get_balance")
        return self.balances.get(address, Decimal(0))

    async def find_transfer(self, memo: str) -> Optional[LedgerTransfer]:
        self._enter("find_transfer")
        for transfer in self.transfers:
            if transfer.memo == memo:
                return transfer
        return None

    async def build_transfer(
        self, sender: str, recipient: str, amount: Decimal, memo: str
    ) -> SigningRequest:
        self._enter("build_transfer")
        payload = json.dumps(
            {"sender": sender, "recipient": recipient, "amount": str(amount), "memo": memo},
            sort_keys=True,
        ).encode("utf-8")
        return SigningRequest.legacy(payload)

    async def submit(self, signed: bytes) -> str:
        self._enter("submit")
        body = json.loads(signed[:-_SIGNATURE_SIZE].decode("utf-8"))
        tx_id = _hex_id("sol", body["memo"], len(self._pending))
        self._pending[tx_id] = body
        return tx_id

    async def confirm(self, tx_id: str) -> TransactionResult:
        queued = self._errors.get("confirm")
        if queued and self._land_before_confirm_error:
            self._apply(tx_id)
        self._enter("confirm")
        return self._apply(tx_id)

    def _apply(self, tx_id: str) -> TransactionResult:
        body = self._pending.pop(tx_id, None)
        if body is None:
            return TransactionResult(digest=tx_id, status="success")

        amount = Decimal(body["amount"])
        if self.balances.get(body["sender"], Decimal(0)) < amount:
            return TransactionResult(
                digest=tx_id, status="failure", error="insufficient funds for transfer"
            )
        self.balances[body["sender"]] -= amount
        self.balances[body["recipient"]] = self.balances.get(body["recipient"], Decimal(0)) + amount
        self.transfers.append(
            LedgerTransfer(
                tx_id=tx_id,
                sender=body["sender"],
                recipient=body["recipient"],
                amount=amount,
                memo=body["memo"],
            )
        )
        return TransactionResult(digest=tx_id, status="success")


# ============================================================================
# Bridge
# ============================================================================


class MockBridge(_Injectable):
    """Token bridge that attests after ``attestation_delay`` seconds."""

    def __init__(
        self,
        *,
        attestation_delay: float = 0.0,
        claim_shortfall: Decimal = Decimal(0),
    ) -> None:
        super().__init__()
        self.attestation_delay = attestation_delay
        self.claim_shortfall = claim_shortfall
        self.submissions: Dict[str, BridgeSubmission] = {}
        self.amounts: Dict[str, Decimal] = {}
        self.initiated: List[Decimal] = []
        self.claimed: List[str] = []
        self.claims: Dict[str, ClaimReceipt] = {}

    async def find_transfer(self, memo: str) -> Optional[BridgeSubmission]:
        self._enter("find_transfer")
        return self.submissions.get(memo)

    async def initiate(
        self,
        amount: Decimal,
        source_address: str,
        destination_address: str,
        signer: Signer,
        memo: str,
    ) -> BridgeSubmission:
        self._enter("initiate")
        await signer.sign(SigningRequest.versioned(memo.encode("utf-8")))
        submission = BridgeSubmission(
            source_tx_id=_hex_id("sol", memo, "transfer"),
            bridge_tx_id=_hex_id("wh", memo, destination_address),
        )
        self.submissions[memo] = submission
        self.amounts[submission.bridge_tx_id] = amount
        self.initiated.append(amount)
        return submission

    async def fetch_attestation(self, bridge_tx_id: str) -> str:
        self._enter("fetch_attestation")
        if self.attestation_delay > 0:
            await asyncio.sleep(self.attestation_delay)
        return f"vaa:{bridge_tx_id}"

    async def find_claim(self, attestation: str) -> Optional[ClaimReceipt]:
        self._enter("find_claim")
        return self.claims.get(attestation)

    async def complete(self, attestation: str, signer: Signer) -> ClaimReceipt:
        self._enter("complete")
        if attestation in self.claims:
            raise BridgeClaimError("transfer already completed")
        bridge_tx_id = attestation.split(":", 1)[1]
        await signer.sign(SigningRequest.raw(attestation.encode("utf-8")))
        self.claimed.append(bridge_tx_id)
        receipt = ClaimReceipt(
            destination_tx_id=_hex_id("sui", bridge_tx_id, "claim"),
            amount=self.amounts[bridge_tx_id] - self.claim_shortfall,
        )
        self.claims[attestation] = receipt
        return receipt


# ============================================================================
# Swap
# ============================================================================


class MockSwapRouter(_Injectable):
    """Swaps at a fixed rate; records every input amount."""

    def __init__(
        self,
        *,
        sponsored: bool = False,
        rate: Decimal = Decimal(1),
        status: str = "success",
    ) -> None:
        super().__init__()
        self._sponsored = sponsored
        self.rate = rate
        self.status = status
        self.amounts: List[Decimal] = []
        self.swaps: Dict[str, SwapReceipt] = {}

    @property
    def sponsored(self) -> bool:
        return self._sponsored

    async def swap(
        self,
        input_token: str,
        output_token: str,
        amount: Decimal,
        signer: Signer,
        memo: Optional[str] = None,
    ) -> SwapReceipt:
        self.amounts.append(amount)
        self._enter("swap")
        await signer.sign(SigningRequest.raw(f"{input_token}>{output_token}:{amount}".encode("utf-8")))
        receipt = SwapReceipt(
            tx=TransactionResult(
                digest=_hex_id("sui", "swap", input_token, amount, len(self.amounts)),
                status=self.status,
            ),
            output_amount=amount * self.rate,
        )
        if memo is not None:
            self.swaps[memo] = receipt
        return receipt

    async def find_swap(self, memo: str) -> Optional[SwapReceipt]:
        self._enter("find_swap")
        return self.swaps.get(memo)


class MockSponsorshipOracle(_Injectable):
    """Answers every sponsorship query with ``gas_free``."""

    def __init__(self, gas_free: bool = True) -> None:
        super().__init__()
        self.gas_free = gas_free

    async def is_gas_free(
        self,
        input_token: str,
        output_token: str,
        amount_units: int,
        sender: str,
    ) -> bool:
        self._enter("is_gas_free")
        return self.gas_free


# ============================================================================
# Storage network
# ============================================================================


def mock_blob_id(content: bytes) -> str:
    """Deterministic blob id of ``content`` (URL-safe base64, no padding)."""
    digest = hashlib.blake2b(content, digest_size=32).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class MockStorageNetwork(_Injectable):
    """
    Storage network keeping blobs and blob objects in dicts.

    ``certify_statuses`` are returned, in order, by successive certify
    calls before falling back to ``"success"``.
    """

    def __init__(self, *, nodes: int = 3, current_epoch: int = 1) -> None:
        super().__init__()
        self.nodes = nodes
        self.current_epoch = current_epoch
        self.certify_statuses: Deque[str] = deque()
        self.blobs: Dict[str, bytes] = {}
        self.objects: Dict[str, dict] = {}
        self.registrations: Dict[str, RegistrationReceipt] = {}
        self._encoded: Dict[str, bytes] = {}

    async def encode(self, content: bytes) -> EncodedBlob:
        self._enter("encode")
        blob_id = mock_blob_id(content)
        self._encoded[blob_id] = content
        return EncodedBlob(
            blob_id=blob_id,
            root_hash=hashlib.sha256(content).hexdigest(),
            unencoded_size=len(content),
            shard_plan={"slivers": self.nodes},
        )

    async def register(
        self,
        encoded: EncodedBlob,
        *,
        owner: str,
        epochs: int,
        deletable: bool,
        signer: Signer,
        memo: Optional[str] = None,
    ) -> RegistrationReceipt:
        self._enter("register")
        object_id = "0x" + _hex_id("", encoded.blob_id, len(self.objects))
        self.objects[object_id] = {
            "blob_id": encoded.blob_id,
            "owner": owner,
            "deletable": deletable,
            "end_epoch": self.current_epoch + epochs,
            "certified": False,
        }
        receipt = RegistrationReceipt(
            tx=TransactionResult(digest=_hex_id("sui", "register", object_id), status="success"),
            blob_object_id=object_id,
        )
        if memo is not None:
            self.registrations[memo] = receipt
        return receipt

    async def find_registration(self, memo: str) -> Optional[RegistrationReceipt]:
        self._enter("find_registration")
        return self.registrations.get(memo)

    async def distribute(
        self,
        encoded: EncodedBlob,
        blob_object_id: str,
        *,
        deletable: bool,
    ) -> List[StorageConfirmation]:
        self._enter("distribute")
        return [
            StorageConfirmation(
                node_id=f"node-{i}",
                signature=_hex_id("", "confirm", i, encoded.blob_id),
            )
            for i in range(self.nodes)
        ]

    async def certify(
        self,
        blob_id: str,
        blob_object_id: str,
        confirmations: List[StorageConfirmation],
        *,
        deletable: bool,
        signer: Signer,
    ) -> TransactionResult:
        self._enter("certify")
        digest = _hex_id("sui", "certify", blob_object_id, self.calls["certify"])
        status = self.certify_statuses.popleft() if self.certify_statuses else "success"
        if status == "success":
            self.objects[blob_object_id]["certified"] = True
            self.blobs[blob_id] = self._encoded[blob_id]
        return TransactionResult(digest=digest, status=status)

    async def delete(self, blob_object_id: str, *, signer: Signer) -> TransactionResult:
        self._enter("delete")
        digest = _hex_id("sui", "delete", blob_object_id)
        obj = self.objects.get(blob_object_id)
        if obj is None or not obj["deletable"] or obj["owner"] != signer.address:
            return TransactionResult(digest=digest, status="failure", error="not deletable")
        del self.objects[blob_object_id]
        return TransactionResult(digest=digest, status="success")

    async def read(self, blob_id: str) -> Optional[bytes]:
        self._enter("read")
        return self.blobs.get(blob_id)

    async def read_attributes(self, blob_object_id: str) -> Optional[Dict[str, str]]:
        self._enter("read_attributes")
        obj = self.objects.get(blob_object_id)
        if obj is None:
            return None
        return {key: str(value) for key, value in obj.items()}
