"""
Interfaces of the external systems the upload saga consumes.

Each collaborator is a narrow Protocol. Concrete clients (Solana RPC,
Wormhole, Walrus, swap routers) live outside this package; in-memory
implementations for tests and local runs are in ``blobferry.mock``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Protocol, runtime_checkable

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

__all__ = [
    "QuoteProvider",
    "RateOracle",
    "SponsorshipOracle",
    "SourceLedger",
    "BridgeTransport",
    "SwapRouter",
    "StorageNetwork",
]


@runtime_checkable
class QuoteProvider(Protocol):
    """Storage pricing oracle of the destination network."""

    async def storage_cost(self, size_bytes: int, epochs: int) -> RawStorageCost: ...


@runtime_checkable
class RateOracle(Protocol):
    """Converts storage-network units into source-ledger units."""

    async def rate(self, from_token: str, to_token: str) -> Decimal: ...


@runtime_checkable
class SponsorshipOracle(Protocol):
    """Tells whether a swap would be gas-sponsored by a third party."""

    async def is_gas_free(
        self,
        input_token: str,
        output_token: str,
        amount_units: int,
        sender: str,
    ) -> bool: ...


@runtime_checkable
class SourceLedger(Protocol):
    """
    Source chain (Solana) as seen by the fee collector.

    ``memo`` carries the idempotency key so a transfer whose confirmation
    timed out can be found again before resubmitting.
    """

    async def get_balance(self, address: str) -> Decimal: ...

    async def find_transfer(self, memo: str) -> Optional[LedgerTransfer]: ...

    async def build_transfer(
        self, sender: str, recipient: str, amount: Decimal, memo: str
    ) -> SigningRequest: ...

    async def submit(self, signed: bytes) -> str: ...

    async def confirm(self, tx_id: str) -> TransactionResult: ...


@runtime_checkable
class BridgeTransport(Protocol):
    """
    Token bridge (Wormhole) between the source and destination chains.

    ``initiate`` raises ``BridgeSubmissionError`` with ``accepted`` set
    according to whether the source chain took the transfer. ``find_claim``
    returns the redemption of an attestation if the destination chain
    already completed it.
    """

    async def find_transfer(self, memo: str) -> Optional[BridgeSubmission]: ...

    async def initiate(
        self,
        amount: Decimal,
        source_address: str,
        destination_address: str,
        signer: Signer,
        memo: str,
    ) -> BridgeSubmission: ...

    async def fetch_attestation(self, bridge_tx_id: str) -> str: ...

    async def find_claim(self, attestation: str) -> Optional[ClaimReceipt]: ...

    async def complete(self, attestation: str, signer: Signer) -> ClaimReceipt: ...


@runtime_checkable
class SwapRouter(Protocol):
    """
    One swap strategy (sponsored aggregator route or direct smart-order router).

    ``memo`` tags the swap transaction so ``find_swap`` can locate one that
    landed before its result reached the caller.
    """

    @property
    def sponsored(self) -> bool: ...

    async def swap(
        self,
        input_token: str,
        output_token: str,
        amount: Decimal,
        signer: Signer,
        memo: Optional[str] = None,
    ) -> SwapReceipt: ...

    async def find_swap(self, memo: str) -> Optional[SwapReceipt]: ...


@runtime_checkable
class StorageNetwork(Protocol):
    """
    Destination storage network (Walrus on Sui).

    A registration submitted with a ``memo`` can be found again with
    ``find_registration``; registering twice would pay for two blob objects.
    """

    async def encode(self, content: bytes) -> EncodedBlob: ...

    async def register(
        self,
        encoded: EncodedBlob,
        *,
        owner: str,
        epochs: int,
        deletable: bool,
        signer: Signer,
        memo: Optional[str] = None,
    ) -> RegistrationReceipt: ...

    async def find_registration(self, memo: str) -> Optional[RegistrationReceipt]: ...

    async def distribute(
        self,
        encoded: EncodedBlob,
        blob_object_id: str,
        *,
        deletable: bool,
    ) -> List[StorageConfirmation]: ...

    async def certify(
        self,
        blob_id: str,
        blob_object_id: str,
        confirmations: List[StorageConfirmation],
        *,
        deletable: bool,
        signer: Signer,
    ) -> TransactionResult: ...

    async def delete(self, blob_object_id: str, *, signer: Signer) -> TransactionResult: ...

    async def read(self, blob_id: str) -> Optional[bytes]: ...

    async def read_attributes(self, blob_object_id: str) -> Optional[Dict[str, str]]: ...
