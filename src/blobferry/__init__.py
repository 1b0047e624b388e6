"""
blobferry - pay on Solana, store on Walrus.

Uploads a file from a Solana payer to erasure-coded Walrus storage on Sui:
quote, protocol fee, Wormhole bridge, swap into WAL, then register and
certify the blob. The whole flow runs as a checkpointed saga, so a crash
or a failed step never pays the fee or bridges twice.

Quick Start:
    >>> from blobferry import BlobFerryClient, UploadRequest
    >>> from blobferry.mock import MOCK_PAYER
    >>> import asyncio
    >>>
    >>> async def main():
    ...     client = BlobFerryClient.create_mock()
    ...     request = UploadRequest.from_bytes(b"hello walrus", payer=MOCK_PAYER)
    ...     blob = await client.upload(request)
    ...     print(f"Blob: {blob.blob_id}")
    ...
    >>> asyncio.run(main())

Modules:
- `client`: BlobFerryClient facade
- `saga`: UploadSaga orchestrator, SagaRecord stores, idempotency keys
- `steps`: quote, fee, bridge, swap and finalize step adapters
- `interfaces`: Protocols of the external collaborators
- `aggregator`: Astros swap aggregator client
- `mock`: in-memory collaborators
- `errors`: exception hierarchy
- `utils`: retry, logging, amounts, circuit breaker
"""

from blobferry.version import __version__, __version_info__

# Client
from blobferry.client import BlobFerryClient

# Saga
from blobferry.saga import (
    InMemorySagaStore,
    JsonFileSagaStore,
    PayerLocks,
    SagaContext,
    SagaRecord,
    SagaStore,
    UploadSaga,
    idempotency_key,
)

# Configuration
from blobferry.config import (
    DESTINATION_TX_COST,
    PROTOCOL_TREASURY_ADDRESS,
    CircuitBreakerConfig,
    FeeTable,
    Network,
    NetworkConfig,
    SagaConfig,
    StepPolicy,
    get_network_config,
)

# Types
from blobferry.types import (
    BridgeAmount,
    BridgePhase,
    BridgeTransferHandle,
    FeeOutcome,
    FinalizedBlob,
    QuoteResult,
    SagaState,
    SwapOutcome,
    UploadRequest,
)

# Signing
from blobferry.signing import (
    Signer,
    SignerProvider,
    SigningKind,
    SigningRequest,
    derive_receiver_address,
)

# Errors
from blobferry.errors import (
    AggregatorError,
    AttestationTimeoutError,
    BlobFerryError,
    BlobNotFoundError,
    BridgeClaimError,
    BridgeSubmissionError,
    CertificationFailedError,
    CircuitBreakerOpenError,
    DeleteFailedError,
    FinalizationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    LedgerNetworkError,
    QuorumNotReachedError,
    QuoteUnavailableError,
    SagaFailedError,
    StorageError,
    SwapAuthorizationError,
    SwapExecutionError,
    SwapRouteUnavailableError,
    ValidationError,
)

__all__ = [
    "__version__",
    "__version_info__",
    # Client
    "BlobFerryClient",
    # Saga
    "UploadSaga",
    "SagaContext",
    "SagaRecord",
    "SagaStore",
    "InMemorySagaStore",
    "JsonFileSagaStore",
    "PayerLocks",
    "idempotency_key",
    # Configuration
    "Network",
    "NetworkConfig",
    "get_network_config",
    "CircuitBreakerConfig",
    "FeeTable",
    "StepPolicy",
    "SagaConfig",
    "PROTOCOL_TREASURY_ADDRESS",
    "DESTINATION_TX_COST",
    # Types
    "SagaState",
    "UploadRequest",
    "QuoteResult",
    "FeeOutcome",
    "BridgeAmount",
    "BridgePhase",
    "BridgeTransferHandle",
    "SwapOutcome",
    "FinalizedBlob",
    # Signing
    "Signer",
    "SignerProvider",
    "SigningKind",
    "SigningRequest",
    "derive_receiver_address",
    # Errors
    "BlobFerryError",
    "ValidationError",
    "InvalidTransitionError",
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
    "StorageError",
    "FinalizationError",
    "QuorumNotReachedError",
    "CertificationFailedError",
    "DeleteFailedError",
    "BlobNotFoundError",
    "AggregatorError",
    "CircuitBreakerOpenError",
]
