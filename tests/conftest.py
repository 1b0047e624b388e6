"""
Shared fixtures for blobferry tests.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from blobferry.config import SagaConfig
from blobferry.mock import (
    MOCK_BRIDGED_TOKEN,
    MOCK_PAYER,
    MockBridge,
    MockLedger,
    MockQuoteProvider,
    MockSignerProvider,
    MockSponsorshipOracle,
    MockStorageNetwork,
    MockSwapRouter,
)
from blobferry.saga import InMemorySagaStore, SagaContext, UploadSaga
from blobferry.types import UploadRequest


# =============================================================================
# Test Constants
# =============================================================================

PAYER = MOCK_PAYER
OTHER_PAYER = "GBMTWhsnLAPxLXcwDoFu45VrzBYuCyGU5eLSavksR1Qc"
TREASURY = "3XMrhbv989VxAMi3DErLV9eJht1pHppW5LbKxe9fkEFR"
RECEIVER = "0x" + "ab" * 32

# 1024 bytes of deterministic content
CONTENT_1K = bytes(range(256)) * 4


# =============================================================================
# Fixtures - Configuration
# =============================================================================


@pytest.fixture
def saga_config() -> SagaConfig:
    """Config with a flat total of exactly 10 and fast retries."""
    fast = {"base_delay_ms": 1, "max_delay_ms": 1, "jitter": False}
    return SagaConfig(
        treasury_address=TREASURY,
        bridged_token=MOCK_BRIDGED_TOKEN,
        destination_tx_cost=Decimal(0),
        attestation_timeout_seconds=1,
        quote={"max_attempts": 3, **fast},
        fee={"max_attempts": 4, **fast},
        bridge_initiate={"max_attempts": 3, **fast},
        claim={"max_attempts": 5, "base_delay_ms": 1, "fixed": True},
        finalize={"max_attempts": 3, **fast},
    )


@pytest.fixture
def no_sleep():
    """Skip real backoff sleeps inside retry_async."""
    with patch("blobferry.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# =============================================================================
# Fixtures - Collaborators
# =============================================================================


@pytest.fixture
def ledger() -> MockLedger:
    return MockLedger({PAYER: Decimal("50"), OTHER_PAYER: Decimal("50")})


@pytest.fixture
def bridge() -> MockBridge:
    return MockBridge()


@pytest.fixture
def storage() -> MockStorageNetwork:
    return MockStorageNetwork()


@pytest.fixture
def direct_router() -> MockSwapRouter:
    return MockSwapRouter()


@pytest.fixture
def sponsored_router() -> MockSwapRouter:
    return MockSwapRouter(sponsored=True)


@pytest.fixture
def sponsorship() -> MockSponsorshipOracle:
    return MockSponsorshipOracle(gas_free=True)


@pytest.fixture
def signers() -> MockSignerProvider:
    return MockSignerProvider()


@pytest.fixture
def store() -> InMemorySagaStore:
    return InMemorySagaStore()


@pytest.fixture
def saga_context(
    saga_config,
    ledger,
    bridge,
    storage,
    direct_router,
    sponsored_router,
    sponsorship,
    signers,
    store,
) -> SagaContext:
    return SagaContext(
        config=saga_config,
        quote_provider=MockQuoteProvider(),
        ledger=ledger,
        bridge=bridge,
        direct_router=direct_router,
        storage=storage,
        signers=signers,
        store=store,
        sponsored_router=sponsored_router,
        sponsorship=sponsorship,
    )


@pytest.fixture
def saga(saga_context) -> UploadSaga:
    return UploadSaga(saga_context)


@pytest.fixture
def request_1k() -> UploadRequest:
    """1024-byte upload, 3 epochs, deletable."""
    return UploadRequest.from_bytes(CONTENT_1K, payer=PAYER, epochs=3, deletable=True)
