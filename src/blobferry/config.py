"""
Configuration for blobferry.

Network table (per named environment) plus the saga configuration surface:
protocol fee table per sponsorship tier, per-step retry limits, the
attestation timeout and the treasury address.

All saga configuration objects are frozen; nothing mutates them mid-run.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Tuple, Type

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from blobferry.utils.retry import RetryPolicy

__all__ = [
    "Network",
    "NetworkConfig",
    "NETWORKS",
    "get_network_config",
    "CircuitBreakerConfig",
    "FeeTable",
    "StepPolicy",
    "SagaConfig",
    "PROTOCOL_TREASURY_ADDRESS",
    "DESTINATION_TX_COST",
]

PROTOCOL_TREASURY_ADDRESS = "GBMTWhsnLAPxLXcwDoFu45VrzBYuCyGU5eLSavksR1Qc"
"""Treasury that receives the protocol fee on Solana."""

DESTINATION_TX_COST = Decimal("0.015")
"""Flat Sui transaction cost added on top of every storage quote."""


# ============================================================================
# Networks
# ============================================================================


class Network(str, Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


@dataclass(frozen=True)
class NetworkConfig:
    name: Network
    solana_rpc_url: str
    sui_rpc_url: str
    walrus_system_object_id: str
    walrus_staking_pool_id: str
    wormhole_core_bridge: str
    wormhole_token_bridge: str
    bridged_token: str
    """Coin type of wrapped SOL on Sui (what the bridge delivers)."""
    storage_token: str
    """Coin type of WAL (what storage is paid with)."""
    aggregator_url: str


NETWORKS: dict[Network, NetworkConfig] = {
    Network.TESTNET: NetworkConfig(
        name=Network.TESTNET,
        solana_rpc_url="https://api.devnet.solana.com",
        sui_rpc_url="https://fullnode.testnet.sui.io:443",
        walrus_system_object_id="0x6c2547cbbc38025cf3adac45f63cb0a8d12ecf777cdc75a4971612bf97fdf6af",
        walrus_staking_pool_id="0xbe46180321c30aab2f8b3501e24048377287fa708018a5b7c2792b35fe339ee3",
        wormhole_core_bridge="0x31358d198147da50db32eda2562951d53973a0c0ad5ed738e9b17d88b213d790",
        wormhole_token_bridge="0x6fb10cdb7aa299e9a4308752dadecb049ff55a892de92992a1edbd7912b3d6da",
        # Testnet wrapped-SOL coin type depends on the attestation run; set
        # BLOBFERRY_BRIDGED_TOKEN to override.
        bridged_token="",
        storage_token="0x8270feb7375eee355e64fdb69c50abb6b5f9393a722883c1cf45f8e26048810a::wal::WAL",
        aggregator_url="https://aggregator.astroswap.org",
    ),
    Network.MAINNET: NetworkConfig(
        name=Network.MAINNET,
        solana_rpc_url="https://api.mainnet-beta.solana.com",
        sui_rpc_url="https://fullnode.mainnet.sui.io:443",
        walrus_system_object_id="0x2134d52768ea07e8c43570ef975eb3e4c27a39fa6396bef985b5abc58d03ddd2",
        walrus_staking_pool_id="0x10b9d30c28448939ce6c4d6c6e0ffce4a7f8a4ada8248bdad09ef8b70e4a3904",
        wormhole_core_bridge="0xaeab97f96cf9877fee2883315d459552b2b921edc16d7ceac6eab944dd88919c",
        wormhole_token_bridge="0xc57508ee0d4595e5a8728974a4a93a787d38f339757230d441e895422c07aba9",
        bridged_token="0xb7844e289a8410e50fb3ca48d69eb9cf29e27d223ef90353fe1bd8e27ff8f3f8::coin::COIN",
        storage_token="0x356a26eb9e012a68958082340d4c4116e7f55615cf27affcff209cf0ae544f59::wal::WAL",
        aggregator_url="https://aggregator.astroswap.org",
    ),
}


def get_network_config(
    network: Network,
    solana_rpc_url: Optional[str] = None,
    sui_rpc_url: Optional[str] = None,
) -> NetworkConfig:
    cfg = NETWORKS[Network(network)]
    if solana_rpc_url:
        cfg = replace(cfg, solana_rpc_url=solana_rpc_url)
    if sui_rpc_url:
        cfg = replace(cfg, sui_rpc_url=sui_rpc_url)
    return cfg


# ============================================================================
# Circuit Breaker Configuration
# ============================================================================


class CircuitBreakerConfig(BaseModel):
    """
    Circuit breaker configuration for endpoint health tracking.

    When enabled, tracks endpoint failures and temporarily blocks
    requests to unhealthy endpoints (retry amplification protection).
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(
        default=True,
        description="Enable circuit breaker",
    )
    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Number of failures before opening circuit",
    )
    reset_timeout_ms: int = Field(
        default=60000,
        ge=1000,
        description="Cooldown period in ms before attempting reset",
    )
    failure_window_ms: int = Field(
        default=300000,
        ge=1000,
        description="Time window in ms for counting failures",
    )
    success_threshold: int = Field(
        default=2,
        ge=1,
        description="Number of successes in half-open to close circuit",
    )


# ============================================================================
# Saga Configuration
# ============================================================================


class FeeTable(BaseModel):
    """
    Protocol fee percentage per sponsorship tier.

    The tier is picked once per saga, before fee collection, and never
    revised afterward.
    """

    model_config = ConfigDict(frozen=True)

    sponsored: Decimal = Field(
        default=Decimal("0.01"),
        description="Fee fraction when the swap is gas-sponsored",
    )
    unsponsored: Decimal = Field(
        default=Decimal("0.02"),
        description="Fee fraction when the user pays swap gas",
    )

    @field_validator("sponsored", "unsponsored")
    @classmethod
    def _check_fraction(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 1:
            raise ValueError("fee percent must be in [0, 1)")
        return value

    def percent_for(self, sponsored: bool) -> Decimal:
        return self.sponsored if sponsored else self.unsponsored


class StepPolicy(BaseModel):
    """Retry limits for one saga step."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, description="Attempts including the first")
    base_delay_ms: int = Field(default=1000, ge=0, description="Initial backoff delay")
    max_delay_ms: int = Field(default=30000, ge=0, description="Backoff cap")
    fixed: bool = Field(default=False, description="Constant delay instead of exponential")
    jitter: bool = Field(default=True, description="Full jitter on exponential delays")

    def to_retry_policy(
        self,
        retryable_errors: Tuple[Type[BaseException], ...],
        classifier: Optional[Callable[[BaseException], bool]] = None,
    ) -> RetryPolicy:
        if self.fixed:
            return RetryPolicy.fixed(
                self.base_delay_ms,
                self.max_attempts,
                retryable_errors=retryable_errors,
                classifier=classifier,
            )
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter=self.jitter,
            retryable_errors=retryable_errors,
            classifier=classifier,
        )


class SagaConfig(BaseModel):
    """
    Configuration surface of the upload saga.

    Example:
        ```python
        config = SagaConfig(
            network=Network.MAINNET,
            attestation_timeout_seconds=900,
            claim=StepPolicy(max_attempts=8, base_delay_ms=5000, fixed=True),
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    network: Network = Field(default=Network.TESTNET, description="Named environment")
    treasury_address: str = Field(
        default=PROTOCOL_TREASURY_ADDRESS,
        min_length=32,
        max_length=44,
        description="Solana address receiving the protocol fee",
    )
    fees: FeeTable = Field(default_factory=FeeTable)
    destination_tx_cost: Decimal = Field(
        default=DESTINATION_TX_COST,
        ge=0,
        description="Flat destination-chain gas added to each quote",
    )
    attestation_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Hard timeout for the bridge attestation wait",
    )
    claim_settle_delay_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Pause between attestation and the first claim attempt",
    )
    min_confirmations: int = Field(
        default=1,
        ge=1,
        description="Storage-node confirmations required before certify",
    )
    bridged_token: Optional[str] = Field(
        default=None,
        description="Override for the bridged-token coin type of the network",
    )

    quote: StepPolicy = Field(default_factory=StepPolicy)
    fee: StepPolicy = Field(
        default_factory=lambda: StepPolicy(max_attempts=4, base_delay_ms=2000)
    )
    bridge_initiate: StepPolicy = Field(default_factory=StepPolicy)
    claim: StepPolicy = Field(
        default_factory=lambda: StepPolicy(max_attempts=5, base_delay_ms=5000, fixed=True)
    )
    finalize: StepPolicy = Field(default_factory=StepPolicy)

    @property
    def network_config(self) -> NetworkConfig:
        cfg = get_network_config(self.network)
        if self.bridged_token:
            cfg = replace(cfg, bridged_token=self.bridged_token)
        return cfg

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "SagaConfig":
        """
        Build a config from ``BLOBFERRY_*`` environment variables.

        Loads a ``.env`` file first (existing variables win).

        Recognized variables:
            BLOBFERRY_NETWORK, BLOBFERRY_TREASURY_ADDRESS,
            BLOBFERRY_FEE_SPONSORED, BLOBFERRY_FEE_UNSPONSORED,
            BLOBFERRY_ATTESTATION_TIMEOUT, BLOBFERRY_CLAIM_MAX_ATTEMPTS,
            BLOBFERRY_MIN_CONFIRMATIONS, BLOBFERRY_BRIDGED_TOKEN
        """
        load_dotenv(dotenv_path)

        values: dict = {}
        if os.getenv("BLOBFERRY_NETWORK"):
            values["network"] = Network(os.environ["BLOBFERRY_NETWORK"].lower())
        if os.getenv("BLOBFERRY_TREASURY_ADDRESS"):
            values["treasury_address"] = os.environ["BLOBFERRY_TREASURY_ADDRESS"]

        fees: dict = {}
        if os.getenv("BLOBFERRY_FEE_SPONSORED"):
            fees["sponsored"] = Decimal(os.environ["BLOBFERRY_FEE_SPONSORED"])
        if os.getenv("BLOBFERRY_FEE_UNSPONSORED"):
            fees["unsponsored"] = Decimal(os.environ["BLOBFERRY_FEE_UNSPONSORED"])
        if fees:
            values["fees"] = FeeTable(**fees)

        if os.getenv("BLOBFERRY_ATTESTATION_TIMEOUT"):
            values["attestation_timeout_seconds"] = float(
                os.environ["BLOBFERRY_ATTESTATION_TIMEOUT"]
            )
        if os.getenv("BLOBFERRY_CLAIM_MAX_ATTEMPTS"):
            values["claim"] = StepPolicy(
                max_attempts=int(os.environ["BLOBFERRY_CLAIM_MAX_ATTEMPTS"]),
                base_delay_ms=5000,
                fixed=True,
            )
        if os.getenv("BLOBFERRY_MIN_CONFIRMATIONS"):
            values["min_confirmations"] = int(os.environ["BLOBFERRY_MIN_CONFIRMATIONS"])
        if os.getenv("BLOBFERRY_BRIDGED_TOKEN"):
            values["bridged_token"] = os.environ["BLOBFERRY_BRIDGED_TOKEN"]

        return cls(**values)
