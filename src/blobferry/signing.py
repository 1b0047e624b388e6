"""
Signing requests and receiver derivation.

Adapters that build a transaction decide how it must be signed and say so
with a ``SigningRequest`` tag. Signers never inspect the payload to work
out what kind of transaction they were handed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

__all__ = [
    "SigningKind",
    "SigningRequest",
    "Signer",
    "SignerProvider",
    "derive_receiver_address",
]

RECEIVER_DERIVATION_DOMAIN = b"blobferry/receiver/v1:"


class SigningKind(str, Enum):
    LEGACY = "legacy"
    """Solana legacy transaction message (partial sign after blockhash refresh)."""

    VERSIONED = "versioned"
    """Solana v0 versioned transaction message."""

    RAW_BYTES = "raw_bytes"
    """Already-serialized bytes, signed as-is (Sui transaction data, bridge VAAs)."""


@dataclass(frozen=True)
class SigningRequest:
    """A transaction payload tagged with how it must be signed."""

    kind: SigningKind
    payload: bytes

    @classmethod
    def legacy(cls, payload: bytes) -> "SigningRequest":
        return cls(SigningKind.LEGACY, payload)

    @classmethod
    def versioned(cls, payload: bytes) -> "SigningRequest":
        return cls(SigningKind.VERSIONED, payload)

    @classmethod
    def raw(cls, payload: bytes) -> "SigningRequest":
        return cls(SigningKind.RAW_BYTES, payload)


@runtime_checkable
class Signer(Protocol):
    """Holds a key for one address on one chain."""

    @property
    def address(self) -> str: ...

    async def sign(self, request: SigningRequest) -> bytes: ...


@runtime_checkable
class SignerProvider(Protocol):
    """Resolves signer references (addresses) to signers."""

    def get(self, address: str) -> Signer: ...


def derive_receiver_address(payer: str) -> str:
    """
    Deterministic Sui receiver address for a Solana payer.

    The same payer always maps to the same 32-byte address, across
    processes and machines.

    Args:
        payer: Base58 Solana address of the payer

    Returns:
        0x-prefixed, 64 hex character Sui address
    """
    digest = hashlib.blake2b(
        RECEIVER_DERIVATION_DOMAIN + payer.encode("utf-8"), digest_size=32
    )
    return "0x" + digest.hexdigest()
