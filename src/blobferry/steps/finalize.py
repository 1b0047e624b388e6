"""
Storage finalizer: encode, register, distribute, certify.

Each sub-step runs under its own retry policy and its result is kept in a
``FinalizeProgress``, so a certify retry reuses the registration and the
node confirmations instead of starting over from encode. Registration and
confirmations are checkpointed with the saga record; encoding is pure and
is simply redone after a restart.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from blobferry.errors import (
    BlobNotFoundError,
    CertificationFailedError,
    DeleteFailedError,
    FinalizationError,
    QuorumNotReachedError,
    StorageError,
)
from blobferry.interfaces import StorageNetwork
from blobferry.signing import Signer
from blobferry.types import (
    EncodedBlob,
    FinalizedBlob,
    RegisteredBlob,
    StorageConfirmation,
)
from blobferry.utils.logging import get_logger
from blobferry.utils.retry import RetryPolicy, retry_async

_logger = get_logger(__name__)

FINALIZE_RETRYABLE_ERRORS = (FinalizationError, asyncio.TimeoutError, ConnectionError)

SubStepHook = Callable[[str, int], None]


@dataclass
class FinalizeProgress:
    """Results of the finalization sub-steps completed so far."""

    encoded: Optional[EncodedBlob] = None
    registered: Optional[RegisteredBlob] = None
    confirmations: List[StorageConfirmation] = field(default_factory=list)

    def to_checkpoint(self) -> Dict[str, Any]:
        return {
            "registered": self.registered.model_dump(mode="json") if self.registered else None,
            "confirmations": [c.model_dump(mode="json") for c in self.confirmations],
        }

    @classmethod
    def from_checkpoint(cls, data: Optional[Dict[str, Any]]) -> "FinalizeProgress":
        if not data:
            return cls()
        registered = data.get("registered")
        return cls(
            registered=RegisteredBlob.model_validate(registered) if registered else None,
            confirmations=[
                StorageConfirmation.model_validate(c) for c in data.get("confirmations") or []
            ],
        )


class StorageFinalizer:
    """
    Stores a blob on the destination network and certifies it.

    Certification fails closed: a certify transaction whose status is not
    ``success`` leaves the blob unfinalized, whatever digest came back.
    """

    def __init__(
        self,
        network: StorageNetwork,
        *,
        policy: Optional[RetryPolicy] = None,
        min_confirmations: int = 1,
    ) -> None:
        self._network = network
        self._policy = (policy or RetryPolicy()).with_overrides(
            retryable_errors=FINALIZE_RETRYABLE_ERRORS
        )
        self._min_confirmations = min_confirmations

    async def finalize(
        self,
        content: bytes,
        *,
        owner: str,
        epochs: int,
        deletable: bool,
        signer: Signer,
        progress: Optional[FinalizeProgress] = None,
        idempotency_key: Optional[str] = None,
        on_attempt: Optional[SubStepHook] = None,
        on_checkpoint: Optional[Callable[[FinalizeProgress], Any]] = None,
    ) -> FinalizedBlob:
        """
        Run the sub-steps not yet present in ``progress``.

        Args:
            content: File bytes
            owner: Destination address that will own the blob object
            epochs: Storage duration
            deletable: Whether the blob can be deleted later
            signer: Destination-chain signer for register/certify
            progress: Results of earlier sub-steps (updated in place)
            idempotency_key: Memo attached to the registration; a blob object
                already registered under it is reused
            on_attempt: Called with (sub_step, attempt) before each attempt
            on_checkpoint: Awaited after register and distribute succeed

        Raises:
            FinalizationError: A sub-step failed for good
            CertificationFailedError: Certify never reported success
        """
        progress = progress if progress is not None else FinalizeProgress()

        def hook(sub_step: str) -> Optional[Callable[[int], None]]:
            if on_attempt is None:
                return None
            return lambda n: on_attempt(sub_step, n)

        async def checkpoint() -> None:
            if on_checkpoint is not None:
                result = on_checkpoint(progress)
                if asyncio.iscoroutine(result):
                    await result

        if progress.encoded is None:
            progress.encoded = await retry_async(
                lambda: self._network.encode(content), self._policy, on_attempt=hook("encode")
            )
            _logger.info("Blob encoded", extra={"blob_id": progress.encoded.blob_id})
        encoded = progress.encoded

        if progress.registered is not None and progress.registered.blob_id != encoded.blob_id:
            raise StorageError(
                "Checkpointed registration belongs to a different blob",
                blob_id=encoded.blob_id,
                details={"registered_blob_id": progress.registered.blob_id},
            )

        if progress.registered is None:
            progress.registered = await retry_async(
                lambda: self._register(
                    encoded, owner, epochs, deletable, signer, idempotency_key
                ),
                self._policy,
                on_attempt=hook("register"),
            )
            await checkpoint()
        registered = progress.registered

        if len(progress.confirmations) < self._min_confirmations:
            progress.confirmations = await retry_async(
                lambda: self._distribute(encoded, registered.blob_object_id, deletable),
                self._policy,
                on_attempt=hook("distribute"),
            )
            await checkpoint()

        certification_tx_id = await retry_async(
            lambda: self._certify(registered, progress.confirmations, deletable, signer),
            self._policy,
            on_attempt=hook("certify"),
        )

        blob = FinalizedBlob(
            blob_id=encoded.blob_id,
            blob_object_id=registered.blob_object_id,
            registration_tx_id=registered.registration_tx_id,
            certification_tx_id=certification_tx_id,
        )
        _logger.info(
            "Blob certified",
            extra={"blob_id": blob.blob_id, "blob_object_id": blob.blob_object_id},
        )
        return blob

    async def _register(
        self,
        encoded: EncodedBlob,
        owner: str,
        epochs: int,
        deletable: bool,
        signer: Signer,
        idempotency_key: Optional[str],
    ) -> RegisteredBlob:
        receipt = None
        if idempotency_key is not None:
            receipt = await self._network.find_registration(idempotency_key)
            if receipt is not None and not receipt.tx.succeeded:
                receipt = None
        if receipt is not None:
            _logger.info(
                "Blob already registered, reusing it",
                extra={"blob_object_id": receipt.blob_object_id},
            )
        else:
            receipt = await self._network.register(
                encoded,
                owner=owner,
                epochs=epochs,
                deletable=deletable,
                signer=signer,
                memo=idempotency_key,
            )
        if not receipt.tx.succeeded:
            raise FinalizationError(
                "register",
                f"transaction status is {receipt.tx.status!r}",
                blob_id=encoded.blob_id,
                tx_id=receipt.tx.digest,
            )
        if not receipt.blob_object_id:
            # The object exists on chain but we cannot address it; registering
            # again would pay for a second one.
            raise StorageError(
                "Blob object not found in registration result",
                blob_id=encoded.blob_id,
                tx_id=receipt.tx.digest,
            )
        _logger.info(
            "Blob registered",
            extra={"blob_object_id": receipt.blob_object_id, "tx_id": receipt.tx.digest},
        )
        return RegisteredBlob(
            blob_id=encoded.blob_id,
            blob_object_id=receipt.blob_object_id,
            registration_tx_id=receipt.tx.digest,
        )

    async def _distribute(
        self,
        encoded: EncodedBlob,
        blob_object_id: str,
        deletable: bool,
    ) -> List[StorageConfirmation]:
        confirmations = await self._network.distribute(
            encoded, blob_object_id, deletable=deletable
        )
        if len(confirmations) < self._min_confirmations:
            raise QuorumNotReachedError(
                len(confirmations), self._min_confirmations, blob_id=encoded.blob_id
            )
        _logger.info(
            "Slivers stored on nodes",
            extra={"blob_id": encoded.blob_id, "confirmations": len(confirmations)},
        )
        return list(confirmations)

    async def _certify(
        self,
        registered: RegisteredBlob,
        confirmations: List[StorageConfirmation],
        deletable: bool,
        signer: Signer,
    ) -> str:
        result = await self._network.certify(
            registered.blob_id,
            registered.blob_object_id,
            confirmations,
            deletable=deletable,
            signer=signer,
        )
        if not result.succeeded:
            raise CertificationFailedError(
                result.status,
                blob_id=registered.blob_id,
                tx_id=result.digest,
                error=result.error,
            )
        return result.digest

    async def delete(self, blob_object_id: str, signer: Signer) -> str:
        """
        Delete a deletable blob object owned by ``signer``.

        Returns:
            Digest of the delete transaction

        Raises:
            DeleteFailedError: Transaction did not report success
        """
        result = await self._network.delete(blob_object_id, signer=signer)
        if not result.succeeded:
            raise DeleteFailedError(blob_object_id, result.status, tx_id=result.digest)
        _logger.info(
            "Blob deleted",
            extra={"blob_object_id": blob_object_id, "tx_id": result.digest},
        )
        return result.digest

    async def read(self, blob_id: str) -> bytes:
        data = await self._network.read(blob_id)
        if data is None:
            raise BlobNotFoundError(blob_id)
        return data

    async def attributes(self, blob_object_id: str) -> Dict[str, str]:
        attributes = await self._network.read_attributes(blob_object_id)
        if not attributes:
            raise BlobNotFoundError(blob_object_id)
        return attributes
