"""
BlobFerryClient - entry point for uploads and blob management.

Example:
    ```python
    from blobferry import BlobFerryClient

    client = BlobFerryClient.create_mock()
    blob = await client.upload_file("report.pdf", payer=MOCK_PAYER)
    print(blob.blob_id)

    data = await client.download(blob.blob_id)
    ```
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional, Union

from blobferry.config import SagaConfig
from blobferry.errors import ValidationError
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
from blobferry.saga.orchestrator import SagaContext, UploadSaga
from blobferry.saga.store import SagaRecord
from blobferry.types import DEFAULT_EPOCHS, FinalizedBlob, QuoteResult, UploadRequest
from blobferry.utils.logging import get_logger

_logger = get_logger(__name__)


class BlobFerryClient:
    """
    Uploads files from a Solana payer to Walrus storage on Sui.

    Wraps one ``UploadSaga``; blob management calls (delete, download,
    attributes) go straight to the storage network.
    """

    def __init__(self, context: SagaContext) -> None:
        self._context = context
        self._saga = UploadSaga(context)

    @classmethod
    def create_mock(
        cls,
        config: Optional[SagaConfig] = None,
        *,
        payer: str = MOCK_PAYER,
        balance: Decimal = Decimal("100"),
        sponsored: bool = True,
    ) -> "BlobFerryClient":
        """
        Client wired to in-memory collaborators from ``blobferry.mock``.

        The mocks are reachable through ``client.context`` for inspection.
        """
        if config is None:
            config = SagaConfig(bridged_token=MOCK_BRIDGED_TOKEN)

        context = SagaContext(
            config=config,
            quote_provider=MockQuoteProvider(),
            ledger=MockLedger({payer: balance}),
            bridge=MockBridge(),
            direct_router=MockSwapRouter(),
            storage=MockStorageNetwork(),
            signers=MockSignerProvider(),
            sponsored_router=MockSwapRouter(sponsored=True),
            sponsorship=MockSponsorshipOracle(gas_free=sponsored),
        )
        return cls(context)

    @property
    def context(self) -> SagaContext:
        return self._context

    @property
    def saga(self) -> UploadSaga:
        return self._saga

    async def upload(self, request: UploadRequest) -> FinalizedBlob:
        """
        Run the upload saga for ``request``.

        Calling again with the same request continues a failed or
        interrupted upload, or returns the stored blob if it finished.

        Raises:
            ValidationError: Configuration cannot serve the request
            SagaFailedError: A step failed for good
        """
        return await self._saga.run(request)

    async def upload_file(
        self,
        path: Union[str, Path],
        *,
        payer: str,
        epochs: int = DEFAULT_EPOCHS,
        deletable: bool = True,
        receiver: Optional[str] = None,
    ) -> FinalizedBlob:
        """Read ``path`` and upload its content."""
        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationError(f"Not a file: {file_path}", field="path")

        content = await asyncio.to_thread(file_path.read_bytes)
        if not content:
            raise ValidationError(f"File is empty: {file_path}", field="path")

        request = UploadRequest.from_bytes(
            content,
            payer=payer,
            epochs=epochs,
            deletable=deletable,
            receiver=receiver,
        )
        _logger.info(
            "Uploading file",
            extra={"path": str(file_path), "size_bytes": request.file_size_bytes},
        )
        return await self.upload(request)

    async def delete(self, blob_object_id: str, owner: str) -> str:
        """
        Delete a deletable blob owned by ``owner``.

        Returns:
            Digest of the delete transaction
        """
        signer = self._context.signers.get(owner)
        return await self._saga.finalizer.delete(blob_object_id, signer)

    async def download(self, blob_id: str) -> bytes:
        return await self._saga.finalizer.read(blob_id)

    async def get_attributes(self, blob_object_id: str) -> Dict[str, str]:
        return await self._saga.finalizer.attributes(blob_object_id)

    async def storage_quote(self, size_bytes: int, epochs: int = DEFAULT_EPOCHS) -> QuoteResult:
        """Storage cost for ``size_bytes`` over ``epochs``, nothing is paid."""
        return await self._saga.quote_step.quote(size_bytes, epochs)

    async def status(self, digest: str) -> Optional[SagaRecord]:
        """Stored saga record for a request digest."""
        return await self._saga.status(digest)


__all__ = ["BlobFerryClient"]
