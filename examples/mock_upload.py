#!/usr/bin/env python3
"""
Example: Upload a file through the full saga against in-memory collaborators

Runs quote, fee, bridge, swap and storage finalization end to end, then
reads the blob back and deletes it. A second run of the same request
returns the stored blob without paying again.

Run this example:
    python examples/mock_upload.py [path/to/file]

Environment (optional, also read from .env):
    BLOBFERRY_FEE_SPONSORED, BLOBFERRY_FEE_UNSPONSORED, BLOBFERRY_MIN_CONFIRMATIONS
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

from blobferry import BlobFerryClient, SagaConfig, SagaFailedError, SagaState, UploadRequest
from blobferry.mock import MOCK_BRIDGED_TOKEN, MOCK_PAYER
from blobferry.utils.logging import configure_logging


async def main() -> None:
    load_dotenv()
    configure_logging(level="INFO")

    print("=" * 60)
    print("blobferry - mock upload")
    print("=" * 60)

    config = SagaConfig.from_env().model_copy(update={"bridged_token": MOCK_BRIDGED_TOKEN})
    client = BlobFerryClient.create_mock(config, balance=Decimal("25"))

    if len(sys.argv) > 1:
        content = Path(sys.argv[1]).read_bytes()
    else:
        content = b"hello walrus " * 80
    request = UploadRequest.from_bytes(content, payer=MOCK_PAYER, epochs=3)

    quote = await client.storage_quote(request.file_size_bytes, request.epochs)
    print(f"Quote: {quote.total_cost} WAL for {request.file_size_bytes} bytes")

    try:
        blob = await client.upload(request)
    except SagaFailedError as e:
        print(f"Upload failed in {e.state} (last completed: {e.last_completed_state})")
        raise SystemExit(1) from e

    record = await client.status(request.digest())
    fee = record.artifact(SagaState.FEE_COLLECTING)
    print(f"Fee: {fee.amount_debited} ({record.fee_percent:%} tier), bridged {fee.remaining_for_bridge}")
    print(f"Blob id: {blob.blob_id}")
    print(f"Blob object: {blob.blob_object_id}")

    again = await client.upload(request)
    print(f"Second run returned the stored blob: {again == blob}")

    data = await client.download(blob.blob_id)
    print(f"Downloaded {len(data)} bytes, matches: {data == content}")

    tx_id = await client.delete(blob.blob_object_id, request.resolved_receiver())
    print(f"Deleted in {tx_id[:16]}...")


if __name__ == "__main__":
    asyncio.run(main())
