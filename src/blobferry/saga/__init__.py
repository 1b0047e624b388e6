"""
Upload saga: orchestrator, durable records and idempotency.
"""

from blobferry.saga.idempotency import idempotency_key
from blobferry.saga.locks import PayerLocks
from blobferry.saga.orchestrator import SagaContext, UploadSaga
from blobferry.saga.store import (
    InMemorySagaStore,
    JsonFileSagaStore,
    SagaRecord,
    SagaStore,
)

__all__ = [
    "UploadSaga",
    "SagaContext",
    "SagaRecord",
    "SagaStore",
    "InMemorySagaStore",
    "JsonFileSagaStore",
    "PayerLocks",
    "idempotency_key",
]
