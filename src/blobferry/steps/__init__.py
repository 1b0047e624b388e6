"""
Step adapters of the upload saga.

Each adapter wraps one external collaborator and owns the retry policy of
its step. The saga orchestrator drives them in order.
"""

from blobferry.steps.bridge import (
    TRANSIENT_CLAIM_ERRORS,
    BridgeAdapter,
    is_transient_claim_error,
)
from blobferry.steps.fee import FEE_RETRYABLE_ERRORS, FeeCollector
from blobferry.steps.finalize import (
    FINALIZE_RETRYABLE_ERRORS,
    FinalizeProgress,
    StorageFinalizer,
)
from blobferry.steps.quote import QUOTE_RETRYABLE_ERRORS, QuoteStep
from blobferry.steps.swap import SwapAdapter

__all__ = [
    "QuoteStep",
    "QUOTE_RETRYABLE_ERRORS",
    "FeeCollector",
    "FEE_RETRYABLE_ERRORS",
    "BridgeAdapter",
    "TRANSIENT_CLAIM_ERRORS",
    "is_transient_claim_error",
    "SwapAdapter",
    "StorageFinalizer",
    "FinalizeProgress",
    "FINALIZE_RETRYABLE_ERRORS",
]
