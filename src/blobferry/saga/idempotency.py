"""
Idempotency keys for side-effecting saga steps.
"""

from __future__ import annotations

import hashlib
from typing import Union

from blobferry.types import SagaState


def idempotency_key(digest: str, state: Union[SagaState, str]) -> str:
    """
    Key attached to the transfer a step submits.

    Derived from the request digest and the step name, so the same request
    always produces the same key for the same step, across processes.

    Example:
        ```python
        memo = idempotency_key(request.digest(), SagaState.FEE_COLLECTING)
        ```
    """
    name = state.value if isinstance(state, SagaState) else str(state)
    return hashlib.sha256(f"{digest}:{name}".encode("utf-8")).hexdigest()
