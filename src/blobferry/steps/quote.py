"""
Quote step: storage cost for a request.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Optional

from blobferry.config import DESTINATION_TX_COST
from blobferry.errors import QuoteUnavailableError, ValidationError
from blobferry.interfaces import QuoteProvider, RateOracle
from blobferry.types import QuoteResult
from blobferry.utils.amounts import from_base_units
from blobferry.utils.logging import get_logger
from blobferry.utils.retry import AttemptHook, RetryPolicy, retry_async

_logger = get_logger(__name__)

QUOTE_RETRYABLE_ERRORS = (QuoteUnavailableError, asyncio.TimeoutError, ConnectionError)


class QuoteStep:
    """
    Turns the oracle's raw FROST quote into a ``QuoteResult``.

    The flat destination transaction cost is added to the total. When a
    rate oracle is configured, the rate from storage token to source token
    is attached so fees are computed in source-ledger units.
    """

    def __init__(
        self,
        provider: QuoteProvider,
        *,
        policy: Optional[RetryPolicy] = None,
        destination_tx_cost: Decimal = DESTINATION_TX_COST,
        rate_oracle: Optional[RateOracle] = None,
        storage_token: str = "",
        source_token: str = "SOL",
    ) -> None:
        self._provider = provider
        self._policy = policy or RetryPolicy(retryable_errors=QUOTE_RETRYABLE_ERRORS)
        self._destination_tx_cost = destination_tx_cost
        self._rate_oracle = rate_oracle
        self._storage_token = storage_token
        self._source_token = source_token

    async def quote(
        self,
        size_bytes: int,
        epochs: int,
        *,
        on_attempt: Optional[AttemptHook] = None,
    ) -> QuoteResult:
        if size_bytes <= 0:
            raise ValidationError("size_bytes must be positive", field="size_bytes")
        if epochs < 1:
            raise ValidationError("epochs must be at least 1", field="epochs")

        raw = await retry_async(
            lambda: self._provider.storage_cost(size_bytes, epochs),
            self._policy,
            on_attempt=on_attempt,
        )

        rate = Decimal(1)
        if self._rate_oracle is not None:
            rate = await retry_async(
                lambda: self._rate_oracle.rate(self._storage_token, self._source_token),
                self._policy,
            )

        result = QuoteResult(
            storage_cost=from_base_units(raw.storage_cost),
            write_cost=from_base_units(raw.write_cost),
            total_cost=from_base_units(raw.total_cost) + self._destination_tx_cost,
            encoded_size_bytes=raw.encoded_size_bytes or size_bytes,
            epochs=epochs,
            conversion_rate=rate,
        )
        _logger.info(
            "Storage quote received",
            extra={
                "size_bytes": size_bytes,
                "epochs": epochs,
                "total_cost": str(result.total_cost),
                "payable_total": str(result.payable_total),
            },
        )
        return result
