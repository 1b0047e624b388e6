"""
Astros aggregator client.

The aggregator quotes swap routes on Sui and tells whether a route is
gas-sponsored for a given sender. blobferry only reads from it: the
sponsorship answer picks the protocol fee tier, and the route lookup is
exposed for callers that want to inspect it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from blobferry.config import CircuitBreakerConfig
from blobferry.errors import AggregatorError
from blobferry.utils.circuit_breaker import CircuitBreaker
from blobferry.utils.logging import get_logger
from blobferry.utils.retry import RetryPolicy, retry_async

_logger = get_logger(__name__)

DEFAULT_AGGREGATOR_URL = "https://aggregator.astroswap.org"


class AstrosConfig(BaseModel):
    """Connection settings for the Astros aggregator."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(
        default=DEFAULT_AGGREGATOR_URL,
        description="Aggregator base URL",
    )
    timeout: int = Field(
        default=10000,
        ge=100,
        description="Request timeout in milliseconds",
    )
    max_attempts: int = Field(default=3, ge=1, description="Attempts per request")
    circuit_breaker: Optional[CircuitBreakerConfig] = Field(
        default=None,
        description="Circuit breaker configuration",
    )


def _is_retryable_http_error(error: BaseException) -> bool:
    if isinstance(error, AggregatorError):
        return error.status_code is None or error.status_code >= 500 or error.status_code == 429
    return False


class AstrosClient:
    """
    Read-only client for the Astros swap aggregator.

    Implements ``SponsorshipOracle``.

    Example:
        ```python
        client = AstrosClient(AstrosConfig())
        sponsored = await client.is_gas_free(wsol, wal, 9_900_000_000, receiver)
        ```
    """

    def __init__(
        self,
        config: Optional[AstrosConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or AstrosConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._transport = transport
        self._circuit_breaker = CircuitBreaker(
            self._config.circuit_breaker or CircuitBreakerConfig(),
            endpoint=self._base_url,
        )
        self._retry_policy = RetryPolicy(
            max_attempts=self._config.max_attempts,
            base_delay_ms=500,
            retryable_errors=(AggregatorError,),
            classifier=_is_retryable_http_error,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def circuit_breaker_state(self) -> str:
        """Get current circuit breaker state."""
        return self._circuit_breaker.state.value

    async def get_route(
        self,
        from_coin_type: str,
        to_coin_type: str,
        amount_units: int,
        sender: str,
    ) -> Dict[str, Any]:
        """
        Query the best route for a swap.

        Args:
            from_coin_type: Input coin type
            to_coin_type: Output coin type
            amount_units: Input amount in base units
            sender: Address that would execute the swap

        Returns:
            Route document as returned by the aggregator

        Raises:
            AggregatorError: Non-200 response or malformed body
            CircuitBreakerOpenError: Aggregator marked unhealthy
        """
        params = {
            "fromCoinType": from_coin_type,
            "toCoinType": to_coin_type,
            "amount": str(amount_units),
            "sender": sender,
        }

        async def do_get_route() -> Dict[str, Any]:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout / 1000),
                transport=self._transport,
            ) as client:
                try:
                    response = await client.get(f"{self._base_url}/route", params=params)
                except httpx.TransportError as e:
                    raise AggregatorError(
                        f"Aggregator unreachable: {e}",
                        base_url=self._base_url,
                    ) from e

                if response.status_code != 200:
                    raise AggregatorError(
                        f"Failed to query route: HTTP {response.status_code}",
                        status_code=response.status_code,
                        base_url=self._base_url,
                    )

                try:
                    data = response.json()
                except ValueError as e:
                    raise AggregatorError(
                        "Aggregator returned invalid JSON",
                        status_code=response.status_code,
                        base_url=self._base_url,
                    ) from e

                if not isinstance(data, dict):
                    raise AggregatorError(
                        "Aggregator returned an unexpected route document",
                        status_code=response.status_code,
                        base_url=self._base_url,
                    )
                return data

        return await self._circuit_breaker.execute(
            lambda: retry_async(do_get_route, self._retry_policy)
        )

    async def is_gas_free(
        self,
        input_token: str,
        output_token: str,
        amount_units: int,
        sender: str,
    ) -> bool:
        """Whether the aggregator would sponsor gas for this swap."""
        route = await self.get_route(input_token, output_token, amount_units, sender)
        sponsored = route.get("gasSponsored") is True
        _logger.debug(
            "Aggregator sponsorship checked",
            extra={"sponsored": sponsored, "amount_units": amount_units},
        )
        return sponsored
