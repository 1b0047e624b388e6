"""
Tests for AstrosClient.

Tests cover:
- Route query parameters
- Sponsorship answer parsing
- HTTP error mapping and retry classification
- Circuit breaker integration
"""

from typing import List

import httpx
import pytest

from blobferry.aggregator import DEFAULT_AGGREGATOR_URL, AstrosClient, AstrosConfig
from blobferry.config import CircuitBreakerConfig
from blobferry.errors import AggregatorError, CircuitBreakerOpenError
from blobferry.mock import MOCK_BRIDGED_TOKEN, MOCK_STORAGE_TOKEN

from tests.conftest import RECEIVER


# =============================================================================
# Helper Functions
# =============================================================================


def create_client(*responses: httpx.Response, **config) -> "tuple[AstrosClient, List[httpx.Request]]":
    """Client whose transport replays ``responses`` and records requests."""
    requests: List[httpx.Request] = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    client = AstrosClient(AstrosConfig(**config), transport=httpx.MockTransport(handler))
    return client, requests


async def _gas_free(client: AstrosClient) -> bool:
    return await client.is_gas_free(
        MOCK_BRIDGED_TOKEN, MOCK_STORAGE_TOKEN, 9_900_000_000, RECEIVER
    )


# =============================================================================
# Initialization Tests
# =============================================================================


class TestInit:
    """Tests for AstrosClient initialization."""

    def test_default_config(self) -> None:
        """Test default base URL and closed circuit."""
        client = AstrosClient()

        assert client.base_url == DEFAULT_AGGREGATOR_URL
        assert client.circuit_breaker_state == "closed"

    def test_trailing_slash_stripped(self) -> None:
        """Test trailing slashes are removed from the base URL."""
        client = AstrosClient(AstrosConfig(base_url="https://agg.example/"))

        assert client.base_url == "https://agg.example"


# =============================================================================
# Route Tests
# =============================================================================


class TestGetRoute:
    """Tests for route queries."""

    @pytest.mark.asyncio
    async def test_query_parameters(self) -> None:
        """Test the route request carries coin types, base-unit amount and sender."""
        client, requests = create_client(httpx.Response(200, json={"gasSponsored": True}))

        await client.get_route(MOCK_BRIDGED_TOKEN, MOCK_STORAGE_TOKEN, 9_900_000_000, RECEIVER)

        request = requests[0]
        assert request.method == "GET"
        assert request.url.path == "/route"
        assert request.url.params["fromCoinType"] == MOCK_BRIDGED_TOKEN
        assert request.url.params["toCoinType"] == MOCK_STORAGE_TOKEN
        assert request.url.params["amount"] == "9900000000"
        assert request.url.params["sender"] == RECEIVER

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, no_sleep) -> None:
        """Test a 4xx response raises AggregatorError after one request."""
        client, requests = create_client(httpx.Response(400, text="bad coin type"))

        with pytest.raises(AggregatorError) as exc_info:
            await _gas_free(client)

        assert exc_info.value.status_code == 400
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self, no_sleep) -> None:
        """Test a 503 is retried and a later success returned."""
        client, requests = create_client(
            httpx.Response(503),
            httpx.Response(200, json={"gasSponsored": True}),
        )

        assert await _gas_free(client) is True
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, no_sleep) -> None:
        """Test 429 responses are retried up to max_attempts."""
        client, requests = create_client(httpx.Response(429), max_attempts=2)

        with pytest.raises(AggregatorError):
            await _gas_free(client)

        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_invalid_json(self, no_sleep) -> None:
        """Test a non-JSON body raises AggregatorError."""
        client, _ = create_client(httpx.Response(200, text="<html>"))

        with pytest.raises(AggregatorError, match="invalid JSON"):
            await _gas_free(client)

    @pytest.mark.asyncio
    async def test_non_object_body(self, no_sleep) -> None:
        """Test a JSON body that is not an object raises AggregatorError."""
        client, _ = create_client(httpx.Response(200, json=[1, 2]))

        with pytest.raises(AggregatorError, match="unexpected route document"):
            await _gas_free(client)

    @pytest.mark.asyncio
    async def test_transport_error_mapped(self, no_sleep) -> None:
        """Test connection failures surface as AggregatorError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = AstrosClient(
            AstrosConfig(max_attempts=2), transport=httpx.MockTransport(handler)
        )

        with pytest.raises(AggregatorError, match="unreachable"):
            await _gas_free(client)


# =============================================================================
# Sponsorship Tests
# =============================================================================


class TestIsGasFree:
    """Tests for is_gas_free."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,expected",
        [
            ({"gasSponsored": True}, True),
            ({"gasSponsored": False}, False),
            ({"gasSponsored": "true"}, False),
            ({"routes": []}, False),
        ],
    )
    async def test_sponsorship_flag(self, body, expected: bool) -> None:
        """Test only a literal true gasSponsored counts as sponsored."""
        client, _ = create_client(httpx.Response(200, json=body))

        assert await _gas_free(client) is expected


# =============================================================================
# Circuit Breaker Tests
# =============================================================================


class TestCircuitBreaker:
    """Tests for circuit breaker integration."""

    @pytest.mark.asyncio
    async def test_opens_after_failures(self, no_sleep) -> None:
        """Test repeated failures open the circuit and later calls fail fast."""
        client, requests = create_client(
            httpx.Response(500),
            max_attempts=1,
            circuit_breaker=CircuitBreakerConfig(failure_threshold=2),
        )

        for _ in range(2):
            with pytest.raises(AggregatorError):
                await _gas_free(client)

        with pytest.raises(CircuitBreakerOpenError):
            await _gas_free(client)

        assert client.circuit_breaker_state == "open"
        assert len(requests) == 2
