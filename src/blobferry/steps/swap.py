"""
Swap step adapter.

Two strategies: a gas-sponsored aggregator route (cheap, may be
unavailable) and a direct smart-order-router execution (always available,
costs gas). The sponsored route is tried at most once; if it fails for
any reason other than authorization, exactly one direct attempt follows
with the same amount.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from blobferry.errors import SwapAuthorizationError, SwapExecutionError
from blobferry.interfaces import SwapRouter
from blobferry.signing import Signer
from blobferry.types import SwapOutcome, SwapReceipt, SwapRoute
from blobferry.utils.logging import get_logger

_logger = get_logger(__name__)


class SwapAdapter:
    """
    Converts the bridged asset into the storage token.

    Example:
        ```python
        adapter = SwapAdapter(direct=aftermath_router, sponsored=astros_router)
        outcome = await adapter.swap(
            wsol_coin_type, wal_coin_type, handle.claimed_amount, signer,
            sponsored_eligible=True,
        )
        ```
    """

    def __init__(
        self,
        direct: SwapRouter,
        sponsored: Optional[SwapRouter] = None,
    ) -> None:
        self._direct = direct
        self._sponsored = sponsored

    async def swap(
        self,
        input_token: str,
        output_token: str,
        amount: Decimal,
        signer: Signer,
        *,
        sponsored_eligible: bool,
        idempotency_key: Optional[str] = None,
    ) -> SwapOutcome:
        """
        Swap ``amount`` of ``input_token`` into ``output_token``.

        ``amount`` must be what the bridge claim delivered, not the quote.
        With an ``idempotency_key``, a successful swap already recorded under
        that key on either route is returned instead of swapping again.

        Raises:
            SwapAuthorizationError: Signature/auth failure on either route
            SwapRouteUnavailableError: Direct route has no liquidity
            SwapExecutionError: Direct swap executed without success
        """
        if input_token == output_token:
            _logger.info("Bridged token is the storage token, swap skipped")
            return SwapOutcome(
                input_amount=amount,
                output_amount=amount,
                sponsored=False,
                route="skipped",
            )

        routes = [(self._direct, "direct")]
        if self._sponsored is not None:
            routes.insert(0, (self._sponsored, "sponsored"))
        for router, route in routes:
            landed = await self._landed(router, route, amount, idempotency_key)
            if landed is not None:
                return landed

        if sponsored_eligible and self._sponsored is not None:
            try:
                return await self._execute(
                    self._sponsored,
                    "sponsored",
                    input_token,
                    output_token,
                    amount,
                    signer,
                    idempotency_key,
                )
            except SwapAuthorizationError:
                raise
            except Exception as e:
                _logger.warning(
                    "Sponsored swap route failed, falling back to direct route",
                    extra={"error": str(e), "amount": str(amount)},
                )
            landed = await self._landed(self._sponsored, "sponsored", amount, idempotency_key)
            if landed is not None:
                return landed

        return await self._execute(
            self._direct, "direct", input_token, output_token, amount, signer, idempotency_key
        )

    async def _landed(
        self,
        router: SwapRouter,
        route: SwapRoute,
        amount: Decimal,
        idempotency_key: Optional[str],
    ) -> Optional[SwapOutcome]:
        if idempotency_key is None:
            return None
        receipt = await router.find_swap(idempotency_key)
        if receipt is None or not receipt.tx.succeeded:
            return None
        _logger.info(
            "Swap already executed, reusing it",
            extra={"route": route, "tx_id": receipt.tx.digest},
        )
        return self._outcome(router, route, amount, receipt)

    async def _execute(
        self,
        router: SwapRouter,
        route: SwapRoute,
        input_token: str,
        output_token: str,
        amount: Decimal,
        signer: Signer,
        idempotency_key: Optional[str],
    ) -> SwapOutcome:
        receipt = await router.swap(
            input_token, output_token, amount, signer, memo=idempotency_key
        )
        if not receipt.tx.succeeded:
            raise SwapExecutionError(
                f"Swap transaction failed with status {receipt.tx.status!r}",
                tx_id=receipt.tx.digest,
                details={"route": route, "error": receipt.tx.error},
            )

        outcome = self._outcome(router, route, amount, receipt)
        _logger.info(
            "Swap executed",
            extra={
                "route": route,
                "tx_id": outcome.tx_id,
                "input_amount": str(outcome.input_amount),
                "output_amount": str(outcome.output_amount),
            },
        )
        return outcome

    @staticmethod
    def _outcome(
        router: SwapRouter, route: SwapRoute, amount: Decimal, receipt: SwapReceipt
    ) -> SwapOutcome:
        return SwapOutcome(
            input_amount=amount,
            output_amount=receipt.output_amount,
            sponsored=router.sponsored,
            route=route,
            tx_id=receipt.tx.digest,
        )
