"""
Point-of-sale platform API client (Square-compatible Orders/Payments API).

Provides async methods for:
- Creating an order (with a minimal-payload fallback)
- Recording a payment against an order
- Searching recent orders for a location

Timeouts and retries:
  Every call uses the bounded timeout from PosPlatformConfig. Order
  creation retries network errors and 5xx responses at most
  `max_attempts` times. A 4xx on the full payload is retried once with
  the caller's minimal payload (the platform rejects some optional
  fields in some regions). There is never an unbounded retry loop.

The client takes an optional httpx transport so tests can run it
against httpx.MockTransport without touching the network.
"""

import httpx

from brewledger.config import PosPlatformConfig
from brewledger.exceptions import ExternalPlatformError
from brewledger.logging import get_logger

logger = get_logger(__name__)


class PosClient:
    """Async client for the point-of-sale Orders and Payments APIs."""

    def __init__(
        self,
        config: PosPlatformConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {config.access_token}",
            "Square-Version": config.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict | None = None,
    ) -> dict:
        """Make one request to the platform and return the decoded body."""
        url = f"{self.config.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    json=json_data,
                )
        except httpx.HTTPError as exc:
            raise ExternalPlatformError(
                f"{method} {endpoint} failed: {exc.__class__.__name__}"
            ) from exc

        if not response.is_success:
            raise ExternalPlatformError(
                f"{method} {endpoint} returned {response.status_code}",
                status_code_upstream=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalPlatformError(
                f"{method} {endpoint} returned a non-JSON body",
                status_code_upstream=response.status_code,
                body=response.text,
            ) from exc

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(self, payload: dict, minimal_payload: dict | None = None) -> dict:
        """
        Create an order on the platform.

        Args:
            payload: Full request body ({"idempotency_key", "order"}).
            minimal_payload: Optional stripped-down body used once if the
                platform rejects the full payload with a 4xx.

        Returns:
            The created order object.

        Raises:
            ExternalPlatformError: After the bounded attempts are spent.
        """
        last_error: ExternalPlatformError | None = None
        body = payload
        used_fallback = False
        attempts = 0

        while attempts < self.config.max_attempts:
            attempts += 1
            try:
                data = await self._request("POST", "/orders", body)
                return data.get("order", data)
            except ExternalPlatformError as exc:
                last_error = exc
                status = exc.status_code_upstream
                if status is not None and 400 <= status < 500:
                    if minimal_payload is None or used_fallback:
                        raise
                    logger.warning(
                        "Platform rejected order payload (%s); retrying with minimal payload",
                        status,
                    )
                    body = minimal_payload
                    used_fallback = True
                    # The fallback is an extra attempt, not one of the retries
                    attempts -= 1
                    continue
                logger.warning(
                    "Order create attempt %d/%d failed: %s",
                    attempts, self.config.max_attempts, exc.detail,
                )

        raise last_error

    async def search_orders(self, query: dict, limit: int = 100) -> list[dict]:
        """Search orders at the configured location."""
        body = {
            "location_ids": [self.config.location_id],
            "query": query,
            "limit": limit,
        }
        data = await self._request("POST", "/orders/search", body)
        return data.get("orders", []) or []

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_payment(self, payload: dict) -> dict:
        """Record a payment against an existing order. Single attempt."""
        data = await self._request("POST", "/payments", payload)
        return data.get("payment", data)
