"""
Outbound mirror — project a paid order into the point-of-sale platform.

The kitchen display reads orders from the platform, so every local order
is copied there as an external order plus a payment record that marks it
as already settled with app credits (no card is charged).

Idempotency:
  The platform idempotency key and the reference id are both derived
  from the local id ("bs-order-<id>"). Retrying a mirror for the same
  order reuses the same key, so the platform returns the original order
  instead of creating a second one. Locally, an order that already has
  an `external_order_id` is not sent again at all.

Correlation:
  The local id is written into the reference id, the fulfillment uid,
  the order note, the pickup note ("Bean Stalker order #52") and every
  line-item note ("Order #52"). The reconciler can recover the id from
  any one of them (see correlation.py).

Failure semantics:
  - Order creation failure raises MirrorError. The local order and its
    ledger debit are untouched; mirroring affects kitchen visibility only.
  - Payment failure after the external order exists is logged and does
    not fail the mirror.
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brewledger.config import PosPlatformConfig
from brewledger.database import AsyncSessionLocal
from brewledger.exceptions import ExternalPlatformError, MirrorError, OrderNotFoundError
from brewledger.logging import get_logger
from brewledger.models.order import Order
from brewledger.models.user import User
from brewledger.services.pos_client import PosClient

logger = get_logger(__name__)


class OrderMirror:
    """Creates the external order and payment for a local order."""

    def __init__(
        self,
        client: PosClient,
        config: PosPlatformConfig,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self.client = client
        self.config = config
        self.session_factory = session_factory

    # -----------------------------------------------------------------------
    # Stable identifiers
    # -----------------------------------------------------------------------

    def reference_id(self, order_id: int) -> str:
        return f"{self.config.reference_prefix}-order-{order_id}"

    def fulfillment_uid(self, order_id: int) -> str:
        return f"{self.config.reference_prefix}-fulfillment-{order_id}"

    def payment_key(self, order_id: int) -> str:
        return f"{self.config.reference_prefix}-pay-{order_id}"

    # -----------------------------------------------------------------------
    # Payload builders
    # -----------------------------------------------------------------------

    def _money(self, amount_cents: int) -> dict:
        return {"amount": int(amount_cents), "currency": self.config.currency}

    def build_line_items(self, order: Order) -> list[dict]:
        line_items = []
        for index, item in enumerate(order.items or []):
            name = item.get("name") or "Item"
            if item.get("size"):
                name = f"{name} ({item['size']})"
            if item.get("flavor"):
                name = f"{name} - {item['flavor']}"
            line_items.append({
                "uid": f"{self.config.reference_prefix}-item-{order.id}-{index}",
                "name": name,
                "quantity": str(item.get("quantity", 1)),
                "item_type": "ITEM",
                "base_price_money": self._money(item.get("unit_price_cents", 0)),
                "note": f"Order #{order.id}",
            })
        return line_items

    def build_order_payload(self, order: Order, customer_name: str) -> dict:
        """Full create-order body with every correlation field populated."""
        return {
            "idempotency_key": self.reference_id(order.id),
            "order": {
                "reference_id": self.reference_id(order.id),
                "location_id": self.config.location_id,
                "source": {"name": self.config.merchant_label},
                "note": f"{self.config.merchant_label} order #{order.id}",
                "line_items": self.build_line_items(order),
                "fulfillments": [{
                    "uid": self.fulfillment_uid(order.id),
                    "type": "PICKUP",
                    "state": "PROPOSED",
                    "pickup_details": {
                        "recipient": {"display_name": customer_name},
                        "schedule_type": "ASAP",
                        "note": f"{self.config.merchant_label} order #{order.id}",
                    },
                }],
            },
        }

    def build_minimal_payload(self, order: Order) -> dict:
        """Stripped-down body: reference id and line items with notes only."""
        return {
            "idempotency_key": self.reference_id(order.id),
            "order": {
                "reference_id": self.reference_id(order.id),
                "location_id": self.config.location_id,
                "line_items": [
                    {
                        "name": item["name"],
                        "quantity": item["quantity"],
                        "base_price_money": item["base_price_money"],
                        "note": item["note"],
                    }
                    for item in self.build_line_items(order)
                ],
            },
        }

    def build_payment_payload(self, order: Order, external_order_id: str, customer_name: str) -> dict:
        return {
            "idempotency_key": self.payment_key(order.id),
            "source_id": self.config.payment_source_id,
            "external_details": {
                "type": "STORED_BALANCE",
                "source": f"{self.config.merchant_label} app credits",
            },
            "amount_money": self._money(order.total_cents),
            "order_id": external_order_id,
            "location_id": self.config.location_id,
            "note": (
                f"{self.config.merchant_label} app credits payment for order "
                f"#{order.id} by {customer_name}"
            ),
        }

    # -----------------------------------------------------------------------
    # Mirroring
    # -----------------------------------------------------------------------

    async def mirror(self, db: AsyncSession, order_id: int) -> str:
        """
        Mirror one order and return its external order id.

        Safe to call repeatedly: an already-mirrored order returns its
        stored external id without contacting the platform.

        Raises:
            OrderNotFoundError: If the local order doesn't exist.
            MirrorError: If the platform is not configured or refused the order.
        """
        result = await db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)

        if order.external_order_id:
            logger.info(
                "Order #%s already mirrored as %s", order_id, order.external_order_id
            )
            return order.external_order_id

        if not self.config.is_configured:
            raise MirrorError(order_id, "point-of-sale platform is not configured")

        user_result = await db.execute(select(User.username).where(User.id == order.user_id))
        customer_name = user_result.scalar_one_or_none() or f"{self.config.merchant_label} Customer"

        try:
            external_order = await self.client.create_order(
                self.build_order_payload(order, customer_name),
                minimal_payload=self.build_minimal_payload(order),
            )
        except ExternalPlatformError as exc:
            logger.error("Mirror of order #%s failed: %s", order_id, exc.detail)
            raise MirrorError(
                order_id, exc.detail, status_code_upstream=exc.status_code_upstream
            ) from exc

        external_order_id = external_order.get("id")
        if not external_order_id:
            raise MirrorError(order_id, "platform response carried no order id")

        try:
            payment = await self.client.create_payment(
                self.build_payment_payload(order, external_order_id, customer_name)
            )
            logger.info(
                "Recorded payment %s for order #%s", payment.get("id"), order_id
            )
        except ExternalPlatformError as exc:
            # The external order exists; payment visibility is reconciled by hand
            logger.warning(
                "Order #%s mirrored as %s but payment attestation failed: %s",
                order_id, external_order_id, exc.detail,
            )

        order.external_order_id = external_order_id
        order.external_state = _fulfillment_state(external_order) or external_order.get("state")
        order.last_synced_at = datetime.now(timezone.utc)
        await db.flush()

        logger.info("Mirrored order #%s as %s", order_id, external_order_id)
        return external_order_id

    def job(self, order_id: int):
        """
        Build a TaskQueue job that mirrors `order_id` in its own session.

        An unconfigured platform is a skip, not a failure, so it is not retried.
        """

        async def run() -> None:
            if not self.config.is_configured:
                logger.warning(
                    "Point-of-sale platform not configured; order #%s not mirrored", order_id
                )
                return
            async with self.session_factory() as session:
                try:
                    await self.mirror(session, order_id)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        return run


def _fulfillment_state(external_order: dict) -> str | None:
    fulfillments = external_order.get("fulfillments")
    if isinstance(fulfillments, list) and fulfillments and isinstance(fulfillments[0], dict):
        return fulfillments[0].get("state")
    return None
