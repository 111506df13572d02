"""
Inbound reconciler — fold point-of-sale state back into local orders.

Two delivery paths converge on `apply_external_state()`:

  - Webhooks: the platform POSTs an event envelope whenever an order or
    fulfillment changes. We verify the signature when a key is
    configured, dig the order object out of whichever envelope shape
    arrived, recover the local id (correlation.py) and apply the state.
  - Polling: an admin-triggered search of recent platform orders,
    cross-referenced against local orders that are still open. Covers
    webhooks that never arrived.

State mapping:
    PROPOSED / OPEN          → processing
    RESERVED / IN_PROGRESS   → preparing
    PREPARED / READY         → ready
    COMPLETED                → completed
    CANCELED / CANCELLED     → cancelled

  The fulfillment state wins over the order state when both are
  present. Unknown states have no effect.

Idempotency:
  `set_status` is a no-op when the status is unchanged, so repeated
  webhook deliveries and overlapping polls never double-notify. The
  mirror fields (external id, external state, last_synced_at) are only
  written when the platform reports something new. An
  update that would move an order backwards (a stale webhook) is logged
  and ignored.

Tolerance:
  Webhook bodies are untrusted. Anything undecodable, unrelated or
  uncorrelatable is acknowledged with "no effect". `handle_webhook`
  never raises for a bad payload.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.config import PosPlatformConfig
from brewledger.exceptions import InvalidStatusTransitionError
from brewledger.logging import get_logger
from brewledger.models.order import Order
from brewledger.security import verify_webhook_signature
from brewledger.services import order_service
from brewledger.services.correlation import extract_correlation
from brewledger.services.notification_service import NotificationService
from brewledger.services.pos_client import PosClient

logger = get_logger(__name__)


STATE_MAP: dict[str, str] = {
    "PROPOSED": "processing",
    "OPEN": "processing",
    "RESERVED": "preparing",
    "IN_PROGRESS": "preparing",
    "PREPARED": "ready",
    "READY": "ready",
    "COMPLETED": "completed",
    "CANCELED": "cancelled",
    "CANCELLED": "cancelled",
}


@dataclass
class WebhookOutcome:
    """What a webhook delivery did. `processed` is False for every no-effect path."""

    processed: bool = False
    order_id: int | None = None
    status: str | None = None
    reason: str = ""


def map_external_state(external_order: Any) -> tuple[str | None, str | None]:
    """
    Return (raw external state, mapped local status) for an external order.

    The first fulfillment's state is preferred; the order-level state is
    the fallback. Either element may be None.
    """
    if not isinstance(external_order, dict):
        return None, None

    raw = None
    fulfillments = external_order.get("fulfillments")
    if isinstance(fulfillments, list):
        for fulfillment in fulfillments:
            if isinstance(fulfillment, dict) and isinstance(fulfillment.get("state"), str):
                raw = fulfillment["state"]
                break
    updates = external_order.get("fulfillment_update")
    if raw is None and isinstance(updates, list) and updates:
        # order.fulfillment.updated events list transitions, latest last
        latest = updates[-1]
        if isinstance(latest, dict) and isinstance(latest.get("new_state"), str):
            raw = latest["new_state"]
    if raw is None and isinstance(external_order.get("state"), str):
        raw = external_order["state"]
    if raw is None:
        return None, None
    return raw, STATE_MAP.get(raw.upper())


def _find_order_object(event: dict) -> dict | None:
    """Locate the external order inside the known envelope shapes."""
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None

    candidates = []
    if isinstance(obj, dict):
        for key in ("order", "order_updated", "order_created", "order_fulfillment_updated"):
            candidates.append(obj.get(key))
        candidates.append(obj)
    candidates.extend([event.get("order"), event.get("object")])

    for candidate in candidates:
        if isinstance(candidate, dict) and (
            "id" in candidate or "order_id" in candidate or "fulfillments" in candidate
            or "line_items" in candidate or "reference_id" in candidate
        ):
            return candidate
    return None


def _external_id_of(order_object: dict, event: dict) -> str | None:
    for value in (
        order_object.get("id"),
        order_object.get("order_id"),
        (event.get("data") or {}).get("id") if isinstance(event.get("data"), dict) else None,
    ):
        if isinstance(value, str) and value:
            return value
    return None


class OrderReconciler:
    """Applies external order state to local orders."""

    def __init__(
        self,
        client: PosClient,
        config: PosPlatformConfig,
        notifier: NotificationService,
    ):
        self.client = client
        self.config = config
        self.notifier = notifier

    async def apply_external_state(
        self,
        db: AsyncSession,
        order: Order,
        external_order: dict,
    ) -> bool:
        """
        Map the external order's state onto `order`. Returns True if the
        local status changed.
        """
        raw_state, mapped = map_external_state(external_order)

        mirror_changed = False
        external_id = external_order.get("id")
        if isinstance(external_id, str) and external_id and not order.external_order_id:
            order.external_order_id = external_id
            mirror_changed = True
        if raw_state and raw_state != order.external_state:
            order.external_state = raw_state
            mirror_changed = True
        # A repeated delivery must leave the row untouched, updated_at included
        if mirror_changed:
            order.last_synced_at = datetime.now(timezone.utc)

        if mapped is None:
            if raw_state:
                logger.info("Order #%s: unmapped external state %s", order.id, raw_state)
            await db.flush()
            return False

        try:
            _, changed = await order_service.set_status(db, order.id, mapped, self.notifier)
        except InvalidStatusTransitionError as exc:
            logger.info("Ignoring stale external update for order #%s: %s", order.id, exc.detail)
            await db.flush()
            return False
        return changed

    # -----------------------------------------------------------------------
    # Webhooks
    # -----------------------------------------------------------------------

    def signature_ok(self, raw_body: bytes, signature: str | None) -> bool:
        """True when no key is configured or the signature matches."""
        if not self.config.webhook_signature_key:
            return True
        return verify_webhook_signature(
            self.config.webhook_signature_key,
            self.config.webhook_url,
            raw_body,
            signature,
        )

    async def handle_webhook(
        self,
        db: AsyncSession,
        raw_body: bytes,
        signature: str | None = None,
    ) -> WebhookOutcome:
        """
        Process one webhook delivery. Never raises for a bad payload.
        """
        if not self.signature_ok(raw_body, signature):
            logger.warning("Webhook signature mismatch; ignoring delivery")
            return WebhookOutcome(reason="invalid_signature")

        try:
            event = json.loads(raw_body or b"")
        except (ValueError, UnicodeDecodeError):
            logger.warning("Webhook body is not valid JSON; ignoring delivery")
            return WebhookOutcome(reason="malformed")

        if not isinstance(event, dict):
            return WebhookOutcome(reason="malformed")

        event_type = event.get("type") or event.get("event_type") or ""
        if not isinstance(event_type, str) or "order" not in event_type.lower():
            return WebhookOutcome(reason="unrelated_event")

        order_object = _find_order_object(event)
        if order_object is None:
            logger.info("Webhook %s carried no order object", event_type)
            return WebhookOutcome(reason="no_order_object")

        order = await self._resolve_local_order(db, order_object, event)
        if order is None:
            return WebhookOutcome(reason="uncorrelated")

        changed = await self.apply_external_state(db, order, order_object)
        return WebhookOutcome(
            processed=True,
            order_id=order.id,
            status=order.status,
            reason="updated" if changed else "unchanged",
        )

    async def _resolve_local_order(
        self, db: AsyncSession, order_object: dict, event: dict
    ) -> Order | None:
        match = extract_correlation(order_object, self.config.reference_prefix)
        if match is not None:
            local_id, method = match
            result = await db.execute(select(Order).where(Order.id == local_id))
            order = result.scalar_one_or_none()
            if order is not None:
                logger.debug("Correlated order #%s via %s", local_id, method)
                return order
            logger.info("Correlated id %s (via %s) has no local order", local_id, method)

        # Order update events often carry only id/version/state
        external_id = _external_id_of(order_object, event)
        if external_id:
            result = await db.execute(
                select(Order).where(Order.external_order_id == external_id)
            )
            return result.scalars().first()
        return None

    # -----------------------------------------------------------------------
    # Polling fallback
    # -----------------------------------------------------------------------

    def _search_query(self) -> dict:
        start = datetime.now(timezone.utc) - timedelta(hours=self.config.poll_lookback_hours)
        return {
            "filter": {
                "date_time_filter": {
                    "created_at": {"start_at": start.isoformat()},
                },
                "fulfillment_filter": {"fulfillment_types": ["PICKUP"]},
            },
            "sort": {"sort_field": "CREATED_AT", "sort_order": "DESC"},
        }

    async def reconcile_open_orders(self, db: AsyncSession) -> dict:
        """
        Poll recent platform orders and apply their state to open local orders.

        Returns:
            {"checked": platform orders seen, "matched": open local orders
             found among them, "updated": status changes applied}

        Raises:
            ExternalPlatformError: If the search call fails.
        """
        if not self.config.is_configured:
            logger.warning("Point-of-sale platform not configured; skipping reconcile")
            return {"checked": 0, "matched": 0, "updated": 0}

        open_orders = await order_service.list_open_orders(db)
        by_id = {order.id: order for order in open_orders}
        by_external = {
            order.external_order_id: order for order in open_orders if order.external_order_id
        }

        external_orders = await self.client.search_orders(self._search_query())

        matched = 0
        updated = 0
        seen: set[int] = set()
        for external_order in external_orders:
            if not isinstance(external_order, dict):
                continue
            order = None
            match = extract_correlation(external_order, self.config.reference_prefix)
            if match is not None:
                order = by_id.get(match[0])
            if order is None and isinstance(external_order.get("id"), str):
                order = by_external.get(external_order["id"])
            if order is None or order.id in seen:
                continue
            seen.add(order.id)
            matched += 1
            if await self.apply_external_state(db, order, external_order):
                updated += 1

        logger.info(
            "Reconciled %d platform orders: %d matched, %d updated",
            len(external_orders), matched, updated,
        )
        return {"checked": len(external_orders), "matched": matched, "updated": updated}
