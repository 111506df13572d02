"""
Notification service — best-effort messages to members and staff.

Push delivery itself (APNs/FCM, web push) lives outside this service.
We hand a `Notification` to a `NotificationTransport` and never inspect
whether it arrived.

Error boundary:
  Every public method catches and logs transport failures. A notification
  that cannot be sent must never roll back the ledger write or the order
  status change that triggered it.

After-commit delivery:
  Services announce events through `after_commit(db, name, send)`. With a
  TaskQueue attached, `send` is held on the session and handed to the
  queue by SQLAlchemy's `after_commit` event, so nothing goes out for a
  write that rolls back, and a slow transport never runs while the
  request holds the SQLite write lock. A rollback discards whatever is
  held. Without a queue (scripts, service-level callers) `send` runs
  immediately.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.logging import get_logger
from brewledger.models.order import Order
from brewledger.models.user import User, UserType
from brewledger.services.task_queue import TaskQueue

logger = get_logger(__name__)

SendFactory = Callable[[], Awaitable[Any]]

# Session.info key for sends waiting on the current transaction
PENDING_SENDS_KEY = "brewledger.pending_notifications"


def _release_pending(session) -> None:
    pending = session.info.get(PENDING_SENDS_KEY) or []
    for task_queue, name, send in pending:
        task_queue.enqueue(name, send, max_attempts=1)
    pending.clear()


def _discard_pending(session) -> None:
    pending = session.info.get(PENDING_SENDS_KEY) or []
    if pending:
        logger.info("Dropping %d notifications for a rolled-back write", len(pending))
    pending.clear()


# User-facing wording for each status an order can move into
STATUS_MESSAGES: dict[str, str] = {
    "pending": "has been received",
    "processing": "is being prepared",
    "preparing": "is being made",
    "ready": "is ready for pickup",
    "completed": "has been completed",
    "cancelled": "has been cancelled",
}


@dataclass
class Notification:
    """A single message for one user."""

    title: str
    body: str
    data: dict = field(default_factory=dict)


class NotificationTransport(Protocol):
    async def send(self, user_id: uuid.UUID, notification: Notification) -> None:
        ...


class LoggingNotificationTransport:
    """Default transport: writes each notification to the application log."""

    async def send(self, user_id: uuid.UUID, notification: Notification) -> None:
        logger.info(
            "Notification to %s: %s | %s", user_id, notification.title, notification.body
        )


class NotificationService:
    """Builds domain messages and dispatches them through a transport."""

    def __init__(
        self,
        transport: NotificationTransport | None = None,
        task_queue: TaskQueue | None = None,
    ):
        self.transport = transport or LoggingNotificationTransport()
        self.task_queue = task_queue

    # -----------------------------------------------------------------------
    # After-commit delivery
    # -----------------------------------------------------------------------

    async def after_commit(self, db: AsyncSession, name: str, send: SendFactory) -> None:
        """Run `send()` once `db` commits, or now when no queue is attached."""
        if self.task_queue is None:
            await send()
            return
        self._pending_for(db).append((self.task_queue, name, send))

    def _pending_for(self, db: AsyncSession) -> list[tuple[TaskQueue, str, SendFactory]]:
        session = db.sync_session
        pending = session.info.get(PENDING_SENDS_KEY)
        if pending is None:
            pending = session.info[PENDING_SENDS_KEY] = []
            event.listen(session, "after_commit", _release_pending)
            event.listen(session, "after_rollback", _discard_pending)
        return pending

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def _dispatch(self, user_id: uuid.UUID, notification: Notification) -> bool:
        try:
            await self.transport.send(user_id, notification)
            return True
        except Exception:
            logger.exception(
                "Notification delivery failed for user %s (%s)", user_id, notification.title
            )
            return False

    async def notify_order_placed(self, order: Order) -> None:
        await self._dispatch(
            order.user_id,
            Notification(
                title="Order placed",
                body=f"Your order #{order.id} has been received.",
                data={"type": "order_placed", "order_id": order.id},
            ),
        )

    async def announce_order_placed(self, db: AsyncSession, order: Order) -> None:
        """
        Owner confirmation and staff broadcast for a new order, sent after
        `db` commits. Recipients are looked up now, inside the transaction.
        """
        staff_ids = await self._staff_recipients(db, order)
        await self.after_commit(
            db, f"notify-order-placed-{order.id}", lambda: self.notify_order_placed(order)
        )
        await self.after_commit(
            db,
            f"notify-new-order-{order.id}",
            lambda: self._broadcast_new_order(order, staff_ids),
        )

    async def _staff_recipients(self, db: AsyncSession, order: Order) -> list[uuid.UUID]:
        try:
            result = await db.execute(
                select(User.id).where(
                    User.user_type.in_([UserType.STAFF, UserType.ADMIN]),
                    User.is_active.is_(True),
                )
            )
            return list(result.scalars().all())
        except Exception:
            logger.exception("Could not load staff recipients for order #%s", order.id)
            return []

    async def _broadcast_new_order(self, order: Order, staff_ids: list[uuid.UUID]) -> None:
        notification = Notification(
            title="New order",
            body=f"Order #{order.id} was just placed.",
            data={"type": "new_order", "order_id": order.id},
        )
        for staff_id in staff_ids:
            await self._dispatch(staff_id, notification)

    async def notify_order_status(self, order: Order, status: str) -> None:
        phrase = STATUS_MESSAGES.get(status, f"is now {status}")
        await self._dispatch(
            order.user_id,
            Notification(
                title="Order update",
                body=f"Your order #{order.id} {phrase}.",
                data={"type": "order_status", "order_id": order.id, "status": status},
            ),
        )

    async def notify_credits_shared(
        self, sender_id: uuid.UUID, amount_cents: int, recipient_phone: str
    ) -> None:
        await self._dispatch(
            sender_id,
            Notification(
                title="Credits redeemed",
                body=(
                    f"{amount_cents / 100:.2f} credits you sent to {recipient_phone} "
                    "were redeemed."
                ),
                data={"type": "credits_shared", "amount_cents": amount_cents},
            ),
        )

    async def notify_credits_purchased(self, user_id: uuid.UUID, amount_cents: int) -> None:
        await self._dispatch(
            user_id,
            Notification(
                title="Credits added",
                body=f"{amount_cents / 100:.2f} credits were added to your account.",
                data={"type": "credits_purchased", "amount_cents": amount_cents},
            ),
        )
