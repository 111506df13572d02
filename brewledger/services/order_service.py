"""
Order service — order creation and the status state machine.

Creation:
  The order row and the ledger debit of its total are written in the
  same database transaction. If the debit is refused (insufficient
  credits) the request's session rolls back and the order row goes with
  it; there is never an order without its debit or a debit without its
  order.

  After the write, the owner and every staff account are notified, and
  a mirror job is put on the background TaskQueue. Neither of those can
  fail the request: notifications swallow their own errors and the
  mirror runs later, out of band.

Status transitions:
    pending → processing → preparing → ready → completed
    any non-terminal status → cancelled

  A change must move strictly forward (or to cancelled). `completed` and
  `cancelled` are terminal. Requesting the status an order already has
  is a no-op: nothing is written, no timestamp moves and no notification
  is sent. Staff edits and the reconciler both go through `set_status`,
  so a webhook that repeats what a barista already clicked does nothing.

  Cancelling does not refund the order's credits.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.config import settings
from brewledger.exceptions import (
    InvalidOrderError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    UnauthorizedAccessError,
)
from brewledger.logging import get_logger
from brewledger.models.order import Order, OrderStatus
from brewledger.models.user import User
from brewledger.services import ledger_service
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.notification_service import NotificationService
from brewledger.services.task_queue import TaskQueue

logger = get_logger(__name__)


STATUS_RANK: dict[str, int] = {
    OrderStatus.PENDING.value: 0,
    OrderStatus.PROCESSING.value: 1,
    OrderStatus.PREPARING.value: 2,
    OrderStatus.READY.value: 3,
    OrderStatus.COMPLETED.value: 4,
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})

OPEN_STATUSES = tuple(
    status for status in STATUS_RANK if status not in TERMINAL_STATUSES
)

MAX_LINE_QUANTITY = 100
MAX_ITEM_NAME_LENGTH = 200


def can_transition(current: str, new: str) -> bool:
    """True if an order in `current` may move to `new` (new != current)."""
    if current in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.CANCELLED.value:
        return True
    if new not in STATUS_RANK or current not in STATUS_RANK:
        return False
    return STATUS_RANK[new] > STATUS_RANK[current]


def _normalize_lines(
    items: list[dict],
    expected_total_cents: int | None = None,
) -> tuple[list[dict], int]:
    """Validate order lines and return (stored lines, total in cents)."""
    if not items:
        raise InvalidOrderError("An order needs at least one item")

    lines = []
    total_cents = 0
    for item in items:
        name = (item.get("name") or "").strip()
        quantity = item.get("quantity")
        unit_price_cents = item.get("unit_price_cents")
        if not name or len(name) > MAX_ITEM_NAME_LENGTH:
            raise InvalidOrderError(
                f"Each item needs a name of at most {MAX_ITEM_NAME_LENGTH} characters"
            )
        if not isinstance(quantity, int) or not 0 < quantity <= MAX_LINE_QUANTITY:
            raise InvalidOrderError(
                f"Each item needs a quantity between 1 and {MAX_LINE_QUANTITY}"
            )
        if not isinstance(unit_price_cents, int) or unit_price_cents < 0:
            raise InvalidOrderError("Each item needs a non-negative unit_price_cents")
        lines.append({
            "name": name,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "size": item.get("size"),
            "flavor": item.get("flavor"),
        })
        total_cents += quantity * unit_price_cents

    if total_cents <= 0:
        raise InvalidOrderError("Order total must be positive")
    if expected_total_cents is not None and expected_total_cents != total_cents:
        raise InvalidOrderError(
            f"total_cents {expected_total_cents} does not match line total {total_cents}"
        )
    return lines, total_cents


async def create_order(
    db: AsyncSession,
    user_id: uuid.UUID,
    items: list[dict],
    notifier: NotificationService,
    task_queue: TaskQueue | None = None,
    mirror: OrderMirror | None = None,
    expected_total_cents: int | None = None,
) -> Order:
    """
    Place an order paid from the user's credit balance.

    Args:
        db: Database session. Order insert and debit share its transaction.
        user_id: The paying member.
        items: Lines as {"name", "quantity", "unit_price_cents", "size", "flavor"}.
        notifier: Notification service for owner/staff messages.
        task_queue / mirror: When both are given, a mirror job is scheduled.
        expected_total_cents: Optional client total; must equal the line total.

    Returns:
        The new Order (status "pending").

    Raises:
        InvalidOrderError: If the lines are malformed, the total is zero or
            it differs from `expected_total_cents`.
        InsufficientBalanceError: If the balance doesn't cover the total.
    """
    lines, total_cents = _normalize_lines(items, expected_total_cents)

    order = Order(
        user_id=user_id,
        items=lines,
        total_cents=total_cents,
        status=OrderStatus.PENDING.value,
    )
    db.add(order)
    # Flush to get order.id for the ledger description and correlation
    await db.flush()

    await ledger_service.debit(
        db,
        user_id,
        total_cents,
        f"Order #{order.id}",
        txn_type=ledger_service.TXN_ORDER,
        order_id=order.id,
    )
    logger.info("Order #%s placed by %s for %d cents", order.id, user_id, total_cents)

    await notifier.announce_order_placed(db, order)

    if task_queue is not None and mirror is not None:
        schedule_mirror(task_queue, mirror, order.id)

    return order


def schedule_mirror(task_queue: TaskQueue, mirror: OrderMirror, order_id: int) -> None:
    """Queue an out-of-band mirror of `order_id` with bounded retries."""
    task_queue.enqueue(
        f"mirror-order-{order_id}",
        mirror.job(order_id),
        delay=settings.MIRROR_DELAY_SECONDS,
        retry_delay=settings.MIRROR_RETRY_DELAY_SECONDS,
        max_attempts=settings.MIRROR_MAX_ATTEMPTS,
    )


async def set_status(
    db: AsyncSession,
    order_id: int,
    new_status: str,
    notifier: NotificationService,
) -> tuple[Order, bool]:
    """
    Move an order to `new_status`.

    Returns:
        (order, changed). `changed` is False for the same-status no-op.

    Raises:
        OrderNotFoundError: If the order doesn't exist.
        InvalidStatusTransitionError: If the move is backwards or leaves
            a terminal status.
    """
    result = await db.execute(
        select(Order).where(Order.id == order_id).with_for_update()
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)

    if order.status == new_status:
        return order, False

    if not can_transition(order.status, new_status):
        raise InvalidStatusTransitionError(order_id, order.status, new_status)

    previous = order.status
    order.status = new_status
    await db.flush()
    logger.info("Order #%s: %s -> %s", order_id, previous, new_status)

    await notifier.after_commit(
        db,
        f"notify-order-status-{order_id}-{new_status}",
        lambda: notifier.notify_order_status(order, new_status),
    )
    return order, True


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


async def get_order_for(db: AsyncSession, order_id: int, user: User) -> Order:
    """Get an order, visible to its owner and to staff only."""
    order = await get_order(db, order_id)
    if order.user_id != user.id and not user.is_staff:
        raise UnauthorizedAccessError("You do not have access to this order")
    return order


async def list_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_open_orders(db: AsyncSession) -> list[Order]:
    """Orders the kitchen still has to act on, oldest first."""
    result = await db.execute(
        select(Order)
        .where(Order.status.in_(OPEN_STATUSES))
        .order_by(Order.created_at.asc())
    )
    return list(result.scalars().all())


async def admin_list_orders(
    db: AsyncSession,
    status_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    """[STAFF] List all orders, newest first, optionally by status."""
    query = (
        select(Order)
        .order_by(Order.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if status_filter:
        query = query.where(Order.status == status_filter)
    result = await db.execute(query)
    return list(result.scalars().all())
