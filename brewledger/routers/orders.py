"""
Orders router — placing orders and moving them through the kitchen.

Endpoints:
  POST  /orders              — Place an order paid from credits
  GET   /orders              — List my orders
  GET   /orders/{id}         — Get one order (owner or staff)
  PATCH /orders/{id}/status  — [STAFF] Change an order's status

Placing an order debits the member's credits in the same transaction as
the order insert. Mirroring to the point-of-sale platform is queued and
never delays or fails this response.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import (
    get_current_user,
    get_mirror,
    get_notifier,
    get_task_queue,
    require_staff,
)
from brewledger.models.user import User
from brewledger.schemas.order import OrderCreateRequest, OrderResponse, OrderStatusUpdateRequest
from brewledger.services import order_service
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.notification_service import NotificationService
from brewledger.services.task_queue import TaskQueue

router = APIRouter()


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    request: OrderCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
    task_queue: TaskQueue = Depends(get_task_queue),
    mirror: OrderMirror = Depends(get_mirror),
):
    """
    Place an order. The total is computed from the lines.

    - **items**: at least one line with name, quantity and unit_price_cents
    - **total_cents**: optional cross-check; must equal the computed total

    Returns 400 `insufficient_balance` if the credits don't cover it, and
    400 `invalid_order` for malformed lines or a mismatched total.
    """
    return await order_service.create_order(
        db,
        user.id,
        [line.model_dump() for line in request.items],
        notifier,
        task_queue=task_queue,
        mirror=mirror,
        expected_total_cents=request.total_cents,
    )


@router.get("", response_model=list[OrderResponse], summary="List my orders")
async def list_my_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await order_service.list_for_user(db, user.id, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
async def get_order(
    order_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await order_service.get_order_for(db, order_id, user)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="[Staff] Change an order's status",
)
async def update_order_status(
    order_id: int,
    request: OrderStatusUpdateRequest,
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    Move an order forward (or cancel it).

    Setting the status the order already has is a no-op: 200 with the
    unchanged order and no notification. Backward moves and changes to a
    completed or cancelled order return 409.
    """
    order, _ = await order_service.set_status(db, order_id, request.status.value, notifier)
    return order
