"""
Admin router — staff dashboard reads and admin-only adjustments.

Endpoints:
  GET  /admin/users                          — [STAFF] Users and balances
  GET  /admin/users/{user_id}/transactions   — [STAFF] Any user's ledger
  POST /admin/users/{user_id}/credits        — [ADMIN] Counter top-up
  GET  /admin/orders                         — [STAFF] All orders
  GET  /admin/credit-transfers               — [STAFF] All transfers
  POST /admin/credit-transfers/sweep         — [ADMIN] Expire stale codes

By consolidating admin routes in one router, we avoid route-ordering
conflicts between routers sharing a prefix.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import get_notifier, require_admin, require_staff
from brewledger.models.credit_transfer import TransferStatus
from brewledger.models.order import OrderStatus
from brewledger.models.user import User
from brewledger.schemas.credit import AdminCreditRequest, CreditTransactionResponse
from brewledger.schemas.credit_transfer import AdminCreditTransferResponse, SweepResponse
from brewledger.schemas.order import OrderResponse
from brewledger.schemas.user import UserResponse
from brewledger.services import ledger_service, order_service, transfer_service
from brewledger.services.notification_service import NotificationService

router = APIRouter()


# ---------------------------------------------------------------------------
# Users and ledger
# ---------------------------------------------------------------------------

@router.get(
    "/users",
    response_model=list[UserResponse],
    summary="[Staff] List all users",
)
async def admin_list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.admin_list_users(db, limit=limit, offset=offset)


@router.get(
    "/users/{user_id}/transactions",
    response_model=list[CreditTransactionResponse],
    summary="[Staff] List any user's credit transactions",
)
async def admin_user_transactions(
    user_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.admin_transactions_for(db, user_id, limit=limit, offset=offset)


@router.post(
    "/users/{user_id}/credits",
    response_model=CreditTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Add credits to a user",
)
async def admin_add_credits(
    user_id: uuid.UUID,
    request: AdminCreditRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Top up a member's balance at the counter (cash or card paid in store)."""
    txn = await ledger_service.credit(
        db,
        user_id,
        request.amount_cents,
        request.description,
        txn_type=ledger_service.TXN_ADMIN_CREDIT,
        related_user_id=admin.id,
    )
    await notifier.after_commit(
        db,
        f"notify-credits-added-{txn.id}",
        lambda: notifier.notify_credits_purchased(user_id, request.amount_cents),
    )
    return txn


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@router.get(
    "/orders",
    response_model=list[OrderResponse],
    summary="[Staff] List all orders",
)
async def admin_list_orders(
    status_filter: OrderStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await order_service.admin_list_orders(
        db,
        status_filter=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Credit transfers
# ---------------------------------------------------------------------------

@router.get(
    "/credit-transfers",
    response_model=list[AdminCreditTransferResponse],
    summary="[Staff] List all credit transfers",
)
async def admin_list_transfers(
    status_filter: TransferStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.admin_list_transfers(
        db,
        status_filter=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/credit-transfers/sweep",
    response_model=SweepResponse,
    summary="[Admin] Expire stale credit transfers",
)
async def admin_sweep_transfers(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return SweepResponse(expired=await transfer_service.expire_stale_transfers(db))
