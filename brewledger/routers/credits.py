"""
Credits router — buying credits through an in-app purchase.

Endpoints:
  POST /credits/purchases — Apply a store receipt, exactly once

Receipt validation against the app stores happens on the client's
purchase flow before this call. What this endpoint guarantees is that
one store transaction id adds credits one time: a replayed receipt
gets 409 "already processed" and changes nothing.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import get_current_user, get_notifier
from brewledger.models.user import User
from brewledger.schemas.credit import (
    CreditPurchaseRequest,
    CreditPurchaseResponse,
    CreditTransactionResponse,
)
from brewledger.services import ledger_service
from brewledger.services.notification_service import NotificationService

router = APIRouter()


@router.post(
    "/purchases",
    response_model=CreditPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply an in-app purchase receipt",
)
async def apply_purchase(
    request: CreditPurchaseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    - **product_id**: membership, credits_10, credits_25, credits_50 or credits_100
    - **transaction_id**: the store's transaction id (idempotency key)
    """
    txn = await ledger_service.apply_purchase(
        db,
        user.id,
        request.product_id,
        request.transaction_id,
        platform=request.platform,
    )
    credited_cents = txn.amount_cents
    await notifier.after_commit(
        db,
        f"notify-credits-purchased-{txn.id}",
        lambda: notifier.notify_credits_purchased(user.id, credited_cents),
    )

    return CreditPurchaseResponse(
        product_id=request.product_id,
        credited_cents=txn.amount_cents,
        credits_cents=txn.balance_after_cents,
        transaction=CreditTransactionResponse.model_validate(txn),
    )
