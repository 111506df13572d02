"""
Credit transfers router — gifting credits by SMS code.

Endpoints:
  POST /credit-transfers         — Create a transfer and get the SMS text
  GET  /credit-transfers         — List my transfers
  POST /credit-transfers/redeem  — [STAFF] Redeem a code at the counter

Redemption errors map to distinct statuses so the counter UI can say
what went wrong: 404 unknown code, 409 already used, 410 expired,
400 insufficient balance.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import get_current_user, get_notifier, require_staff
from brewledger.models.user import User
from brewledger.schemas.credit_transfer import (
    CreditTransferCreateRequest,
    CreditTransferCreatedResponse,
    CreditTransferRedeemRequest,
    CreditTransferRedeemResponse,
    CreditTransferResponse,
)
from brewledger.services import transfer_service
from brewledger.services.notification_service import NotificationService

router = APIRouter()


@router.post(
    "",
    response_model=CreditTransferCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send credits to a phone number",
)
async def create_transfer(
    request: CreditTransferCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a 6-digit code valid for 24 hours. The sender's credits are
    checked now but only debited when staff redeem the code.
    """
    transfer, message = await transfer_service.create_transfer(
        db, user, request.recipient_phone, request.amount_cents
    )
    return CreditTransferCreatedResponse(
        id=transfer.id,
        code=transfer.verification_code,
        sms_message=message,
        amount_cents=transfer.amount_cents,
        recipient_phone=transfer.recipient_phone,
        expires_at=transfer.expires_at,
    )


@router.get(
    "",
    response_model=list[CreditTransferResponse],
    summary="List my credit transfers",
)
async def list_my_transfers(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.list_for_sender(db, user.id, limit=limit, offset=offset)


@router.post(
    "/redeem",
    response_model=CreditTransferRedeemResponse,
    summary="[Staff] Redeem a transfer code",
)
async def redeem_transfer(
    request: CreditTransferRedeemRequest,
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    transfer, sender = await transfer_service.redeem(db, request.code, staff.id, notifier)
    return CreditTransferRedeemResponse(
        transfer_id=transfer.id,
        sender_username=sender.username,
        amount_cents=transfer.amount_cents,
        recipient_phone=transfer.recipient_phone,
        verified_at=transfer.verified_at,
    )
