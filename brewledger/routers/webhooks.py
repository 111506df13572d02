"""
Webhooks router — order updates pushed by the point-of-sale platform.

Endpoints:
  POST /webhooks/external-platform — Unauthenticated, signature-checked

This endpoint always answers 200 while the process is up. A failed
delivery would make the platform retry, and a payload we can't use will
not get better on retry, so malformed, unsigned, unrelated and
uncorrelatable events are acknowledged with `processed: false`.
Unexpected errors while applying a valid event are logged, the session
is rolled back, and the delivery is still acknowledged.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import get_reconciler
from brewledger.logging import get_logger
from brewledger.schemas.sync import WebhookAck
from brewledger.services.reconciler_service import OrderReconciler

logger = get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


@router.post(
    "/external-platform",
    response_model=WebhookAck,
    summary="Receive a point-of-sale webhook",
)
async def receive_platform_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    reconciler: OrderReconciler = Depends(get_reconciler),
):
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        outcome = await reconciler.handle_webhook(db, raw_body, signature)
        await db.commit()
    except Exception:
        logger.exception("Webhook processing failed")
        await db.rollback()
        return WebhookAck(received=True, processed=False)

    return WebhookAck(
        received=True,
        processed=outcome.processed,
        order_id=outcome.order_id,
        status=outcome.status,
    )
