"""
Sync router — manual triggers for the point-of-sale integration.

Endpoints:
  POST /sync/order/{order_id}  — [STAFF] (Re)run the mirror for one order
  POST /sync/reconcile         — [STAFF] Poll the platform for open orders
  GET  /sync/status            — [STAFF] Is the platform configured?

Platform failures surface here as 502 with `error_type` set, because a
person asked for the sync and needs to know it failed. The same failures
in the background mirror are only logged.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.config import PosPlatformConfig
from brewledger.database import get_db
from brewledger.dependencies import get_mirror, get_pos_config, get_reconciler, require_staff
from brewledger.models.user import User
from brewledger.schemas.sync import MirrorResponse, ReconcileResponse, SyncStatusResponse
from brewledger.services import order_service
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.reconciler_service import OrderReconciler

router = APIRouter()


@router.post(
    "/order/{order_id}",
    response_model=MirrorResponse,
    summary="[Staff] Mirror one order to the platform",
)
async def sync_order(
    order_id: int,
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    mirror: OrderMirror = Depends(get_mirror),
):
    """Safe to repeat: an already-mirrored order returns its stored external id."""
    external_order_id = await mirror.mirror(db, order_id)
    order = await order_service.get_order(db, order_id)
    return MirrorResponse(
        order_id=order_id,
        external_order_id=external_order_id,
        last_synced_at=order.last_synced_at,
    )


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    summary="[Staff] Pull platform state for open orders",
)
async def reconcile(
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    reconciler: OrderReconciler = Depends(get_reconciler),
):
    return await reconciler.reconcile_open_orders(db)


@router.get(
    "/status",
    response_model=SyncStatusResponse,
    summary="[Staff] Point-of-sale integration status",
)
async def sync_status(
    staff: User = Depends(require_staff),
    config: PosPlatformConfig = Depends(get_pos_config),
):
    return SyncStatusResponse(
        enabled=config.enabled,
        configured=config.is_configured,
        base_url=config.base_url,
        location_id=config.location_id,
        api_version=config.api_version,
        currency=config.currency,
        webhook_signature_configured=bool(config.webhook_signature_key),
    )
