"""Pydantic schemas for the point-of-sale sync and webhook endpoints."""

from datetime import datetime

from pydantic import BaseModel


class MirrorResponse(BaseModel):
    order_id: int
    external_order_id: str
    last_synced_at: datetime | None


class ReconcileResponse(BaseModel):
    checked: int
    matched: int
    updated: int


class SyncStatusResponse(BaseModel):
    """Never carries the access token or the signature key."""
    enabled: bool
    configured: bool
    base_url: str
    location_id: str
    api_version: str
    currency: str
    webhook_signature_configured: bool


class WebhookAck(BaseModel):
    received: bool = True
    processed: bool = False
    order_id: int | None = None
    status: str | None = None
