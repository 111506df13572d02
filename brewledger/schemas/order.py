"""
Pydantic schemas for Order endpoints.

Line prices are integer cents. The order total is always computed on the
server from the lines; a client may send `total_cents` as a cross-check,
in which case it must match.

Only the shape of the body is checked here. Line values (quantities,
prices, the total cross-check) are business rules enforced by
order_service, which rejects them as 400 `invalid_order`.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from brewledger.models.order import OrderStatus


class OrderLine(BaseModel):
    name: str
    quantity: int
    unit_price_cents: int
    size: str | None = Field(None, max_length=50)
    flavor: str | None = Field(None, max_length=100)


class OrderCreateRequest(BaseModel):
    """Request body for POST /orders."""
    items: list[OrderLine]
    total_cents: int | None = None


class OrderStatusUpdateRequest(BaseModel):
    """Request body for PATCH /orders/{id}/status."""
    status: OrderStatus


class OrderResponse(BaseModel):
    id: int
    user_id: uuid.UUID
    items: list[dict]
    total_cents: int
    status: str
    external_order_id: str | None
    external_state: str | None
    last_synced_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
