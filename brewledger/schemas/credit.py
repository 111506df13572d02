"""
Pydantic schemas for ledger endpoints.

All monetary amounts are in integer cents (e.g., 37.50 credits = 3750).
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CreditTransactionResponse(BaseModel):
    """One immutable ledger line. amount_cents is negative for debits."""
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    amount_cents: int
    balance_after_cents: int
    description: str | None
    external_transaction_id: str | None
    order_id: int | None
    related_user_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    """
    Cached balance next to the balance recomputed from the ledger.

    `match` is False only if the projection and the log have drifted,
    which the ledger service is built to make impossible.
    """
    user_id: uuid.UUID
    credits_cents: int
    computed_balance_cents: int
    match: bool


class CreditPurchaseRequest(BaseModel):
    """Request body for POST /credits/purchases (an in-app purchase receipt)."""
    product_id: str = Field(min_length=1, max_length=100)
    transaction_id: str = Field(min_length=1, max_length=255)
    platform: Literal["ios", "android", "web"] = "ios"
    receipt: str | None = None


class CreditPurchaseResponse(BaseModel):
    product_id: str
    credited_cents: int
    credits_cents: int
    transaction: CreditTransactionResponse


class AdminCreditRequest(BaseModel):
    """Request body for POST /admin/users/{id}/credits."""
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")
    description: str = Field("Counter top-up", max_length=255)
