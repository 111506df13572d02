"""
Pydantic schemas for credit-transfer endpoints.

A transfer is addressed to a phone number, not an account. The recipient
redeems it in person by showing the SMS code to staff.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class CreditTransferCreateRequest(BaseModel):
    """Request body for POST /credit-transfers."""
    recipient_phone: str = Field(pattern=r"^\+?[0-9 ]{6,20}$")
    amount_cents: int = Field(gt=0, description="Amount in cents (must be positive)")


class CreditTransferCreatedResponse(BaseModel):
    id: int
    code: str
    sms_message: str
    amount_cents: int
    recipient_phone: str
    expires_at: datetime


class CreditTransferRedeemRequest(BaseModel):
    """Request body for POST /credit-transfers/redeem."""
    code: str = Field(min_length=4, max_length=12)


class CreditTransferRedeemResponse(BaseModel):
    """Settlement summary shown to the staff member at the counter."""
    transfer_id: int
    sender_username: str
    amount_cents: int
    recipient_phone: str
    verified_at: datetime


class CreditTransferResponse(BaseModel):
    id: int
    verification_code: str
    sender_id: uuid.UUID
    recipient_phone: str
    amount_cents: int
    status: str
    created_at: datetime
    expires_at: datetime
    verified_at: datetime | None
    verified_by_id: uuid.UUID | None

    model_config = {"from_attributes": True}


class AdminCreditTransferResponse(CreditTransferResponse):
    """Transfer row enriched with usernames for the staff dashboard."""
    sender_username: str | None = None
    verified_by_username: str | None = None


class SweepResponse(BaseModel):
    expired: int
