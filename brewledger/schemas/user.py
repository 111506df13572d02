"""Pydantic schemas for user profile endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel

from brewledger.models.user import UserType


class UserResponse(BaseModel):
    """Public representation of a user, including the wallet balance."""
    id: uuid.UUID
    email: str
    username: str
    full_name: str | None
    phone_number: str | None
    user_type: UserType
    credits_cents: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
