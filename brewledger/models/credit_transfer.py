"""
PendingCreditTransfer model — an SMS-redeemable gift of credits.

A member sends credits to a phone number. The recipient does not need an
account: they show the 6-digit code at the counter and a staff member
redeems it. The sender's credits are NOT held at creation time; the
ledger is only touched on redemption.

Status lifecycle:
    pending → verified   (redeemed by staff, sender debited once)
    pending → expired    (24h passed; never touches the ledger)

The verification code is only unique among *pending* transfers. Codes of
verified or expired transfers can be reissued, so the column is indexed
but not UNIQUE.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from brewledger.database import Base


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"


class PendingCreditTransfer(Base):
    __tablename__ = "pending_credit_transfers"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_credit_transfers_positive_amount"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    verification_code: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        index=True,
    )

    sender_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    recipient_phone: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )

    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=TransferStatus.PENDING.value,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    verified_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
