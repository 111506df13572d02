"""
CreditTransaction model — one immutable line of the credit ledger.

Every change to a user's `credits_cents` appends exactly one row here,
inside the same database transaction as the balance update. Rows are
never updated or deleted afterwards.

Key fields:
  - type: what caused the movement ("order", "purchase", "credit_share",
    "admin_credit", ...)
  - amount_cents: SIGNED. Negative is a debit, positive a credit
  - balance_after_cents: the balance written by this movement, captured
    at write time rather than recomputed later
  - external_transaction_id: idempotency key for receipts coming from a
    purchase flow, and for transfer redemptions. Unique when present
  - order_id / related_user_id / details: correlation metadata

Why amount_cents is signed here:
  The ledger invariant is "the running sum of amounts reproduces the
  balance". A signed amount makes that a plain SUM() with no CASE on the
  type column, and `type` is free to describe the business reason instead
  of just the direction.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column

from brewledger.database import Base


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    __table_args__ = (
        CheckConstraint("amount_cents != 0", name="ck_credit_transactions_nonzero_amount"),
        CheckConstraint(
            "balance_after_cents >= 0",
            name="ck_credit_transactions_non_negative_balance_after",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )

    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    balance_after_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    external_transaction_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )

    order_id: Mapped[int | None] = mapped_column(
        ForeignKey("orders.id"),
        nullable=True,
        index=True,
    )

    # Counterparty for transfers (sender's row points at the verifying staff)
    related_user_id: Mapped[uuid.UUID | None] = mapped_column(
        nullable=True,
    )

    details: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    # Indexed for newest-first history queries
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
