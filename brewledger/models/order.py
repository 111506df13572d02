"""
Order model — a paid-for coffee order and its mirror state.

An order is created in the same database transaction as the ledger debit
of its total, so an order row always implies the credits were taken.

Line items are stored as a JSON list of
    {"name", "quantity", "unit_price_cents", "size", "flavor"}
because they are a snapshot of what was bought, never queried by field.

Status lifecycle (see brewledger.services.order_service):
    pending → processing → preparing → ready → completed
    any non-terminal status → cancelled

External mirror state:
  `external_order_id`, `external_state` and `last_synced_at` record the
  order's projection into the point-of-sale platform. They are NULL until
  the mirror succeeds. The local id is also embedded in the external
  order (reference id, fulfillment note, line-item notes), so the link
  can be rebuilt from the platform side alone.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column

from brewledger.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="ck_orders_non_negative_total"),
    )

    # Integer ids: staff read them out loud ("order #52") and the platform
    # notes carry them as text
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    items: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
    )

    total_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING.value,
        index=True,
    )

    external_order_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    external_state: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
