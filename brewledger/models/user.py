"""
User model — the authentication identity and the credit wallet.

Each User is a login credential (email + hashed password) with a role, and
it owns exactly one store-credit balance. Unlike a bank with many accounts
per customer, a coffee-shop member has a single wallet, so the balance
lives directly on this row as `credits_cents`.

User types:
  - ADMIN: Full access, including credit adjustments and data sweeps
  - STAFF: Counter staff. Redeems transfer codes and moves orders along
  - MEMBER: Customer, the default role for signup

Balance management:
  `credits_cents` is a projection of the credit ledger. It is only ever
  changed by brewledger.services.ledger_service, in the same database
  transaction that appends the matching CreditTransaction row.

  A CHECK constraint enforces that the balance can never go negative.
  The ledger's conditional UPDATE already refuses overdrafts; the
  constraint is the final safety net against bugs.

  `phone_number` is how an incoming credit transfer is addressed, but a
  transfer recipient does not need to be registered at all.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, Integer, DateTime, Enum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from brewledger.database import Base


class UserType(str, enum.Enum):
    """
    Defines the role a user holds within the shop.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    ADMIN = "admin"     # Owner or manager, full access
    STAFF = "staff"     # Barista: redeems codes and updates orders
    MEMBER = "member"   # Customer, the signup default


class User(Base):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "credits_cents >= 0",
            name="ck_users_non_negative_credits",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Email is the login identifier: unique and indexed
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    # Display handle, shown to staff when a transfer is redeemed
    username: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    full_name: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    phone_number: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        index=True,
    )

    user_type: Mapped[UserType] = mapped_column(
        Enum(UserType),
        default=UserType.MEMBER,
        nullable=False,
    )

    # Store-credit balance in cents (100 credits == 10000)
    credits_cents: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Soft-disable: deactivated users can't log in but their ledger is preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_staff(self) -> bool:
        """Staff and admin accounts both carry the staff flag."""
        return self.user_type in (UserType.STAFF, UserType.ADMIN)
