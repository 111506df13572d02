"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table when the lifespan runs create_all
  2. Other modules can import from brewledger.models directly
"""

from brewledger.models.user import User, UserType  # noqa: F401
from brewledger.models.order import Order, OrderStatus  # noqa: F401
from brewledger.models.credit_transaction import CreditTransaction  # noqa: F401
from brewledger.models.credit_transfer import PendingCreditTransfer, TransferStatus  # noqa: F401
