"""
Ledger service — the core credit-balance business logic.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. Every credit-affecting
action in the system (orders, transfer redemptions, purchases, counter
top-ups) writes through `debit()` or `credit()` here. Nothing else is
allowed to touch `User.credits_cents`.

Atomicity:
  Each mutation updates the balance on the user row and appends the
  matching CreditTransaction inside the SAME database transaction. If
  either fails, both are rolled back by the request's session dependency.
  This guarantees that `credits_cents` always equals the running sum of
  the user's ledger rows.

The check-then-debit race:
  A naive debit reads the balance, compares, then writes. Two concurrent
  orders can both read 100, both pass "100 >= 60", and both write. We
  never read-then-write. The debit is one conditional statement:

      UPDATE users
         SET credits_cents = credits_cents - :amount
       WHERE id = :id AND credits_cents >= :amount
   RETURNING credits_cents

  Zero rows back means the balance was too low at the instant the
  database evaluated the row; nothing was written. On SQLite, every
  transaction also starts with BEGIN IMMEDIATE (see database.py), so two
  writers cannot interleave at all. On PostgreSQL the row lock taken by
  the UPDATE serializes them and the WHERE clause is re-evaluated against
  the committed balance.

  The CHECK (credits_cents >= 0) constraint on users is the final safety
  net against bugs.

Idempotency:
  `external_transaction_id` is UNIQUE. Purchase receipts use the store's
  transaction id; transfer redemptions use "credit-transfer-<id>". A
  repeated key raises DuplicateExternalTransactionError and, because the
  session rolls back, the balance change of the duplicate is undone too.

Admin read-only functions:
  Functions prefixed with `admin_` read across all users without scoping.
"""

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.exceptions import (
    DuplicateExternalTransactionError,
    InsufficientBalanceError,
    UnknownProductError,
    UserNotFoundError,
)
from brewledger.logging import get_logger
from brewledger.models.credit_transaction import CreditTransaction
from brewledger.models.user import User

logger = get_logger(__name__)


# Ledger row types
TXN_ORDER = "order"
TXN_PURCHASE = "purchase"
TXN_CREDIT_SHARE = "credit_share"
TXN_ADMIN_CREDIT = "admin_credit"
TXN_REFUND = "refund"

# In-app purchase products and the credits each one grants, in cents
CREDIT_PRODUCTS: dict[str, int] = {
    "membership": 6900,
    "credits_10": 1000,
    "credits_25": 2500,
    "credits_50": 5000,
    "credits_100": 10000,
}


async def debit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount_cents: int,
    description: str,
    *,
    txn_type: str,
    order_id: int | None = None,
    related_user_id: uuid.UUID | None = None,
    external_transaction_id: str | None = None,
    details: dict | None = None,
) -> CreditTransaction:
    """
    Take `amount_cents` from a user's balance and record it.

    The balance check and the write are a single conditional UPDATE, so
    two concurrent debits can never both pass against the same balance.

    Args:
        db: Database session. The caller's transaction owns the commit.
        user_id: The wallet to debit.
        amount_cents: Positive integer amount in cents.
        description: Free-text memo shown in the member's history.
        txn_type: Business reason, e.g. TXN_ORDER.
        order_id / related_user_id / details: Correlation metadata.
        external_transaction_id: Optional idempotency key.

    Returns:
        The appended CreditTransaction (amount_cents is negative).

    Raises:
        InsufficientBalanceError: If balance < amount. Nothing is written.
        UserNotFoundError: If the user doesn't exist.
        DuplicateExternalTransactionError: If the idempotency key was used.
    """
    if amount_cents <= 0:
        raise ValueError("amount_cents must be positive")

    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits_cents >= amount_cents)
        .values(credits_cents=User.credits_cents - amount_cents)
        .returning(User.credits_cents)
    )
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        available = await _current_balance(db, user_id)
        raise InsufficientBalanceError(
            user_id=user_id,
            requested_cents=amount_cents,
            available_cents=available,
        )

    return await _append(
        db,
        user_id=user_id,
        amount_cents=-amount_cents,
        balance_after_cents=new_balance,
        description=description,
        txn_type=txn_type,
        order_id=order_id,
        related_user_id=related_user_id,
        external_transaction_id=external_transaction_id,
        details=details,
    )


async def credit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount_cents: int,
    description: str,
    *,
    txn_type: str,
    order_id: int | None = None,
    related_user_id: uuid.UUID | None = None,
    external_transaction_id: str | None = None,
    details: dict | None = None,
) -> CreditTransaction:
    """
    Add `amount_cents` to a user's balance and record it.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        DuplicateExternalTransactionError: If the idempotency key was used.
    """
    if amount_cents <= 0:
        raise ValueError("amount_cents must be positive")

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits_cents=User.credits_cents + amount_cents)
        .returning(User.credits_cents)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        raise UserNotFoundError(user_id)

    return await _append(
        db,
        user_id=user_id,
        amount_cents=amount_cents,
        balance_after_cents=new_balance,
        description=description,
        txn_type=txn_type,
        order_id=order_id,
        related_user_id=related_user_id,
        external_transaction_id=external_transaction_id,
        details=details,
    )


async def _current_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(select(User.credits_cents).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise UserNotFoundError(user_id)
    return balance


async def _append(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount_cents: int,
    balance_after_cents: int,
    description: str,
    txn_type: str,
    order_id: int | None,
    related_user_id: uuid.UUID | None,
    external_transaction_id: str | None,
    details: dict | None,
) -> CreditTransaction:
    txn = CreditTransaction(
        user_id=user_id,
        type=txn_type,
        amount_cents=amount_cents,
        balance_after_cents=balance_after_cents,
        description=description,
        order_id=order_id,
        related_user_id=related_user_id,
        external_transaction_id=external_transaction_id,
        details=details,
    )
    db.add(txn)
    try:
        await db.flush()
    except IntegrityError as exc:
        # The only unique column on the row is the external id
        if external_transaction_id is None:
            raise
        raise DuplicateExternalTransactionError(external_transaction_id) from exc
    return txn


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def transactions_for(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[CreditTransaction]:
    """List a user's ledger rows, newest first."""
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def find_by_external_id(
    db: AsyncSession,
    external_transaction_id: str,
) -> CreditTransaction | None:
    """Return the ledger row carrying this idempotency key, if any."""
    result = await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.external_transaction_id == external_transaction_id
        )
    )
    return result.scalar_one_or_none()


async def compute_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Recompute a balance from the ledger alone (SUM of signed amounts)."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount_cents), 0)).where(
            CreditTransaction.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def balance_summary(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """
    Compare the cached balance on the user row with the ledger sum.

    Returns:
        {"user_id", "credits_cents", "computed_balance_cents", "match"}
    """
    cached = await _current_balance(db, user_id)
    computed = await compute_balance(db, user_id)
    return {
        "user_id": user_id,
        "credits_cents": cached,
        "computed_balance_cents": computed,
        "match": cached == computed,
    }


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------

async def apply_purchase(
    db: AsyncSession,
    user_id: uuid.UUID,
    product_id: str,
    transaction_id: str,
    platform: str = "ios",
) -> CreditTransaction:
    """
    Credit a user for an in-app purchase receipt, exactly once.

    Store-side receipt validation happens before this is called; here we
    only guarantee that one store transaction id credits one time.

    Raises:
        UnknownProductError: If the product isn't in CREDIT_PRODUCTS.
        DuplicateExternalTransactionError: If the receipt was already applied.
    """
    amount_cents = CREDIT_PRODUCTS.get(product_id)
    if amount_cents is None:
        raise UnknownProductError(product_id)

    if await find_by_external_id(db, transaction_id) is not None:
        raise DuplicateExternalTransactionError(transaction_id)

    txn = await credit(
        db,
        user_id,
        amount_cents,
        f"Purchased {product_id}",
        txn_type=TXN_PURCHASE,
        external_transaction_id=transaction_id,
        details={"product_id": product_id, "platform": platform},
    )
    logger.info(
        "Applied purchase %s for user %s (+%d cents)", product_id, user_id, amount_cents
    )
    return txn


# ---------------------------------------------------------------------------
# Admin read-only functions
# ---------------------------------------------------------------------------

async def admin_list_users(
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
) -> list[User]:
    """[ADMIN ONLY] List all users with their balances."""
    result = await db.execute(
        select(User).order_by(User.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def admin_transactions_for(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[CreditTransaction]:
    """[ADMIN ONLY] List any user's ledger rows after checking they exist."""
    await _current_balance(db, user_id)
    return await transactions_for(db, user_id, limit=limit, offset=offset)
