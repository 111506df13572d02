"""
Credit transfer service — SMS verification codes for gifting credits.

Flow:
  1. A member creates a transfer to a phone number. We check they can
     afford it, but do NOT debit: the recipient may never show up, and
     the sender keeps spending their credits in the meantime.
  2. The member's phone sends the recipient an SMS with a 6-digit code.
  3. The recipient shows the code at the counter. Staff redeem it, which
     debits the sender (through the ledger), marks the transfer verified
     and notifies the sender.
  4. Unredeemed transfers expire after CREDIT_TRANSFER_TTL_HOURS.
     Expiry only changes the status column; no money was ever held.

Redemption race:
  The sender's balance may have dropped since the code was issued, so
  redemption re-checks it in the same conditional UPDATE that debits it
  (ledger_service.debit). The ledger row carries the external id
  "credit-transfer-<id>", which is UNIQUE: two staff members redeeming
  the same code at the same moment can never both commit a debit. The
  loser sees TransferAlreadyUsedError.

Codes are unique among *pending* transfers only.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from brewledger.config import settings
from brewledger.exceptions import (
    DuplicateExternalTransactionError,
    InsufficientBalanceError,
    SelfTransferError,
    TransferAlreadyUsedError,
    TransferExpiredError,
    TransferNotFoundError,
    UserNotFoundError,
)
from brewledger.logging import get_logger
from brewledger.models.credit_transfer import PendingCreditTransfer, TransferStatus
from brewledger.models.user import User
from brewledger.services import ledger_service
from brewledger.services.notification_service import NotificationService

logger = get_logger(__name__)

MAX_CODE_ATTEMPTS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_phone(phone: str) -> str:
    return phone.replace(" ", "")


def generate_code(length: int | None = None) -> str:
    """A random numeric code with no leading zero."""
    length = length or settings.CREDIT_TRANSFER_CODE_LENGTH
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def sms_message(sender_name: str, amount_cents: int, code: str) -> str:
    return (
        f"{sender_name} sent you {amount_cents / 100:.2f} Bean Stalker credits! "
        f"Show code {code} at the counter to redeem. Valid for "
        f"{settings.CREDIT_TRANSFER_TTL_HOURS} hours."
    )


async def _unique_pending_code(db: AsyncSession) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_code()
        result = await db.execute(
            select(PendingCreditTransfer.id).where(
                PendingCreditTransfer.verification_code == code,
                PendingCreditTransfer.status == TransferStatus.PENDING.value,
            )
        )
        if result.first() is None:
            return code
    raise RuntimeError("Could not allocate a unique verification code")


async def create_transfer(
    db: AsyncSession,
    sender: User,
    recipient_phone: str,
    amount_cents: int,
) -> tuple[PendingCreditTransfer, str]:
    """
    Issue a verification code for a credit gift.

    Args:
        db: Database session.
        sender: The authenticated member sending credits.
        recipient_phone: Where the SMS goes. Need not be a registered user.
        amount_cents: Positive amount in cents.

    Returns:
        (transfer, sms_message)

    Raises:
        InsufficientBalanceError: If the sender can't cover the amount now.
        SelfTransferError: If the phone number is the sender's own.
    """
    phone = _normalize_phone(recipient_phone)
    if sender.phone_number and _normalize_phone(sender.phone_number) == phone:
        raise SelfTransferError()

    result = await db.execute(select(User.credits_cents).where(User.id == sender.id))
    available = result.scalar_one_or_none()
    if available is None:
        raise UserNotFoundError(sender.id)
    if available < amount_cents:
        raise InsufficientBalanceError(
            user_id=sender.id,
            requested_cents=amount_cents,
            available_cents=available,
        )

    code = await _unique_pending_code(db)
    transfer = PendingCreditTransfer(
        verification_code=code,
        sender_id=sender.id,
        recipient_phone=phone,
        amount_cents=amount_cents,
        status=TransferStatus.PENDING.value,
        expires_at=_utcnow() + timedelta(hours=settings.CREDIT_TRANSFER_TTL_HOURS),
    )
    db.add(transfer)
    await db.flush()

    logger.info("Credit transfer %s created by %s", transfer.id, sender.id)
    return transfer, sms_message(sender.username, amount_cents, code)


async def redeem(
    db: AsyncSession,
    code: str,
    staff_id: uuid.UUID,
    notifier: NotificationService,
) -> tuple[PendingCreditTransfer, User]:
    """
    Redeem a verification code at the counter.

    The checks run in this order: unknown code, already used, expired,
    then the sender's live balance inside the debit. Every rejection
    leaves all balances unchanged.

    Returns:
        (verified transfer, sender)

    Raises:
        TransferNotFoundError, TransferAlreadyUsedError,
        TransferExpiredError, InsufficientBalanceError
    """
    code = code.strip()
    result = await db.execute(
        select(PendingCreditTransfer)
        .where(PendingCreditTransfer.verification_code == code)
        .order_by(
            # A pending row wins over old rows that reused the code
            (PendingCreditTransfer.status == TransferStatus.PENDING.value).desc(),
            PendingCreditTransfer.created_at.desc(),
        )
        .limit(1)
        .with_for_update()
    )
    transfer = result.scalar_one_or_none()

    if transfer is None:
        raise TransferNotFoundError()
    if transfer.status == TransferStatus.VERIFIED.value:
        raise TransferAlreadyUsedError()
    if transfer.status == TransferStatus.EXPIRED.value:
        raise TransferExpiredError()

    now = _utcnow()
    if now > _as_utc(transfer.expires_at):
        raise TransferExpiredError()

    try:
        await ledger_service.debit(
            db,
            transfer.sender_id,
            transfer.amount_cents,
            f"Credits sent to {transfer.recipient_phone}",
            txn_type=ledger_service.TXN_CREDIT_SHARE,
            related_user_id=staff_id,
            external_transaction_id=f"credit-transfer-{transfer.id}",
            details={"transfer_id": transfer.id, "recipient_phone": transfer.recipient_phone},
        )
    except DuplicateExternalTransactionError as exc:
        raise TransferAlreadyUsedError() from exc

    marked = await db.execute(
        update(PendingCreditTransfer)
        .where(
            PendingCreditTransfer.id == transfer.id,
            PendingCreditTransfer.status == TransferStatus.PENDING.value,
        )
        .values(
            status=TransferStatus.VERIFIED.value,
            verified_at=now,
            verified_by_id=staff_id,
        )
    )
    if marked.rowcount != 1:
        raise TransferAlreadyUsedError()

    sender_result = await db.execute(select(User).where(User.id == transfer.sender_id))
    sender = sender_result.scalar_one()

    logger.info(
        "Credit transfer %s redeemed by staff %s (%d cents)",
        transfer.id, staff_id, transfer.amount_cents,
    )
    await notifier.after_commit(
        db,
        f"notify-credits-shared-{transfer.id}",
        lambda: notifier.notify_credits_shared(
            transfer.sender_id, transfer.amount_cents, transfer.recipient_phone
        ),
    )
    return transfer, sender


async def expire_stale_transfers(db: AsyncSession) -> int:
    """Mark every pending transfer past its expiry as expired. Returns the count."""
    result = await db.execute(
        update(PendingCreditTransfer)
        .where(
            PendingCreditTransfer.status == TransferStatus.PENDING.value,
            PendingCreditTransfer.expires_at < _utcnow(),
        )
        .values(status=TransferStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Expired %d stale credit transfers", result.rowcount)
    return result.rowcount or 0


async def list_for_sender(
    db: AsyncSession,
    sender_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[PendingCreditTransfer]:
    """A member's own transfers, newest first. Sweeps expiry first."""
    await expire_stale_transfers(db)
    result = await db.execute(
        select(PendingCreditTransfer)
        .where(PendingCreditTransfer.sender_id == sender_id)
        .order_by(PendingCreditTransfer.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def admin_list_transfers(
    db: AsyncSession,
    status_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    """
    [STAFF] All transfers with sender and verifier usernames attached.

    Returns plain dicts shaped like AdminCreditTransferResponse.
    """
    await expire_stale_transfers(db)

    sender = aliased(User)
    verifier = aliased(User)
    query = (
        select(PendingCreditTransfer, sender.username, verifier.username)
        .join(sender, sender.id == PendingCreditTransfer.sender_id)
        .outerjoin(verifier, verifier.id == PendingCreditTransfer.verified_by_id)
        .order_by(PendingCreditTransfer.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if status_filter:
        query = query.where(PendingCreditTransfer.status == status_filter)

    result = await db.execute(query)
    rows = []
    for transfer, sender_username, verifier_username in result.all():
        rows.append({
            "id": transfer.id,
            "verification_code": transfer.verification_code,
            "sender_id": transfer.sender_id,
            "recipient_phone": transfer.recipient_phone,
            "amount_cents": transfer.amount_cents,
            "status": transfer.status,
            "created_at": transfer.created_at,
            "expires_at": transfer.expires_at,
            "verified_at": transfer.verified_at,
            "verified_by_id": transfer.verified_by_id,
            "sender_username": sender_username,
            "verified_by_username": verifier_username,
        })
    return rows
