"""
Users router — the authenticated member's profile and wallet.

Endpoints:
  GET /users/me               — Profile including current credit balance
  GET /users/me/transactions  — Ledger history, newest first
  GET /users/me/balance       — Cached balance next to the ledger sum
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from brewledger.database import get_db
from brewledger.dependencies import get_current_user
from brewledger.models.user import User
from brewledger.schemas.credit import BalanceResponse, CreditTransactionResponse
from brewledger.schemas.user import UserResponse
from brewledger.services import ledger_service

router = APIRouter()


@router.get("/me", response_model=UserResponse, summary="Get my profile")
async def get_me(user: User = Depends(get_current_user)):
    return user


@router.get(
    "/me/transactions",
    response_model=list[CreditTransactionResponse],
    summary="List my credit transactions",
)
async def list_my_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Debits carry a negative amount_cents. Newest first."""
    return await ledger_service.transactions_for(db, user.id, limit=limit, offset=offset)


@router.get(
    "/me/balance",
    response_model=BalanceResponse,
    summary="Get my balance with a ledger cross-check",
)
async def get_my_balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.balance_summary(db, user.id)
