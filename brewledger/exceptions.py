"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors without importing HTTP
concepts; the handlers registered here translate them into responses with
a consistent shape: {"detail": "...", "error_type": "..."}.

Three families exist, and they are handled differently:

  1. Business-rule rejections (insufficient balance, used/expired code,
     unknown product, illegal status move). Returned as 4xx. Never logged
     as errors.
  2. External-integration faults (ExternalPlatformError, MirrorError).
     Always logged by the component that hit them. Only surfaced as 502
     when an admin explicitly triggers a sync; never reach the customer
     order flow.
  3. Data-integrity faults (missing user/order/transfer). 404/409.

Exception hierarchy:
    BrewLedgerError (base)
    ├── InsufficientBalanceError          — debit larger than balance
    ├── DuplicateExternalTransactionError — receipt already processed
    ├── UserNotFoundError
    ├── OrderNotFoundError
    ├── InvalidOrderError                 — malformed lines / total mismatch
    ├── InvalidStatusTransitionError
    ├── TransferNotFoundError
    ├── TransferAlreadyUsedError
    ├── TransferExpiredError
    ├── SelfTransferError
    ├── UnknownProductError
    ├── UnauthorizedAccessError
    ├── DuplicateEmailError
    ├── InvalidCredentialsError
    └── ExternalPlatformError
        └── MirrorError
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BrewLedgerError(Exception):
    """Base exception for all domain errors."""

    status_code = 400
    error_type = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> dict:
        """Additional fields merged into the JSON error body."""
        return {}


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class InsufficientBalanceError(BrewLedgerError):
    """
    Raised when a debit would take a balance below zero.

    Attributes:
        user_id: The account that lacks credits.
        requested_cents: The amount the caller tried to debit.
        available_cents: The balance at the time of the attempt.
    """

    status_code = 400
    error_type = "insufficient_balance"

    def __init__(self, user_id: uuid.UUID, requested_cents: int, available_cents: int):
        self.user_id = user_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Insufficient credits: requested {requested_cents} cents, "
            f"available {available_cents} cents"
        )

    def extra(self) -> dict:
        return {
            "requested_cents": self.requested_cents,
            "available_cents": self.available_cents,
        }


class DuplicateExternalTransactionError(BrewLedgerError):
    """Raised when a purchase receipt's transaction id was already applied."""

    status_code = 409
    error_type = "already_processed"

    def __init__(self, external_transaction_id: str):
        self.external_transaction_id = external_transaction_id
        super().__init__(f"Transaction {external_transaction_id} already processed")


class UnknownProductError(BrewLedgerError):
    status_code = 400
    error_type = "unknown_product"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Unknown product {product_id}")


class UserNotFoundError(BrewLedgerError):
    """Raised when a referenced user account does not exist."""

    status_code = 404
    error_type = "user_not_found"

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderNotFoundError(BrewLedgerError):
    status_code = 404
    error_type = "order_not_found"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order #{order_id} not found")


class InvalidOrderError(BrewLedgerError):
    status_code = 400
    error_type = "invalid_order"


class InvalidStatusTransitionError(BrewLedgerError):
    """Raised when a status change would move a terminal or backwards."""

    status_code = 409
    error_type = "invalid_status_transition"

    def __init__(self, order_id: int, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order #{order_id} cannot move from {current} to {requested}"
        )


# ---------------------------------------------------------------------------
# Credit transfers
# ---------------------------------------------------------------------------

class TransferNotFoundError(BrewLedgerError):
    status_code = 404
    error_type = "transfer_not_found"

    def __init__(self):
        super().__init__("Invalid verification code")


class TransferAlreadyUsedError(BrewLedgerError):
    status_code = 409
    error_type = "transfer_already_used"

    def __init__(self):
        super().__init__("Code already used")


class TransferExpiredError(BrewLedgerError):
    status_code = 410
    error_type = "transfer_expired"

    def __init__(self):
        super().__init__("Verification code expired")


class SelfTransferError(BrewLedgerError):
    status_code = 400
    error_type = "self_transfer"

    def __init__(self):
        super().__init__("Cannot send credits to your own phone number")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class UnauthorizedAccessError(BrewLedgerError):
    """Raised when a user attempts to access a resource they don't own."""

    status_code = 403
    error_type = "unauthorized_access"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class DuplicateEmailError(BrewLedgerError):
    status_code = 409
    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(BrewLedgerError):
    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# External platform
# ---------------------------------------------------------------------------

class ExternalPlatformError(BrewLedgerError):
    """
    Network failure or non-2xx response from the point-of-sale platform.

    Attributes:
        status_code_upstream: HTTP status from the platform, None on
            network errors and timeouts.
        body: Response text, truncated.
    """

    status_code = 502
    error_type = "external_platform_error"

    def __init__(self, detail: str, status_code_upstream: int | None = None, body: str = ""):
        self.status_code_upstream = status_code_upstream
        self.body = body[:500]
        super().__init__(detail)

    def extra(self) -> dict:
        return {"upstream_status": self.status_code_upstream}


class MirrorError(ExternalPlatformError):
    """Raised when an order could not be projected into the platform."""

    error_type = "mirror_failed"

    def __init__(self, order_id: int, detail: str, status_code_upstream: int | None = None):
        self.order_id = order_id
        super().__init__(
            f"Order #{order_id} could not be mirrored: {detail}",
            status_code_upstream=status_code_upstream,
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Each exception class carries its own status code and error_type, so
    one handler covers the whole hierarchy.

    This is called once during app startup in main.py.
    """

    @app.exception_handler(BrewLedgerError)
    async def domain_error_handler(
        request: Request, exc: BrewLedgerError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type, **exc.extra()},
        )
