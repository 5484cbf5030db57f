"""
Custom exception classes and the FastAPI exception handler.

Why custom exceptions?
  The service layer raises domain-specific errors (like CodeExpiredError)
  without importing HTTP concepts. The handler registered here translates
  them into proper HTTP responses.

  This separation means:
    - Service code is testable without HTTP
    - Error responses are consistent across all endpoints
    - Adding new error types is straightforward

Every domain error carries a stable `error_type` tag alongside its
human-readable `detail`, so clients can branch on the kind of failure
without parsing messages.

Exception hierarchy:
    BankAPIError (base)
    ├── BankAccountNotFoundError        — account absent or owned by someone else
    ├── AlreadyVerifiedError            — add/verify on an already verified account
    ├── NoCodeIssuedError               — verify with no outstanding code
    ├── CodeMismatchError               — submitted code differs from stored code
    ├── CodeExpiredError                — code matched but its expiry has passed
    ├── NotVerifiedError                — promoting an unverified account
    ├── PrimaryAccountUndeletableError  — deleting the primary account
    ├── TransientPersistenceError       — timeout/contention, safe to retry
    ├── BankDirectoryError              — external bank directory failed
    ├── DuplicateEmailError             — signup with a registered email
    └── InvalidCredentialsError         — bad login
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankAPIError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 400
    error_type: str = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Bank account verification errors
# ---------------------------------------------------------------------------

class BankAccountNotFoundError(BankAPIError):
    """Raised when no bank account matches (user, account id)."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Bank account {account_id} not found")


class AlreadyVerifiedError(BankAPIError):
    """Raised when re-adding or re-verifying an account that is already verified."""

    status_code = 409
    error_type = "already_verified"

    def __init__(self, detail: str = "Bank account is already verified"):
        super().__init__(detail)


class NoCodeIssuedError(BankAPIError):
    status_code = 400
    error_type = "no_code_issued"

    def __init__(self):
        super().__init__("No verification code found. Please request a new one.")


class CodeMismatchError(BankAPIError):
    status_code = 400
    error_type = "code_mismatch"

    def __init__(self):
        super().__init__("Invalid verification code")


class CodeExpiredError(BankAPIError):
    """
    Raised when the submitted code matches but its expiry instant has passed.

    Attributes:
        expired_minutes_ago: Whole minutes between expiry and the check.
    """

    status_code = 400
    error_type = "code_expired"

    def __init__(self, expired_minutes_ago: int | None = None):
        self.expired_minutes_ago = expired_minutes_ago
        if expired_minutes_ago is None:
            super().__init__("Verification code has expired")
        else:
            super().__init__(
                f"Verification code expired {expired_minutes_ago} minute(s) ago"
            )


class NotVerifiedError(BankAPIError):
    status_code = 400
    error_type = "not_verified"

    def __init__(self):
        super().__init__("Only verified bank accounts can be set as primary")


class PrimaryAccountUndeletableError(BankAPIError):
    status_code = 409
    error_type = "primary_account_undeletable"

    def __init__(self):
        super().__init__(
            "Cannot delete primary bank account. Set another account as primary first."
        )


class TransientPersistenceError(BankAPIError):
    """
    Raised when the database times out or reports lock/serialization contention.

    The unit of work has been rolled back in full, so the caller may retry.
    """

    status_code = 503
    error_type = "transient"

    def __init__(self, detail: str = "The request could not be completed, please retry"):
        super().__init__(detail)


class BankDirectoryError(BankAPIError):
    """Raised when the external bank directory is unreachable or rejects a lookup."""

    status_code = 502
    error_type = "bank_directory_unavailable"


# ---------------------------------------------------------------------------
# Authentication errors
# ---------------------------------------------------------------------------

class DuplicateEmailError(BankAPIError):
    """Raised when attempting to register with an email that's already in use."""

    status_code = 409
    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(BankAPIError):
    """Raised when login credentials are incorrect."""

    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# FastAPI exception handler
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every BankAPIError is rendered with its own status code and a
    consistent JSON body: {"detail": "error message", "error_type": "kind"}

    This is called once during app startup in main.py.
    """

    @app.exception_handler(BankAPIError)
    async def bank_api_error_handler(
        request: Request, exc: BankAPIError
    ) -> JSONResponse:
        content = {"detail": exc.detail, "error_type": exc.error_type}
        headers = None
        if isinstance(exc, TransientPersistenceError):
            # Hint for well-behaved clients; the operation is safe to retry
            headers = {"Retry-After": "1"}
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=headers,
        )
