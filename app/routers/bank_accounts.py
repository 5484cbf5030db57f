"""
Bank accounts router — payout account registration and verification.

All endpoints require a JWT and are scoped to the authenticated user:

    POST   /bank-accounts                  — Add an account, email a code
    POST   /bank-accounts/{id}/verify      — Submit the emailed code
    GET    /bank-accounts                  — List own accounts
    POST   /bank-accounts/{id}/set-primary — Make a verified account primary
    DELETE /bank-accounts/{id}             — Delete a non-primary account

  Bank directory helpers (no state, proxied to the external directory):
    GET    /bank-accounts/banks            — Banks for a country
    POST   /bank-accounts/name-enquiry     — Resolve an account holder name

An account belonging to another user answers 404, exactly like a missing
one, so account ids can't be probed across users.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_bank_directory, get_current_user, get_notifier
from app.models.user import User
from app.schemas.bank_account import (
    BankAccountAddRequest,
    BankAccountAddResponse,
    BankAccountResponse,
    BankAccountVerifyRequest,
    BankAccountVerifyResponse,
    BankResponse,
    MessageResponse,
    NameEnquiryRequest,
    NameEnquiryResponse,
    SetPrimaryResponse,
)
from app.services import bank_account_service
from app.services.bank_directory import BankDirectoryClient
from app.services.notifier import Notifier

router = APIRouter()


# ---------------------------------------------------------------------------
# Bank directory (declared before /{account_id} routes)
# ---------------------------------------------------------------------------

@router.get(
    "/banks",
    response_model=list[BankResponse],
    summary="List banks for a country",
)
async def list_banks(
    country: str = Query(default=settings.DEFAULT_BANK_COUNTRY, min_length=2, max_length=2),
    user: User = Depends(get_current_user),
    directory: BankDirectoryClient = Depends(get_bank_directory),
):
    """Bank codes and names from the external directory, for the add-account form."""
    return await directory.list_banks(country.upper())


@router.post(
    "/name-enquiry",
    response_model=NameEnquiryResponse,
    summary="Resolve the holder name of an account",
)
async def name_enquiry(
    request: NameEnquiryRequest,
    user: User = Depends(get_current_user),
    directory: BankDirectoryClient = Depends(get_bank_directory),
):
    """
    Ask the external directory who holds an account.

    Purely a convenience for filling in the add-account form; the name is
    not checked again when the account is added.
    """
    account_name = await directory.resolve_account_name(
        request.bank_code, request.account_number,
    )
    return NameEnquiryResponse(
        bank_code=request.bank_code,
        account_number=request.account_number,
        account_name=account_name,
    )


# ---------------------------------------------------------------------------
# Account lifecycle
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=BankAccountAddResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a bank account (sends a verification code)",
)
async def add_bank_account(
    request: BankAccountAddRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Add a payout account and email a 6-digit code to the user.

    Re-adding an account that is still unverified sends a new code and
    invalidates the old one. Re-adding a verified account is rejected (409).
    The response only says how long the code is valid — never the code.
    """
    result = await bank_account_service.add_bank_account(
        db=db,
        user=user,
        account_number=request.account_number,
        account_name=request.account_name,
        bank_name=request.bank_name,
        bank_code=request.bank_code,
        notifier=notifier,
    )
    return BankAccountAddResponse(**result)


@router.post(
    "/{account_id}/verify",
    response_model=BankAccountVerifyResponse,
    summary="Verify a bank account with its code",
)
async def verify_bank_account(
    account_id: uuid.UUID,
    request: BankAccountVerifyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Submit the emailed code. The user's first verified account becomes primary.

    Errors carry an `error_type` of not_found, already_verified,
    no_code_issued, code_mismatch, code_expired or transient.
    """
    account = await bank_account_service.verify_bank_account(
        db, user.id, account_id, request.verification_code,
    )
    return BankAccountVerifyResponse(
        id=account.id,
        is_verified=account.is_verified,
        is_primary=account.is_primary,
    )


@router.get(
    "",
    response_model=list[BankAccountResponse],
    summary="List your bank accounts",
)
async def list_bank_accounts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Primary account first, then the rest newest first."""
    return await bank_account_service.get_bank_accounts(db, user.id)


@router.post(
    "/{account_id}/set-primary",
    response_model=SetPrimaryResponse,
    summary="Set a verified bank account as primary",
)
async def set_primary_bank_account(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The previous primary account, if any, is demoted in the same transaction."""
    account = await bank_account_service.set_primary_bank_account(
        db, user.id, account_id,
    )
    return SetPrimaryResponse(id=account.id, is_primary=account.is_primary)


@router.delete(
    "/{account_id}",
    response_model=MessageResponse,
    summary="Delete a bank account",
)
async def delete_bank_account(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deleting the primary account is refused (409); promote another one first."""
    await bank_account_service.delete_bank_account(db, user.id, account_id)
    return MessageResponse(message="Bank account deleted successfully")
