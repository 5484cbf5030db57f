"""
Bank account service — one-time-code verification and the primary account rule.

THIS IS THE CORE OF THE PROJECT. It handles:
  - Issuing a verification code when a user adds (or re-adds) an account
  - Validating a submitted code and marking the account verified
  - Keeping exactly one verified account per user flagged as primary
  - Listing, promoting and deleting accounts

The primary invariant:
  For every user, at most one bank account has is_primary = true, and that
  account is verified. Two code paths can change the flag:
    - claim_if_first(): during verification, the account becomes primary
      only if it is now the user's ONLY verified account
    - set_primary_bank_account(): explicit promotion, which clears the flag
      on every other account in the same transaction

  Both are check-then-act sequences ("count verified, then set" and "clear
  all, then set one"). Run unguarded, two concurrent verifications could
  each see a count of 1 and both claim primary. Every mutating operation
  therefore starts by locking the user's row and then all of the user's
  bank-account rows (SELECT ... FOR UPDATE, ordered by id for a consistent
  lock order), so mutations for one user are serialized while different
  users never contend. The partial unique index on bank_accounts backs
  this up at the database level.

SQLite note:
  SQLite doesn't support SELECT ... FOR UPDATE, so the with_for_update()
  calls are no-ops there. Serialization comes from the engine instead:
  enable_sqlite_write_locking() opens every transaction with
  BEGIN IMMEDIATE, so a unit of work holds the database write lock before
  its first read and a concurrent one waits for it to commit.

Transactions:
  Each mutating operation runs inside persistence_guard(), which bounds it
  in time, rolls back on any error (no half-verified account is ever
  visible) and commits explicitly before returning. The verification email
  is sent only after the commit that stored the code.
"""

import logging
import uuid

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import persistence_guard
from app.exceptions import (
    AlreadyVerifiedError,
    BankAccountNotFoundError,
    CodeExpiredError,
    CodeMismatchError,
    NoCodeIssuedError,
    NotVerifiedError,
    PrimaryAccountUndeletableError,
)
from app.models.bank_account import BankAccount
from app.models.user import User
from app.security import (
    as_utc,
    generate_verification_code,
    is_code_expired,
    utcnow,
    verification_code_expires_at,
)
from app.services.notifier import Notifier


logger = logging.getLogger(__name__)


async def _lock_user_accounts(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> list[BankAccount]:
    """
    Lock the user and every bank account they own, and return the accounts.

    The user row is locked first so that operations on a user with no
    accounts yet (the first add) serialize as well.
    """
    await db.execute(
        select(User.id)
        .where(User.id == user_id)
        .with_for_update()  # PostgreSQL row lock; SQLite already holds the write lock
    )
    result = await db.execute(
        select(BankAccount)
        .where(BankAccount.user_id == user_id)
        .order_by(BankAccount.id)
        .with_for_update()
    )
    return list(result.scalars().all())


def _owned(
    accounts: list[BankAccount],
    account_id: uuid.UUID,
) -> BankAccount:
    for account in accounts:
        if account.id == account_id:
            return account
    # Someone else's account is indistinguishable from a missing one
    raise BankAccountNotFoundError(account_id)


# ---------------------------------------------------------------------------
# Verification engine
# ---------------------------------------------------------------------------

async def add_bank_account(
    db: AsyncSession,
    user: User,
    account_number: str,
    account_name: str,
    bank_name: str,
    bank_code: str,
    notifier: Notifier,
    ttl_minutes: int | None = None,
) -> dict:
    """
    Register an account (or refresh a pending one) and send it a fresh code.

    If (user, account_number, bank_code) already exists unverified, that row
    is reused: descriptive fields are overwritten and the previous code is
    replaced, so it can no longer be used. No duplicate row is created.

    The code itself is never returned — it is handed to the notifier after
    the transaction commits. Notifier failures are logged, not raised: the
    code is already stored and the user can simply request a new one.

    Args:
        db: Database session.
        user: The authenticated owner (code goes to user.email).
        account_number / account_name / bank_name / bank_code: Validated input.
        notifier: Delivery channel for the code.
        ttl_minutes: Code lifetime; defaults to VERIFICATION_CODE_TTL_MINUTES.

    Returns:
        {"id": account id, "expires_in_minutes": ttl}

    Raises:
        AlreadyVerifiedError: If this account is already verified for the user.
        TransientPersistenceError: On timeout or lock contention.
    """
    ttl = ttl_minutes if ttl_minutes is not None else settings.VERIFICATION_CODE_TTL_MINUTES
    code = generate_verification_code()
    expires_at = verification_code_expires_at(ttl)

    async with persistence_guard(db):
        accounts = await _lock_user_accounts(db, user.id)
        existing = next(
            (
                a for a in accounts
                if a.account_number == account_number and a.bank_code == bank_code
            ),
            None,
        )

        if existing is not None and existing.is_verified:
            raise AlreadyVerifiedError(
                "This bank account is already added and verified"
            )

        if existing is not None:
            account = existing
            account.account_name = account_name
            account.bank_name = bank_name
            account.is_verified = False
            account.verification_code = code
            account.verification_code_expires_at = expires_at
        else:
            account = BankAccount(
                user_id=user.id,
                account_number=account_number,
                account_name=account_name,
                bank_name=bank_name,
                bank_code=bank_code,
                is_verified=False,
                is_primary=False,
                verification_code=code,
                verification_code_expires_at=expires_at,
            )
            db.add(account)

        await db.flush()
        await db.commit()

    logger.info(
        "Verification code issued",
        extra={"user_id": user.id, "account_id": account.id, "reused": existing is not None},
    )

    # Outside the transaction: a slow mail provider can't hold row locks
    try:
        await notifier.send(user.email, code)
    except Exception:
        logger.warning(
            "Failed to deliver verification code",
            extra={"user_id": user.id, "account_id": account.id},
            exc_info=True,
        )

    return {"id": account.id, "expires_in_minutes": ttl}


async def verify_bank_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    account_id: uuid.UUID,
    submitted_code: str,
) -> BankAccount:
    """
    Check a submitted code and, if it is valid, mark the account verified.

    Checks run in this order, each a distinct error:
      1. account exists for this user            -> BankAccountNotFoundError
      2. account not already verified            -> AlreadyVerifiedError
      3. a code is outstanding                   -> NoCodeIssuedError
      4. exact string match with stored code     -> CodeMismatchError
      5. now is not strictly after the expiry    -> CodeExpiredError

    On success, in ONE transaction: the code and expiry are cleared, the
    account is marked verified, and claim_if_first() decides whether it
    becomes primary. Retrying with the consumed code yields
    AlreadyVerifiedError, never a second verification.

    Returns:
        The updated BankAccount (is_verified=True, is_primary set).
    """
    async with persistence_guard(db):
        accounts = await _lock_user_accounts(db, user_id)
        account = _owned(accounts, account_id)

        if account.is_verified:
            raise AlreadyVerifiedError()

        if not account.verification_code:
            raise NoCodeIssuedError()

        if submitted_code != account.verification_code:
            logger.info(
                "Verification code mismatch",
                extra={"user_id": user_id, "account_id": account_id, "error_type": "code_mismatch"},
            )
            raise CodeMismatchError()

        now = utcnow()
        expires_at = account.verification_code_expires_at
        if is_code_expired(expires_at, now):
            minutes_ago = None
            if expires_at is not None:
                minutes_ago = round((now - as_utc(expires_at)).total_seconds() / 60)
            logger.info(
                "Verification code expired",
                extra={"user_id": user_id, "account_id": account_id, "error_type": "code_expired"},
            )
            raise CodeExpiredError(minutes_ago)

        account.is_verified = True
        account.verification_code = None
        account.verification_code_expires_at = None
        await db.flush()

        await claim_if_first(db, user_id, account)
        await db.commit()

    logger.info(
        "Bank account verified",
        extra={"user_id": user_id, "account_id": account.id, "is_primary": account.is_primary},
    )
    return account


# ---------------------------------------------------------------------------
# Primary invariant enforcement
# ---------------------------------------------------------------------------

async def claim_if_first(
    db: AsyncSession,
    user_id: uuid.UUID,
    account: BankAccount,
) -> bool:
    """
    Make `account` primary if it is the user's only verified account.

    Must run in the same transaction as the verification write, after the
    user's rows have been locked by _lock_user_accounts(); the count
    includes the account just verified.

    Returns:
        The account's resulting is_primary flag.
    """
    result = await db.execute(
        select(func.count())
        .select_from(BankAccount)
        .where(BankAccount.user_id == user_id)
        .where(BankAccount.is_verified.is_(True))
    )
    verified_count = result.scalar_one()

    if verified_count == 1:
        account.is_primary = True
        await db.flush()

    return account.is_primary


async def set_primary_bank_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    account_id: uuid.UUID,
) -> BankAccount:
    """
    Promote a verified account to primary, demoting whichever was primary.

    Clear-then-set happens in one locked transaction, and the clear is
    flushed before the set so the one-primary index is never violated
    mid-statement. Promoting the current primary is a no-op success.

    Raises:
        BankAccountNotFoundError: If the account isn't the user's.
        NotVerifiedError: If the account hasn't been verified.
    """
    async with persistence_guard(db):
        accounts = await _lock_user_accounts(db, user_id)
        account = _owned(accounts, account_id)

        if not account.is_verified:
            raise NotVerifiedError()

        await db.execute(
            update(BankAccount)
            .where(BankAccount.user_id == user_id)
            .values(is_primary=False)
        )
        await db.flush()

        account.is_primary = True
        await db.flush()
        await db.commit()

    logger.info(
        "Primary bank account changed",
        extra={"user_id": user_id, "account_id": account_id},
    )
    return account


# ---------------------------------------------------------------------------
# Lifecycle: list and delete
# ---------------------------------------------------------------------------

async def get_bank_accounts(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> list[BankAccount]:
    """List the user's accounts: primary first, then newest first."""
    result = await db.execute(
        select(BankAccount)
        .where(BankAccount.user_id == user_id)
        .order_by(BankAccount.is_primary.desc(), BankAccount.created_at.desc())
    )
    return list(result.scalars().all())


async def delete_bank_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    account_id: uuid.UUID,
) -> None:
    """
    Permanently delete a non-primary account.

    Raises:
        BankAccountNotFoundError: If the account isn't the user's.
        PrimaryAccountUndeletableError: If it is the primary account —
            promote another verified account first.
    """
    async with persistence_guard(db):
        accounts = await _lock_user_accounts(db, user_id)
        account = _owned(accounts, account_id)

        if account.is_primary:
            raise PrimaryAccountUndeletableError()

        await db.delete(account)
        await db.commit()

    logger.info(
        "Bank account deleted",
        extra={"user_id": user_id, "account_id": account_id},
    )
