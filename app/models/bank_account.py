"""
BankAccount model — an external bank account registered as a payout destination.

Lifecycle:
  unverified ──(correct code before expiry)──> verified ──(promote)──> primary

  - Created unverified, non-primary, with a one-time code and expiry.
  - Re-submitting the same (user, account number, bank code) while still
    unverified reuses this row with a fresh code; the old code is gone.
  - Verification clears the code and expiry — a used code can never be
    replayed or read back.
  - The user's first verified account becomes primary automatically; later
    ones only through an explicit promotion.

Primary invariant:
  Per user, at most one row has is_primary = true, and only a verified row
  may be primary. The service layer maintains this under row locks; the
  database backs it with two constraints so that a bug or an unlocked
  writer fails loudly instead of corrupting state:
    - CHECK (NOT is_primary OR is_verified)
    - a partial UNIQUE index on user_id WHERE is_primary

Account name and bank name are display copies supplied by the user; they
are not checked against the external bank directory at write time.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    __table_args__ = (
        # Uniqueness is per user, not global: two users may register the
        # same external account
        UniqueConstraint(
            "user_id",
            "account_number",
            "bank_code",
            name="uq_bank_accounts_user_account_bank",
        ),
        CheckConstraint(
            "NOT is_primary OR is_verified",
            name="ck_bank_accounts_primary_is_verified",
        ),
        Index(
            "uq_bank_accounts_one_primary_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_primary"),
            postgresql_where=text("is_primary"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Owner; rows are deleted explicitly, never by cascade
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank_code: Mapped[str] = mapped_column(String(20), nullable=False)

    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    is_primary: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Present only while a verification is pending
    verification_code: Mapped[str | None] = mapped_column(
        String(6),
        nullable=True,
    )
    verification_code_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Audit timestamps
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

    # --- Relationships ---
    user: Mapped["User"] = relationship(
        back_populates="bank_accounts",
    )
