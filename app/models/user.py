"""
User model — the authenticated principal that owns bank accounts.

The user's email doubles as the delivery channel for one-time codes: a
payout account is only trusted once its owner has proven control of the
mailbox on file by echoing back the code sent there.

The password is stored as an Argon2id hash — never in plaintext.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class User(Base):
    __tablename__ = "users"

    # Primary key: UUID provides globally unique IDs without sequential guessing
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Email is the login identifier and the verification code destination
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password (never store plaintext!)
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Soft-disable: deactivated users can't log in but their data is preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
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
    # No cascade: bank accounts are removed explicitly, never implicitly
    bank_accounts: Mapped[list["BankAccount"]] = relationship(
        back_populates="user",
    )
