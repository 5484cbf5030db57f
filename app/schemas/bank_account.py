"""
Pydantic schemas for bank account endpoints.

Length bounds mirror the column sizes on the bank_accounts table. None of
the response models carry the verification code or its expiry: a code
leaves the system only through the notifier.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class BankAccountAddRequest(BaseModel):
    """Request body for POST /bank-accounts."""
    account_number: str = Field(min_length=10, max_length=50, examples=["1234567890"])
    account_name: str = Field(min_length=2, max_length=255, examples=["John Doe"])
    bank_name: str = Field(min_length=2, max_length=100, examples=["First Bank of Nigeria"])
    bank_code: str = Field(min_length=3, max_length=20, examples=["011"])


class BankAccountAddResponse(BaseModel):
    """A code was issued; the caller only learns how long it stays valid."""
    id: uuid.UUID
    expires_in_minutes: int
    message: str = "Verification code sent to your email"


class BankAccountVerifyRequest(BaseModel):
    """Request body for POST /bank-accounts/{id}/verify."""
    # Compared verbatim against the stored code: no trimming or padding
    verification_code: str = Field(min_length=6, max_length=6, examples=["482913"])


class BankAccountVerifyResponse(BaseModel):
    id: uuid.UUID
    is_verified: bool
    is_primary: bool


class BankAccountResponse(BaseModel):
    """Public representation of a registered bank account."""
    id: uuid.UUID
    account_number: str
    account_name: str
    bank_name: str
    bank_code: str
    is_verified: bool
    is_primary: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SetPrimaryResponse(BaseModel):
    id: uuid.UUID
    is_primary: bool


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# External bank directory
# ---------------------------------------------------------------------------

class BankResponse(BaseModel):
    """One entry of the bank list for a country."""
    code: str
    name: str


class NameEnquiryRequest(BaseModel):
    """Request body for POST /bank-accounts/name-enquiry."""
    bank_code: str = Field(pattern=r"^\d{3}$", examples=["011"])
    account_number: str = Field(pattern=r"^\d{10}$", examples=["1234567890"])


class NameEnquiryResponse(BaseModel):
    bank_code: str
    account_number: str
    account_name: str
