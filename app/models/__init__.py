"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all() runs
  2. Other modules can import from app.models directly
"""

from app.models.user import User  # noqa: F401
from app.models.bank_account import BankAccount  # noqa: F401
