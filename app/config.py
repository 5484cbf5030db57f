"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This keeps secrets (JWT key, Postmark token, bank directory
API key) out of source code — the .env file is gitignored, and .env.example
provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from app.config import settings
    print(settings.VERIFICATION_CODE_TTL_MINUTES)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Payout Accounts API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Payout Accounts API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # "json" for production log shipping, "text" for local development
    LOG_FORMAT: str = "json"

    # --- Database ---
    # SQLite for local development; use a postgresql+asyncpg:// URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/payout_accounts.db"
    # Upper bound on a single transactional unit of work (lock wait included)
    DB_OPERATION_TIMEOUT_SECONDS: float = 10.0

    # --- Authentication ---
    # REQUIRED: No default — forces the developer to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- One-time verification codes ---
    VERIFICATION_CODE_TTL_MINUTES: int = 15

    # --- Email delivery (Postmark) ---
    # Leave the token empty to disable delivery (codes are then never sent)
    POSTMARK_SERVER_TOKEN: str | None = None
    POSTMARK_API_URL: str = "https://api.postmarkapp.com/email"
    EMAIL_FROM_ADDRESS: str = "noreply@example.com"
    EMAIL_FROM_NAME: str = "Payouts"
    NOTIFIER_TIMEOUT_SECONDS: float = 10.0

    # --- External bank directory (bank list + name enquiry) ---
    BANK_DIRECTORY_BASE_URL: str = "https://api.sandbox.sudo.cards"
    BANK_DIRECTORY_API_KEY: str | None = None
    BANK_DIRECTORY_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_BANK_COUNTRY: str = "NG"

    # --- CORS ---
    # Origins allowed to make cross-origin requests (frontend URLs)
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
