"""
Notifier — delivers one-time verification codes to the account owner.

The plaintext code leaves the system through exactly one channel: this
module. It is never returned to an API caller, which is what makes a
correct code proof that the user controls the mailbox on file.

Implementations:
  - PostmarkNotifier: sends a transactional email through the Postmark
    HTTP API with httpx.
  - LoggingNotifier: used when no Postmark token is configured (local
    development). It records that delivery was skipped; it never logs the
    code itself.

Delivery is best-effort. The bank account service calls send() only after
the issuing transaction has committed and logs, rather than propagates,
any failure — a slow or broken mail provider must not hold a database
transaction open or undo an issued code.
"""

import logging

import httpx

from app.config import settings


logger = logging.getLogger(__name__)


class Notifier:
    """Interface for verification code delivery."""

    async def send(self, email: str, code: str) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Fallback when email delivery is not configured."""

    async def send(self, email: str, code: str) -> None:
        logger.warning(
            "Email delivery is not configured; verification code for %s was not sent",
            email,
        )


class PostmarkNotifier(Notifier):
    """
    Send verification codes via Postmark's /email endpoint.

    Args:
        server_token: Postmark server API token.
        api_url: Full URL of the send-email endpoint.
        from_address / from_name: Sender identity.
        ttl_minutes: Code lifetime, quoted in the email body.
        timeout: Seconds before the HTTP call is abandoned.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    SUBJECT = "Verify your bank account"

    def __init__(
        self,
        server_token: str,
        api_url: str = "https://api.postmarkapp.com/email",
        from_address: str = "noreply@example.com",
        from_name: str = "Payouts",
        ttl_minutes: int = 15,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.server_token = server_token
        self.api_url = api_url
        self.sender = f"{from_name} <{from_address}>"
        self.ttl_minutes = ttl_minutes
        self.timeout = timeout
        self.transport = transport

    def _payload(self, email: str, code: str) -> dict:
        text_body = (
            f"Your bank account verification code is: {code}. "
            f"This code will expire in {self.ttl_minutes} minutes."
        )
        html_body = (
            "<p>Use the code below to verify your bank account.</p>"
            f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{code}</strong></p>"
            f"<p>This code will expire in {self.ttl_minutes} minutes. "
            "If you did not request it, you can ignore this email.</p>"
        )
        return {
            "From": self.sender,
            "To": email,
            "Subject": self.SUBJECT,
            "TextBody": text_body,
            "HtmlBody": html_body,
            "MessageStream": "outbound",
        }

    async def send(self, email: str, code: str) -> None:
        """
        Deliver the code. Raises httpx.HTTPError on transport or HTTP failure.
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                self.api_url,
                json=self._payload(email, code),
                headers={
                    "Accept": "application/json",
                    "X-Postmark-Server-Token": self.server_token,
                },
            )
            response.raise_for_status()
        logger.info("Verification email accepted by Postmark for %s", email)


def build_notifier() -> Notifier:
    """Pick the notifier implied by settings."""
    if settings.POSTMARK_SERVER_TOKEN:
        return PostmarkNotifier(
            server_token=settings.POSTMARK_SERVER_TOKEN,
            api_url=settings.POSTMARK_API_URL,
            from_address=settings.EMAIL_FROM_ADDRESS,
            from_name=settings.EMAIL_FROM_NAME,
            ttl_minutes=settings.VERIFICATION_CODE_TTL_MINUTES,
            timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        )
    return LoggingNotifier()
