"""
Bank directory client — bank list and account-name enquiry.

A convenience for the add-account form: the frontend shows the list of
banks for a country and can resolve the holder name for an account number
before the user submits it. Nothing here participates in verification; the
account and bank names stored on a BankAccount are whatever the user
submitted.

The directory is an external HTTP API (Sudo's /accounts endpoints). Every
transport or HTTP failure is surfaced as BankDirectoryError so the router
answers 502 instead of leaking httpx exceptions.
"""

import logging

import httpx

from app.config import settings
from app.exceptions import BankDirectoryError


logger = logging.getLogger(__name__)


class BankDirectoryClient:
    """
    Thin async client for the external bank directory.

    Args:
        base_url: API root, e.g. "https://api.sandbox.sudo.cards".
        api_key: Bearer token; omitted from requests when None.
        timeout: Seconds before a request is abandoned.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Bank directory returned %s for %s %s",
                exc.response.status_code, method, path,
            )
            raise BankDirectoryError(
                f"Bank directory rejected the request ({exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Bank directory unreachable for %s %s: %s", method, path, exc)
            raise BankDirectoryError("Bank directory is unavailable") from exc
        except ValueError as exc:
            # Body was not JSON
            logger.error("Bank directory sent a malformed response for %s %s", method, path)
            raise BankDirectoryError("Bank directory sent a malformed response") from exc

        # Every endpoint answers with a {"data": ...} envelope
        if not isinstance(body, dict):
            logger.error("Bank directory sent a non-object body for %s %s", method, path)
            raise BankDirectoryError("Bank directory sent a malformed response")
        return body

    async def list_banks(self, country_code: str) -> list[dict]:
        """
        List banks for an ISO country code.

        Returns:
            [{"code": "011", "name": "First Bank of Nigeria"}, ...]
        """
        body = await self._request("GET", "/accounts/banks", params={"country": country_code})
        items = body.get("data") or []
        if not isinstance(items, list):
            raise BankDirectoryError("Bank directory sent a malformed bank list")
        banks = []
        for item in items:
            if not isinstance(item, dict):
                continue
            code = item.get("code") or item.get("bankCode")
            name = item.get("name") or item.get("bankName")
            if code and name:
                banks.append({"code": str(code), "name": name})
        return banks

    async def resolve_account_name(self, bank_code: str, account_number: str) -> str:
        """
        Look up the registered holder name for an account.

        Raises:
            BankDirectoryError: If the lookup fails or returns no name.
        """
        body = await self._request(
            "POST",
            "/accounts/transfer/name-enquiry",
            json={"bankCode": bank_code, "accountNumber": account_number},
        )
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        account_name = data.get("accountName") or data.get("account_name")
        if not account_name:
            raise BankDirectoryError("Could not resolve the account name")
        return account_name


def build_bank_directory() -> BankDirectoryClient:
    return BankDirectoryClient(
        base_url=settings.BANK_DIRECTORY_BASE_URL,
        api_key=settings.BANK_DIRECTORY_API_KEY,
        timeout=settings.BANK_DIRECTORY_TIMEOUT_SECONDS,
    )
