"""
Tests for bank account endpoints: add, verify, list, set-primary, delete.

These tests verify:
  - Adding an account issues a code through the notifier, never in the response
  - Re-adding an unverified account reuses the row and invalidates the old code
  - Re-adding a verified account is rejected
  - Each verification failure surfaces its own error_type
  - The first verified account becomes primary; later ones don't
  - Promotion moves the primary flag; the primary account can't be deleted
  - Users can't see or touch each other's accounts
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import update

from app.models.bank_account import BankAccount
from app.security import utcnow


ACCOUNT_X = {
    "account_number": "0123456789",
    "account_name": "John Doe",
    "bank_name": "First Bank of Nigeria",
    "bank_code": "011",
}

ACCOUNT_Y = {
    "account_number": "9876543210",
    "account_name": "John Doe",
    "bank_name": "Guaranty Trust Bank",
    "bank_code": "058",
}


async def add_and_verify(client, notifier, payload, **kwargs) -> str:
    """Add an account, verify it with the emailed code, and return its id."""
    added = await client.post("/bank-accounts", json=payload, **kwargs)
    assert added.status_code == 201, added.text
    account_id = added.json()["id"]
    verified = await client.post(
        f"/bank-accounts/{account_id}/verify",
        json={"verification_code": notifier.last_code},
        **kwargs,
    )
    assert verified.status_code == 200, verified.text
    return account_id


# ---------------------------------------------------------------------------
# Adding accounts (code issuance)
# ---------------------------------------------------------------------------

class TestAddBankAccount:
    """Tests for POST /bank-accounts."""

    async def test_add_creates_unverified_account(
        self, authenticated_client, notifier, fetch_account,
    ):
        response = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        assert response.status_code == 201
        data = response.json()
        assert data["expires_in_minutes"] == 15
        assert "verification_code" not in data

        account = await fetch_account(uuid.UUID(data["id"]))
        assert account.is_verified is False
        assert account.is_primary is False
        assert account.verification_code is not None
        assert account.verification_code_expires_at is not None

    async def test_code_is_sent_to_users_email(self, authenticated_client, notifier, fetch_account):
        response = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)

        assert len(notifier.sent) == 1
        email, code = notifier.sent[0]
        assert email == "testuser@example.com"
        assert len(code) == 6 and code.isdigit()

        account = await fetch_account(uuid.UUID(response.json()["id"]))
        assert account.verification_code == code

    async def test_readd_unverified_reuses_row(
        self, authenticated_client, notifier, fetch_user_accounts,
    ):
        first = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        second = await authenticated_client.post(
            "/bank-accounts",
            json={**ACCOUNT_X, "account_name": "John A. Doe", "bank_name": "FirstBank"},
        )
        assert second.status_code == 201
        assert second.json()["id"] == first.json()["id"]

        rows = await fetch_user_accounts()
        assert len(rows) == 1
        assert rows[0].account_name == "John A. Doe"
        assert rows[0].bank_name == "FirstBank"
        assert len(notifier.sent) == 2

    async def test_readd_invalidates_previous_code(self, authenticated_client, notifier):
        with patch(
            "app.services.bank_account_service.generate_verification_code",
            side_effect=["111111", "222222"],
        ):
            first = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
            await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = first.json()["id"]

        old = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": "111111"},
        )
        assert old.status_code == 400
        assert old.json()["error_type"] == "code_mismatch"

        new = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": "222222"},
        )
        assert new.status_code == 200

    async def test_readd_verified_account_rejected(self, authenticated_client, notifier):
        await add_and_verify(authenticated_client, notifier, ACCOUNT_X)

        response = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        assert response.status_code == 409
        assert response.json()["error_type"] == "already_verified"
        # No new code went out for the rejected request
        assert len(notifier.sent) == 1

    async def test_same_number_different_bank_is_separate_account(
        self, authenticated_client, fetch_user_accounts,
    ):
        await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        await authenticated_client.post(
            "/bank-accounts", json={**ACCOUNT_X, "bank_code": "058"},
        )
        assert len(await fetch_user_accounts()) == 2

    async def test_two_users_may_register_same_account(
        self, authenticated_client, second_user_headers, fetch_user_accounts,
    ):
        first = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        second = await authenticated_client.post(
            "/bank-accounts", json=ACCOUNT_X, headers=second_user_headers,
        )
        assert first.status_code == second.status_code == 201
        assert first.json()["id"] != second.json()["id"]
        assert len(await fetch_user_accounts()) == 2

    async def test_invalid_input_rejected(self, authenticated_client, notifier):
        response = await authenticated_client.post(
            "/bank-accounts", json={**ACCOUNT_X, "account_number": "123"},
        )
        assert response.status_code == 422
        assert notifier.sent == []

    async def test_requires_authentication(self, client):
        response = await client.post("/bank-accounts", json=ACCOUNT_X)
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class TestVerifyBankAccount:
    """Tests for POST /bank-accounts/{id}/verify."""

    async def test_verify_success_clears_code(self, authenticated_client, notifier, fetch_account):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = added.json()["id"]

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": notifier.last_code},
        )
        assert response.status_code == 200
        assert response.json() == {
            "id": account_id,
            "is_verified": True,
            "is_primary": True,
        }

        account = await fetch_account(uuid.UUID(account_id))
        assert account.verification_code is None
        assert account.verification_code_expires_at is None

    async def test_wrong_code_leaves_account_unverified(
        self, authenticated_client, notifier, fetch_account,
    ):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = added.json()["id"]

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": "000000"},  # codes never start with 0
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "code_mismatch"

        account = await fetch_account(uuid.UUID(account_id))
        assert account.is_verified is False
        assert account.verification_code == notifier.last_code

    async def test_code_compared_verbatim(self, authenticated_client, notifier):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = added.json()["id"]
        padded = " " + notifier.last_code[:5]

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": padded},
        )
        assert response.json()["error_type"] == "code_mismatch"

    async def test_expired_code_rejected_even_if_correct(
        self, authenticated_client, notifier, db_session, fetch_account,
    ):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = uuid.UUID(added.json()["id"])

        await db_session.execute(
            update(BankAccount)
            .where(BankAccount.id == account_id)
            .values(verification_code_expires_at=utcnow() - timedelta(minutes=3))
        )
        await db_session.commit()

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": notifier.last_code},
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "code_expired"
        assert "3 minute(s) ago" in data["detail"]

        account = await fetch_account(account_id)
        assert account.is_verified is False

    async def test_reissue_after_expiry_allows_verification(
        self, authenticated_client, notifier, db_session,
    ):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = uuid.UUID(added.json()["id"])
        await db_session.execute(
            update(BankAccount)
            .where(BankAccount.id == account_id)
            .values(verification_code_expires_at=utcnow() - timedelta(seconds=1))
        )
        await db_session.commit()

        await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": notifier.last_code},
        )
        assert response.status_code == 200

    async def test_verify_twice_is_an_error(self, authenticated_client, notifier):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = added.json()["id"]
        code = notifier.last_code

        await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify", json={"verification_code": code},
        )
        retry = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify", json={"verification_code": code},
        )
        assert retry.status_code == 409
        assert retry.json()["error_type"] == "already_verified"

    async def test_no_code_issued(self, authenticated_client, db_session):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = uuid.UUID(added.json()["id"])
        await db_session.execute(
            update(BankAccount)
            .where(BankAccount.id == account_id)
            .values(verification_code=None, verification_code_expires_at=None)
        )
        await db_session.commit()

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": "123456"},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "no_code_issued"

    async def test_verify_unknown_account(self, authenticated_client):
        response = await authenticated_client.post(
            f"/bank-accounts/{uuid.uuid4()}/verify",
            json={"verification_code": "123456"},
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "not_found"

    async def test_cannot_verify_other_users_account(
        self, authenticated_client, notifier, second_user_headers,
    ):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        account_id = added.json()["id"]

        response = await authenticated_client.post(
            f"/bank-accounts/{account_id}/verify",
            json={"verification_code": notifier.last_code},
            headers=second_user_headers,
        )
        assert response.status_code == 404

    async def test_code_must_be_six_characters(self, authenticated_client):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.post(
            f"/bank-accounts/{added.json()['id']}/verify",
            json={"verification_code": "12345"},
        )
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListBankAccounts:
    """Tests for GET /bank-accounts."""

    async def test_list_empty(self, authenticated_client):
        response = await authenticated_client.get("/bank-accounts")
        assert response.status_code == 200
        assert response.json() == []

    async def test_primary_first_then_newest(self, authenticated_client, notifier):
        first = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        primary_id = await add_and_verify(authenticated_client, notifier, ACCOUNT_Y)
        third = await authenticated_client.post(
            "/bank-accounts", json={**ACCOUNT_X, "bank_code": "033"},
        )

        response = await authenticated_client.get("/bank-accounts")
        ids = [a["id"] for a in response.json()]
        assert ids == [primary_id, third.json()["id"], first.json()["id"]]

    async def test_list_never_exposes_code(self, authenticated_client):
        await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        item = (await authenticated_client.get("/bank-accounts")).json()[0]
        assert "verification_code" not in item
        assert "verification_code_expires_at" not in item
        assert item["is_verified"] is False

    async def test_list_scoped_to_user(
        self, authenticated_client, second_user_headers,
    ):
        await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.get(
            "/bank-accounts", headers=second_user_headers,
        )
        assert response.json() == []


# ---------------------------------------------------------------------------
# Promotion and deletion
# ---------------------------------------------------------------------------

class TestSetPrimary:
    """Tests for POST /bank-accounts/{id}/set-primary."""

    async def test_promote_unverified_rejected(self, authenticated_client):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.post(
            f"/bank-accounts/{added.json()['id']}/set-primary",
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "not_verified"

    async def test_promote_moves_primary_flag(
        self, authenticated_client, notifier, fetch_user_accounts,
    ):
        x_id = await add_and_verify(authenticated_client, notifier, ACCOUNT_X)
        y_id = await add_and_verify(authenticated_client, notifier, ACCOUNT_Y)

        response = await authenticated_client.post(f"/bank-accounts/{y_id}/set-primary")
        assert response.status_code == 200
        assert response.json() == {"id": y_id, "is_primary": True}

        rows = {str(a.id): a for a in await fetch_user_accounts()}
        assert rows[x_id].is_primary is False
        assert rows[y_id].is_primary is True

    async def test_promote_current_primary_is_idempotent(self, authenticated_client, notifier):
        x_id = await add_and_verify(authenticated_client, notifier, ACCOUNT_X)
        response = await authenticated_client.post(f"/bank-accounts/{x_id}/set-primary")
        assert response.status_code == 200
        assert response.json()["is_primary"] is True

    async def test_promote_unknown_account(self, authenticated_client):
        response = await authenticated_client.post(
            f"/bank-accounts/{uuid.uuid4()}/set-primary",
        )
        assert response.status_code == 404


class TestDeleteBankAccount:
    """Tests for DELETE /bank-accounts/{id}."""

    async def test_delete_unverified(self, authenticated_client, fetch_user_accounts):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.delete(f"/bank-accounts/{added.json()['id']}")
        assert response.status_code == 200
        assert response.json()["message"] == "Bank account deleted successfully"
        assert await fetch_user_accounts() == []

    async def test_delete_primary_rejected(self, authenticated_client, notifier, fetch_account):
        x_id = await add_and_verify(authenticated_client, notifier, ACCOUNT_X)
        response = await authenticated_client.delete(f"/bank-accounts/{x_id}")
        assert response.status_code == 409
        assert response.json()["error_type"] == "primary_account_undeletable"
        assert await fetch_account(uuid.UUID(x_id)) is not None

    async def test_delete_other_users_account(
        self, authenticated_client, second_user_headers, fetch_user_accounts,
    ):
        added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        response = await authenticated_client.delete(
            f"/bank-accounts/{added.json()['id']}", headers=second_user_headers,
        )
        assert response.status_code == 404
        assert len(await fetch_user_accounts()) == 1


# ---------------------------------------------------------------------------
# End-to-end lifecycle
# ---------------------------------------------------------------------------

class TestLifecycleScenario:
    """The full add → verify → add → verify → promote → delete walk-through."""

    async def test_full_lifecycle(self, authenticated_client, notifier):
        # X: first account, verified before expiry -> primary
        with patch(
            "app.services.bank_account_service.generate_verification_code",
            return_value="482913",
        ):
            added = await authenticated_client.post("/bank-accounts", json=ACCOUNT_X)
        x_id = added.json()["id"]
        assert added.json()["expires_in_minutes"] == 15

        listed = (await authenticated_client.get("/bank-accounts")).json()
        assert listed[0]["is_verified"] is False
        assert listed[0]["is_primary"] is False

        verified = await authenticated_client.post(
            f"/bank-accounts/{x_id}/verify", json={"verification_code": "482913"},
        )
        assert verified.json() == {"id": x_id, "is_verified": True, "is_primary": True}

        # Y: second verified account -> not primary, X stays primary
        added_y = await authenticated_client.post("/bank-accounts", json=ACCOUNT_Y)
        y_id = added_y.json()["id"]
        verified_y = await authenticated_client.post(
            f"/bank-accounts/{y_id}/verify",
            json={"verification_code": notifier.last_code},
        )
        assert verified_y.json() == {"id": y_id, "is_verified": True, "is_primary": False}

        # Promote Y; X can now be deleted, Y cannot
        await authenticated_client.post(f"/bank-accounts/{y_id}/set-primary")
        listed = {a["id"]: a for a in (await authenticated_client.get("/bank-accounts")).json()}
        assert listed[x_id]["is_primary"] is False
        assert listed[y_id]["is_primary"] is True

        delete_x = await authenticated_client.delete(f"/bank-accounts/{x_id}")
        assert delete_x.status_code == 200

        delete_y = await authenticated_client.delete(f"/bank-accounts/{y_id}")
        assert delete_y.status_code == 409
        assert delete_y.json()["error_type"] == "primary_account_undeletable"
