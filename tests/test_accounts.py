"""
API tests for signup, login, token rotation and accounts
"""

import pytest
from sqlalchemy import select, update

from fleetcore.src import accounts, exceptions, tokens
from fleetcore.src.db import User
from fleetcore.src.enums import CompanyRole

from tests.conftest import PASSWORD, bearer


class TestSignup:
    """Company signup"""

    def test_signup_creates_company_and_owner(self, owner):
        """Test signup returns the owner, the company and a token pair"""
        assert owner["company"]["slug"] == "acme"
        assert owner["company"]["plan"] == 1
        assert owner["company"]["status"] == 1
        assert owner["company"]["owner_id"] == owner["user"]["id"]
        assert owner["user"]["company_role"] == CompanyRole.OWNER
        assert owner["user"]["company_id"] == owner["company"]["id"]
        assert "password" not in owner["user"]
        assert owner["access_token"] and owner["refresh_token"]

    def test_duplicate_slug(self, client, owner):
        """Test a taken slug is refused with a message naming the slug"""
        response = client.post(
            "/platform/signup",
            data={
                "company_name": "Other",
                "slug": "acme",
                "name": "Other Owner",
                "email": "someone@else.io",
                "password": PASSWORD,
            },
        )
        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert "slug" in body["message"].lower()

    def test_slug_is_case_folded(self, client, owner):
        """Test slugs are unique regardless of case"""
        response = client.post(
            "/platform/signup",
            data={
                "company_name": "Other",
                "slug": "ACME",
                "name": "Other Owner",
                "email": "someone@else.io",
                "password": PASSWORD,
            },
        )
        assert response.status_code in (409, 422)

    def test_invalid_signup_input(self, client):
        """Test validation failures report the offending fields"""
        response = client.post(
            "/platform/signup",
            data={
                "company_name": "Acme",
                "slug": "acme",
                "name": "Owner",
                "email": "not-an-email",
                "password": "short",
            },
        )
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        fields = {error["field"] for error in body["errors"]}
        assert "email" in fields
        assert "password" in fields

    def test_same_email_in_two_companies(self, signup, login):
        """Test an email may be registered once per company"""
        signup("acme", email="shared@mail.io")
        signup("globex", email="shared@mail.io")

        first = login("acme", "shared@mail.io")
        second = login("globex", "shared@mail.io")
        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["company_id"] != second.json()["company_id"]


class TestLogin:
    """Token issuance"""

    def test_login(self, owner, login):
        """Test a valid login returns a token pair for the company"""
        response = login("acme", "owner@acme.io")
        assert response.status_code == 201
        data = response.json()
        assert data["company_id"] == owner["company"]["id"]
        assert data["token_type"] == "bearer"

    def test_login_failures_look_alike(self, owner, login):
        """Test unknown company, unknown email and wrong password fail the same way"""
        responses = [
            login("nowhere", "owner@acme.io"),
            login("acme", "nobody@acme.io"),
            login("acme", "owner@acme.io", "wrong-password"),
        ]
        assert {response.status_code for response in responses} == {401}
        assert len({response.json()["message"] for response in responses}) == 1

    def test_login_is_scoped_to_company(self, owner, rival, login):
        """Test a user cannot log in through another company's slug"""
        response = login("globex", "owner@acme.io")
        assert response.status_code == 401

    def test_missing_token(self, client, owner):
        """Test protected endpoints need a bearer token"""
        response = client.get("/fleet/vehicle")
        assert response.status_code in (401, 403)

    def test_garbage_token(self, client):
        """Test a malformed token is rejected"""
        response = client.get("/fleet/vehicle", headers=bearer("not-a-jwt"))
        assert response.status_code == 401
        assert response.headers["X-Error"] == "InvalidToken"

    def test_refresh_token_is_not_an_access_token(self, client, owner):
        """Test a refresh token cannot be used as a bearer token"""
        response = client.get("/fleet/vehicle", headers=bearer(owner["refresh_token"]))
        assert response.status_code == 401


class TestRefresh:
    """Refresh token rotation"""

    def test_refresh_rotates(self, client, owner):
        """Test a refresh returns a new pair and revokes the used token"""
        first = client.post(
            "/fleet/account/token/refresh", data={"refresh_token": owner["refresh_token"]}
        )
        assert first.status_code == 200
        rotated = first.json()["refresh_token"]
        assert rotated != owner["refresh_token"]

        reused = client.post(
            "/fleet/account/token/refresh", data={"refresh_token": owner["refresh_token"]}
        )
        assert reused.status_code == 401
        assert "revoked" in reused.json()["message"].lower()

        second = client.post("/fleet/account/token/refresh", data={"refresh_token": rotated})
        assert second.status_code == 200

    def test_rotation_lost_to_concurrent_refresh(self, session, owner, monkeypatch):
        """Test a token rotated away between the check and the write is refused"""
        createRefreshToken = tokens.createRefreshToken

        def rotateElsewhere(user):
            session.execute(
                update(User)
                .where(User.id == user.id)
                .values(refresh_token_id="rotated-elsewhere")
                .execution_options(synchronize_session=False)
            )
            return createRefreshToken(user)

        monkeypatch.setattr(tokens, "createRefreshToken", rotateElsewhere)
        with pytest.raises(exceptions.RefreshTokenRevoked):
            accounts.refresh(session, owner["refresh_token"])
        stored = session.execute(
            select(User.refresh_token_id).where(User.id == owner["user"]["id"])
        ).scalar_one()
        assert stored == "rotated-elsewhere"
        session.rollback()

    def test_login_revokes_previous_refresh_token(self, client, owner, login):
        """Test a new login invalidates the refresh token of the previous one"""
        login("acme", "owner@acme.io")
        response = client.post(
            "/fleet/account/token/refresh", data={"refresh_token": owner["refresh_token"]}
        )
        assert response.status_code == 401

    def test_logout_expires_session(self, client, owner):
        """Test a refresh after logout reports an expired session"""
        response = client.delete("/fleet/account/token", headers=owner["headers"])
        assert response.status_code == 204
        response = client.post(
            "/fleet/account/token/refresh", data={"refresh_token": owner["refresh_token"]}
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Session expired"

    def test_malformed_refresh_token(self, client):
        """Test a garbage refresh token is rejected"""
        response = client.post("/fleet/account/token/refresh", data={"refresh_token": "x.y.z"})
        assert response.status_code == 401


class TestAccounts:
    """Company user management"""

    def test_free_plan_allows_only_the_owner(self, client, owner):
        """Test the free plan's single user seat is taken by the owner"""
        response = client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Manager",
                "email": "manager@acme.io",
                "password": PASSWORD,
                "company_role": int(CompanyRole.MANAGER),
            },
        )
        assert response.status_code == 403
        body = response.json()
        assert body["resource"] == "user"
        assert body["limit"] == 1

    def test_create_account_after_upgrade(self, client, owner, login):
        """Test a paid plan allows more users and the new user can log in"""
        upgrade = client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        assert upgrade.status_code == 200

        response = client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Manager",
                "email": "Manager@Acme.io",
                "password": PASSWORD,
                "company_role": int(CompanyRole.MANAGER),
            },
        )
        assert response.status_code == 201, response.text
        assert response.json()["email"] == "manager@acme.io"
        assert login("acme", "manager@acme.io").status_code == 201

        duplicate = client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Manager",
                "email": "manager@acme.io",
                "password": PASSWORD,
                "company_role": int(CompanyRole.MANAGER),
            },
        )
        assert duplicate.status_code == 409

    def test_owner_role_cannot_be_assigned(self, client, owner):
        """Test a second owner cannot be created"""
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        response = client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Usurper",
                "email": "usurper@acme.io",
                "password": PASSWORD,
                "company_role": int(CompanyRole.OWNER),
            },
        )
        assert response.status_code == 403

    def test_owner_is_protected(self, client, owner):
        """Test the owner cannot be deactivated or deleted"""
        ownerId = owner["user"]["id"]
        response = client.patch(
            "/fleet/account", headers=owner["headers"], data={"id": ownerId, "is_active": False}
        )
        assert response.status_code == 406
        response = client.request(
            "DELETE", "/fleet/account", headers=owner["headers"], data={"id": ownerId}
        )
        assert response.status_code == 406

    def test_update_own_name(self, client, owner):
        """Test anyone may rename themselves"""
        response = client.patch("/fleet/account", headers=owner["headers"], data={"name": "Renamed"})
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"

    def test_accounts_are_isolated(self, client, owner, rival):
        """Test the account list only shows the caller's company"""
        response = client.get("/fleet/account", headers=rival["headers"])
        assert response.status_code == 200
        emails = [item["email"] for item in response.json()["items"]]
        assert emails == ["owner@globex.io"]

    def test_roles(self, client, owner):
        """Test the role listing exposes each role's permissions"""
        response = client.get("/fleet/role", headers=owner["headers"])
        assert response.status_code == 200
        roles = {role["name"]: role["permissions"] for role in response.json()}
        assert roles["Driver"] == ["add_trip_progress"]
        assert "manage_subscription" in roles["Owner"]
