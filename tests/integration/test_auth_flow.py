"""Integration tests for authentication endpoints.

Covers login (including the temporary-password redirect), registration
completion, refresh cookie rotation, logout and identity resolution.
"""

from datetime import UTC, datetime
from uuid import UUID

import pytest
from conftest import ADMIN_PASSWORD, USER_PASSWORD, auth_headers, create_user
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.config import get_settings
from educonnect.core.security import create_refresh_token
from educonnect.models.enums import UserRole
from educonnect.models.school import School
from educonnect.models.user import User
from educonnect.services.auth_service import token_claims
from educonnect.services.invitation_service import InvitationService

settings = get_settings()
COOKIE = settings.refresh_cookie_name
NEW_PASSWORD = "Welcome#2030a"


async def _login(client: AsyncClient, email: str, password: str, school_id: str):
    return await client.post(
        "/api/auth/login",
        json={"email": email, "password": password, "school_id": school_id},
    )


async def _invite_teacher(client: AsyncClient, headers: dict[str, str]) -> dict:
    response = await client.post(
        "/api/invitations/teachers",
        headers=headers,
        json={"email": "tina@greenfield.edu", "first_name": "Tina", "last_name": "Teach"},
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
class TestLogin:
    """Integration tests for POST /api/auth/login."""

    async def test_admin_login(
        self, client: AsyncClient, test_admin: User, test_school: School
    ):
        response = await _login(client, "admin@greenfield.edu", ADMIN_PASSWORD, "GRE1234")

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["role"] == "admin"
        assert data["school"]["school_id"] == test_school.school_id
        assert data["tokens"]["token_type"] == "bearer"
        assert data["tokens"]["expires_in"] == settings.jwt_access_token_expire_minutes * 60
        assert "refresh_token" not in data["tokens"]
        assert COOKIE in response.cookies
        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert f"path={settings.refresh_cookie_path}" in set_cookie

    async def test_login_is_case_insensitive_on_email(
        self, client: AsyncClient, test_admin: User
    ):
        response = await _login(client, "Admin@Greenfield.edu", ADMIN_PASSWORD, "GRE1234")

        assert response.status_code == 200

    async def test_login_records_last_login(
        self, client: AsyncClient, db: AsyncSession, test_admin: User
    ):
        assert test_admin.last_login_at is None

        await _login(client, "admin@greenfield.edu", ADMIN_PASSWORD, "GRE1234")

        await db.refresh(test_admin)
        assert test_admin.last_login_at is not None

    @pytest.mark.parametrize(
        ("email", "password", "school_id"),
        [
            ("admin@greenfield.edu", "WrongPass123!", "GRE1234"),
            ("nobody@greenfield.edu", ADMIN_PASSWORD, "GRE1234"),
            ("admin@greenfield.edu", ADMIN_PASSWORD, "ZZZ9999"),
        ],
    )
    async def test_bad_credentials_share_one_message(
        self, client: AsyncClient, test_admin: User, email, password, school_id
    ):
        response = await _login(client, email, password, school_id)

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    async def test_account_in_other_school_does_not_authenticate(
        self, client: AsyncClient, test_admin: User, other_school: School
    ):
        response = await _login(
            client, "admin@greenfield.edu", ADMIN_PASSWORD, other_school.school_id
        )

        assert response.status_code == 401

    async def test_unverified_school_blocks_admin(
        self, client: AsyncClient, db: AsyncSession, test_admin: User, test_school: School
    ):
        test_school.is_verified = False
        await db.commit()

        response = await _login(client, "admin@greenfield.edu", ADMIN_PASSWORD, "GRE1234")

        assert response.status_code == 403
        assert "verify" in response.json()["message"]

    async def test_inactive_school_blocks_teacher(
        self, client: AsyncClient, db: AsyncSession, test_school: School
    ):
        await create_user(db, test_school, "teacher@greenfield.edu")
        test_school.is_active = False
        await db.commit()

        response = await _login(client, "teacher@greenfield.edu", USER_PASSWORD, "GRE1234")

        assert response.status_code == 403
        assert "school administration" in response.json()["message"]

    async def test_deactivated_user_blocked(
        self, client: AsyncClient, db: AsyncSession, test_school: School
    ):
        await create_user(
            db,
            test_school,
            "teacher@greenfield.edu",
            is_active=False,
            deactivated_at=datetime.now(UTC),
        )

        response = await _login(client, "teacher@greenfield.edu", USER_PASSWORD, "GRE1234")

        assert response.status_code == 403
        assert "deactivated" in response.json()["message"]

    async def test_temporary_password_redirects(
        self, client: AsyncClient, admin_headers: dict[str, str]
    ):
        """Provisional accounts get a redirect and no tokens."""
        invited = await _invite_teacher(client, admin_headers)

        response = await _login(
            client, "tina@greenfield.edu", invited["temporary_password"], "GRE1234"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["redirect_to"] == "/complete-registration"
        assert "tokens" not in data
        assert COOKIE not in response.cookies


@pytest.mark.asyncio
class TestCompleteRegistration:
    """Integration tests for POST /api/auth/complete-registration."""

    async def _complete(self, client: AsyncClient, current_password: str, **profile):
        return await client.post(
            "/api/auth/complete-registration",
            json={
                "email": "tina@greenfield.edu",
                "school_id": "GRE1234",
                "current_password": current_password,
                "new_password": NEW_PASSWORD,
                **profile,
            },
        )

    async def test_complete_registration_activates_account(
        self, client: AsyncClient, db: AsyncSession, admin_headers: dict[str, str]
    ):
        invited = await _invite_teacher(client, admin_headers)

        response = await self._complete(
            client,
            invited["temporary_password"],
            phone="+1 555 0100",
            qualifications=["BSc Mathematics"],
            experience_years=4,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["is_active"] is True
        assert data["user"]["is_temporary_password"] is False
        assert data["tokens"]["access_token"]
        assert COOKIE in response.cookies

        me = await client.get(
            "/api/me", headers={"Authorization": f"Bearer {data['tokens']['access_token']}"}
        )
        assert me.status_code == 200
        assert me.json()["kind"] == "user"
        assert me.json()["role"] == "teacher"

        login = await _login(client, "tina@greenfield.edu", NEW_PASSWORD, "GRE1234")
        assert login.status_code == 200
        assert login.json()["tokens"]["access_token"]

        lookup = await client.get(
            "/api/invitations/lookup", params={"token": invited["invitation_token"]}
        )
        assert lookup.json()["status"] == "accepted"
        assert lookup.json()["is_valid"] is False

    async def test_registration_succeeds_once(
        self, client: AsyncClient, admin_headers: dict[str, str]
    ):
        invited = await _invite_teacher(client, admin_headers)
        first = await self._complete(client, invited["temporary_password"])

        replay = await self._complete(client, invited["temporary_password"])

        assert first.status_code == 200
        assert replay.status_code == 404

    async def test_wrong_temporary_password(
        self, client: AsyncClient, admin_headers: dict[str, str]
    ):
        await _invite_teacher(client, admin_headers)

        response = await self._complete(client, "0000000000000000")

        assert response.status_code == 401

    async def test_weak_new_password(self, client: AsyncClient, admin_headers: dict[str, str]):
        invited = await _invite_teacher(client, admin_headers)

        response = await client.post(
            "/api/auth/complete-registration",
            json={
                "email": "tina@greenfield.edu",
                "school_id": "GRE1234",
                "current_password": invited["temporary_password"],
                "new_password": "alllowercase1!",
            },
        )

        assert response.status_code == 400
        assert "uppercase" in response.json()["message"]

    async def test_profile_fields_must_match_role(
        self, client: AsyncClient, admin_headers: dict[str, str]
    ):
        """A teacher cannot set parent-only profile fields."""
        invited = await _invite_teacher(client, admin_headers)

        response = await self._complete(
            client, invited["temporary_password"], occupation="Engineer"
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"fields": ["occupation"]}

    async def test_expired_invitation_blocks_registration(
        self, client: AsyncClient, db: AsyncSession, admin_headers: dict[str, str]
    ):
        invited = await _invite_teacher(client, admin_headers)

        invitation = await InvitationService(db).find_by_token(invited["invitation_token"])
        invitation.expires_at = datetime(2000, 1, 1, tzinfo=UTC)
        await db.commit()

        response = await self._complete(client, invited["temporary_password"])

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"


@pytest.mark.asyncio
class TestRefreshAndLogout:
    """Integration tests for the refresh cookie lifecycle."""

    async def test_refresh_rotates_cookie(self, client: AsyncClient, test_admin: User):
        login = await _login(client, "admin@greenfield.edu", ADMIN_PASSWORD, "GRE1234")
        assert login.status_code == 200
        client.cookies.set(COOKIE, login.cookies[COOKIE])

        response = await client.post("/api/auth/refresh")

        assert response.status_code == 200
        assert response.json()["access_token"]
        assert COOKIE in response.cookies

    async def test_refresh_with_body_token(self, client: AsyncClient, test_admin: User):
        """The deprecated body form still works when no cookie is sent."""
        token = create_refresh_token(token_claims(test_admin))

        response = await client.post("/api/auth/refresh", json={"refresh_token": token})

        assert response.status_code == 200

    async def test_refresh_without_token(self, client: AsyncClient):
        response = await client.post("/api/auth/refresh")

        assert response.status_code == 401
        assert response.json()["message"] == "Refresh token not found"

    async def test_invalid_refresh_clears_cookie(self, client: AsyncClient, test_admin: User):
        client.cookies.set(COOKIE, "garbage")

        response = await client.post("/api/auth/refresh")

        assert response.status_code == 401
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE}=")
        assert "max-age=0" in set_cookie.lower()

    async def test_access_token_cannot_refresh(self, client: AsyncClient, test_admin: User):
        access = auth_headers(test_admin)["Authorization"].split()[1]

        response = await client.post("/api/auth/refresh", json={"refresh_token": access})

        assert response.status_code == 401

    async def test_deactivated_account_cannot_refresh(
        self, client: AsyncClient, db: AsyncSession, test_school: School
    ):
        teacher = await create_user(db, test_school, "teacher@greenfield.edu")
        token = create_refresh_token(token_claims(teacher))
        teacher.is_active = False
        teacher.deactivated_at = datetime.now(UTC)
        await db.commit()

        response = await client.post("/api/auth/refresh", json={"refresh_token": token})

        assert response.status_code == 401

    async def test_logout_always_succeeds(self, client: AsyncClient, test_admin: User):
        await _login(client, "admin@greenfield.edu", ADMIN_PASSWORD, "GRE1234")

        response = await client.post("/api/auth/logout")
        anonymous = await client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert anonymous.status_code == 200


@pytest.mark.asyncio
class TestMe:
    """GET /api/me resolves each claim shape."""

    async def test_school_admin(self, client: AsyncClient, admin_headers: dict[str, str]):
        response = await client.get("/api/me", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "school_admin"
        assert data["role"] == "admin"
        assert data["school"]["school_id"] == "GRE1234"
        assert data["cross_school_access"] is False

    async def test_parent(self, client: AsyncClient, db: AsyncSession, test_school: School):
        parent = await create_user(db, test_school, "parent@greenfield.edu", role=UserRole.PARENT)

        response = await client.get("/api/me", headers=auth_headers(parent))

        assert response.status_code == 200
        assert response.json()["kind"] == "user"
        assert response.json()["user"]["id"] == str(parent.id)

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/me")

        assert response.status_code == 401

    async def test_refresh_token_is_not_a_bearer_token(
        self, client: AsyncClient, test_admin: User
    ):
        token = create_refresh_token(token_claims(test_admin))

        response = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    async def test_provisional_user_token_rejected(
        self, client: AsyncClient, db: AsyncSession, admin_headers: dict[str, str]
    ):
        """An inactive provisional account cannot use a token even if one exists."""
        invited = await _invite_teacher(client, admin_headers)
        user = await db.get(User, UUID(invited["user"]["id"]))

        response = await client.get("/api/me", headers=auth_headers(user))

        assert response.status_code == 401
