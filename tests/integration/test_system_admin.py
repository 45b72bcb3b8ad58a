"""Integration tests for system admin authentication."""

import json
import logging
from datetime import timedelta

import pytest
from conftest import SYSTEM_ADMIN_EMAIL, SYSTEM_ADMIN_PASSWORD
from httpx import AsyncClient
from prometheus_client import REGISTRY

from educonnect.core.security import create_access_token, create_system_admin_token


async def _system_login(client: AsyncClient, email: str, password: str):
    return await client.post(
        "/api/system-admin/login", json={"email": email, "password": password}
    )


@pytest.mark.asyncio
class TestSystemAdmin:
    """The system admin is configured by environment and has its own token family."""

    async def test_login(self, client: AsyncClient):
        response = await _system_login(client, SYSTEM_ADMIN_EMAIL, SYSTEM_ADMIN_PASSWORD)

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == SYSTEM_ADMIN_EMAIL
        assert data["role"] == "system_admin"
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0

    async def test_wrong_password(self, client: AsyncClient):
        response = await _system_login(client, SYSTEM_ADMIN_EMAIL, "WrongPass123!")

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    async def test_me_reports_cross_school_access(self, client: AsyncClient):
        login = await _system_login(client, SYSTEM_ADMIN_EMAIL, SYSTEM_ADMIN_PASSWORD)
        token = login.json()["access_token"]

        response = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "system_admin"
        assert data["role"] == "system_admin"
        assert data["cross_school_access"] is True
        assert "user" not in data

    async def test_refresh(self, client: AsyncClient):
        token = create_system_admin_token(SYSTEM_ADMIN_EMAIL)

        response = await client.post("/api/system-admin/refresh", json={"token": token})

        assert response.status_code == 200
        assert response.json()["access_token"]

    async def test_refresh_rejects_expired_token(self, client: AsyncClient):
        token = create_system_admin_token(SYSTEM_ADMIN_EMAIL, expires_delta=timedelta(seconds=-5))

        response = await client.post("/api/system-admin/refresh", json={"token": token})

        assert response.status_code == 401

    async def test_refresh_rejects_other_email(self, client: AsyncClient):
        token = create_system_admin_token("someone@educonnect.org")

        response = await client.post("/api/system-admin/refresh", json={"token": token})

        assert response.status_code == 401

    async def test_user_token_cannot_be_promoted(self, client: AsyncClient):
        """An access token claiming role=system_admin is still a user token."""
        token = create_access_token({"email": SYSTEM_ADMIN_EMAIL, "role": "system_admin"})

        response = await client.post("/api/system-admin/refresh", json={"token": token})
        me = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert me.status_code == 401

    async def test_system_admin_cannot_use_school_admin_routes(self, client: AsyncClient):
        token = create_system_admin_token(SYSTEM_ADMIN_EMAIL)

        response = await client.get(
            "/api/invitations", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 403


@pytest.mark.asyncio
class TestOperationalEndpoints:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "cache": "disabled"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Request-ID"]

    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/api/health", headers={"X-Request-ID": "req-abc-123"})

        assert response.headers["X-Request-ID"] == "req-abc-123"

    async def test_metrics(self, client: AsyncClient):
        await client.get("/api/health")

        response = await client.get("/api/metrics")

        assert response.status_code == 200
        assert "educonnect_http_requests_total" in response.text

    async def test_login_routes_are_labelled_apart(self, client: AsyncClient):
        def requests_total(route: str) -> float:
            value = REGISTRY.get_sample_value(
                "educonnect_http_requests_total",
                {"method": "POST", "route": route, "status": "401"},
            )
            return value or 0.0

        before_system = requests_total("/api/system-admin/login")
        before_school = requests_total("/api/auth/login")

        await _system_login(client, SYSTEM_ADMIN_EMAIL, "WrongPass123!")

        assert requests_total("/api/system-admin/login") == before_system + 1
        assert requests_total("/api/auth/login") == before_school
        assert requests_total("/login") == 0.0

    async def test_request_log_is_tagged_with_school(
        self, client: AsyncClient, admin_headers: dict[str, str], caplog
    ):
        caplog.set_level(logging.INFO, logger="educonnect.api.middleware")

        await client.get("/api/invitations/statistics", headers=admin_headers)

        entries = [
            json.loads(record.getMessage())
            for record in caplog.records
            if record.name == "educonnect.api.middleware"
        ]
        request_entry = [entry for entry in entries if entry["event"] == "request"][-1]
        assert request_entry["route"] == "/api/invitations/statistics"
        assert request_entry["school_id"] == "GRE1234"
        assert request_entry["request_id"]
