"""Tests for the health, readiness and version endpoints and login."""

from __future__ import annotations

import pytest

from agora.config import get_settings


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_ready_before_install(self, client):
        response = await client.get("/ready")

        body = response.json()
        assert body["status"] == "ready"
        assert body["installed"] is False
        assert body["checks"] == {"database": "ok", "redis": "ok"}

    @pytest.mark.asyncio
    async def test_ready_after_install(self, client, installed):
        assert (await client.get("/ready")).json()["installed"] is True

    @pytest.mark.asyncio
    async def test_version(self, client, installed):
        body = (await client.get("/version")).json()
        assert body["version"] == get_settings().app_version
        assert body["installed_version"] == get_settings().app_version

    @pytest.mark.asyncio
    async def test_rate_limit_headers(self, client, installed):
        response = await client.get("/api/v1/forum")
        assert response.headers["X-RateLimit-Limit"] == str(get_settings().rate_limit_requests)


class TestAuth:
    @pytest.mark.asyncio
    async def test_login_and_me(self, client, installed, make_user):
        await make_user("alice", role="moderator")

        login = await client.post("/api/v1/auth/login", json={"username": "alice", "password": "SecureP@ss1"})
        assert login.status_code == 200
        token = login.json()["access_token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        body = me.json()
        assert body["username"] == "alice"
        assert "lockThread" in body["permissions"]
        assert "changeSettings" not in body["permissions"]

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, installed, make_user):
        await make_user("alice")
        response = await client.post("/api/v1/auth/login", json={"username": "alice", "password": "nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me_requires_token(self, client, installed):
        assert (await client.get("/api/v1/auth/me")).status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_garbage_token(self, client, installed):
        response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
