"""Auth endpoints end to end."""

from typing import Any

from httpx import AsyncClient

from conftest import TEST_PASSWORD, auth_headers


def _cookie(raw_token: str) -> dict[str, str]:
    return {"Cookie": f"refresh_token={raw_token}"}


async def _login(client: AsyncClient, email: str, password: str = TEST_PASSWORD) -> dict[str, Any]:
    response = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


class TestRegister:
    async def test_register(self, registered: dict[str, Any]):
        body = registered["body"]
        assert body["user"]["email"] == "watson@example.com"
        assert body["user"]["name"] == "Watson"
        assert body["user"]["role"] == "USER"
        assert body["user"]["isGuest"] is False
        assert body["tokenType"] == "bearer"
        assert body["expiresIn"] == 900
        assert body["accessToken"]
        assert len(body["refreshToken"]) == 80

    async def test_sets_http_only_refresh_cookie(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/register", json={"email": "hooper@example.com", "password": TEST_PASSWORD}
        )
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("refresh_token=")
        assert "HttpOnly" in cookie
        assert "Path=/api/auth" in cookie

    async def test_duplicate_email(self, client: AsyncClient, registered: dict[str, Any]):
        response = await client.post(
            "/api/auth/register", json={"email": "WATSON@example.com", "password": TEST_PASSWORD}
        )
        assert response.status_code == 409

    async def test_weak_password(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"email": "a@example.com", "password": "short"})
        assert response.status_code == 400
        assert "at least 8" in response.json()["detail"]

    async def test_invalid_email(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"email": "nope", "password": TEST_PASSWORD})
        assert response.status_code == 422


class TestLogin:
    async def test_login_any_case(self, client: AsyncClient, registered: dict[str, Any]):
        body = await _login(client, "Watson@Example.com")
        assert body["user"]["id"] == registered["body"]["user"]["id"]
        assert body["refreshToken"] != registered["body"]["refreshToken"]

    async def test_wrong_password_and_unknown_email_look_the_same(
        self, client: AsyncClient, registered: dict[str, Any]
    ):
        wrong = await client.post("/api/auth/login", json={"email": "watson@example.com", "password": "nope-nope"})
        unknown = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"detail": "Invalid credentials"}


class TestGuestFlow:
    async def test_guest_then_upgrade(self, client: AsyncClient):
        guest = await client.post("/api/auth/guest")
        assert guest.status_code == 201
        guest_body = guest.json()
        assert guest_body["user"]["isGuest"] is True
        assert guest_body["user"]["role"] == "GUEST"

        upgraded = await client.post(
            "/api/auth/upgrade",
            json={"email": "hudson@example.com", "password": TEST_PASSWORD, "name": "Mrs Hudson"},
            headers=auth_headers(guest_body["accessToken"]),
        )
        assert upgraded.status_code == 200
        body = upgraded.json()
        assert body["user"]["id"] == guest_body["user"]["id"]
        assert body["user"]["isGuest"] is False
        assert body["user"]["role"] == "USER"

        # The guest's token family was revoked by the upgrade
        stale = await client.post("/api/auth/refresh", json={"refreshToken": guest_body["refreshToken"]})
        assert stale.status_code == 403

        me = await client.get("/api/auth/me", headers=auth_headers(body["accessToken"]))
        assert me.json()["email"] == "hudson@example.com"

    async def test_registered_user_cannot_upgrade(self, client: AsyncClient, registered_headers: dict[str, str]):
        response = await client.post(
            "/api/auth/upgrade",
            json={"email": "other@example.com", "password": TEST_PASSWORD},
            headers=registered_headers,
        )
        assert response.status_code == 403

    async def test_upgrade_to_taken_email(self, client: AsyncClient, registered: dict[str, Any]):
        guest = (await client.post("/api/auth/guest")).json()
        response = await client.post(
            "/api/auth/upgrade",
            json={"email": "watson@example.com", "password": TEST_PASSWORD},
            headers=auth_headers(guest["accessToken"]),
        )
        assert response.status_code == 409


class TestRefresh:
    async def test_rotation(self, client: AsyncClient, registered: dict[str, Any]):
        response = await client.post("/api/auth/refresh", json={"refreshToken": registered["body"]["refreshToken"]})
        assert response.status_code == 200
        body = response.json()
        assert body["refreshToken"] != registered["body"]["refreshToken"]
        assert body["expiresIn"] == 900
        assert response.headers["set-cookie"].startswith("refresh_token=")

        me = await client.get("/api/auth/me", headers=auth_headers(body["accessToken"]))
        assert me.status_code == 200

    async def test_snake_case_body(self, client: AsyncClient, registered: dict[str, Any]):
        response = await client.post(
            "/api/auth/refresh", json={"refresh_token": registered["body"]["refreshToken"]}
        )
        assert response.status_code == 200

    async def test_cookie_fallback(self, client: AsyncClient, registered: dict[str, Any]):
        client.cookies.clear()
        response = await client.post("/api/auth/refresh", headers=_cookie(registered["body"]["refreshToken"]))
        assert response.status_code == 200

    async def test_reuse_revokes_family(self, client: AsyncClient, registered: dict[str, Any]):
        original = registered["body"]["refreshToken"]
        rotated = (await client.post("/api/auth/refresh", json={"refreshToken": original})).json()

        reuse = await client.post("/api/auth/refresh", json={"refreshToken": original})
        assert reuse.status_code == 403
        assert reuse.json() == {"detail": {"reason": "token_reuse_detected"}}

        # The legitimate successor dies with its family
        successor = await client.post("/api/auth/refresh", json={"refreshToken": rotated["refreshToken"]})
        assert successor.status_code == 403

    async def test_unknown_token(self, client: AsyncClient, database: None):
        response = await client.post("/api/auth/refresh", json={"refreshToken": "not-a-real-token"})
        assert response.status_code == 401
        assert response.json() == {"detail": {"reason": "invalid_refresh_token"}}

    async def test_missing_token(self, client: AsyncClient, database: None):
        client.cookies.clear()
        response = await client.post("/api/auth/refresh")
        assert response.status_code == 401


class TestLogout:
    async def test_logout_revokes_presented_family(self, client: AsyncClient, registered: dict[str, Any]):
        other = await _login(client, "watson@example.com")
        token = registered["body"]["refreshToken"]

        response = await client.post("/api/auth/logout", json={"refreshToken": token})
        assert response.status_code == 200
        assert response.json() == {"message": "Logged out"}

        assert (await client.post("/api/auth/refresh", json={"refreshToken": token})).status_code == 403
        # Other devices stay signed in
        still = await client.post("/api/auth/refresh", json={"refreshToken": other["refreshToken"]})
        assert still.status_code == 200

    async def test_logout_without_token_succeeds(self, client: AsyncClient, database: None):
        client.cookies.clear()
        response = await client.post("/api/auth/logout")
        assert response.status_code == 200

    async def test_logout_all(self, client: AsyncClient, registered: dict[str, Any], registered_headers):
        other = await _login(client, "watson@example.com")
        response = await client.post("/api/auth/logout-all", headers=registered_headers)
        assert response.status_code == 200

        for token in (registered["body"]["refreshToken"], other["refreshToken"]):
            assert (await client.post("/api/auth/refresh", json={"refreshToken": token})).status_code == 403

        sessions = await client.get("/api/auth/sessions", headers=registered_headers)
        assert sessions.json() == {"sessions": []}


class TestSessions:
    async def test_list_marks_current(self, client: AsyncClient, registered: dict[str, Any], registered_headers):
        second = await _login(client, "watson@example.com")
        client.cookies.clear()

        response = await client.get(
            "/api/auth/sessions", headers={**registered_headers, **_cookie(second["refreshToken"])}
        )
        assert response.status_code == 200
        sessions = response.json()["sessions"]
        assert len(sessions) == 2
        assert [s["current"] for s in sessions].count(True) == 1
        assert {"familyId", "issuedAt", "expiresAt", "ipAddress", "platform", "browser"} <= set(sessions[0])

    async def test_revoke_one_session(self, client: AsyncClient, registered: dict[str, Any], registered_headers):
        await _login(client, "watson@example.com")
        sessions = (await client.get("/api/auth/sessions", headers=registered_headers)).json()["sessions"]

        response = await client.delete(f"/api/auth/sessions/{sessions[0]['familyId']}", headers=registered_headers)
        assert response.status_code == 200

        remaining = (await client.get("/api/auth/sessions", headers=registered_headers)).json()["sessions"]
        assert [s["familyId"] for s in remaining] == [sessions[1]["familyId"]]

    async def test_other_users_session_is_not_found(self, client: AsyncClient, registered_headers):
        guest = (await client.post("/api/auth/guest")).json()
        guest_sessions = await client.get("/api/auth/sessions", headers=auth_headers(guest["accessToken"]))
        family_id = guest_sessions.json()["sessions"][0]["familyId"]

        response = await client.delete(f"/api/auth/sessions/{family_id}", headers=registered_headers)
        assert response.status_code == 404

        still = await client.post("/api/auth/refresh", json={"refreshToken": guest["refreshToken"]})
        assert still.status_code == 200


class TestHistory:
    async def test_history_actions(self, client: AsyncClient, registered: dict[str, Any], registered_headers):
        await _login(client, "watson@example.com")
        await client.post("/api/auth/logout-all", headers=registered_headers)

        response = await client.get("/api/auth/history", headers=registered_headers)
        history = response.json()["history"]
        assert [(h["action"], h["method"]) for h in history] == [
            ("logout", "all_devices"),
            ("login", "email"),
            ("login", "register"),
        ]


class TestAccount:
    async def test_me(self, client: AsyncClient, registered_headers):
        response = await client.get("/api/auth/me", headers=registered_headers)
        assert response.status_code == 200
        assert response.json()["email"] == "watson@example.com"

    async def test_me_requires_bearer(self, client: AsyncClient, database: None):
        assert (await client.get("/api/auth/me")).status_code == 401
        bad = await client.get("/api/auth/me", headers=auth_headers("not.a.jwt"))
        assert bad.status_code == 401
        assert bad.headers["www-authenticate"] == "Bearer"

    async def test_change_password(self, client: AsyncClient, registered: dict[str, Any], registered_headers):
        wrong = await client.post(
            "/api/auth/change-password",
            json={"currentPassword": "not-it", "newPassword": "a-better-password"},
            headers=registered_headers,
        )
        assert wrong.status_code == 401

        response = await client.post(
            "/api/auth/change-password",
            json={"currentPassword": TEST_PASSWORD, "newPassword": "a-better-password"},
            headers=registered_headers,
        )
        assert response.status_code == 200

        old = await client.post("/api/auth/refresh", json={"refreshToken": registered["body"]["refreshToken"]})
        assert old.status_code == 403
        assert (await _login(client, "watson@example.com", "a-better-password"))["accessToken"]

    async def test_guest_cannot_change_password(self, client: AsyncClient):
        guest = (await client.post("/api/auth/guest")).json()
        response = await client.post(
            "/api/auth/change-password",
            json={"currentPassword": "x", "newPassword": "a-better-password"},
            headers=auth_headers(guest["accessToken"]),
        )
        assert response.status_code == 403
