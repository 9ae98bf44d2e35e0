"""
Tests for magic-link sign-in, session status and anonymous data migration.
"""
import logging
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from deseo.api.routes import auth as auth_routes
from deseo.core.config import settings
from deseo.core.rate_limit import InMemoryRateLimiter
from deseo.core.security import create_magic_link_token, create_session_token, decode_session_token
from deseo.main import app


def _verify(client: TestClient, email: str):
    return client.get(
        "/api/auth/verify-magic-link",
        params={"token": create_magic_link_token(email)},
        follow_redirects=False,
    )


class TestSendMagicLink:

    def test_sends_link(self):
        client = TestClient(app)
        with patch.object(auth_routes, "send_magic_link_email", AsyncMock(return_value=True)) as sender:
            response = client.post("/api/auth/send-magic-link", json={"email": "Alice@Example.com"})

        assert response.status_code == 200
        assert response.json() == {"message": "Magic link sent successfully"}
        to_email, link = sender.await_args.args
        assert to_email == "alice@example.com"
        parsed = urlparse(link)
        assert parsed.path == "/api/auth/verify-magic-link"
        token = parse_qs(parsed.query)["token"][0]
        assert client.get(
            "/api/auth/verify-magic-link", params={"token": token}, follow_redirects=False
        ).status_code == 302

    def test_invalid_email(self):
        response = TestClient(app).post("/api/auth/send-magic-link", json={"email": "nope"})
        assert response.status_code == 400

    def test_send_failure_is_500(self):
        with patch.object(auth_routes, "send_magic_link_email", AsyncMock(return_value=False)):
            response = TestClient(app).post("/api/auth/send-magic-link", json={"email": "a@example.com"})
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to send magic link"

    def test_local_without_smtp_logs_link(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "smtp_host", "")
        with caplog.at_level(logging.INFO, logger="deseo.mailer"):
            response = TestClient(app).post("/api/auth/send-magic-link", json={"email": "dev@example.com"})
        assert response.status_code == 200
        assert any("/api/auth/verify-magic-link?token=" in r.getMessage() for r in caplog.records)

    def test_deployed_without_smtp_fails_and_keeps_link_private(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "smtp_host", "")
        with caplog.at_level(logging.INFO):
            response = TestClient(app).post("/api/auth/send-magic-link", json={"email": "ops@example.com"})
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to send magic link"
        assert not any("verify-magic-link?token=" in r.getMessage() for r in caplog.records)

    def test_rate_limited(self, monkeypatch):
        from deseo.core import rate_limit

        monkeypatch.setattr(settings, "rate_limit_enabled", True)
        monkeypatch.setattr(rate_limit, "limiter", InMemoryRateLimiter())
        client = TestClient(app)
        with patch.object(auth_routes, "send_magic_link_email", AsyncMock(return_value=True)):
            statuses = [
                client.post("/api/auth/send-magic-link", json={"email": "a@example.com"}).status_code
                for _ in range(settings.magic_link_rate_limit_requests + 1)
            ]
        assert statuses[:-1] == [200] * settings.magic_link_rate_limit_requests
        assert statuses[-1] == 429


class TestVerifyMagicLink:

    def test_sets_session_cookie_and_redirects(self):
        client = TestClient(app)
        response = _verify(client, "bob@example.com")
        assert response.status_code == 302
        assert response.headers["location"] == "http://testserver/dashboard"
        set_cookie = response.headers["set-cookie"]
        assert "token=" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "Max-Age=604800" in set_cookie
        assert decode_session_token(client.cookies.get("token")) == "bob@example.com"

        status_body = client.get("/api/auth/status").json()
        assert status_body == {"authenticated": True, "email": "bob@example.com"}

    def test_second_sign_in_updates_existing_user(self):
        client = TestClient(app)
        assert _verify(client, "repeat@example.com").status_code == 302
        assert _verify(client, "repeat@example.com").status_code == 302

    def test_missing_token(self):
        response = TestClient(app).get("/api/auth/verify-magic-link")
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid token"

    def test_session_token_rejected(self):
        response = TestClient(app).get(
            "/api/auth/verify-magic-link",
            params={"token": create_session_token("bob@example.com")},
        )
        assert response.status_code == 400

    def test_migrates_anonymous_wishlists_and_reservations(self):
        owner = TestClient(app)
        wishlist = owner.post("/api/wishlists", json={"title": "Anon", "items": [{"name": "Pen"}]}).json()
        owner.patch(f"/api/wishlists/{wishlist['id']}", json={"isPublic": True})

        guest_owner = TestClient(app)
        other = guest_owner.post("/api/wishlists", json={"title": "Other", "items": [{"name": "Cup"}]}).json()
        guest_owner.patch(f"/api/wishlists/{other['id']}", json={"isPublic": True})
        owner.post(f"/api/wishlists/{other['id']}/reserve", json={"itemId": other["items"][0]["id"]})

        assert _verify(owner, "carol@example.com").status_code == 302

        mine = [w["id"] for w in owner.get("/api/wishlists").json()]
        assert mine == [wishlist["id"]]
        assert owner.get(f"/api/wishlists/{wishlist['id']}").json()["userId"] == "carol@example.com"

        # Reachable by email alone, without the anonymous cookie.
        fresh = TestClient(app)
        fresh.cookies.set("token", create_session_token("carol@example.com"))
        groups = fresh.get("/api/reservations").json()["reservations"]
        assert [g["wishlistId"] for g in groups] == [other["id"]]

    def test_foreign_owner_cookie_is_not_migrated(self):
        owner = TestClient(app)
        wishlist = owner.post("/api/wishlists", json={"title": "Mine"}).json()

        intruder = TestClient(app)
        intruder.cookies.set(f"owner_{wishlist['id']}", "forged")
        assert _verify(intruder, "mallory@example.com").status_code == 302
        assert intruder.get("/api/wishlists").json() == []


class TestStatusAndSignout:

    def test_anonymous_status(self):
        assert TestClient(app).get("/api/auth/status").json() == {"authenticated": False, "email": None}

    def test_garbage_session_is_anonymous(self):
        client = TestClient(app)
        client.cookies.set("token", "garbage")
        assert client.get("/api/auth/status").json()["authenticated"] is False

    def test_bearer_header(self):
        token = create_session_token("dave@example.com")
        response = TestClient(app).get("/api/auth/status", headers={"Authorization": f"Bearer {token}"})
        assert response.json() == {"authenticated": True, "email": "dave@example.com"}

    def test_signout_clears_cookie(self):
        client = TestClient(app)
        _verify(client, "erin@example.com")
        response = client.post("/api/auth/signout")
        assert response.status_code == 200
        assert response.json() == {"message": "Signed out successfully"}
        assert client.get("/api/auth/status").json()["authenticated"] is False


class TestCookieFlags:

    def test_cross_site_cookie_flags_outside_local(self, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")
        response = _verify(TestClient(app), "frank@example.com")
        set_cookie = response.headers["set-cookie"]
        assert "Secure" in set_cookie
        assert "samesite=none" in set_cookie.lower()
