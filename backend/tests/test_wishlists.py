"""
Tests for the wishlist API: creation, listing, visibility and settings.
"""
from uuid import uuid4

from fastapi.testclient import TestClient

from deseo.core.security import create_session_token
from deseo.main import app


def _email() -> str:
    return f"user-{uuid4().hex[:8]}@example.com"


def _signed_in_client(email: str | None = None) -> tuple[TestClient, str]:
    email = email or _email()
    client = TestClient(app)
    client.cookies.set("token", create_session_token(email))
    return client, email


def _create(client: TestClient, **payload) -> dict:
    body = {"title": "Birthday"}
    body.update(payload)
    response = client.post("/api/wishlists", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestWishlistCreate:
    """Creating wishlists."""

    def test_anonymous_create_sets_owner_cookie(self):
        client = TestClient(app)
        data = _create(client, description="Things I like", items=[{"name": "Book", "price": 12.5}])

        assert data["title"] == "Birthday"
        assert data["description"] == "Things I like"
        assert data["currency"] == "USD"
        assert data["isPublic"] is False
        assert data["allowEdits"] is False
        assert data["isArchived"] is False
        assert data["userPermissions"] == {"canEdit": True, "isOwner": True}
        assert len(data["shareToken"]) == 32
        assert data["userId"] is None
        assert "ownerToken" not in data
        assert data["items"][0]["name"] == "Book"
        assert data["items"][0]["price"] == 12.5
        assert client.cookies.get(f"owner_{data['id']}")

    def test_authenticated_create_records_owner(self):
        client, email = _signed_in_client()
        data = _create(client)
        assert data["userId"] == email
        assert client.cookies.get(f"owner_{data['id']}") is None

    def test_timestamps_stay_utc_after_reload(self, client):
        created = _create(client, items=[{"name": "Globe"}])
        loaded = client.get(f"/api/wishlists/{created['id']}").json()

        assert loaded["createdAt"] == created["createdAt"]
        assert loaded["updatedAt"] == created["updatedAt"]
        assert loaded["items"][0]["createdAt"] == created["items"][0]["createdAt"]
        assert loaded["createdAt"].endswith("Z")

    def test_title_required(self):
        client = TestClient(app)
        response = client.post("/api/wishlists", json={"title": "   "})
        assert response.status_code == 400
        assert "detail" in response.json()

    def test_unknown_currency_rejected(self):
        client = TestClient(app)
        response = client.post("/api/wishlists", json={"title": "Trip", "currency": "XYZ"})
        assert response.status_code == 400

    def test_currency_is_normalized(self):
        client = TestClient(app)
        data = _create(client, currency="eur")
        assert data["currency"] == "EUR"


class TestWishlistList:

    def test_lists_only_own_wishlists(self):
        alice, _ = _signed_in_client()
        bob, _ = _signed_in_client()
        mine = _create(alice, title="Mine")
        _create(bob, title="Not mine")

        response = alice.get("/api/wishlists")
        assert response.status_code == 200
        assert [w["id"] for w in response.json()] == [mine["id"]]

    def test_anonymous_lists_by_owner_cookies(self):
        client = TestClient(app)
        first = _create(client, title="First")
        second = _create(client, title="Second")

        ids = [w["id"] for w in client.get("/api/wishlists").json()]
        assert set(ids) == {first["id"], second["id"]}
        # Newest update first
        assert ids[0] == second["id"]

    def test_anonymous_without_cookies_gets_empty_list(self):
        assert TestClient(app).get("/api/wishlists").json() == []

    def test_shared_lists_public_lists_of_others(self):
        owner, _ = _signed_in_client()
        public = _create(owner, title="Public")
        private = _create(owner, title="Private")
        archived = _create(owner, title="Archived")
        owner.patch(f"/api/wishlists/{public['id']}", json={"isPublic": True})
        owner.patch(f"/api/wishlists/{archived['id']}", json={"isPublic": True})
        owner.patch(f"/api/wishlists/{archived['id']}", json={"isArchived": True})

        visitor, _ = _signed_in_client()
        shared_ids = [w["id"] for w in visitor.get("/api/wishlists/shared").json()["shared"]]
        assert public["id"] in shared_ids
        assert private["id"] not in shared_ids
        assert archived["id"] not in shared_ids

        own_shared = [w["id"] for w in owner.get("/api/wishlists/shared").json()["shared"]]
        assert public["id"] not in own_shared


class TestWishlistGet:

    def test_unknown_is_404(self):
        response = TestClient(app).get("/api/wishlists/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Wishlist not found"

    def test_private_list_needs_share_token(self):
        owner = TestClient(app)
        data = _create(owner)
        visitor = TestClient(app)

        assert visitor.get(f"/api/wishlists/{data['id']}").status_code == 403

        response = visitor.get(f"/api/wishlists/{data['id']}", params={"token": data["shareToken"]})
        assert response.status_code == 200
        body = response.json()
        assert body["userPermissions"] == {"canEdit": False, "isOwner": False}
        assert body["shareToken"] is None
        assert body["userId"] is None

    def test_public_list_visible_to_anyone(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"isPublic": True})
        assert TestClient(app).get(f"/api/wishlists/{data['id']}").status_code == 200

    def test_archived_hidden_from_non_owner(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"isPublic": True})
        owner.patch(f"/api/wishlists/{data['id']}", json={"isArchived": True})

        response = TestClient(app).get(f"/api/wishlists/{data['id']}", params={"token": data["shareToken"]})
        assert response.status_code == 403
        assert response.json()["detail"] == "This wishlist has been archived"

        own_view = owner.get(f"/api/wishlists/{data['id']}")
        assert own_view.status_code == 200
        assert own_view.json()["userPermissions"] == {"canEdit": False, "isOwner": True}


class TestWishlistUpdate:

    def test_owner_updates_fields(self):
        owner = TestClient(app)
        data = _create(owner, description="old")
        response = owner.patch(
            f"/api/wishlists/{data['id']}",
            json={"title": "New title", "description": "", "currency": "gbp"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "New title"
        assert body["description"] is None
        assert body["currency"] == "GBP"

    def test_stranger_cannot_edit(self):
        data = _create(TestClient(app))
        response = TestClient(app).patch(f"/api/wishlists/{data['id']}", json={"title": "Hacked"})
        assert response.status_code == 403

    def test_editor_cannot_change_privacy_or_archive(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"allowEdits": True, "isPublic": True})

        editor = TestClient(app)
        assert editor.patch(f"/api/wishlists/{data['id']}", json={"title": "Edited"}).status_code == 200
        assert editor.patch(f"/api/wishlists/{data['id']}", json={"isPublic": False}).status_code == 403
        assert editor.patch(f"/api/wishlists/{data['id']}", json={"isArchived": True}).status_code == 403

    def test_archived_rejects_edits(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"isArchived": True})
        response = owner.patch(f"/api/wishlists/{data['id']}", json={"title": "Nope"})
        assert response.status_code == 403
        assert "archived" in response.json()["detail"]

    def test_unarchive_resets_sharing(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"isPublic": True, "allowEdits": True})
        owner.patch(f"/api/wishlists/{data['id']}", json={"isArchived": True})

        response = owner.patch(f"/api/wishlists/{data['id']}", json={"isArchived": False})
        assert response.status_code == 200
        body = response.json()
        assert body["isArchived"] is False
        assert body["isPublic"] is False
        assert body["allowEdits"] is False
        assert body["shareToken"] != data["shareToken"]

        old_link = TestClient(app).get(f"/api/wishlists/{data['id']}", params={"token": data["shareToken"]})
        assert old_link.status_code == 403

    def test_claim_anonymous_wishlist(self, client, sign_in):
        data = _create(client)
        email = _email()
        sign_in(client, email)

        response = client.patch(f"/api/wishlists/{data['id']}", json={"claimWishlist": True})
        assert response.status_code == 200
        body = response.json()
        assert body["userId"] == email
        assert body["userPermissions"] == {"canEdit": True, "isOwner": True}

        listed = [w["id"] for w in client.get("/api/wishlists").json()]
        assert data["id"] in listed

    def test_claim_without_owner_cookie_is_forbidden(self):
        data = _create(TestClient(app))
        stranger, _ = _signed_in_client()
        response = stranger.patch(f"/api/wishlists/{data['id']}", json={"claimWishlist": True})
        assert response.status_code == 403


class TestWishlistDelete:

    def test_owner_deletes(self):
        owner = TestClient(app)
        data = _create(owner, items=[{"name": "Lamp"}])
        response = owner.delete(f"/api/wishlists/{data['id']}")
        assert response.status_code == 200
        assert response.json()["message"] == "Wishlist deleted successfully"
        assert owner.get(f"/api/wishlists/{data['id']}").status_code == 404

    def test_delete_removes_reservations_and_short_link(self):
        owner = TestClient(app)
        data = _create(owner, items=[{"name": "Lamp"}])
        owner.patch(f"/api/wishlists/{data['id']}", json={"isPublic": True})
        owner.get(f"/api/shortlinks/{data['id']}")
        TestClient(app).post(
            f"/api/wishlists/{data['id']}/reserve",
            json={"itemId": data["items"][0]["id"]},
        )

        assert owner.delete(f"/api/wishlists/{data['id']}").status_code == 200

    def test_editor_cannot_delete(self):
        owner = TestClient(app)
        data = _create(owner)
        owner.patch(f"/api/wishlists/{data['id']}", json={"allowEdits": True})
        assert TestClient(app).delete(f"/api/wishlists/{data['id']}").status_code == 403
