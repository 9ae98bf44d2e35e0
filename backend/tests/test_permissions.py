from deseo.core.permissions import (
    owner_cookie_name,
    owner_tokens_from_cookies,
    resolve_wishlist_access,
)
from deseo.models.models import Wishlist


def _wishlist(**overrides) -> Wishlist:
    fields = {
        "id": "w1",
        "title": "Birthday",
        "currency": "USD",
        "user_id": None,
        "owner_token": None,
        "share_token": "share-token",
        "is_public": False,
        "allow_edits": False,
        "is_archived": False,
    }
    fields.update(overrides)
    return Wishlist(**fields)


class TestOwnership:

    def test_authenticated_owner(self):
        access = resolve_wishlist_access(_wishlist(user_id="a@example.com"), "a@example.com")
        assert access.is_owner
        assert access.can_edit
        assert access.can_view

    def test_other_user_is_not_owner(self):
        access = resolve_wishlist_access(_wishlist(user_id="a@example.com"), "b@example.com")
        assert not access.is_owner
        assert not access.can_edit
        assert not access.can_view

    def test_anonymous_owner_cookie(self):
        wishlist = _wishlist(owner_token="secret")
        assert resolve_wishlist_access(wishlist, None, "secret").is_owner
        assert not resolve_wishlist_access(wishlist, None, "wrong").is_owner
        assert not resolve_wishlist_access(wishlist, None, None).is_owner

    def test_signed_in_user_with_owner_cookie_is_not_owner_but_can_claim(self):
        wishlist = _wishlist(owner_token="secret")
        access = resolve_wishlist_access(wishlist, "a@example.com", "secret")
        assert not access.is_owner
        assert access.can_claim

    def test_claimed_list_cannot_be_claimed_again(self):
        wishlist = _wishlist(user_id="a@example.com", owner_token="secret")
        assert not resolve_wishlist_access(wishlist, "b@example.com", "secret").can_claim

    def test_anonymous_cannot_claim(self):
        wishlist = _wishlist(owner_token="secret")
        assert not resolve_wishlist_access(wishlist, None, "secret").can_claim


class TestVisibility:

    def test_public_list_is_viewable(self):
        access = resolve_wishlist_access(_wishlist(is_public=True), None)
        assert access.can_view
        assert not access.can_edit

    def test_share_token_grants_view(self):
        wishlist = _wishlist()
        assert resolve_wishlist_access(wishlist, None, share_token="share-token").can_view
        assert not resolve_wishlist_access(wishlist, None, share_token="nope").can_view

    def test_allow_edits_grants_edit_to_anyone(self):
        access = resolve_wishlist_access(_wishlist(allow_edits=True), None)
        assert access.can_edit
        assert access.can_view
        assert not access.is_owner

    def test_archived_blocks_everything_but_ownership(self):
        wishlist = _wishlist(
            user_id="a@example.com",
            is_public=True,
            allow_edits=True,
            is_archived=True,
        )
        owner = resolve_wishlist_access(wishlist, "a@example.com")
        assert owner.is_owner
        assert not owner.can_edit
        assert owner.has_edit_grant

        visitor = resolve_wishlist_access(wishlist, None, share_token="share-token")
        assert not visitor.can_view
        assert not visitor.can_edit

    def test_permissions_payload(self):
        access = resolve_wishlist_access(_wishlist(user_id="a@example.com"), "a@example.com")
        assert access.as_permissions() == {"canEdit": True, "isOwner": True}


class TestOwnerCookies:

    def test_cookie_name(self):
        assert owner_cookie_name("abc") == "owner_abc"

    def test_tokens_from_cookies(self):
        cookies = {
            "owner_w1": "t1",
            "owner_w2": "t2",
            "owner_": "ignored",
            "owner_w3": "",
            "token": "session",
        }
        assert owner_tokens_from_cookies(cookies) == {"w1": "t1", "w2": "t2"}
