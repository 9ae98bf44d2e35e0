"""
Ownership and permission resolution for wishlists.

A wishlist is owned either by an authenticated user (``user_id`` holds the
owner's email) or by an anonymous creator who holds the ``owner_<id>``
cookie matching ``owner_token``. Every route that touches a wishlist goes
through :func:`resolve_wishlist_access` instead of re-deriving the rules.
"""
from dataclasses import dataclass
from typing import Mapping

from deseo.core.security import tokens_match
from deseo.models.models import Wishlist


OWNER_COOKIE_PREFIX = "owner_"


def owner_cookie_name(wishlist_id: str) -> str:
    return f"{OWNER_COOKIE_PREFIX}{wishlist_id}"


def owner_tokens_from_cookies(cookies: Mapping[str, str]) -> dict[str, str]:
    """Map wishlist id -> owner token for every ``owner_*`` cookie."""
    return {
        name[len(OWNER_COOKIE_PREFIX):]: value
        for name, value in cookies.items()
        if name.startswith(OWNER_COOKIE_PREFIX) and len(name) > len(OWNER_COOKIE_PREFIX) and value
    }


@dataclass(frozen=True)
class WishlistAccess:
    is_owner: bool
    can_edit: bool
    can_view: bool
    # Owner or allowEdits, ignoring the archived flag.
    has_edit_grant: bool
    # Signed-in user holding the anonymous owner cookie of an unclaimed list.
    can_claim: bool

    def as_permissions(self) -> dict[str, bool]:
        return {"canEdit": self.can_edit, "isOwner": self.is_owner}


def is_wishlist_owner(
    wishlist: Wishlist,
    identity: str | None,
    owner_cookie: str | None,
) -> bool:
    if identity:
        return bool(wishlist.user_id) and wishlist.user_id == identity
    return tokens_match(wishlist.owner_token, owner_cookie)


def resolve_wishlist_access(
    wishlist: Wishlist,
    identity: str | None,
    owner_cookie: str | None = None,
    share_token: str | None = None,
) -> WishlistAccess:
    archived = bool(wishlist.is_archived)
    is_owner = is_wishlist_owner(wishlist, identity, owner_cookie)
    has_edit_grant = is_owner or bool(wishlist.allow_edits)
    can_edit = has_edit_grant and not archived
    can_view = (
        can_edit
        or (bool(wishlist.is_public) and not archived)
        or (tokens_match(wishlist.share_token, share_token) and not archived)
    )
    can_claim = (
        bool(identity)
        and not wishlist.user_id
        and tokens_match(wishlist.owner_token, owner_cookie)
    )
    return WishlistAccess(
        is_owner=is_owner,
        can_edit=can_edit,
        can_view=can_view,
        has_edit_grant=has_edit_grant,
        can_claim=can_claim,
    )
