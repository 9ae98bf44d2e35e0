from fastapi import HTTPException, status

from deseo.core.permissions import WishlistAccess
from deseo.models.models import Reservation, Wishlist, WishlistItem
from deseo.schemas.wishlist import (
    ItemPublic,
    ReservationPublic,
    UserPermissions,
    WishlistPublic,
)


def is_my_reservation(
    reservation: Reservation,
    identity: str | None,
    reserver_id: str | None,
) -> bool:
    if reserver_id and reservation.reserver_id == reserver_id:
        return True
    return bool(identity) and reservation.reserver_email == identity


def find_item(wishlist: Wishlist, item_id: str) -> WishlistItem:
    for item in wishlist.items:
        if item.id == item_id:
            return item
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")


def find_reservation(wishlist: Wishlist, item_id: str) -> Reservation | None:
    return next((r for r in wishlist.reservations if r.item_id == item_id), None)


def serialize_item(item: WishlistItem) -> ItemPublic:
    return ItemPublic.model_validate(item)


def serialize_reservation(
    reservation: Reservation,
    identity: str | None,
    reserver_id: str | None,
) -> ReservationPublic:
    # Reserver identity and passphrase never leave the server unless disclosure was opted into.
    disclose = bool(reservation.allow_disclosure)
    return ReservationPublic(
        item_id=reservation.item_id,
        reserved_at=reservation.reserved_at,
        allow_disclosure=disclose,
        display_name=reservation.display_name if disclose else None,
        reserver_email=reservation.reserver_email if disclose else None,
        is_mine=is_my_reservation(reservation, identity, reserver_id),
    )


def serialize_wishlist(
    wishlist: Wishlist,
    access: WishlistAccess,
    identity: str | None = None,
    reserver_id: str | None = None,
) -> WishlistPublic:
    """
    Render a wishlist for one caller.

    ``userId`` and ``shareToken`` are only returned to the owner; the owner
    token is never returned.
    """
    return WishlistPublic(
        id=wishlist.id,
        title=wishlist.title,
        description=wishlist.description,
        currency=wishlist.currency,
        items=[serialize_item(item) for item in wishlist.items],
        reservations=[
            serialize_reservation(reservation, identity, reserver_id)
            for reservation in wishlist.reservations
        ],
        user_id=wishlist.user_id if access.is_owner else None,
        is_public=bool(wishlist.is_public),
        allow_edits=bool(wishlist.allow_edits),
        is_archived=bool(wishlist.is_archived),
        share_token=wishlist.share_token if access.is_owner else None,
        created_at=wishlist.created_at,
        updated_at=wishlist.updated_at,
        user_permissions=UserPermissions(can_edit=access.can_edit, is_owner=access.is_owner),
    )
