import logging

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from deseo.api.deps import DbSessionDep, IdentityDep, load_wishlist, wishlist_access
from deseo.api.serializers import find_item, find_reservation, serialize_item
from deseo.models.models import Wishlist, WishlistItem, utcnow
from deseo.schemas.base import MessageResponse
from deseo.schemas.wishlist import ItemCreate, ItemCreated, ItemUpdate


router = APIRouter(prefix="/wishlists/{wishlist_id}/items", tags=["items"])
logger = logging.getLogger("deseo.items")


async def _load_editable_wishlist(
    db: AsyncSession,
    request: Request,
    wishlist_id: str,
    identity: str | None,
) -> Wishlist:
    wishlist = await load_wishlist(db, wishlist_id)
    if wishlist.is_archived:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot modify items of an archived wishlist",
        )
    access = wishlist_access(request, wishlist, identity)
    if not access.can_edit:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to edit this wishlist",
        )
    return wishlist


@router.post("", response_model=ItemCreated, status_code=status.HTTP_201_CREATED)
async def add_item(
    wishlist_id: str,
    payload: ItemCreate,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
) -> ItemCreated:
    wishlist = await _load_editable_wishlist(db, request, wishlist_id, identity)
    now = utcnow()
    item = WishlistItem(
        name=payload.name,
        description=payload.description,
        price=payload.price,
        currency=payload.currency,
        url=payload.url,
        image_url=payload.image_url,
        created_at=now,
        updated_at=now,
    )
    wishlist.items.append(item)
    wishlist.updated_at = now
    await db.commit()
    logger.info("Item added wishlist=%s item=%s", wishlist.id, item.id)
    return ItemCreated(item=serialize_item(item))


@router.put("/{item_id}", response_model=MessageResponse)
@router.patch("/{item_id}", response_model=MessageResponse)
async def update_item(
    wishlist_id: str,
    item_id: str,
    payload: ItemUpdate,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
) -> MessageResponse:
    wishlist = await _load_editable_wishlist(db, request, wishlist_id, identity)
    item = find_item(wishlist, item_id)

    fields = payload.model_fields_set
    if payload.name is not None:
        item.name = payload.name
    # Present-but-empty clears the field.
    for attr in ("description", "url", "image_url", "price", "currency"):
        if attr in fields:
            setattr(item, attr, getattr(payload, attr))

    now = utcnow()
    item.updated_at = now
    wishlist.updated_at = now
    await db.commit()
    return MessageResponse(message="Item updated successfully")


@router.delete("/{item_id}", response_model=MessageResponse)
async def delete_item(
    wishlist_id: str,
    item_id: str,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
) -> MessageResponse:
    wishlist = await _load_editable_wishlist(db, request, wishlist_id, identity)
    item = find_item(wishlist, item_id)

    reservation = find_reservation(wishlist, item.id)
    if reservation is not None:
        wishlist.reservations.remove(reservation)
        await db.flush()
    wishlist.items.remove(item)
    wishlist.updated_at = utcnow()
    await db.commit()
    logger.info("Item deleted wishlist=%s item=%s dropped_reservation=%s", wishlist.id, item_id, reservation is not None)
    return MessageResponse(message="Item deleted successfully")
