import logging

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from deseo.api.cookies import clear_owner_cookie, set_owner_cookie
from deseo.api.deps import (
    DbSessionDep,
    IdentityDep,
    ReserverIdDep,
    load_wishlist,
    wishlist_access,
)
from deseo.api.serializers import serialize_wishlist
from deseo.core.audit import AuditAction, audit_wishlist_action
from deseo.core.permissions import owner_tokens_from_cookies, resolve_wishlist_access
from deseo.core.security import generate_owner_token, generate_share_token
from deseo.models.models import Wishlist, WishlistItem, utcnow
from deseo.schemas.base import MessageResponse
from deseo.schemas.wishlist import (
    SharedWishlists,
    WishlistCreate,
    WishlistPublic,
    WishlistUpdate,
)


router = APIRouter(prefix="/wishlists", tags=["wishlists"])
logger = logging.getLogger("deseo.wishlists")


def _with_contents(query):
    return query.options(
        selectinload(Wishlist.items),
        selectinload(Wishlist.reservations),
    )


@router.post("", response_model=WishlistPublic, status_code=status.HTTP_201_CREATED)
async def create_wishlist(
    payload: WishlistCreate,
    request: Request,
    response: Response,
    db: DbSessionDep,
    identity: IdentityDep,
) -> WishlistPublic:
    now = utcnow()
    owner_token = None if identity else generate_owner_token()
    wishlist = Wishlist(
        title=payload.title,
        description=payload.description,
        currency=payload.currency,
        user_id=identity,
        owner_token=owner_token,
        share_token=generate_share_token(),
        is_public=False,
        allow_edits=False,
        is_archived=False,
        created_at=now,
        updated_at=now,
    )
    wishlist.items = [
        WishlistItem(
            name=item.name,
            description=item.description,
            price=item.price,
            currency=item.currency,
            url=item.url,
            image_url=item.image_url,
            created_at=now,
            updated_at=now,
        )
        for item in payload.items
    ]
    wishlist.reservations = []
    db.add(wishlist)
    await db.commit()

    if owner_token:
        set_owner_cookie(response, wishlist.id, owner_token)

    audit_wishlist_action(AuditAction.WISHLIST_CREATE, request, identity, wishlist.id)
    logger.info("Wishlist created id=%s items=%d anonymous=%s", wishlist.id, len(wishlist.items), identity is None)
    access = resolve_wishlist_access(wishlist, identity, owner_token)
    return serialize_wishlist(wishlist, access, identity)


@router.get("", response_model=list[WishlistPublic])
async def list_my_wishlists(
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
) -> list[WishlistPublic]:
    query = _with_contents(select(Wishlist)).order_by(Wishlist.updated_at.desc())
    if identity:
        query = query.where(Wishlist.user_id == identity)
    else:
        owner_tokens = owner_tokens_from_cookies(request.cookies)
        if not owner_tokens:
            return []
        query = query.where(Wishlist.id.in_(list(owner_tokens)), Wishlist.user_id.is_(None))

    result = await db.execute(query)
    payload: list[WishlistPublic] = []
    for wishlist in result.scalars().all():
        access = wishlist_access(request, wishlist, identity)
        if access.is_owner:
            payload.append(serialize_wishlist(wishlist, access, identity, reserver_id))
    return payload


@router.get("/shared", response_model=SharedWishlists)
async def list_shared_wishlists(
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
) -> SharedWishlists:
    query = (
        _with_contents(select(Wishlist))
        .where(Wishlist.is_public.is_(True), Wishlist.is_archived.is_(False))
        .order_by(Wishlist.updated_at.desc())
    )
    if identity:
        query = query.where(or_(Wishlist.user_id.is_(None), Wishlist.user_id != identity))

    result = await db.execute(query)
    shared: list[WishlistPublic] = []
    for wishlist in result.scalars().all():
        access = wishlist_access(request, wishlist, identity)
        if access.is_owner:
            continue
        shared.append(serialize_wishlist(wishlist, access, identity, reserver_id))
    return SharedWishlists(shared=shared)


@router.get("/{wishlist_id}", response_model=WishlistPublic)
async def get_wishlist(
    wishlist_id: str,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
    token: str | None = Query(default=None),
) -> WishlistPublic:
    wishlist = await load_wishlist(db, wishlist_id)

    if not wishlist.share_token:
        wishlist.share_token = generate_share_token()
        wishlist.updated_at = utcnow()
        await db.commit()
        logger.info("Backfilled share token wishlist=%s", wishlist.id)

    access = wishlist_access(request, wishlist, identity, token)
    if wishlist.is_archived and not access.is_owner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This wishlist has been archived")
    if not access.can_view and not access.is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to view this wishlist",
        )
    return serialize_wishlist(wishlist, access, identity, reserver_id)


@router.patch("/{wishlist_id}", response_model=WishlistPublic)
async def update_wishlist(
    wishlist_id: str,
    payload: WishlistUpdate,
    request: Request,
    response: Response,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
) -> WishlistPublic:
    wishlist = await load_wishlist(db, wishlist_id)
    access = wishlist_access(request, wishlist, identity)

    if payload.claim_wishlist and access.can_claim:
        wishlist.user_id = identity
        wishlist.owner_token = None
        wishlist.updated_at = utcnow()
        await db.commit()
        clear_owner_cookie(response, wishlist.id)
        audit_wishlist_action(AuditAction.WISHLIST_CLAIM, request, identity, wishlist.id)
        access = resolve_wishlist_access(wishlist, identity)
        return serialize_wishlist(wishlist, access, identity, reserver_id)

    if not access.has_edit_grant:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to edit this wishlist",
        )
    if payload.is_archived is not None and not access.is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the wishlist owner can archive/unarchive this wishlist",
        )
    if (payload.is_public is not None or payload.allow_edits is not None) and not access.is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the wishlist owner can change privacy settings",
        )
    if wishlist.is_archived and payload.is_archived is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot edit an archived wishlist. Please unarchive it first.",
        )

    fields = payload.model_fields_set
    if payload.title is not None:
        wishlist.title = payload.title
    if "description" in fields:
        wishlist.description = payload.description
    if payload.currency is not None:
        wishlist.currency = payload.currency
    if payload.is_public is not None:
        wishlist.is_public = payload.is_public
    if payload.allow_edits is not None:
        wishlist.allow_edits = payload.allow_edits
    if payload.is_archived is not None:
        was_archived = bool(wishlist.is_archived)
        wishlist.is_archived = payload.is_archived
        if was_archived and not payload.is_archived:
            # Links handed out before archiving stop working.
            wishlist.is_public = False
            wishlist.allow_edits = False
            wishlist.share_token = generate_share_token()
        if was_archived != payload.is_archived:
            audit_wishlist_action(
                AuditAction.WISHLIST_ARCHIVE,
                request,
                identity,
                wishlist.id,
                {"archived": payload.is_archived},
            )
    wishlist.updated_at = utcnow()
    await db.commit()

    access = wishlist_access(request, wishlist, identity)
    return serialize_wishlist(wishlist, access, identity, reserver_id)


@router.delete("/{wishlist_id}", response_model=MessageResponse)
async def delete_wishlist(
    wishlist_id: str,
    request: Request,
    response: Response,
    db: DbSessionDep,
    identity: IdentityDep,
) -> MessageResponse:
    wishlist = await load_wishlist(db, wishlist_id)
    access = wishlist_access(request, wishlist, identity)
    if not access.is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to delete this wishlist",
        )

    await db.delete(wishlist)
    await db.commit()
    if not identity:
        clear_owner_cookie(response, wishlist_id)
    audit_wishlist_action(AuditAction.WISHLIST_DELETE, request, identity, wishlist_id)
    return MessageResponse(message="Wishlist deleted successfully")
