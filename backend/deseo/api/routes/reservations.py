import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from deseo.api.cookies import set_reserver_cookie
from deseo.api.deps import (
    DbSessionDep,
    IdentityDep,
    ReserverIdDep,
    load_wishlist,
    wishlist_access,
)
from deseo.api.serializers import (
    find_item,
    find_reservation,
    is_my_reservation,
    serialize_item,
)
from deseo.core.security import generate_reserver_id, tokens_match
from deseo.models.models import Reservation, Wishlist, utcnow
from deseo.schemas.base import MessageResponse
from deseo.schemas.reservation import (
    OwnReservation,
    OwnReservations,
    ReservationsOverview,
    ReservedWishlist,
    ReserveRequest,
    ReserveResponse,
)


router = APIRouter(tags=["reservations"])
logger = logging.getLogger("deseo.reservations")


async def _reserve(
    db: AsyncSession,
    request: Request,
    wishlist_id: str,
    payload: ReserveRequest,
    identity: str | None,
    reserver_id: str,
    share_token: str | None,
) -> ReserveResponse:
    if not payload.item_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Item id required")

    wishlist = await load_wishlist(db, wishlist_id)
    if wishlist.is_archived:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This wishlist has been archived")
    access = wishlist_access(request, wishlist, identity, share_token)
    if not access.can_view:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to view this wishlist",
        )

    item = find_item(wishlist, payload.item_id)
    if access.is_owner:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Owner cannot reserve own item")
    if find_reservation(wishlist, item.id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Item is already reserved")

    reservation = Reservation(
        wishlist_id=wishlist.id,
        item_id=item.id,
        reserver_id=reserver_id,
        reserver_email=payload.reserver_email or identity,
        display_name=payload.display_name,
        passphrase=payload.passphrase,
        allow_disclosure=payload.allow_disclosure,
        reserved_at=utcnow(),
    )
    wishlist.reservations.append(reservation)
    try:
        await db.commit()
    except IntegrityError:
        # Lost the race against a concurrent reservation of the same item.
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Item is already reserved") from None

    logger.info("Item reserved wishlist=%s item=%s", wishlist_id, item.id)
    return ReserveResponse(message="Item reserved", reserver_id=reserver_id, passphrase=payload.passphrase)


@router.post("/wishlists/{wishlist_id}/reserve", response_model=ReserveResponse)
async def reserve_item(
    wishlist_id: str,
    payload: ReserveRequest,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
    token: str | None = Query(default=None),
) -> JSONResponse:
    reserver_id = reserver_id or generate_reserver_id()
    try:
        result = await _reserve(db, request, wishlist_id, payload, identity, reserver_id, token)
    except HTTPException as exc:
        response = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
        set_reserver_cookie(response, reserver_id)
        return response

    response = JSONResponse(content=result.model_dump(mode="json", by_alias=True))
    set_reserver_cookie(response, reserver_id)
    return response


@router.get("/wishlists/{wishlist_id}/reserve", response_model=OwnReservations)
async def list_own_reservations(
    wishlist_id: str,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
) -> OwnReservations:
    wishlist = await load_wishlist(db, wishlist_id)
    if not identity and not reserver_id:
        return OwnReservations(reservations=[])
    return OwnReservations(
        reservations=[
            OwnReservation.model_validate(reservation)
            for reservation in wishlist.reservations
            if is_my_reservation(reservation, identity, reserver_id)
        ]
    )


@router.delete("/wishlists/{wishlist_id}/reserve", response_model=MessageResponse)
async def cancel_reservation(
    wishlist_id: str,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
    item_id: str | None = Query(default=None, alias="itemId"),
    passphrase: str | None = Query(default=None),
) -> MessageResponse:
    if not item_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Item id required")

    wishlist = await load_wishlist(db, wishlist_id)
    reservation = find_reservation(wishlist, item_id)
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    allowed = is_my_reservation(reservation, identity, reserver_id) or tokens_match(
        reservation.passphrase, passphrase
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only cancel your own reservation",
        )

    wishlist.reservations.remove(reservation)
    await db.commit()
    logger.info("Reservation cancelled wishlist=%s item=%s", wishlist_id, item_id)
    return MessageResponse(message="Reservation cancelled")


@router.get("/reservations", response_model=ReservationsOverview)
async def list_reservations(
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    reserver_id: ReserverIdDep,
) -> ReservationsOverview:
    """Items the caller reserved, grouped by wishlist."""
    conditions = []
    if reserver_id:
        conditions.append(Reservation.reserver_id == reserver_id)
    if identity:
        conditions.append(Reservation.reserver_email == identity)
    if not conditions:
        return ReservationsOverview(reservations=[])

    reserved_in = select(Reservation.wishlist_id).where(or_(*conditions)).distinct()
    result = await db.execute(
        select(Wishlist)
        .where(Wishlist.id.in_(reserved_in))
        .options(selectinload(Wishlist.items), selectinload(Wishlist.reservations))
        .order_by(Wishlist.updated_at.desc())
    )

    overview: list[ReservedWishlist] = []
    for wishlist in result.scalars().all():
        access = wishlist_access(request, wishlist, identity)
        if not (access.is_owner or (wishlist.is_public and not wishlist.is_archived)):
            continue
        mine = {
            reservation.item_id
            for reservation in wishlist.reservations
            if is_my_reservation(reservation, identity, reserver_id)
        }
        items = [serialize_item(item) for item in wishlist.items if item.id in mine]
        if items:
            overview.append(
                ReservedWishlist(
                    wishlist_id=wishlist.id,
                    title=wishlist.title,
                    currency=wishlist.currency,
                    items=items,
                )
            )
    return ReservationsOverview(reservations=overview)
