from collections import Counter
import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from deseo.api.deps import DbSessionDep, IdentityDep, load_wishlist, public_base_url, wishlist_access
from deseo.core.audit import AuditAction, audit_wishlist_action
from deseo.core.config import settings
from deseo.core.security import generate_share_token
from deseo.core.shortcodes import (
    ShortCodeAllocationError,
    ShortCodeError,
    allocate_short_code,
    validate_custom_code,
)
from deseo.models.models import ShortLink, ShortLinkClick, Wishlist, utcnow
from deseo.schemas.shortlink import (
    ClicksByDate,
    RecentClick,
    ShortLinkAnalytics,
    ShortLinkDebug,
    ShortLinkPublic,
    ShortLinkRequest,
    ShortLinkUpdated,
)


router = APIRouter(prefix="/shortlinks", tags=["shortlinks"])
logger = logging.getLogger("deseo.shortlinks")

RECENT_CLICKS_LIMIT = 20
SIMILAR_CODES_LIMIT = 5
CODE_TAKEN_DETAIL = "This short code is already taken. Please choose another."


async def _load_owned_wishlist(
    db: AsyncSession,
    request: Request,
    wishlist_id: str,
    identity: str | None,
) -> Wishlist:
    wishlist = await load_wishlist(db, wishlist_id)
    if not wishlist_access(request, wishlist, identity).is_owner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return wishlist


async def _get_short_link(db: AsyncSession, wishlist_id: str) -> ShortLink | None:
    result = await db.execute(select(ShortLink).where(ShortLink.wishlist_id == wishlist_id))
    return result.scalar_one_or_none()


def _ensure_share_token(wishlist: Wishlist) -> str:
    if not wishlist.share_token:
        wishlist.share_token = generate_share_token()
        wishlist.updated_at = utcnow()
    return wishlist.share_token


async def _next_free_code(db: AsyncSession) -> str:
    try:
        return await allocate_short_code(db)
    except ShortCodeAllocationError as exc:
        logger.error("Short code allocation exhausted")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from None


async def _commit_short_link(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=CODE_TAKEN_DETAIL) from None


async def _commit_new_short_link(db: AsyncSession, link: ShortLink) -> ShortLink:
    """Commit a first short link; when a concurrent request won, return its link."""
    wishlist_id = link.wishlist_id
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _get_short_link(db, wishlist_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=CODE_TAKEN_DETAIL) from None
        logger.info("Short link already created concurrently wishlist=%s code=%s", wishlist_id, existing.short_code)
        return existing
    logger.info("Short link created wishlist=%s code=%s", wishlist_id, link.short_code)
    return link


def _short_url(request: Request, short_code: str) -> str:
    return f"{public_base_url(request)}/s/{short_code}"


@router.get("/debug", response_model=ShortLinkDebug, response_model_exclude_none=True)
async def debug_short_code(
    db: DbSessionDep,
    code: str | None = Query(default=None),
) -> ShortLinkDebug:
    """Diagnose a short code; only served in the local environment."""
    if not settings.is_local:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing code parameter. Use ?code=YOUR_CODE",
        )

    result = await db.execute(select(ShortLink).where(ShortLink.short_code == code))
    link = result.scalar_one_or_none()
    if link is None:
        similar = await db.execute(
            select(ShortLink.short_code)
            .where(func.lower(ShortLink.short_code).contains(code.lower(), autoescape=True))
            .limit(SIMILAR_CODES_LIMIT)
        )
        return ShortLinkDebug(
            exists=False,
            message="Short code not found",
            searched_code=code,
            similar_codes=list(similar.scalars().all()),
        )

    wishlist = await db.get(Wishlist, link.wishlist_id)
    return ShortLinkDebug(
        exists=True,
        short_code=link.short_code,
        wishlist_id=link.wishlist_id,
        wishlist_exists=wishlist is not None,
        wishlist_title=wishlist.title if wishlist else None,
        share_token="exists" if link.share_token else "missing",
        custom_code=bool(link.custom_code),
        created_at=link.created_at,
    )


@router.get("/{wishlist_id}", response_model=ShortLinkPublic)
async def get_short_link(
    wishlist_id: str,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
) -> ShortLinkPublic:
    wishlist = await _load_owned_wishlist(db, request, wishlist_id, identity)
    link = await _get_short_link(db, wishlist.id)
    if link is None:
        now = utcnow()
        link = ShortLink(
            short_code=await _next_free_code(db),
            wishlist_id=wishlist.id,
            share_token=_ensure_share_token(wishlist),
            custom_code=False,
            created_at=now,
            updated_at=now,
        )
        db.add(link)
        link = await _commit_new_short_link(db, link)

    return ShortLinkPublic(
        short_code=link.short_code,
        short_url=_short_url(request, link.short_code),
        custom_code=bool(link.custom_code),
        created_at=link.created_at,
    )


@router.post("/{wishlist_id}", response_model=ShortLinkUpdated)
async def upsert_short_link(
    wishlist_id: str,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
    payload: ShortLinkRequest | None = None,
) -> ShortLinkUpdated:
    wishlist = await _load_owned_wishlist(db, request, wishlist_id, identity)
    share_token = _ensure_share_token(wishlist)

    custom_code = ((payload.custom_code if payload else None) or "").strip()
    if custom_code:
        try:
            validate_custom_code(custom_code)
        except ShortCodeError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
        taken = await db.execute(
            select(ShortLink.id).where(
                ShortLink.short_code == custom_code,
                ShortLink.wishlist_id != wishlist.id,
            )
        )
        if taken.scalar_one_or_none() is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=CODE_TAKEN_DETAIL)

    now = utcnow()
    link = await _get_short_link(db, wishlist.id)
    if link is not None:
        if custom_code:
            link.short_code = custom_code
        link.custom_code = bool(custom_code)
        link.share_token = share_token
        link.updated_at = now
        message = "Short link updated"
    else:
        link = ShortLink(
            short_code=custom_code or await _next_free_code(db),
            wishlist_id=wishlist.id,
            share_token=share_token,
            custom_code=bool(custom_code),
            created_at=now,
            updated_at=now,
        )
        db.add(link)
        message = "Short link created"
    await _commit_short_link(db)

    audit_wishlist_action(
        AuditAction.SHORT_LINK_UPDATE,
        request,
        identity,
        wishlist.id,
        {"short_code": link.short_code, "custom": bool(custom_code)},
    )
    return ShortLinkUpdated(
        short_code=link.short_code,
        short_url=_short_url(request, link.short_code),
        custom_code=bool(link.custom_code),
        created_at=link.created_at,
        message=message,
    )


@router.get("/{wishlist_id}/analytics", response_model=ShortLinkAnalytics)
async def short_link_analytics(
    wishlist_id: str,
    request: Request,
    db: DbSessionDep,
    identity: IdentityDep,
) -> ShortLinkAnalytics:
    wishlist = await _load_owned_wishlist(db, request, wishlist_id, identity)
    link = await _get_short_link(db, wishlist.id)
    if link is None:
        return ShortLinkAnalytics(short_code=None, total_clicks=0, clicks_by_date=[], recent_clicks=[])

    result = await db.execute(
        select(ShortLinkClick)
        .where(ShortLinkClick.short_code == link.short_code)
        .order_by(ShortLinkClick.clicked_at.desc())
    )
    clicks = result.scalars().all()

    per_day = Counter(click.clicked_at.date().isoformat() for click in clicks)
    return ShortLinkAnalytics(
        short_code=link.short_code,
        total_clicks=len(clicks),
        clicks_by_date=[ClicksByDate(date=day, count=count) for day, count in sorted(per_day.items())],
        recent_clicks=[
            RecentClick(clicked_at=click.clicked_at, referer=click.referer, user_agent=click.user_agent)
            for click in clicks[:RECENT_CLICKS_LIMIT]
        ],
    )
