import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from deseo.api.deps import DbSessionDep, public_base_url
from deseo.models.models import ShortLink, ShortLinkClick, Wishlist, utcnow


router = APIRouter(tags=["redirects"])
logger = logging.getLogger("deseo.redirects")


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.headers.get("X-Real-IP") or None


def _truncate(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else None


@router.get("/s/{short_code}", include_in_schema=False)
async def follow_short_link(short_code: str, request: Request, db: DbSessionDep) -> RedirectResponse:
    base_url = public_base_url(request)
    home = RedirectResponse(url=f"{base_url}/", status_code=status.HTTP_302_FOUND)

    try:
        result = await db.execute(select(ShortLink).where(ShortLink.short_code == short_code))
        link = result.scalar_one_or_none()
        if link is None:
            logger.info("Unknown short code=%s", short_code)
            return home
        if link.expires_at is not None and link.expires_at <= utcnow():
            logger.info("Expired short code=%s expires_at=%s", short_code, link.expires_at.isoformat())
            return home
        wishlist_id = await db.scalar(select(Wishlist.id).where(Wishlist.id == link.wishlist_id))
    except SQLAlchemyError:
        logger.exception("Short link lookup failed code=%s", short_code)
        return home
    if wishlist_id is None:
        logger.info("Short code=%s points at a missing wishlist", short_code)
        return home

    share_token = link.share_token
    try:
        db.add(
            ShortLinkClick(
                short_code=short_code,
                wishlist_id=wishlist_id,
                clicked_at=utcnow(),
                referer=_truncate(request.headers.get("Referer"), 2048),
                user_agent=_truncate(request.headers.get("User-Agent"), 512),
                ip_address=_truncate(_client_ip(request), 64),
            )
        )
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Failed to record click code=%s", short_code)
        await db.rollback()

    target = f"{base_url}/wishlist/{wishlist_id}"
    if share_token:
        target = f"{target}?{urlencode({'token': share_token})}"
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
