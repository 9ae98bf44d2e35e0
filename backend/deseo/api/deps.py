from typing import Annotated
import logging

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from deseo.api.cookies import RESERVER_COOKIE, SESSION_COOKIE
from deseo.core.config import settings
from deseo.core.permissions import WishlistAccess, owner_cookie_name, resolve_wishlist_access
from deseo.core.security import decode_session_token
from deseo.db.session import get_db
from deseo.models.models import Wishlist


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = logging.getLogger("deseo.auth")


async def get_optional_identity(
    request: Request,
    token: str | None = Cookie(default=None, alias=SESSION_COOKIE),
) -> str | None:
    """
    Email of the signed-in caller, or None for anonymous visitors.

    A missing, expired or tampered session token is treated as anonymous.
    """
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()

    if not token:
        return None

    email = decode_session_token(token)
    if email is None:
        logger.debug("Session token rejected path=%s", request.url.path)
        return None
    return email.strip().lower()


IdentityDep = Annotated[str | None, Depends(get_optional_identity)]


def get_reserver_id(
    reserver_id: str | None = Cookie(default=None, alias=RESERVER_COOKIE),
) -> str | None:
    return reserver_id or None


ReserverIdDep = Annotated[str | None, Depends(get_reserver_id)]


def public_base_url(request: Request) -> str:
    """Origin used in emailed links, short links and redirects."""
    if settings.app_url:
        return settings.app_url.rstrip("/")
    return str(request.base_url).rstrip("/")


async def load_wishlist(db: AsyncSession, wishlist_id: str) -> Wishlist:
    result = await db.execute(
        select(Wishlist)
        .where(Wishlist.id == wishlist_id)
        .options(
            selectinload(Wishlist.items),
            selectinload(Wishlist.reservations),
        )
    )
    wishlist = result.scalar_one_or_none()
    if wishlist is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wishlist not found")
    return wishlist


def wishlist_access(
    request: Request,
    wishlist: Wishlist,
    identity: str | None,
    share_token: str | None = None,
) -> WishlistAccess:
    owner_cookie = request.cookies.get(owner_cookie_name(wishlist.id))
    return resolve_wishlist_access(wishlist, identity, owner_cookie, share_token)
