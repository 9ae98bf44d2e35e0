import logging
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from deseo.api.cookies import RESERVER_COOKIE, clear_session_cookie, set_session_cookie
from deseo.api.deps import DbSessionDep, IdentityDep, public_base_url
from deseo.core.audit import AuditAction, audit_log
from deseo.core.config import settings
from deseo.core.mailer import send_magic_link_email
from deseo.core.permissions import owner_tokens_from_cookies
from deseo.core.rate_limit import check_rate_limit
from deseo.core.security import (
    InvalidTokenError,
    create_magic_link_token,
    create_session_token,
    tokens_match,
    verify_magic_link_token,
)
from deseo.models.models import Reservation, User, Wishlist, utcnow
from deseo.schemas.auth import AuthStatus, MagicLinkRequest
from deseo.schemas.base import MessageResponse


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("deseo.auth")


async def _migrate_anonymous_data(db: AsyncSession, request: Request, email: str) -> None:
    """
    Move anonymous ownership and reservations onto a freshly signed-in user.

    Wishlists whose ``owner_<id>`` cookie matches their owner token are
    claimed; reservations made under the ``reserverId`` cookie get the
    email filled in. Failures are logged and never block sign-in.
    """
    owner_tokens = owner_tokens_from_cookies(request.cookies)
    reserver_id = request.cookies.get(RESERVER_COOKIE)
    if not owner_tokens and not reserver_id:
        return

    claimed: list[str] = []
    filled = 0
    try:
        if owner_tokens:
            result = await db.execute(
                select(Wishlist).where(
                    Wishlist.id.in_(list(owner_tokens)),
                    Wishlist.user_id.is_(None),
                )
            )
            now = utcnow()
            for wishlist in result.scalars().all():
                if tokens_match(wishlist.owner_token, owner_tokens.get(wishlist.id)):
                    wishlist.user_id = email
                    wishlist.owner_token = None
                    wishlist.updated_at = now
                    claimed.append(wishlist.id)
        if reserver_id:
            result = await db.execute(
                update(Reservation)
                .where(Reservation.reserver_id == reserver_id, Reservation.reserver_email.is_(None))
                .values(reserver_email=email)
            )
            filled = result.rowcount or 0
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Anonymous data migration failed email=%s", email)
        await db.rollback()
        return

    if claimed or filled:
        audit_log(
            AuditAction.ANONYMOUS_MIGRATION,
            request=request,
            user_id=email,
            details={"wishlist_ids": claimed, "reservations": filled},
        )


@router.post("/send-magic-link", response_model=MessageResponse)
async def send_magic_link(payload: MagicLinkRequest, request: Request) -> MessageResponse:
    await check_rate_limit(
        request,
        max_requests=settings.magic_link_rate_limit_requests,
        window_seconds=settings.magic_link_rate_limit_window_seconds,
        key_suffix="magic-link",
    )

    token = create_magic_link_token(payload.email)
    magic_link = f"{public_base_url(request)}/api/auth/verify-magic-link?{urlencode({'token': token})}"
    sent = await send_magic_link_email(payload.email, magic_link)
    audit_log(
        AuditAction.MAGIC_LINK_REQUEST,
        request=request,
        details={"email": payload.email},
        success=sent,
    )
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send magic link",
        )
    return MessageResponse(message="Magic link sent successfully")


@router.get("/verify-magic-link")
async def verify_magic_link(
    request: Request,
    db: DbSessionDep,
    token: str | None = Query(default=None),
) -> RedirectResponse:
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token")
    try:
        email = verify_magic_link_token(token).strip().lower()
    except InvalidTokenError as exc:
        audit_log(AuditAction.LOGIN_FAILED, request=request, details={"reason": str(exc)}, success=False)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None

    now = utcnow()
    user = await db.scalar(select(User).where(User.email == email))
    if user is None:
        db.add(User(email=email, created_at=now, updated_at=now, last_login_at=now))
        logger.info("User created on first sign-in email=%s", email)
    else:
        user.last_login_at = now
        user.updated_at = now
    await db.commit()

    await _migrate_anonymous_data(db, request, email)

    response = RedirectResponse(url=f"{public_base_url(request)}/dashboard", status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, create_session_token(email))
    audit_log(AuditAction.LOGIN, request=request, user_id=email)
    return response


@router.get("/status", response_model=AuthStatus)
async def auth_status(identity: IdentityDep) -> AuthStatus:
    return AuthStatus(authenticated=identity is not None, email=identity)


@router.post("/signout", response_model=MessageResponse)
async def signout(request: Request, response: Response, identity: IdentityDep) -> MessageResponse:
    clear_session_cookie(response)
    audit_log(AuditAction.LOGOUT, request=request, user_id=identity)
    return MessageResponse(message="Signed out successfully")
