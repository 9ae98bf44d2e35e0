from typing import TypedDict

from fastapi import Response

from deseo.core.config import settings
from deseo.core.permissions import owner_cookie_name

SESSION_COOKIE = "token"
RESERVER_COOKIE = "reserverId"

_DAY_SECONDS = 24 * 60 * 60


class CookieOptions(TypedDict, total=False):
    samesite: str
    secure: bool


def cookie_options() -> CookieOptions:
    """
    Cookie attributes per environment.

    Locally the frontend and API share an origin over plain HTTP, so cookies
    are ``lax`` and not secure. Deployed, the frontend may live on another
    origin, which needs ``samesite=none`` and therefore ``secure``.
    """
    if settings.is_local:
        return {"samesite": "lax", "secure": False}
    return {"samesite": "none", "secure": True}


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        max_age=settings.session_cookie_max_age_days * _DAY_SECONDS,
        path="/",
        **cookie_options(),
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, **cookie_options())


def set_owner_cookie(response: Response, wishlist_id: str, owner_token: str) -> None:
    response.set_cookie(
        owner_cookie_name(wishlist_id),
        owner_token,
        httponly=True,
        max_age=settings.anonymous_cookie_max_age_days * _DAY_SECONDS,
        path="/",
        **cookie_options(),
    )


def clear_owner_cookie(response: Response, wishlist_id: str) -> None:
    response.delete_cookie(owner_cookie_name(wishlist_id), path="/", httponly=True, **cookie_options())


def set_reserver_cookie(response: Response, reserver_id: str) -> None:
    # Readable by the frontend so it can highlight the visitor's own reservations.
    response.set_cookie(
        RESERVER_COOKIE,
        reserver_id,
        httponly=False,
        max_age=settings.anonymous_cookie_max_age_days * _DAY_SECONDS,
        path="/",
        **cookie_options(),
    )
