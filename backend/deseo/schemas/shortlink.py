from datetime import datetime

from deseo.schemas.base import CamelModel


class ShortLinkRequest(CamelModel):
    custom_code: str | None = None


class ShortLinkPublic(CamelModel):
    short_code: str
    short_url: str
    custom_code: bool
    created_at: datetime


class ShortLinkUpdated(ShortLinkPublic):
    message: str


class ClicksByDate(CamelModel):
    date: str
    count: int


class RecentClick(CamelModel):
    clicked_at: datetime
    referer: str | None = None
    user_agent: str | None = None


class ShortLinkAnalytics(CamelModel):
    short_code: str | None = None
    total_clicks: int
    clicks_by_date: list[ClicksByDate]
    recent_clicks: list[RecentClick]


class ShortLinkDebug(CamelModel):
    exists: bool
    message: str | None = None
    searched_code: str | None = None
    similar_codes: list[str] | None = None
    short_code: str | None = None
    wishlist_id: str | None = None
    wishlist_exists: bool | None = None
    wishlist_title: str | None = None
    share_token: str | None = None
    custom_code: bool | None = None
    created_at: datetime | None = None
