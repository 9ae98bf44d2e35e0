from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from deseo.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend.

    SQLite drops the offset on storage, so naive values read back are
    re-tagged as UTC and aware values are normalised to UTC before writing.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    @staticmethod
    def _as_utc(value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        return self._as_utc(value)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        return self._as_utc(value)


def _new_wishlist_id() -> str:
    return uuid4().hex


def _new_item_id() -> str:
    return str(uuid4())


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class Wishlist(Base):
    __tablename__ = "wishlists"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_wishlist_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    # Authenticated owner (email) XOR anonymous owner token.
    user_id: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    owner_token: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    share_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_edits: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True)

    items: Mapped[list["WishlistItem"]] = relationship(
        back_populates="wishlist",
        cascade="all, delete-orphan",
        order_by="WishlistItem.created_at",
    )
    reservations: Mapped[list["Reservation"]] = relationship(
        back_populates="wishlist",
        cascade="all, delete-orphan",
        order_by="Reservation.reserved_at",
    )
    short_link: Mapped["ShortLink | None"] = relationship(
        back_populates="wishlist",
        uselist=False,
        cascade="all, delete",
    )
    clicks: Mapped[list["ShortLinkClick"]] = relationship(cascade="all, delete")


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_item_id)
    wishlist_id: Mapped[str] = mapped_column(ForeignKey("wishlists.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    price: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    wishlist: Mapped[Wishlist] = relationship(back_populates="items")
    reservation: Mapped["Reservation | None"] = relationship(
        back_populates="item",
        uselist=False,
        cascade="all, delete",
    )


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wishlist_id: Mapped[str] = mapped_column(ForeignKey("wishlists.id"), nullable=False, index=True)
    # One reservation per item; a concurrent second insert fails on this constraint.
    item_id: Mapped[str] = mapped_column(ForeignKey("wishlist_items.id"), unique=True, index=True)
    reserver_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    reserver_email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    passphrase: Mapped[str | None] = mapped_column(String(200), nullable=True)
    allow_disclosure: Mapped[bool] = mapped_column(Boolean, default=False)
    reserved_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    wishlist: Mapped[Wishlist] = relationship(back_populates="reservations")
    item: Mapped[WishlistItem] = relationship(back_populates="reservation")


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    wishlist_id: Mapped[str] = mapped_column(ForeignKey("wishlists.id"), unique=True, index=True)
    share_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    custom_code: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    wishlist: Mapped[Wishlist] = relationship(back_populates="short_link")


class ShortLinkClick(Base):
    __tablename__ = "short_link_clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    short_code: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    wishlist_id: Mapped[str] = mapped_column(ForeignKey("wishlists.id"), index=True)
    clicked_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, index=True)
    referer: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
