from datetime import datetime

from pydantic import Field, field_validator

from deseo.core.currencies import DEFAULT_CURRENCY, normalize_currency
from deseo.schemas.base import CamelModel


# Largest value a Numeric(12, 2) price column holds.
MAX_PRICE = 9_999_999_999.99


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class ItemCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    price: float | None = Field(default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False)
    currency: str | None = None
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Item name is required")
        return value

    @field_validator("description", "url", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return normalize_currency(value)


class ItemUpdate(CamelModel):
    """Partial update; empty strings clear description, url and image url."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    price: float | None = Field(default=None, ge=0, le=MAX_PRICE, allow_inf_nan=False)
    currency: str | None = None
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Item name cannot be empty")
        return value

    @field_validator("description", "url", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return normalize_currency(value)


class WishlistCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    currency: str = DEFAULT_CURRENCY
    items: list[ItemCreate] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("description")
    @classmethod
    def _description_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return normalize_currency(value) or DEFAULT_CURRENCY


class WishlistUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    currency: str | None = None
    is_public: bool | None = None
    allow_edits: bool | None = None
    is_archived: bool | None = None
    claim_wishlist: bool = False

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be empty")
        return value

    @field_validator("description")
    @classmethod
    def _description_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return normalize_currency(value)


class ItemPublic(CamelModel):
    id: str
    name: str
    description: str | None = None
    price: float | None = None
    currency: str | None = None
    url: str | None = None
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime


class ReservationPublic(CamelModel):
    item_id: str
    reserved_at: datetime
    allow_disclosure: bool = False
    display_name: str | None = None
    reserver_email: str | None = None
    is_mine: bool = False


class UserPermissions(CamelModel):
    can_edit: bool
    is_owner: bool


class WishlistPublic(CamelModel):
    id: str
    title: str
    description: str | None = None
    currency: str
    items: list[ItemPublic]
    reservations: list[ReservationPublic]
    user_id: str | None = None
    is_public: bool
    allow_edits: bool
    is_archived: bool
    share_token: str | None = None
    created_at: datetime
    updated_at: datetime
    user_permissions: UserPermissions


class SharedWishlists(CamelModel):
    shared: list[WishlistPublic]


class ItemCreated(CamelModel):
    success: bool = True
    item: ItemPublic
