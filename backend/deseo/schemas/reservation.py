from datetime import datetime

from pydantic import EmailStr, Field, field_validator

from deseo.schemas.base import CamelModel
from deseo.schemas.wishlist import ItemPublic


class ReserveRequest(CamelModel):
    item_id: str | None = None
    reserver_email: EmailStr | None = None
    display_name: str | None = Field(default=None, max_length=120)
    passphrase: str | None = Field(default=None, max_length=200)
    allow_disclosure: bool = False

    @field_validator("reserver_email", "display_name", "passphrase", "item_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("reserver_email")
    @classmethod
    def _lower_email(cls, value: str | None) -> str | None:
        return value.lower() if value else None


class ReserveResponse(CamelModel):
    message: str
    reserver_id: str
    passphrase: str | None = None


class OwnReservation(CamelModel):
    item_id: str
    reserved_at: datetime
    reserver_email: str | None = None
    display_name: str | None = None
    passphrase: str | None = None
    allow_disclosure: bool = False


class OwnReservations(CamelModel):
    reservations: list[OwnReservation]


class ReservedWishlist(CamelModel):
    wishlist_id: str
    title: str
    currency: str
    items: list[ItemPublic]


class ReservationsOverview(CamelModel):
    reservations: list[ReservedWishlist]
