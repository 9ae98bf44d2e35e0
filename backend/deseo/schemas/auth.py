from pydantic import EmailStr, field_validator

from deseo.schemas.base import CamelModel


class MagicLinkRequest(CamelModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()


class AuthStatus(CamelModel):
    authenticated: bool
    email: str | None = None
