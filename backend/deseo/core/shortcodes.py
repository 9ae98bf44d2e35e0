"""Short-code generation and validation for wishlist short links."""
import logging
import re
import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deseo.models.models import ShortLink


logger = logging.getLogger("deseo.shortcodes")

SHORT_CODE_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
SHORT_CODE_LENGTH = 6
MAX_ALLOCATION_ATTEMPTS = 10
RESERVED_CODES = frozenset({"api", "s", "wishlist", "dashboard", "create", "auth", "admin", "user"})

_CUSTOM_CODE_RE = re.compile(r"^[a-zA-Z0-9_-]{3,20}$")


class ShortCodeError(ValueError):
    """Custom short code rejected by validation."""


class ShortCodeAllocationError(RuntimeError):
    """No free short code found within the attempt budget."""


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def is_reserved_code(code: str) -> bool:
    return code.lower() in RESERVED_CODES


def validate_custom_code(code: str) -> str:
    if not _CUSTOM_CODE_RE.match(code):
        raise ShortCodeError("Invalid short code format. Must be 3-20 alphanumeric characters.")
    if is_reserved_code(code):
        raise ShortCodeError("This short code is reserved and cannot be used.")
    return code


async def short_code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(ShortLink.id).where(ShortLink.short_code == code).limit(1))
    return result.scalar_one_or_none() is not None


async def allocate_short_code(db: AsyncSession, max_attempts: int = MAX_ALLOCATION_ATTEMPTS) -> str:
    for attempt in range(1, max_attempts + 1):
        code = generate_short_code()
        if is_reserved_code(code):
            continue
        if not await short_code_exists(db, code):
            return code
        logger.info("Short code collision code=%s attempt=%d", code, attempt)
    raise ShortCodeAllocationError("Failed to generate unique short code")
