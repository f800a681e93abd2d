import enum
import logging
from datetime import datetime
from typing import Optional

import bcrypt
from starlette.concurrency import run_in_threadpool

from errors import AccessDenied, NotEditable, NotFound, ValidationFailed
from models import Paste

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes; longer secrets are refused outright
MAX_PASSWORD_BYTES = 72


class AccessState(str, enum.Enum):
    GRANTED = "granted"
    PASSWORD_REQUIRED = "password_required"
    DENIED_INVALID_PASSWORD = "denied_invalid_password"
    EXPIRED_DENIED = "expired_denied"


def _hash(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def _check(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # malformed stored hash or over-long candidate
        return False


async def hash_password(password: str, rounds: int = 10) -> str:
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return await run_in_threadpool(_hash, password, rounds)


async def verify_password(password: str, hashed: str) -> bool:
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        return False
    return await run_in_threadpool(_check, password, hashed)


# expiry is checked before the password, so an expired paste never prompts
async def evaluate_access(paste: Paste, password: Optional[str], now: datetime) -> AccessState:
    if paste.is_expired(now):
        return AccessState.EXPIRED_DENIED
    if not paste.is_protected:
        return AccessState.GRANTED
    if not password:
        return AccessState.PASSWORD_REQUIRED
    if await verify_password(password, paste.password_hash):
        return AccessState.GRANTED
    return AccessState.DENIED_INVALID_PASSWORD


async def require_read_access(paste: Paste, password: Optional[str], now: datetime) -> None:
    state = await evaluate_access(paste, password, now)
    if state is AccessState.EXPIRED_DENIED:
        raise NotFound()
    if state is AccessState.PASSWORD_REQUIRED:
        raise AccessDenied("This paste is password protected", paste.limited_info())
    if state is AccessState.DENIED_INVALID_PASSWORD:
        logger.info(f"Invalid password supplied for paste {paste.id}")
        raise AccessDenied("Invalid password", paste.limited_info())


async def require_write_access(paste: Paste, password: Optional[str], now: datetime) -> None:
    await require_read_access(paste, password, now)
    if not paste.is_editable:
        raise NotEditable()
