import math
import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from tortoise.exceptions import DoesNotExist
import uuid

from models import User, ROLE_ADMIN, ROLE_BILL_OFFICER, ROLE_METER_READER
from services.config import SECRET_KEY, ALGORITHM

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login/access-token")

STAFF = (ROLE_ADMIN, ROLE_BILL_OFFICER, ROLE_METER_READER)
OFFICERS = (ROLE_ADMIN, ROLE_BILL_OFFICER)
READERS = (ROLE_ADMIN, ROLE_METER_READER)


async def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = uuid.UUID(payload.get("sub"))
    except (JWTError, ValueError, TypeError):
        raise cred_exc
    try:
        user = await User.get(id=user_id)
    except DoesNotExist:
        raise cred_exc
    return user


async def get_current_active_user(user: User = Depends(get_current_user)) -> User:
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


def require_roles(*roles: str):
    """Dependency factory: the caller must hold one of `roles`."""
    async def _guard(user: User = Depends(get_current_active_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return user
    return _guard


get_current_admin_user = require_roles(ROLE_ADMIN)
get_staff_user = require_roles(*STAFF)
get_officer_user = require_roles(*OFFICERS)
get_reader_user = require_roles(*READERS)


class RateLimiter:
    """Fixed-window request limit per client address, held in process memory."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, tuple[int, float]] = {}

    def reset(self) -> None:
        self._hits.clear()

    @staticmethod
    def client_key(request: Request) -> str:
        forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
        return request.client.host if request.client else "unknown"

    async def __call__(self, request: Request) -> None:
        key = self.client_key(request)
        now = time.monotonic()
        count, reset_at = self._hits.get(key, (0, now + self.window_seconds))
        if now > reset_at:
            count, reset_at = 0, now + self.window_seconds
        count += 1
        self._hits[key] = (count, reset_at)
        if count > self.max_requests:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many attempts. Please try again later.",
                headers={"Retry-After": str(max(1, math.ceil(reset_at - now)))},
            )
