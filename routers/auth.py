from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from pydantic import BaseModel
import logging
import uuid

from models import User
from schemas import Token
from services import config
from services.seeder import pwd_ctx

router = APIRouter(tags=["auth"])
logger = logging.getLogger("uvicorn")


class RefreshRequest(BaseModel):
    refresh_token: str


def create_token(data: dict, secret: str, expires: int) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(tz=timezone.utc) + timedelta(seconds=expires)
    return jwt.encode(to_encode, secret, algorithm=config.ALGORITHM)


def issue_tokens(user: User) -> dict:
    data = {"sub": str(user.id), "role": user.role}
    return {
        "access_token": create_token(data, config.SECRET_KEY, config.ACCESS_TOKEN_EXPIRE_SECONDS),
        "refresh_token": create_token(data, config.REFRESH_SECRET, config.REFRESH_TOKEN_EXPIRE_SECONDS),
        "token_type": "bearer",
    }


@router.post("/login/access-token", response_model=Token)
async def login(form: OAuth2PasswordRequestForm = Depends()):
    user = await User.get_or_none(username=form.username)
    if not user or not pwd_ctx.verify(form.password, user.hashed_password):
        logger.info("failed login for %r", form.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return issue_tokens(user)


@router.post("/login/refresh-token", response_model=Token)
async def refresh_token(payload: RefreshRequest):
    try:
        decoded = jwt.decode(payload.refresh_token, config.REFRESH_SECRET, algorithms=[config.ALGORITHM])
        sub = decoded.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Invalid refresh token")
        user_id = uuid.UUID(sub)
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = await User.get_or_none(id=user_id)
    if not user or user.disabled:
        raise HTTPException(status_code=401, detail="User not found")
    return issue_tokens(user)
