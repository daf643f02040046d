import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from jose import jwt, JWTError
from passlib.context import CryptContext

from models import User
from schemas import RefreshRequest, Token, UserRead
from deps import decode_subject, get_current_active_user
from services import config

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")
ACCESS_EXPIRE = timedelta(minutes=15)
REFRESH_EXPIRE = timedelta(days=7)


def create_token(user: User, secret: str, lifetime: timedelta) -> str:
    claims = {
        "sub": str(user.id),
        "is_admin": user.is_admin,
        "exp": datetime.now(tz=timezone.utc) + lifetime,
    }
    return jwt.encode(claims, secret, algorithm=config.JWT_ALGORITHM)


def token_pair(user: User) -> Token:
    return Token(
        access_token=create_token(user, config.SECRET_KEY, ACCESS_EXPIRE),
        refresh_token=create_token(user, config.REFRESH_SECRET, REFRESH_EXPIRE),
    )


@router.post("/login/access-token", response_model=Token)
async def login(form: OAuth2PasswordRequestForm = Depends()):
    user = await User.get_or_none(username=form.username)
    if not user or not pwd_ctx.verify(form.password, user.hashed_password):
        logger.info(f"[auth] failed login for {form.username!r}")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return token_pair(user)


@router.post("/login/refresh-token", response_model=Token)
async def refresh_token(payload: RefreshRequest):
    try:
        user_id = decode_subject(payload.refresh_token, config.REFRESH_SECRET)
    except (JWTError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = await User.get_or_none(id=user_id)
    if not user or user.disabled:
        raise HTTPException(status_code=401, detail="User not found")
    return token_pair(user)


@router.get("/users/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_active_user)):
    return UserRead.model_validate(current_user)
