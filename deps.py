from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
import uuid

from models import User
from services import config

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login/access-token")


def decode_subject(token: str, secret: str) -> uuid.UUID:
    """User id carried in a signed token; raises JWTError/ValueError/TypeError when unusable."""
    payload = jwt.decode(token, secret, algorithms=[config.JWT_ALGORITHM])
    return uuid.UUID(payload.get("sub"))


async def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user_id = decode_subject(token, config.SECRET_KEY)
    except (JWTError, ValueError, TypeError):
        raise cred_exc
    user = await User.get_or_none(id=user_id)
    if user is None:
        raise cred_exc
    return user


async def get_current_active_user(user: User = Depends(get_current_user)) -> User:
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


async def get_current_admin_user(user: User = Depends(get_current_active_user)) -> User:
    # reloading the rate series changes every later correction
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Not enough permissions")
    return user
