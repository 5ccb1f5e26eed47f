"""
Operator authentication for the API.

A single operator account is configured through ``ADMIN_USERNAME`` and
``ADMIN_PASSWORD``. The username carried in the bearer token is recorded as
the resolver identity on conflict resolutions and as ``triggered_by`` on
manual sync runs.
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from ledger_sync.config import settings
from ledger_sync.schemas.auth import TokenData, User, UserInDB

log = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(username: str, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a bearer token for ``username``."""
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {"sub": username, "iat": issued_at, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


@lru_cache(maxsize=1)
def get_operator() -> UserInDB:
    # hashed once per process, bcrypt is slow
    return UserInDB(
        username=settings.admin_username,
        email=f"{settings.admin_username}@ledger-sync.local",
        full_name="Sync Operator",
        disabled=False,
        hashed_password=get_password_hash(settings.admin_password),
    )


def get_user(username: str) -> Optional[UserInDB]:
    operator = get_operator()
    return operator if username == operator.username else None


def authenticate_user(username: str, password: str) -> Optional[UserInDB]:
    user = get_user(username)
    if user is None or not verify_password(password, user.hashed_password):
        log.warning(f"Failed login attempt for '{username}'")
        return None
    return user


def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]) -> UserInDB:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        log.debug(f"Rejected bearer token: {e}")
        raise credentials_exception
    token_data = TokenData(username=payload.get("sub"))
    if token_data.username is None:
        raise credentials_exception
    user = get_user(token_data.username)
    if user is None:
        raise credentials_exception
    return user


def get_current_active_user(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    if current_user.disabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return current_user
