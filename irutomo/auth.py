"""Server-side staff authentication with JWT bearer tokens."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from irutomo.config import Config

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/admin/login")


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def authenticate_staff(cfg: Config, username: str, password: str) -> bool:
    """Check staff credentials against the configured account.

    Login is disabled while no password hash is configured.
    """
    if not cfg.admin_password_hash:
        logger.warning("Staff login attempted but ADMIN_PASSWORD_HASH is not set")
        return False
    if username != cfg.admin_username:
        return False
    return verify_password(password, cfg.admin_password_hash)


def create_access_token(
    cfg: Config, subject: str, expires_delta: timedelta | None = None
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=cfg.access_token_expire_minutes)
    )
    return jwt.encode(
        {"sub": subject, "exp": expire}, cfg.jwt_secret, algorithm=cfg.jwt_algorithm
    )


async def get_current_staff(
    request: Request, token: str = Depends(oauth2_scheme)
) -> str:
    """Dependency returning the authenticated staff member's name.

    Raises:
        HTTPException: 401 for a missing, invalid or expired token, and for
            every token while staff login is disabled
    """
    cfg: Config = request.app.state.config
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not cfg.admin_password_hash:
        logger.warning("Staff token refused - ADMIN_PASSWORD_HASH is not set")
        raise credentials_exception
    try:
        payload = jwt.decode(token, cfg.jwt_secret, algorithms=[cfg.jwt_algorithm])
    except JWTError as e:
        logger.info(f"Rejected staff token: {e}")
        raise credentials_exception from e

    username = payload.get("sub")
    if username is None or username != cfg.admin_username:
        raise credentials_exception
    return username
