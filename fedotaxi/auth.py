from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from .config import settings
from . import db, models
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.PASSWORD_HASH_ROUNDS)

# auto_error=False so a missing header is reported as 401 rather than 403
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(email: str, role: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = settings.JWT_EXPIRATION_MINUTES if expires_minutes is None else expires_minutes
    claims = {
        "sub": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the token claims or raise 401."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError as e:
        logger.warning("decode_access_token: invalid token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")
    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


async def get_conn():
    async with db.get_conn() as conn:
        yield conn


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    conn=Depends(get_conn),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = decode_access_token(credentials.credentials)
    res = await conn.execute(select(models.users).where(models.users.c.email == claims["sub"]))
    row = res.first()
    if not row:
        raise HTTPException(status_code=401, detail="User not found")
    user = dict(row._mapping)
    if not user["active"]:
        logger.info("get_current_user: inactive user=%s rejected", user["id"])
        raise HTTPException(status_code=401, detail="User is inactive")
    return user


def require_roles(*roles: str):
    """Dependency factory restricting an endpoint to the given roles."""

    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Access denied for role " + user["role"])
        return user

    return checker
