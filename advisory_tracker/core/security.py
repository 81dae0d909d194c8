"""Credentials for tracker users.

Members sign in with email and password and then send a short-lived bearer
token with every request. Tokens are HS256 JWTs signed with ``secret_key``;
they carry only the user id, so team membership is always read fresh from
the database.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID
import logging

import jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
ACCESS_TOKEN = "access"

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """True if ``plain_password`` matches the stored bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


class TokenPayload(BaseModel):
    """Claims of a tracker bearer token."""

    sub: str  # user id
    exp: datetime
    iat: datetime
    type: str = ACCESS_TOKEN


def create_access_token(
    user_id: UUID,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a bearer token for ``user_id``.

    Lifetime defaults to ``access_token_expire_minutes``.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> TokenPayload | None:
    """Claims of a valid token, or None when it is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Bearer token rejected: expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f"Bearer token rejected: {e}")
        return None
    return TokenPayload(**claims)
