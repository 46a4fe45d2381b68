"""
Password hashing and JWT access tokens.

Passwords are hashed with Argon2id through passlib. Access tokens are signed
with the key and algorithm from config and carry "type": "access" so that
get_current_user can reject any other kind of token.
"""

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY, is_production_like
from time_utils import utc_now

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = JWT_SECRET_KEY
if not SECRET_KEY:
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY must be set when ENVIRONMENT is production or staging. "
            "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    # Tokens signed with this key stop working when the process restarts
    SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
    logger.warning("⚠️  JWT_SECRET_KEY not set, signing tokens with a throwaway development key.")

ALGORITHM = JWT_ALGORITHM


def hash_password(password: str) -> str:
    """Return the Argon2id hash of password."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password check {'passed' if valid else 'failed'}")
    return valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token for the given claims.

    Args:
        data: Claims to embed, normally "sub" (user id as a string), "role" and "email"
        expires_delta: Lifetime override; defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        The encoded JWT
    """
    claims = dict(data)
    expires_at = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims["exp"] = expires_at
    claims["type"] = "access"
    logger.debug(f"Issuing access token for user {data.get('sub')} valid until {expires_at}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning its claims or None if it is invalid or expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected JWT: {str(e)}")
        return None
