"""
Bearer token handling.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. The auth service issues them
in production; ``create_access_token`` exists for scripts and tests.
"""
import jwt
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException, status

from app.core import config


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.now(timezone.utc)
    claims = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict:
    """
    Decode a bearer token.

    Raises:
        HTTPException: 401 when the token is expired, badly signed or lacks ``sub``/``exp``
    """
    try:
        claims = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")
    return claims
