"""
Access and refresh token issuance (JWT, python-jose).

Access tokens are short-lived and carry the caller identity. Refresh tokens
carry a unique `jti`; only the `jti` stored on the account is accepted, so a
refresh invalidates its predecessor.
"""

from uuid import uuid4
from datetime import timedelta
from typing import Optional, Tuple
from jose import jwt, JWTError, ExpiredSignatureError

from fleetcore.src import exceptions
from fleetcore.src.db import User
from fleetcore.src.functions import utcNow
from fleetcore.src.constants import (
    JWT_ACCESS_SECRET,
    JWT_REFRESH_SECRET,
    JWT_ALGORITHM,
    ACCESS_TOKEN_VALIDITY,
    REFRESH_TOKEN_VALIDITY,
)

ACCESS = "access"
REFRESH = "refresh"


def createAccessToken(user: User) -> str:
    now = utcNow()
    claims = {
        "sub": str(user.id),
        "company_id": user.company_id,
        "company_role": user.company_role,
        "platform_role": user.platform_role,
        "type": ACCESS,
        "iat": now,
        "exp": now + timedelta(seconds=ACCESS_TOKEN_VALIDITY),
    }
    return jwt.encode(claims, JWT_ACCESS_SECRET, algorithm=JWT_ALGORITHM)


def createRefreshToken(user: User) -> Tuple[str, str]:
    """Return the encoded refresh token and its `jti`."""
    now = utcNow()
    tokenId = uuid4().hex
    claims = {
        "sub": str(user.id),
        "company_id": user.company_id,
        "jti": tokenId,
        "type": REFRESH,
        "iat": now,
        "exp": now + timedelta(seconds=REFRESH_TOKEN_VALIDITY),
    }
    return jwt.encode(claims, JWT_REFRESH_SECRET, algorithm=JWT_ALGORITHM), tokenId


def decodeAccessToken(token: str) -> dict:
    try:
        claims = jwt.decode(token, JWT_ACCESS_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise exceptions.InvalidToken()
    if claims.get("type") != ACCESS:
        raise exceptions.InvalidToken()
    return claims


def decodeRefreshToken(token: str) -> dict:
    try:
        claims = jwt.decode(token, JWT_REFRESH_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise exceptions.RefreshTokenExpired()
    except JWTError:
        raise exceptions.InvalidRefreshToken()
    if claims.get("type") != REFRESH or not claims.get("jti"):
        raise exceptions.InvalidRefreshToken()
    return claims


def peekCompanyId(token: Optional[str]) -> Optional[int]:
    """
    Company id of a correctly signed access token, ignoring expiry.
    Used for rate-limit keys only; never for authorization.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            JWT_ACCESS_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    companyId = claims.get("company_id")
    return companyId if isinstance(companyId, int) else None
