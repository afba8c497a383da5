"""Access/refresh token helpers for backend-authenticated user scope."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _encode(claims: Dict[str, Any], secret: str) -> str:
    return jwt.encode(claims, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id: str,
    role: str,
    expires_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a short-lived signed access token."""
    now = datetime.now(timezone.utc)
    ttl_minutes = int(expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES or 15)
    expires_at = now + timedelta(minutes=max(ttl_minutes, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return {
        "token": _encode(claims, settings.JWT_ACCESS_SECRET),
        "expires_at": int(expires_at.timestamp()),
    }


def create_refresh_token(user_id: str, role: str, expires_days: Optional[int] = None) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    ttl_days = int(expires_days or settings.REFRESH_TOKEN_EXPIRE_DAYS or 7)
    expires_at = now + timedelta(days=max(ttl_days, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "type": REFRESH_TOKEN_TYPE,
        "jti": uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return {
        "token": _encode(claims, settings.JWT_REFRESH_SECRET),
        "expires_at": int(expires_at.timestamp()),
    }


def create_token_pair(user_id: str, role: str) -> Dict[str, Any]:
    access = create_access_token(user_id, role)
    refresh = create_refresh_token(user_id, role)
    return {
        "access_token": access["token"],
        "access_expires_at": access["expires_at"],
        "refresh_token": refresh["token"],
        "refresh_expires_at": refresh["expires_at"],
    }


def _decode(token: str, secret: str, expected_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != expected_type:
        raise ValueError("Invalid token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Token missing subject.")

    return payload


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed access token."""
    return _decode(token, settings.JWT_ACCESS_SECRET, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed refresh token."""
    return _decode(token, settings.JWT_REFRESH_SECRET, REFRESH_TOKEN_TYPE)
