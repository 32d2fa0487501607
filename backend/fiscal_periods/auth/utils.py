from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from fiscal_periods.config import Settings


@dataclass
class TokenPayload:
    sub: uuid.UUID
    role: str
    exp: datetime


def create_access_token(user_id: uuid.UUID, role: str, settings: Settings | None = None) -> str:
    """Mint an access token the same way the identity provider does.

    Only used by operator tooling and tests; the service itself never logs
    anyone in.
    """
    if settings is None:
        settings = Settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, settings: Settings | None = None) -> TokenPayload | None:
    if settings is None:
        settings = Settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        if payload.get("type", "access") != "access":
            return None
        user_id = uuid.UUID(payload["sub"])
        role = payload.get("role", "viewer")
        exp = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return TokenPayload(sub=user_id, role=role, exp=exp)
    except (JWTError, ValueError, KeyError):
        return None
