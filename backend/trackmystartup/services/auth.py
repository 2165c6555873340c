"""Bearer token helpers.

Tokens are HS256 JWTs carrying the acting user (`sub`), their `role` and,
for facilitators, their `facilitator_code`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from jose import JWTError, jwt

from trackmystartup.config import settings
from trackmystartup.lifecycle.records import Principal
from trackmystartup.lifecycle.status_model import UserRole


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token_for_principal(
    user_id: str,
    role: UserRole,
    *,
    facilitator_code: str | None = None,
    expires_minutes: Optional[int] = None,
) -> str:
    minutes = expires_minutes or settings.access_token_expire_minutes
    claims = {"sub": str(user_id), "role": role.value}
    if facilitator_code:
        claims["facilitator_code"] = facilitator_code
    return create_access_token(claims, expires_delta=timedelta(minutes=minutes))


def decode_access_token(token: str) -> Optional[dict]:
    """Decode JWT access token; returns payload or None if invalid."""

    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def principal_from_claims(claims: dict, *, startup_ids: Iterable[str] = ()) -> Optional[Principal]:
    subject = claims.get("sub")
    if not subject:
        return None
    try:
        role = UserRole(claims.get("role"))
    except ValueError:
        return None
    return Principal(
        user_id=str(subject),
        role=role,
        facilitator_code=claims.get("facilitator_code"),
        startup_ids=frozenset(str(s) for s in startup_ids),
    )
