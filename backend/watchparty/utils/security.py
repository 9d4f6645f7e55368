from datetime import datetime, timedelta, timezone
from typing import Any
from jose import jwt, JWTError
from watchparty.config import settings


def create_access_token(subject: str, expires_delta: timedelta | None = None, **claims: Any) -> str:
    to_encode: dict[str, Any] = {"sub": subject, **claims}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    to_encode.setdefault("type", "access")
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


def user_id_from_token(token: str | None) -> str | None:
    """The `sub` claim of a valid access token, None for anything else."""
    if not token:
        return None
    payload = decode_token(token)
    if not payload or payload.get("type", "access") != "access":
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None
