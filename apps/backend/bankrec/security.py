"""Bearer token signing and verification."""

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from bankrec.config import settings
from bankrec.logger import get_logger

logger = get_logger(__name__)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Sign a token for ``data``. Production tokens come from the identity service; tooling and tests use this."""
    lifetime = expires_delta or timedelta(minutes=settings.token_lifetime_minutes)
    claims = {**data, "exp": datetime.now(UTC) + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.debug("Bearer token expired")
    except jwt.PyJWTError as exc:
        logger.warning("Bearer token rejected", error=str(exc), error_type=type(exc).__name__)
    return None
