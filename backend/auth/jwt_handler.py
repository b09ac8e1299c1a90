import secrets
from datetime import datetime, timedelta, timezone

import jwt

from backend.core import config

OAUTH_STATE_PURPOSE = "google-oauth-state"


def create_access_token(subject: str, role: str = "admin", expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"sub": subject, "role": role, "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def create_oauth_state(expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.OAUTH_STATE_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "purpose": OAUTH_STATE_PURPOSE,
        "nonce": secrets.token_hex(16),
        "iat": now,
        "exp": now + timedelta(minutes=expire_minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def verify_oauth_state(state: str) -> dict:
    """Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError on a bad state."""
    payload = jwt.decode(state, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    if payload.get("purpose") != OAUTH_STATE_PURPOSE:
        raise jwt.InvalidTokenError("State token was not issued for the OAuth flow")
    return payload
