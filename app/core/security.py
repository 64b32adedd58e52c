from __future__ import annotations

import bcrypt
import jwt
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.core.errors import TokenError

SESSION_TOKEN_TYPES = ("access", "refresh")
VOUCHER_TOKEN_TYPE = "voucher"


# -------------------------
# Password hashing (bcrypt)
# -------------------------
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# -------------------------
# Session tokens
# -------------------------
def create_access_token(*, user_id: int, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.JWT_ACCESS_MINUTES)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def create_refresh_token(*, user_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(days=settings.JWT_REFRESH_DAYS)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> dict:
    """Decode a session token. Voucher tokens carry an audience, which PyJWT refuses here."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    if payload.get("type") not in SESSION_TOKEN_TYPES:
        raise TokenError("Invalid token")
    return payload


# -------------------------
# Voucher redemption tokens
# -------------------------
def create_voucher_token(claims: dict, *, issued_at: datetime, ttl: timedelta) -> str:
    payload = {
        **claims,
        "type": VOUCHER_TOKEN_TYPE,
        "aud": settings.VOUCHER_TOKEN_AUDIENCE,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_voucher_token(token: str) -> dict:
    """
    Verify the signature and token class of a voucher token.

    Expiry is not enforced here: the redemption service compares
    `exp` against its own clock so it can move the redemption to EXPIRED.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            audience=settings.VOUCHER_TOKEN_AUDIENCE,
            options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat", "aud"]},
        )
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid voucher token") from e

    if payload.get("type") != VOUCHER_TOKEN_TYPE:
        raise TokenError("Invalid voucher token")
    return payload
