# FILE: security.py
# -*- coding: utf-8 -*-

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import HTTPException, Request

import crud
from config import (
    JWT_SECRET, PASSWORD_PEPPER, BCRYPT_ROUNDS,
    ACCESS_TOKEN_EXPIRE_MINUTES,
)

BCRYPT_MAX_BYTES = 72


def _peppered(password: str) -> bytes:
    return (password + PASSWORD_PEPPER).encode("utf-8")[:BCRYPT_MAX_BYTES]


def bcrypt_hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(_peppered(password), salt).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(_peppered(password), stored_hash.encode("utf-8"))
    except ValueError:  # malformed stored hash
        return False


def create_access_token(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def create_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256((token + PASSWORD_PEPPER).encode("utf-8")).hexdigest()


def extract_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        return None
    return auth.split(" ", 1)[1].strip()


def decode_access_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    if payload.get("type") != "access":
        return None
    return payload


async def optional_user(request: Request) -> Optional[dict]:
    """User behind the bearer token, or None (no token, bad token, unknown user)."""
    token = extract_bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or not str(payload.get("sub", "")).isdigit():
        return None
    return await crud.get_user(int(payload["sub"]))


async def require_user(request: Request) -> dict:
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="missing bearer token")
    user = await optional_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="invalid token")
    return user


async def require_admin(request: Request) -> dict:
    user = await require_user(request)
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="admin role required")
    return user
