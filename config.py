# FILE: config.py
# -*- coding: utf-8 -*-

import os
import logging

from dotenv import load_dotenv

load_dotenv()  # .env next to the server, never overrides real env

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()  # empty = database not available
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-secret")
PASSWORD_PEPPER = os.getenv("PASSWORD_PEPPER", "change-me-pepper")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
ALLOW_ORIGINS_ENV = os.getenv("ALLOW_ORIGINS", "*")
ADMIN_PHONES_ENV = os.getenv("ADMIN_PHONES", "").strip()

RIDE_REQUEST_TTL_SECONDS = int(os.getenv("RIDE_REQUEST_TTL_SECONDS", "300"))  # pending offer lifetime

PUSH_BACKEND = os.getenv("PUSH_BACKEND", "none").strip().lower()  # expo | ntfy | none
EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send").strip()
NTFY_BASE_URL = os.getenv("NTFY_BASE_URL", "https://ntfy.sh").strip()
NTFY_AUTH = os.getenv("NTFY_AUTH", "").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
PORT = int(os.getenv("PORT", "8000"))


def normalize_phone(p: str) -> str:
    return "".join(ch for ch in str(p or "") if ch.isdigit() or ch == "+")


def _parse_admin_phones(s: str) -> set[str]:
    out = set()
    for part in (s or "").split(","):
        vv = normalize_phone(part.strip())
        if vv:
            out.add(vv)
    return out


ADMIN_PHONES_SET = _parse_admin_phones(ADMIN_PHONES_ENV)


def parse_origins(raw: str) -> list[str]:
    if raw.strip() == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def get_logger(name: str, prefix: str) -> logging.Logger:
    """Named logger with a bracketed prefix, e.g. ``[PUSH] INFO: sent``."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(f"[{prefix}] %(levelname)s: %(message)s"))
        logger.addHandler(h)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    return logger
