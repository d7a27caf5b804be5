# FILE: crud.py
# Async data access over `databases` + SQLAlchemy Core.
# Reads return None / [] when the database is not configured; writes raise 503.

import secrets
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import select, func, and_

from database import get_database, require_database, row_to_dict, dialect_name
from models import (
    UserTable, UserProfileTable, DriverTable, RideTable, RatingTable,
    PaymentMethodTable, RideRequestTable, RefreshTokenTable, DeviceTokenTable,
    ACTIVE_RIDE_STATUSES,
)


def _now():
    return datetime.now(timezone.utc)


def _fill_defaults(table, values: dict, attr: str = "default") -> dict:
    """Apply column-level Python defaults (or onupdate) the ORM would apply.

    On insert a None means "use the default". On update it clears the column,
    but only where the column is nullable; None for a NOT NULL column is skipped.
    """
    columns = table.__table__.c
    if attr == "onupdate":
        out = {k: v for k, v in values.items() if v is not None or columns[k].nullable}
    else:
        out = {k: v for k, v in values.items() if v is not None}
    for col in table.__table__.columns:
        d = getattr(col, attr)
        if col.name in out or d is None:
            continue
        if d.is_scalar:
            out[col.name] = d.arg
        elif d.is_callable:
            out[col.name] = d.arg(None)
    return out


async def _insert(table, values: dict) -> int:
    db = require_database()
    ins = table.__table__.insert().values(**_fill_defaults(table, values))
    if dialect_name() == "postgresql":
        row = await db.fetch_one(ins.returning(table.__table__.c.id))
        return int(row["id"])
    return int(await db.execute(ins))  # lastrowid on sqlite/mysql


async def _update(table, where, values: dict):
    db = require_database()
    vals = _fill_defaults(table, values, attr="onupdate")
    upd = table.__table__.update().where(where).values(**vals)
    await db.execute(upd)


async def _fetch_one(action: str, table, query) -> Optional[dict]:
    db = get_database(action)
    if db is None:
        return None
    return row_to_dict(await db.fetch_one(query), table)


async def _fetch_all(action: str, table, query) -> List[dict]:
    db = get_database(action)
    if db is None:
        return []
    rows = await db.fetch_all(query)
    return [row_to_dict(r, table) for r in rows]


# -------------------- Users --------------------

async def create_user(phone: str, password_hash: str, name: str = "", email: Optional[str] = None,
                      role: str = "user") -> dict:
    now = _now()
    user_id = await _insert(UserTable, {
        "phone": phone,
        "password_hash": password_hash,
        "name": name,
        "email": email,
        "login_method": "password",
        "role": role,
        "created_at": now,
        "updated_at": now,
        "last_signed_in": now,
    })
    return await get_user(user_id)


async def get_user(user_id: int) -> Optional[dict]:
    sel = UserTable.__table__.select().where(UserTable.id == user_id)
    return await _fetch_one("get user", UserTable, sel)


async def get_user_by_phone(phone: str) -> Optional[dict]:
    sel = UserTable.__table__.select().where(UserTable.phone == phone)
    return await _fetch_one("get user", UserTable, sel)


async def touch_last_signed_in(user_id: int):
    await _update(UserTable, UserTable.id == user_id, {"last_signed_in": _now()})


# -------------------- Refresh / device tokens --------------------

async def store_refresh_token(user_id: int, token_hash: str, expires_at: datetime):
    await _insert(RefreshTokenTable, {
        "user_id": user_id,
        "token_hash": token_hash,
        "expires_at": expires_at,
        "revoked": False,
        "created_at": _now(),
    })


async def get_valid_refresh_token(token_hash: str) -> Optional[dict]:
    sel = RefreshTokenTable.__table__.select().where(
        (RefreshTokenTable.token_hash == token_hash) &
        (RefreshTokenTable.revoked.is_(False)) &
        (RefreshTokenTable.expires_at > _now())
    )
    return await _fetch_one("get refresh token", RefreshTokenTable, sel)


async def revoke_refresh_token(token_hash: str) -> Optional[dict]:
    sel = RefreshTokenTable.__table__.select().where(RefreshTokenTable.token_hash == token_hash)
    row = await _fetch_one("get refresh token", RefreshTokenTable, sel)
    if row:
        await _update(RefreshTokenTable, RefreshTokenTable.id == row["id"], {"revoked": True})
    return row


async def upsert_device_token(token: str, user_id: Optional[int], platform: str):
    now = _now()
    sel = DeviceTokenTable.__table__.select().where(DeviceTokenTable.token == token)
    row = await _fetch_one("get device token", DeviceTokenTable, sel)
    if row is None:
        await _insert(DeviceTokenTable, {
            "token": token,
            "user_id": user_id,
            "platform": platform,
            "created_at": now,
            "updated_at": now,
        })
        return
    await _update(DeviceTokenTable, DeviceTokenTable.id == row["id"], {
        "user_id": user_id or row["user_id"],
        "platform": platform,
        "updated_at": now,
    })


async def delete_device_token(token: str):
    db = require_database()
    await db.execute(DeviceTokenTable.__table__.delete().where(DeviceTokenTable.token == token))


async def delete_user_device_tokens(user_id: int):
    db = require_database()
    await db.execute(DeviceTokenTable.__table__.delete().where(DeviceTokenTable.user_id == user_id))


async def get_user_device_tokens(user_id: int) -> List[str]:
    sel = DeviceTokenTable.__table__.select().where(DeviceTokenTable.user_id == user_id)
    rows = await _fetch_all("get device tokens", DeviceTokenTable, sel)
    seen, tokens = set(), []  # dedupe, keep order
    for r in rows:
        t = r["token"]
        if t and t not in seen:
            seen.add(t)
            tokens.append(t)
    return tokens


# -------------------- User profiles --------------------

async def create_user_profile(user_id: int, data: dict) -> dict:
    now = _now()
    await _insert(UserProfileTable, dict(data, user_id=user_id, created_at=now, updated_at=now))
    return await get_user_profile(user_id)


async def get_user_profile(user_id: int) -> Optional[dict]:
    sel = UserProfileTable.__table__.select().where(UserProfileTable.user_id == user_id)
    return await _fetch_one("get user profile", UserProfileTable, sel)


async def update_user_profile(user_id: int, data: dict):
    await _update(UserProfileTable, UserProfileTable.user_id == user_id, data)


# -------------------- Drivers --------------------

async def create_driver(user_id: int, data: dict) -> dict:
    now = _now()
    await _insert(DriverTable, dict(data, user_id=user_id, created_at=now, updated_at=now))
    return await get_driver(user_id)


async def get_driver(user_id: int) -> Optional[dict]:
    sel = DriverTable.__table__.select().where(DriverTable.user_id == user_id)
    return await _fetch_one("get driver", DriverTable, sel)


async def update_driver(user_id: int, data: dict):
    await _update(DriverTable, DriverTable.user_id == user_id, data)


async def get_available_drivers(limit: int = 10) -> List[dict]:
    sel = DriverTable.__table__.select().where(DriverTable.is_available.is_(True)).limit(limit)
    return await _fetch_all("get available drivers", DriverTable, sel)


async def update_driver_location(user_id: int, latitude: float, longitude: float):
    await _update(DriverTable, DriverTable.user_id == user_id, {
        "current_latitude": latitude,
        "current_longitude": longitude,
        "last_location_update": _now(),
    })


# -------------------- Rides --------------------

async def create_ride(data: dict) -> dict:
    now = _now()
    ride_id = await _insert(RideTable, dict(data, requested_at=now, created_at=now, updated_at=now))
    return await get_ride(ride_id)


async def get_ride(ride_id: int) -> Optional[dict]:
    sel = RideTable.__table__.select().where(RideTable.id == ride_id)
    return await _fetch_one("get ride", RideTable, sel)


async def update_ride(ride_id: int, data: dict):
    await _update(RideTable, RideTable.id == ride_id, data)


async def _ride_history(column, user_id: int, limit: int) -> List[dict]:
    sel = (
        RideTable.__table__.select()
        .where(column == user_id)
        .order_by(RideTable.created_at.desc(), RideTable.id.desc())
        .limit(limit)
    )
    return await _fetch_all("get ride history", RideTable, sel)


async def get_rider_ride_history(user_id: int, limit: int = 20) -> List[dict]:
    return await _ride_history(RideTable.rider_id, user_id, limit)


async def get_driver_ride_history(user_id: int, limit: int = 20) -> List[dict]:
    return await _ride_history(RideTable.driver_id, user_id, limit)


async def get_active_rides(user_id: int, user_type: str) -> List[dict]:
    column = RideTable.rider_id if user_type == "rider" else RideTable.driver_id
    sel = RideTable.__table__.select().where(
        and_(column == user_id, RideTable.status.in_(ACTIVE_RIDE_STATUSES))
    )
    return await _fetch_all("get active rides", RideTable, sel)


# -------------------- Ratings --------------------

async def create_rating(data: dict) -> dict:
    now = _now()
    await _insert(RatingTable, dict(data, created_at=now, updated_at=now))
    return await get_rating(data["ride_id"])


async def get_rating(ride_id: int) -> Optional[dict]:
    sel = RatingTable.__table__.select().where(RatingTable.ride_id == ride_id)
    return await _fetch_one("get rating", RatingTable, sel)


async def get_user_ratings(user_id: int) -> List[dict]:
    sel = RatingTable.__table__.select().where(RatingTable.rated_user_id == user_id)
    return await _fetch_all("get user ratings", RatingTable, sel)


async def refresh_user_rating(user_id: int) -> Optional[float]:
    """Store the average received score on the user's profile (if it has one)."""
    db = require_database()
    q = select(func.avg(RatingTable.score)).where(RatingTable.rated_user_id == user_id)
    avg = await db.fetch_val(q)
    if avg is None:
        return None
    avg = round(float(avg), 2)
    await update_user_profile(user_id, {"rating": avg})
    return avg


# -------------------- Payment methods --------------------

async def create_payment_method(user_id: int, data: dict) -> dict:
    now = _now()
    method_id = await _insert(PaymentMethodTable, dict(data, user_id=user_id, created_at=now, updated_at=now))
    return await get_payment_method(method_id)


async def get_payment_method(method_id: int) -> Optional[dict]:
    sel = PaymentMethodTable.__table__.select().where(PaymentMethodTable.id == method_id)
    return await _fetch_one("get payment method", PaymentMethodTable, sel)


async def get_user_payment_methods(user_id: int) -> List[dict]:
    sel = PaymentMethodTable.__table__.select().where(PaymentMethodTable.user_id == user_id)
    return await _fetch_all("get payment methods", PaymentMethodTable, sel)


async def get_default_payment_method(user_id: int) -> Optional[dict]:
    sel = PaymentMethodTable.__table__.select().where(
        (PaymentMethodTable.user_id == user_id) &
        (PaymentMethodTable.is_default.is_(True))
    ).limit(1)
    return await _fetch_one("get default payment method", PaymentMethodTable, sel)


async def update_payment_method(method_id: int, data: dict):
    await _update(PaymentMethodTable, PaymentMethodTable.id == method_id, data)


async def clear_default_payment_methods(user_id: int, keep_id: int):
    await _update(
        PaymentMethodTable,
        (PaymentMethodTable.user_id == user_id) & (PaymentMethodTable.id != keep_id),
        {"is_default": False},
    )


# -------------------- Ride requests --------------------

async def create_ride_request(data: dict) -> dict:
    request_id = await _insert(RideRequestTable, dict(data, created_at=_now()))
    return await get_ride_request(request_id)


async def get_ride_request(request_id: int) -> Optional[dict]:
    sel = RideRequestTable.__table__.select().where(RideRequestTable.id == request_id)
    return await _fetch_one("get ride request", RideRequestTable, sel)


async def is_ride_request_expired(request_id: int) -> bool:
    db = require_database()
    q = select(func.count()).select_from(RideRequestTable).where(
        (RideRequestTable.id == request_id) &
        (RideRequestTable.expires_at <= _now())
    )
    count = await db.fetch_val(q)
    return bool(count and int(count) > 0)


async def claim_ride_request(request_id: int, driver_id: int) -> Optional[dict]:
    """Move a pending, unexpired request to accepted in one UPDATE.

    Returns the claimed row, or None when another driver got there first or it
    expired. The random claim token tells the winner apart without rowcount.
    """
    token = secrets.token_hex(16)
    await _update(
        RideRequestTable,
        (RideRequestTable.id == request_id) &
        (RideRequestTable.status == "pending") &
        (RideRequestTable.expires_at > _now()),
        {"status": "accepted", "driver_id": driver_id, "claim_token": token},
    )
    req = await get_ride_request(request_id)
    if req is None or req.get("claim_token") != token:
        return None
    return req


async def update_ride_request(request_id: int, data: dict):
    await _update(RideRequestTable, RideRequestTable.id == request_id, data)


async def get_pending_ride_requests() -> List[dict]:
    sel = (
        RideRequestTable.__table__.select()
        .where(
            (RideRequestTable.status == "pending") &
            (RideRequestTable.expires_at > _now())
        )
        .order_by(RideRequestTable.created_at.desc(), RideRequestTable.id.desc())
    )
    return await _fetch_all("get pending ride requests", RideRequestTable, sel)


async def delete_expired_ride_requests() -> int:
    db = require_database()
    now = _now()
    q = select(func.count()).select_from(RideRequestTable).where(RideRequestTable.expires_at <= now)
    count = int(await db.fetch_val(q) or 0)
    await db.execute(RideRequestTable.__table__.delete().where(RideRequestTable.expires_at <= now))
    return count
