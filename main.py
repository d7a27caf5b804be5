# FILE: main.py
# -*- coding: utf-8 -*-

from datetime import datetime, timedelta, timezone
from typing import Optional, Literal

import socketio
from fastapi import FastAPI, HTTPException, Request, Query
from fastapi.middleware.cors import CORSMiddleware

import crud
import push
import realtime
import security
from config import (
    ALLOW_ORIGINS_ENV, ADMIN_PHONES_SET, REFRESH_TOKEN_EXPIRE_DAYS, RIDE_REQUEST_TTL_SECONDS,
    PORT, normalize_phone, parse_origins, get_logger,
)
from database import database, create_tables
from schemas import (
    UserRegisterRequest, UserLoginRequest, RefreshAccessRequest, LogoutRequest,
    PushRegister, PushUnregister, UserProfileCreate, UserProfileUpdate, DriverInfo,
    DriverLocationUpdate, DriverAvailabilityUpdate, RideCreate, RideUpdate, RatingCreate,
    PaymentMethodCreate, PaymentMethodUpdate, FareEstimateRequest, RideRequestCreate,
    VehicleType,
)
from utils import calculate_fare, estimate_trip, haversine_km, estimate_duration_min, round2

logger = get_logger("voyya.api", "API")

FARE_PARTS = ("base_fare", "distance_fare", "time_fare")  # summed into total_fare

# status -> timestamp column stamped when a ride moves into it
STATUS_TIMESTAMPS = {
    "accepted": "accepted_at",
    "in_progress": "started_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}


def unified_response(status: str, code: str, message: str, data: Optional[dict] = None):
    return {"status": status, "code": code, "message": message, "data": (data or {})}


def public_user(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {k: v for k, v in user.items() if k != "password_hash"}


def public_request(req: Optional[dict]) -> Optional[dict]:
    if not req:
        return None
    return {k: v for k, v in req.items() if k != "claim_token"}  # claim_token=internal


def _now():
    return datetime.now(timezone.utc)


# -------------------- App & CORS --------------------

app = FastAPI(title="Voy Ya API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=parse_origins(ALLOW_ORIGINS_ENV),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Socket.io in front, everything else falls through to FastAPI
asgi_app = socketio.ASGIApp(realtime.sio, other_asgi_app=app)


# -------------------- Startup / Shutdown --------------------

@app.on_event("startup")  # event=create tables + connect
async def startup():
    if database is None:
        logger.warning("DATABASE_URL not set, running without a database")
        return
    create_tables()  # sync engine, idempotent
    await database.connect()


@app.on_event("shutdown")  # event=disconnect
async def shutdown():
    if database is not None and database.is_connected:
        await database.disconnect()


# -------------------- Health --------------------

@app.get("/")  # route=liveness
def read_root():
    return {"message": "Voy Ya server is running!"}


@app.get("/health")  # route=health with DB check
async def health():
    out = {"backend": "ok", "database": "not configured"}
    if database is None:
        return out
    try:
        await database.fetch_val("SELECT 1")
        out["database"] = "connected"
    except Exception as e:  # report, keep answering 200
        out["database"] = f"error: {str(e)[:80]}"
    return out


@app.get("/debug/routes")  # route=list registered routes
def debug_routes():
    out = []
    for r in app.router.routes:
        out.append({
            "path": getattr(r, "path", ""),
            "methods": sorted(list(getattr(r, "methods", []) or [])),
            "name": getattr(r, "name", ""),
        })
    return {"items": out}


# -------------------- Auth --------------------

@app.post("/auth/register")  # route=register by phone
async def register_user(body: UserRegisterRequest):
    phone = normalize_phone(body.phone)
    if not phone:
        raise HTTPException(status_code=400, detail="invalid phone")
    if await crud.get_user_by_phone(phone):
        raise HTTPException(status_code=409, detail="User already exists")

    role = "admin" if phone in ADMIN_PHONES_SET else "user"
    user = await crud.create_user(
        phone=phone,
        password_hash=security.bcrypt_hash_password(body.password),
        name=body.name.strip(),
        email=(body.email or "").strip() or None,
        role=role,
    )
    return unified_response("ok", "USER_REGISTERED", "registered", {"user": public_user(user)})


@app.post("/auth/login")  # route=login, returns access + refresh
async def login_user(body: UserLoginRequest):
    user = await crud.get_user_by_phone(normalize_phone(body.phone))
    if not user:
        raise HTTPException(status_code=404, detail={"code": "USER_NOT_FOUND"})
    if not security.verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail={"code": "WRONG_PASSWORD"})

    access_token = security.create_access_token(user["id"])
    refresh_token = security.create_refresh_token()
    await crud.store_refresh_token(
        user["id"],
        security.hash_refresh_token(refresh_token),
        _now() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
    )
    await crud.touch_last_signed_in(user["id"])

    return {
        "status": "ok",
        "access_token": access_token,
        "refresh_token": refresh_token,
        "user": public_user(await crud.get_user(user["id"])),
    }


@app.post("/auth/refresh")  # route=new access token
async def refresh_access(body: RefreshAccessRequest):
    raw = (body.refresh_token or "").strip()
    if not raw:
        raise HTTPException(status_code=400, detail="refresh_token required")
    row = await crud.get_valid_refresh_token(security.hash_refresh_token(raw))
    if not row:  # unknown, revoked or expired
        raise HTTPException(status_code=401, detail="invalid refresh token")
    user = await crud.get_user(row["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    return {"status": "ok", "access_token": security.create_access_token(user["id"])}


@app.get("/auth/me")  # route=current user or null
async def me(request: Request):
    user = await security.optional_user(request)
    return {"status": "ok", "user": public_user(user)}


@app.post("/auth/logout")  # route=revoke refresh token
async def logout(body: LogoutRequest):
    row = None
    if body.refresh_token and body.refresh_token.strip():
        row = await crud.revoke_refresh_token(security.hash_refresh_token(body.refresh_token.strip()))

    if body.device_token and body.device_token.strip():
        await crud.delete_device_token(body.device_token.strip())
    elif row:  # no device token given: forget every device of that user
        await crud.delete_user_device_tokens(row["user_id"])

    return unified_response("ok", "LOGOUT", "logged out", {"success": True})


# -------------------- Push tokens --------------------

@app.post("/push/register")  # route=save device token
async def register_push_token(body: PushRegister, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    await crud.upsert_device_token(body.token.strip(), user["id"], body.platform)
    return unified_response("ok", "TOKEN_REGISTERED", "registered", {})


@app.post("/push/unregister")  # route=drop device token
async def unregister_push_token(body: PushUnregister):
    await crud.delete_device_token(body.token.strip())
    return unified_response("ok", "TOKEN_UNREGISTERED", "unregistered", {})


# -------------------- User profile --------------------

@app.get("/profile")  # route=my profile
async def get_profile(request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    profile = await crud.get_user_profile(user["id"])
    return unified_response("ok", "PROFILE", "profile", {"item": profile})


@app.post("/profile")  # route=create profile
async def create_profile(body: UserProfileCreate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    if await crud.get_user_profile(user["id"]):
        raise HTTPException(status_code=409, detail="Profile already exists")
    profile = await crud.create_user_profile(user["id"], body.model_dump())
    return unified_response("ok", "PROFILE_CREATED", "profile created", {"item": profile})


@app.put("/profile")  # route=update profile
async def update_profile(body: UserProfileUpdate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    if not await crud.get_user_profile(user["id"]):
        raise HTTPException(status_code=404, detail="Profile not found")
    await crud.update_user_profile(user["id"], body.model_dump(exclude_unset=True))
    profile = await crud.get_user_profile(user["id"])
    return unified_response("ok", "PROFILE_UPDATED", "profile updated", {"item": profile})


# -------------------- Driver --------------------

@app.get("/driver")  # route=my driver row
async def get_driver(request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    driver = await crud.get_driver(user["id"])
    return unified_response("ok", "DRIVER", "driver", {"item": driver})


@app.post("/driver")  # route=become a driver
async def create_driver(body: DriverInfo, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    if await crud.get_driver(user["id"]):
        raise HTTPException(status_code=409, detail="Driver already exists")
    driver = await crud.create_driver(user["id"], body.model_dump())
    return unified_response("ok", "DRIVER_CREATED", "driver created", {"item": driver})


async def _require_driver(user: dict) -> dict:
    driver = await crud.get_driver(user["id"])
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@app.put("/driver")  # route=update vehicle details
async def update_driver(body: DriverInfo, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    await _require_driver(user)
    await crud.update_driver(user["id"], body.model_dump(exclude_unset=True))
    driver = await crud.get_driver(user["id"])
    return unified_response("ok", "DRIVER_UPDATED", "driver updated", {"item": driver})


@app.post("/driver/location")  # route=store GPS fix + relay
async def update_driver_location(body: DriverLocationUpdate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    await _require_driver(user)
    await crud.update_driver_location(user["id"], body.latitude, body.longitude)
    await realtime.broadcast_driver_location(user["id"], body.latitude, body.longitude)
    return unified_response("ok", "LOCATION_UPDATED", "location updated", {"success": True})


@app.post("/driver/availability")  # route=go online/offline
async def update_driver_availability(body: DriverAvailabilityUpdate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    await _require_driver(user)
    await crud.update_driver(user["id"], {"is_available": body.is_available})
    return unified_response("ok", "AVAILABILITY_UPDATED", "availability updated", {"success": True})


@app.get("/drivers/available")  # route=online drivers
async def get_available_drivers(limit: int = Query(10, ge=1, le=100)):
    drivers = await crud.get_available_drivers(limit)
    return unified_response("ok", "AVAILABLE_DRIVERS", "available drivers", {"items": drivers})


# -------------------- Rides --------------------

def _fill_ride_fares(body: RideCreate) -> dict:
    """Client-sent fare parts win; missing parts are computed from the coordinates.

    A missing total is the sum of the stored parts, so it never ignores a part the
    client sent. With no parts sent at all it is the unrounded fare total.
    """
    data = body.model_dump()
    if all(data[k] is not None for k in FARE_PARTS + ("total_fare",)):
        return data
    distance = data["distance"]
    if distance is None:
        distance = round2(haversine_km(
            body.pickup_latitude, body.pickup_longitude,
            body.dropoff_latitude, body.dropoff_longitude,
        ))
    duration = data["estimated_duration"]
    if duration is None:
        duration = estimate_duration_min(distance)
    fare = calculate_fare(distance, duration, body.vehicle_type)
    data["distance"] = distance
    data["estimated_duration"] = duration
    client_parts = [k for k in FARE_PARTS if data[k] is not None]
    for k in FARE_PARTS:
        if data[k] is None:
            data[k] = fare[k]
    if data["total_fare"] is None:
        if client_parts:
            data["total_fare"] = round2(sum(data[k] for k in FARE_PARTS))
        else:
            data["total_fare"] = fare["total_fare"]
    return data


@app.post("/rides")  # route=create ride
async def create_ride(body: RideCreate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    data = _fill_ride_fares(body)
    data["rider_id"] = user["id"]
    data["status"] = "requested"
    ride = await crud.create_ride(data)
    return unified_response("ok", "RIDE_CREATED", "ride created", {"item": ride})


@app.get("/rides/history/rider")  # route=rides I took
async def rider_history(request: Request, limit: int = Query(20, ge=1, le=200)):
    user = await security.require_user(request)  # auth=bearer access token
    rides = await crud.get_rider_ride_history(user["id"], limit)
    return unified_response("ok", "RIDER_HISTORY", "rider history", {"items": rides})


@app.get("/rides/history/driver")  # route=rides I drove
async def driver_history(request: Request, limit: int = Query(20, ge=1, le=200)):
    user = await security.require_user(request)  # auth=bearer access token
    rides = await crud.get_driver_ride_history(user["id"], limit)
    return unified_response("ok", "DRIVER_HISTORY", "driver history", {"items": rides})


@app.get("/rides/active")  # route=unfinished rides
async def active_rides(request: Request, user_type: Literal["rider", "driver"] = "rider"):
    user = await security.require_user(request)  # auth=bearer access token
    rides = await crud.get_active_rides(user["id"], user_type)
    return unified_response("ok", "ACTIVE_RIDES", "active rides", {"items": rides})


@app.get("/rides/{ride_id}")  # route=one ride
async def get_ride(ride_id: int, request: Request):
    await security.require_user(request)  # auth=any signed-in user
    ride = await crud.get_ride(ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return unified_response("ok", "RIDE", "ride", {"item": ride})


async def _announce_ride_update(ride: dict, status_changed: bool):
    if not status_changed:
        return
    await realtime.notify_ride_status(ride["id"], ride["status"])
    if ride["status"] == "arrived" and ride.get("driver_id"):
        driver_user = await crud.get_user(ride["driver_id"])
        await realtime.notify_driver_arrival(ride["id"], ride["driver_id"], (driver_user or {}).get("name") or "")
    elif ride["status"] == "completed":
        await realtime.notify_ride_completion(ride["id"], ride["total_fare"])
    try:
        await push.notify_ride_status(ride)
    except Exception as e:  # push must never fail the update
        logger.error(f"notify_ride_status failed: {e}")


@app.put("/rides/{ride_id}")  # route=update ride, no transition checks
async def update_ride(ride_id: int, body: RideUpdate, request: Request):
    await security.require_user(request)  # auth=any signed-in user
    if not await crud.get_ride(ride_id):
        raise HTTPException(status_code=404, detail="Ride not found")

    data = body.model_dump(exclude_unset=True)
    stamp = STATUS_TIMESTAMPS.get(data.get("status"))
    if stamp:
        data[stamp] = _now()
    await crud.update_ride(ride_id, data)

    ride = await crud.get_ride(ride_id)
    await _announce_ride_update(ride, status_changed=body.status is not None)
    return unified_response("ok", "RIDE_UPDATED", "ride updated", {"item": ride})


# -------------------- Ratings --------------------

@app.post("/ratings")  # route=rate a ride
async def create_rating(body: RatingCreate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    if not await crud.get_ride(body.ride_id):
        raise HTTPException(status_code=404, detail="Ride not found")
    if await crud.get_rating(body.ride_id):
        raise HTTPException(status_code=409, detail="Ride already rated")

    data = body.model_dump()
    data["rated_by_id"] = user["id"]
    rating = await crud.create_rating(data)
    await crud.refresh_user_rating(body.rated_user_id)
    return unified_response("ok", "RATING_CREATED", "rating created", {"item": rating})


@app.get("/ratings/ride/{ride_id}")  # route=rating of a ride
async def get_rating(ride_id: int, request: Request):
    await security.require_user(request)  # auth=any signed-in user
    rating = await crud.get_rating(ride_id)
    return unified_response("ok", "RATING", "rating", {"item": rating})


@app.get("/ratings/user/{user_id}")  # route=ratings received
async def get_user_ratings(user_id: int, request: Request):
    await security.require_user(request)  # auth=any signed-in user
    ratings = await crud.get_user_ratings(user_id)
    return unified_response("ok", "USER_RATINGS", "user ratings", {"items": ratings})


# -------------------- Payment methods --------------------

@app.get("/payment_methods")  # route=my payment methods
async def list_payment_methods(request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    items = await crud.get_user_payment_methods(user["id"])
    return unified_response("ok", "PAYMENT_METHODS", "payment methods", {"items": items})


@app.post("/payment_methods")  # route=add payment method
async def create_payment_method(body: PaymentMethodCreate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    method = await crud.create_payment_method(user["id"], body.model_dump())
    if body.is_default:
        await crud.clear_default_payment_methods(user["id"], keep_id=method["id"])
    return unified_response("ok", "PAYMENT_METHOD_CREATED", "payment method created", {"item": method})


@app.get("/payment_methods/default")  # route=default method
async def get_default_payment_method(request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    method = await crud.get_default_payment_method(user["id"])
    return unified_response("ok", "DEFAULT_PAYMENT_METHOD", "default payment method", {"item": method})


@app.put("/payment_methods/{method_id}")  # route=update flags
async def update_payment_method(method_id: int, body: PaymentMethodUpdate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    method = await crud.get_payment_method(method_id)
    if not method:
        raise HTTPException(status_code=404, detail="Payment method not found")
    if method["user_id"] != user["id"]:
        raise HTTPException(status_code=403, detail="forbidden")

    await crud.update_payment_method(method_id, body.model_dump(exclude_unset=True))
    if body.is_default:
        await crud.clear_default_payment_methods(user["id"], keep_id=method_id)
    return unified_response("ok", "PAYMENT_METHOD_UPDATED", "payment method updated", {"success": True})


# -------------------- Fare --------------------

@app.get("/fare/calculate")  # route=fare from distance + duration
def fare_calculate(
    distance: float = Query(..., ge=0),
    duration: float = Query(..., ge=0),
    vehicle_type: VehicleType = "economy",
):
    return unified_response("ok", "FARE", "fare", calculate_fare(distance, duration, vehicle_type))


@app.post("/fare/estimate")  # route=fare from coordinates
def fare_estimate(body: FareEstimateRequest):
    est = estimate_trip(
        body.pickup.latitude, body.pickup.longitude,
        body.dropoff.latitude, body.dropoff.longitude,
        body.vehicle_type,
    )
    return unified_response("ok", "FARE_ESTIMATE", "fare estimate", est)


# -------------------- Ride requests --------------------

@app.post("/ride_requests")  # route=open a ride request
async def create_ride_request(body: RideRequestCreate, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    est = estimate_trip(
        body.pickup.latitude, body.pickup.longitude,
        body.dropoff.latitude, body.dropoff.longitude,
        body.vehicle_type,
    )
    req = await crud.create_ride_request({
        "rider_id": user["id"],
        "pickup_latitude": body.pickup.latitude,
        "pickup_longitude": body.pickup.longitude,
        "pickup_address": body.pickup_address,
        "dropoff_latitude": body.dropoff.latitude,
        "dropoff_longitude": body.dropoff.longitude,
        "dropoff_address": body.dropoff_address,
        "vehicle_type": body.vehicle_type,
        "estimated_fare": est["total_fare"],
        "status": "pending",
        "expires_at": _now() + timedelta(seconds=RIDE_REQUEST_TTL_SECONDS),
    })
    await realtime.announce_ride_request(req)
    return unified_response("ok", "RIDE_REQUEST_CREATED", "ride request created", {"item": public_request(req), "estimate": est})


@app.get("/ride_requests/pending")  # route=open, unexpired requests
async def pending_ride_requests(request: Request):
    await security.require_user(request)  # auth=any signed-in user
    items = await crud.get_pending_ride_requests()
    return unified_response("ok", "PENDING_RIDE_REQUESTS", "pending ride requests", {"items": [public_request(r) for r in items]})


@app.get("/ride_requests/{request_id}")  # route=one request
async def get_ride_request(request_id: int, request: Request):
    await security.require_user(request)  # auth=any signed-in user
    req = await crud.get_ride_request(request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Ride request not found")
    return unified_response("ok", "RIDE_REQUEST", "ride request", {"item": public_request(req)})


@app.post("/ride_requests/{request_id}/accept")  # route=driver takes a request
async def accept_ride_request(request_id: int, request: Request):
    user = await security.require_user(request)  # auth=bearer access token
    if not await crud.get_driver(user["id"]):
        raise HTTPException(status_code=403, detail="driver profile required")

    req = await crud.get_ride_request(request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Ride request not found")
    if req["status"] != "pending":
        raise HTTPException(status_code=409, detail=f"ride request is {req['status']}")
    if await crud.is_ride_request_expired(request_id):
        await crud.update_ride_request(request_id, {"status": "expired"})
        raise HTTPException(status_code=410, detail="ride request expired")

    claimed = await crud.claim_ride_request(request_id, user["id"])  # one winner per request
    if not claimed:
        if await crud.is_ride_request_expired(request_id):
            raise HTTPException(status_code=410, detail="ride request expired")
        raise HTTPException(status_code=409, detail="ride request is no longer pending")
    req = claimed

    est = estimate_trip(
        req["pickup_latitude"], req["pickup_longitude"],
        req["dropoff_latitude"], req["dropoff_longitude"],
        req["vehicle_type"],
    )
    ride = await crud.create_ride({
        "rider_id": req["rider_id"],
        "driver_id": user["id"],
        "pickup_latitude": req["pickup_latitude"],
        "pickup_longitude": req["pickup_longitude"],
        "pickup_address": req["pickup_address"],
        "dropoff_latitude": req["dropoff_latitude"],
        "dropoff_longitude": req["dropoff_longitude"],
        "dropoff_address": req["dropoff_address"],
        "distance": est["distance"],
        "estimated_duration": est["estimated_duration"],
        "base_fare": est["base_fare"],
        "distance_fare": est["distance_fare"],
        "time_fare": est["time_fare"],
        "total_fare": est["total_fare"],
        "vehicle_type": req["vehicle_type"],
        "status": "accepted",
        "accepted_at": _now(),
    })
    await crud.update_ride_request(request_id, {"ride_id": ride["id"]})  # link request -> ride

    await realtime.notify_ride_accepted(ride["id"], user["id"], user.get("name") or "")
    try:
        await push.notify_ride_status(ride)
    except Exception as e:
        logger.error(f"notify_ride_status(accept) failed: {e}")

    return unified_response("ok", "RIDE_REQUEST_ACCEPTED", "ride request accepted", {"item": ride})


@app.delete("/admin/ride_requests/expired")  # route=purge expired (admin)
async def purge_expired_ride_requests(request: Request):
    await security.require_admin(request)  # auth=admin role
    count = await crud.delete_expired_ride_requests()
    return unified_response("ok", "EXPIRED_PURGED", "expired ride requests deleted", {"count": count})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(asgi_app, host="0.0.0.0", port=PORT)
