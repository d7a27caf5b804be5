# FILE: realtime.py
# Socket.io relay for live driver locations and ride status.
# Rooms: driver:{id} and ride:{id}. Plain fan-out, no ordering or dedup.

from datetime import datetime, timezone
from typing import Any, Optional

import socketio

from config import ALLOW_ORIGINS_ENV, parse_origins, get_logger

logger = get_logger("voyya.socket", "Socket.io")

_origins = parse_origins(ALLOW_ORIGINS_ENV)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*" if _origins == ["*"] else _origins,
    logger=False,
    engineio_logger=False,
)


def driver_room(driver_id) -> str:
    return f"driver:{driver_id}"


def ride_room(ride_id) -> str:
    return f"ride:{ride_id}"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _id_from(data: Any, key: str) -> Optional[int]:
    """Clients send either a bare id or an object carrying it."""
    if isinstance(data, dict):
        data = data.get(key)
    if isinstance(data, bool):
        return None
    if isinstance(data, int):
        return data
    if isinstance(data, str) and data.strip().isdigit():
        return int(data.strip())
    return None


# -------------------- Server-side emitters --------------------

async def emit_to_room(room: str, event: str, data: dict):
    try:
        await sio.emit(event, data, room=room)
    except Exception as e:  # relay is best effort
        logger.error(f"emit {event} to {room} failed: {e}")


async def emit_to_all(event: str, data: dict):
    try:
        await sio.emit(event, data)
    except Exception as e:
        logger.error(f"broadcast {event} failed: {e}")


async def broadcast_driver_location(driver_id: int, latitude: float, longitude: float):
    await emit_to_room(driver_room(driver_id), "driver:location:update", {
        "driverId": driver_id,
        "latitude": latitude,
        "longitude": longitude,
        "timestamp": _timestamp(),
    })


async def notify_ride_status(ride_id: int, status: str):
    await emit_to_room(ride_room(ride_id), "ride:status:update", {
        "rideId": ride_id,
        "status": status,
        "timestamp": _timestamp(),
    })


async def notify_driver_arrival(ride_id: int, driver_id: int, driver_name: str):
    await emit_to_room(ride_room(ride_id), "driver:arrived", {
        "driverId": driver_id,
        "driverName": driver_name,
        "timestamp": _timestamp(),
    })


async def notify_ride_completion(ride_id: int, fare: float):
    await emit_to_room(ride_room(ride_id), "ride:completed", {
        "rideId": ride_id,
        "fare": fare,
        "timestamp": _timestamp(),
    })


async def announce_ride_request(req: dict):
    """New pending request, to every connected client (drivers filter client side)."""
    pickup = req.get("pickup_address") or f"{req['pickup_latitude']},{req['pickup_longitude']}"
    await emit_to_all("ride:request:new", {
        "requestId": req["id"],
        "pickupLocation": pickup,
        "vehicleType": req.get("vehicle_type"),
        "estimatedFare": req.get("estimated_fare"),
        "timestamp": _timestamp(),
    })


async def notify_ride_accepted(ride_id: int, driver_id: int, driver_name: str):
    await emit_to_room(ride_room(ride_id), "ride:accepted:update", {
        "driverId": driver_id,
        "driverName": driver_name,
        "timestamp": _timestamp(),
    })


# -------------------- Connection lifecycle --------------------

@sio.event
async def connect(sid, environ, auth=None):
    logger.info(f"Client connected: {sid}")


@sio.event
async def disconnect(sid, *args):
    logger.info(f"Client disconnected: {sid}")


# -------------------- Rooms --------------------

@sio.on("driver:join")
async def driver_join(sid, data):
    driver_id = _id_from(data, "driverId")
    if driver_id is None:
        logger.warning(f"driver:join without driverId from {sid}")
        return
    await sio.enter_room(sid, driver_room(driver_id))
    logger.info(f"Driver {driver_id} joined room")


@sio.on("driver:leave")
async def driver_leave(sid, data):
    driver_id = _id_from(data, "driverId")
    if driver_id is None:
        return
    await sio.leave_room(sid, driver_room(driver_id))
    logger.info(f"Driver {driver_id} left room")


@sio.on("ride:join")
async def ride_join(sid, data):
    ride_id = _id_from(data, "rideId")
    if ride_id is None:
        logger.warning(f"ride:join without rideId from {sid}")
        return
    await sio.enter_room(sid, ride_room(ride_id))
    logger.info(f"Client joined ride {ride_id} room")


@sio.on("ride:leave")
async def ride_leave(sid, data):
    ride_id = _id_from(data, "rideId")
    if ride_id is None:
        return
    await sio.leave_room(sid, ride_room(ride_id))
    logger.info(f"Client left ride {ride_id} room")


@sio.on("room:join")
async def room_join(sid, data):
    room = (data or {}).get("room") if isinstance(data, dict) else None
    if not room:
        return
    await sio.enter_room(sid, str(room))


@sio.on("room:leave")
async def room_leave(sid, data):
    room = (data or {}).get("room") if isinstance(data, dict) else None
    if not room:
        return
    await sio.leave_room(sid, str(room))


# -------------------- Relayed events --------------------

@sio.on("driver:location")
async def driver_location(sid, data):
    try:
        driver_id = _id_from(data, "driverId")
        latitude = float(data["latitude"])
        longitude = float(data["longitude"])
    except (TypeError, KeyError, ValueError):
        logger.warning(f"dropping malformed driver:location from {sid}")
        return
    if driver_id is None:
        logger.warning(f"dropping driver:location without driverId from {sid}")
        return
    await broadcast_driver_location(driver_id, latitude, longitude)


@sio.on("ride:status")
async def ride_status(sid, data):
    ride_id = _id_from(data, "rideId")
    status = data.get("status") if isinstance(data, dict) else None
    if ride_id is None or not status:
        logger.warning(f"dropping malformed ride:status from {sid}")
        return
    await notify_ride_status(ride_id, str(status))


@sio.on("ride:request")
async def ride_request(sid, data):
    if not isinstance(data, dict):  # a bare id carries no driver
        data = {}
    driver_id = _id_from(data, "driverId")
    ride_id = _id_from(data, "rideId")
    if driver_id is None or ride_id is None:
        logger.warning(f"dropping malformed ride:request from {sid}")
        return
    await emit_to_room(driver_room(driver_id), "ride:request:new", {
        "rideId": ride_id,
        "pickupLocation": data.get("pickupLocation"),
        "timestamp": _timestamp(),
    })


@sio.on("ride:accepted")
async def ride_accepted(sid, data):
    if not isinstance(data, dict):
        data = {}
    ride_id = _id_from(data, "rideId")
    driver_id = _id_from(data, "driverId")
    if ride_id is None or driver_id is None:
        logger.warning(f"dropping malformed ride:accepted from {sid}")
        return
    await notify_ride_accepted(ride_id, driver_id, str(data.get("driverName") or ""))
