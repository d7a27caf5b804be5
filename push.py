# FILE: push.py
# Device push for ride events (Expo push service or ntfy topics)

from typing import List, Optional

import httpx

import crud
from config import PUSH_BACKEND, EXPO_PUSH_URL, NTFY_BASE_URL, NTFY_AUTH, get_logger

logger = get_logger("voyya.push", "PUSH")

PUSH_TIMEOUT = 10.0


def _to_push_data(data: dict) -> dict:
    out = {}
    for k, v in (data or {}).items():
        if v is None:
            continue
        out[str(k)] = v if isinstance(v, (int, float, bool)) else str(v)
    return out


async def _send_expo(tokens: List[str], title: str, body: str, data: dict):
    messages = [
        {"to": t, "title": title, "body": body, "sound": "default", "data": _to_push_data(data)}
        for t in tokens
    ]
    async with httpx.AsyncClient(timeout=PUSH_TIMEOUT) as client:
        resp = await client.post(EXPO_PUSH_URL, json=messages, headers={"Accept": "application/json"})
    if resp.status_code != 200:
        logger.error(f"expo send failed HTTP_{resp.status_code} body={resp.text}")
        return
    for ticket in (resp.json() or {}).get("data", []) or []:
        if ticket.get("status") == "error":
            logger.warning(f"expo ticket error: {ticket.get('message')}")


async def _send_ntfy(topics: List[str], title: str, body: str):
    base = (NTFY_BASE_URL or "https://ntfy.sh").rstrip("/")
    headers = {"Title": title}
    if NTFY_AUTH:
        headers["Authorization"] = NTFY_AUTH
    async with httpx.AsyncClient(timeout=PUSH_TIMEOUT) as client:
        for topic in topics:
            resp = await client.post(f"{base}/{topic}", headers=headers, content=body.encode("utf-8"))
            if resp.status_code >= 300:
                logger.error(f"ntfy send failed HTTP_{resp.status_code} topic={topic}")


async def push_notify_tokens(tokens: List[str], title: str, body: str, data: Optional[dict] = None,
                             backend: Optional[str] = None):
    """Send one notification to every token. Failures are logged, never raised."""
    if not tokens:
        return
    backend = (backend or PUSH_BACKEND).lower()
    try:
        if backend == "expo":
            await _send_expo(tokens, title, body, data or {})
        elif backend == "ntfy":
            await _send_ntfy(tokens, title, body)
        elif backend == "none":
            logger.info(f"push disabled, skipped '{title}' for {len(tokens)} token(s)")
        else:
            logger.error(f"unknown PUSH_BACKEND={backend}")
    except httpx.HTTPError as e:
        logger.error(f"push send failed: {e}")


async def notify_user(user_id: int, title: str, body: str, data: Optional[dict] = None):
    tokens = await crud.get_user_device_tokens(user_id)
    if not tokens:
        logger.info(f"no device tokens for user_id={user_id}")
        return
    await push_notify_tokens(tokens, title, body, data)


STATUS_MESSAGES = {
    "accepted": ("Ride accepted", "A driver accepted your ride."),
    "driver_arriving": ("Driver on the way", "Your driver is heading to the pickup point."),
    "arrived": ("Driver arrived", "Your driver is waiting at the pickup point."),
    "in_progress": ("Trip started", "Enjoy your ride."),
    "completed": ("Trip completed", "Thanks for riding. Don't forget to rate your driver."),
    "cancelled": ("Ride cancelled", "Your ride was cancelled."),
}


async def notify_ride_status(ride: dict):
    msg = STATUS_MESSAGES.get(ride.get("status"))
    if not msg:
        return
    title, body = msg
    await notify_user(ride["rider_id"], title, body, {"ride_id": ride["id"], "status": ride["status"]})
