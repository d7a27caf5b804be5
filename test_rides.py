# FILE: test_rides.py
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import crud
import main
import realtime
from utils import calculate_fare

PICKUP = {"latitude": 40.7128, "longitude": -74.006}
DROPOFF = {"latitude": 40.7228, "longitude": -74.006}


def _ride_body(**extra):
    body = {
        "pickup_latitude": PICKUP["latitude"],
        "pickup_longitude": PICKUP["longitude"],
        "pickup_address": "Avenida Principal 123",
        "dropoff_latitude": DROPOFF["latitude"],
        "dropoff_longitude": DROPOFF["longitude"],
        "dropoff_address": "Centro Comercial Plaza Mayor",
    }
    body.update(extra)
    return body


# -------------------- Profiles --------------------

def test_profile_create_get_update(client, make_user):
    _, headers = make_user("5550000001")
    assert client.get("/profile", headers=headers).json()["data"]["item"] is None

    r = client.post("/profile", json={"user_type": "rider", "bio": "hi"}, headers=headers)
    assert r.status_code == 200
    profile = r.json()["data"]["item"]
    assert profile["user_type"] == "rider"
    assert profile["rating"] == 5.0
    assert profile["total_rides"] == 0

    assert client.post("/profile", json={"user_type": "rider"}, headers=headers).status_code == 409

    r = client.put("/profile", json={"user_type": "both"}, headers=headers)
    assert r.json()["data"]["item"]["user_type"] == "both"
    assert r.json()["data"]["item"]["bio"] == "hi"


def test_profile_rejects_unknown_user_type(client, make_user):
    _, headers = make_user("5550000002")
    assert client.post("/profile", json={"user_type": "pilot"}, headers=headers).status_code == 422


# -------------------- Drivers --------------------

def test_driver_lifecycle(client, make_user):
    user, headers = make_user("5550000010", name="Juan")
    r = client.post("/driver", json={"vehicle_type": "comfort", "vehicle_plate": "ABC123"}, headers=headers)
    assert r.status_code == 200
    driver = r.json()["data"]["item"]
    assert driver["vehicle_type"] == "comfort"
    assert driver["is_available"] is False

    assert client.post("/driver", json={}, headers=headers).status_code == 409

    r = client.put("/driver", json={"vehicle_color": "red"}, headers=headers)
    assert r.json()["data"]["item"]["vehicle_color"] == "red"
    assert r.json()["data"]["item"]["vehicle_plate"] == "ABC123"

    assert client.post("/driver/availability", json={"is_available": True}, headers=headers).status_code == 200
    available = client.get("/drivers/available").json()["data"]["items"]
    assert [d["user_id"] for d in available] == [user["id"]]


def test_driver_location_updates_row_and_relays(client, make_driver, monkeypatch):
    emit = AsyncMock()
    monkeypatch.setattr(realtime.sio, "emit", emit)
    user, headers = make_driver("5550000011")

    r = client.post("/driver/location", json={"latitude": 40.75, "longitude": -73.98}, headers=headers)
    assert r.status_code == 200
    driver = client.get("/driver", headers=headers).json()["data"]["item"]
    assert driver["current_latitude"] == 40.75
    assert driver["last_location_update"] is not None

    event, payload = emit.call_args.args
    assert event == "driver:location:update"
    assert payload["driverId"] == user["id"]
    assert emit.call_args.kwargs["room"] == f"driver:{user['id']}"


def test_driver_location_without_driver_row(client, make_user):
    _, headers = make_user("5550000012")
    r = client.post("/driver/location", json={"latitude": 1, "longitude": 2}, headers=headers)
    assert r.status_code == 404


# -------------------- Rides --------------------

def test_create_ride_with_client_fares(client, make_user):
    _, headers = make_user("5550000020")
    body = _ride_body(distance=5, estimated_duration=15, base_fare=2.5, distance_fare=7.5,
                      time_fare=3.75, total_fare=13.75)
    r = client.post("/rides", json=body, headers=headers)
    assert r.status_code == 200
    ride = r.json()["data"]["item"]
    assert ride["status"] == "requested"
    assert ride["total_fare"] == 13.75
    assert ride["payment_method"] == "card"
    assert ride["payment_status"] == "pending"


def test_create_ride_computes_missing_fares(client, make_user):
    _, headers = make_user("5550000021")
    r = client.post("/rides", json=_ride_body(vehicle_type="premium"), headers=headers)
    ride = r.json()["data"]["item"]
    assert 1.0 < ride["distance"] < 1.2
    assert ride["estimated_duration"] == 4
    assert ride["base_fare"] == 6.0
    assert ride["total_fare"] > ride["base_fare"]


def test_get_missing_ride(client, make_user):
    _, headers = make_user("5550000022")
    assert client.get("/rides/999", headers=headers).status_code == 404


def test_status_can_be_set_to_anything(client, make_user, monkeypatch):
    emit = AsyncMock()
    monkeypatch.setattr(realtime.sio, "emit", emit)
    _, headers = make_user("5550000023")
    ride = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]

    # straight to completed, then back to requested: no transition checks
    r = client.put(f"/rides/{ride['id']}", json={"status": "completed"}, headers=headers)
    assert r.status_code == 200
    updated = r.json()["data"]["item"]
    assert updated["status"] == "completed"
    assert updated["completed_at"] is not None

    events = [c.args[0] for c in emit.call_args_list]
    assert "ride:status:update" in events
    assert "ride:completed" in events

    r = client.put(f"/rides/{ride['id']}", json={"status": "requested"}, headers=headers)
    assert r.json()["data"]["item"]["status"] == "requested"


def test_arrived_notifies_ride_room(client, make_user, make_driver, monkeypatch):
    emit = AsyncMock()
    monkeypatch.setattr(realtime.sio, "emit", emit)
    driver, _ = make_driver("5550000024", name="Pedro")
    _, headers = make_user("5550000025")
    ride = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]

    client.put(f"/rides/{ride['id']}", json={"status": "arrived", "driver_id": driver["id"]}, headers=headers)
    arrived = [c for c in emit.call_args_list if c.args[0] == "driver:arrived"]
    assert len(arrived) == 1
    assert arrived[0].args[1]["driverName"] == "Pedro"
    assert arrived[0].kwargs["room"] == f"ride:{ride['id']}"


def test_history_and_active(client, make_user, make_driver):
    driver, driver_headers = make_driver("5550000026")
    _, headers = make_user("5550000027")
    first = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]
    second = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]
    client.put(f"/rides/{first['id']}", json={"status": "cancelled", "cancellation_reason": "late"}, headers=headers)
    client.put(f"/rides/{second['id']}", json={"status": "accepted", "driver_id": driver["id"]}, headers=headers)

    history = client.get("/rides/history/rider?limit=1", headers=headers).json()["data"]["items"]
    assert [r["id"] for r in history] == [second["id"]]

    active = client.get("/rides/active?user_type=rider", headers=headers).json()["data"]["items"]
    assert [r["id"] for r in active] == [second["id"]]

    driver_active = client.get("/rides/active?user_type=driver", headers=driver_headers).json()["data"]["items"]
    assert [r["id"] for r in driver_active] == [second["id"]]
    driver_hist = client.get("/rides/history/driver", headers=driver_headers).json()["data"]["items"]
    assert driver_hist[0]["accepted_at"] is not None


# -------------------- Ratings --------------------

def test_rating_once_per_ride_and_average(client, make_user, make_driver):
    driver, driver_headers = make_driver("5550000030")
    client.post("/profile", json={"user_type": "driver"}, headers=driver_headers)
    _, headers = make_user("5550000031")
    ride1 = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]
    ride2 = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]

    body = {"ride_id": ride1["id"], "rated_user_id": driver["id"], "rating_type": "driver_rating", "score": 5}
    assert client.post("/ratings", json=body, headers=headers).status_code == 200
    assert client.post("/ratings", json=body, headers=headers).status_code == 409

    body = dict(body, ride_id=ride2["id"], score=4, comment="ok")
    assert client.post("/ratings", json=body, headers=headers).status_code == 200

    profile = client.get("/profile", headers=driver_headers).json()["data"]["item"]
    assert profile["rating"] == 4.5

    ratings = client.get(f"/ratings/user/{driver['id']}", headers=headers).json()["data"]["items"]
    assert sorted(r["score"] for r in ratings) == [4, 5]
    one = client.get(f"/ratings/ride/{ride2['id']}", headers=headers).json()["data"]["item"]
    assert one["comment"] == "ok"


def test_rating_score_bounds(client, make_user):
    _, headers = make_user("5550000032")
    ride = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]
    body = {"ride_id": ride["id"], "rated_user_id": 1, "rating_type": "driver_rating", "score": 6}
    assert client.post("/ratings", json=body, headers=headers).status_code == 422


# -------------------- Payment methods --------------------

def test_default_payment_method_is_unique(client, make_user):
    _, headers = make_user("5550000040")
    card = client.post("/payment_methods", json={"payment_type": "card", "card_last4": "4242",
                                                 "card_brand": "visa", "is_default": True},
                       headers=headers).json()["data"]["item"]
    wallet = client.post("/payment_methods", json={"payment_type": "wallet", "is_default": True},
                         headers=headers).json()["data"]["item"]

    default = client.get("/payment_methods/default", headers=headers).json()["data"]["item"]
    assert default["id"] == wallet["id"]

    client.put(f"/payment_methods/{card['id']}", json={"is_default": True}, headers=headers)
    default = client.get("/payment_methods/default", headers=headers).json()["data"]["item"]
    assert default["id"] == card["id"]
    assert len(client.get("/payment_methods", headers=headers).json()["data"]["items"]) == 2


def test_payment_method_of_other_user(client, make_user):
    _, owner = make_user("5550000041")
    _, other = make_user("5550000042")
    method = client.post("/payment_methods", json={"payment_type": "card"}, headers=owner).json()["data"]["item"]
    r = client.put(f"/payment_methods/{method['id']}", json={"is_active": False}, headers=other)
    assert r.status_code == 403


# -------------------- Fare --------------------

def test_fare_calculate_endpoint(client):
    r = client.get("/fare/calculate", params={"distance": 5, "duration": 15, "vehicle_type": "comfort"})
    assert r.status_code == 200
    assert r.json()["data"] == {"base_fare": 4.0, "distance_fare": 10.0, "time_fare": 5.25, "total_fare": 19.25}


def test_fare_calculate_unknown_tier(client):
    r = client.get("/fare/calculate", params={"distance": 5, "duration": 15, "vehicle_type": "luxury"})
    assert r.status_code == 422


def test_fare_estimate_endpoint(client):
    r = client.post("/fare/estimate", json={"pickup": PICKUP, "dropoff": DROPOFF})
    data = r.json()["data"]
    assert 1.0 < data["distance"] < 1.2
    assert data["estimated_duration"] == 4
    assert data["total_fare"] == calculate_fare(data["distance"], 4)["total_fare"]


# -------------------- Ride requests --------------------

def test_ride_request_accept_flow(client, make_user, make_driver, monkeypatch):
    emit = AsyncMock()
    monkeypatch.setattr(realtime.sio, "emit", emit)
    rider, rider_headers = make_user("5550000050")
    driver, driver_headers = make_driver("5550000051", name="Luis")

    r = client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF,
                                            "pickup_address": "Estación Central"}, headers=rider_headers)
    assert r.status_code == 200
    req = r.json()["data"]["item"]
    assert req["status"] == "pending"
    assert emit.call_args_list[0].args[0] == "ride:request:new"
    assert emit.call_args_list[0].args[1]["pickupLocation"] == "Estación Central"

    pending = client.get("/ride_requests/pending", headers=driver_headers).json()["data"]["items"]
    assert [p["id"] for p in pending] == [req["id"]]

    r = client.post(f"/ride_requests/{req['id']}/accept", headers=driver_headers)
    assert r.status_code == 200
    ride = r.json()["data"]["item"]
    assert ride["status"] == "accepted"
    assert ride["driver_id"] == driver["id"]
    assert ride["rider_id"] == rider["id"]
    assert ride["total_fare"] == req["estimated_fare"]

    accepted = [c for c in emit.call_args_list if c.args[0] == "ride:accepted:update"]
    assert accepted[0].kwargs["room"] == f"ride:{ride['id']}"
    assert accepted[0].args[1]["driverName"] == "Luis"

    assert client.get("/ride_requests/pending", headers=driver_headers).json()["data"]["items"] == []
    again = client.post(f"/ride_requests/{req['id']}/accept", headers=driver_headers)
    assert again.status_code == 409


def test_ride_request_accept_needs_driver(client, make_user):
    _, rider_headers = make_user("5550000052")
    req = client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF},
                      headers=rider_headers).json()["data"]["item"]
    assert client.post(f"/ride_requests/{req['id']}/accept", headers=rider_headers).status_code == 403


def test_expired_ride_request(client, make_user, make_driver, monkeypatch):
    monkeypatch.setattr(main, "RIDE_REQUEST_TTL_SECONDS", -60)
    _, rider_headers = make_user("5550000053")
    _, driver_headers = make_driver("5550000054")
    req = client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF},
                      headers=rider_headers).json()["data"]["item"]

    assert client.get("/ride_requests/pending", headers=driver_headers).json()["data"]["items"] == []
    assert client.post(f"/ride_requests/{req['id']}/accept", headers=driver_headers).status_code == 410
    r = client.get(f"/ride_requests/{req['id']}", headers=driver_headers)
    assert r.json()["data"]["item"]["status"] == "expired"


def test_purge_expired_is_admin_only(client, make_user, monkeypatch):
    monkeypatch.setattr(main, "RIDE_REQUEST_TTL_SECONDS", -60)
    _, rider_headers = make_user("5550000055")
    client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF}, headers=rider_headers)

    assert client.delete("/admin/ride_requests/expired", headers=rider_headers).status_code == 403

    _, admin_headers = make_user("+15550000000")
    r = client.delete("/admin/ride_requests/expired", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["data"]["count"] == 1


def test_accept_race_has_one_winner(client, make_user, make_driver, monkeypatch):
    monkeypatch.setattr(realtime.sio, "emit", AsyncMock())
    _, rider_headers = make_user("5550000056")
    _, first_headers = make_driver("5550000057")
    _, second_headers = make_driver("5550000058")
    req = client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF},
                      headers=rider_headers).json()["data"]["item"]
    stale = dict(req)

    ride = client.post(f"/ride_requests/{req['id']}/accept", headers=first_headers).json()["data"]["item"]

    # second driver read the request while it was still pending
    async def stale_read(request_id):
        return dict(stale)

    async def not_expired(request_id):
        return False

    monkeypatch.setattr(crud, "get_ride_request", stale_read)
    monkeypatch.setattr(crud, "is_ride_request_expired", not_expired)
    r = client.post(f"/ride_requests/{req['id']}/accept", headers=second_headers)
    assert r.status_code == 409
    monkeypatch.undo()

    assert client.get("/rides/active?user_type=driver", headers=second_headers).json()["data"]["items"] == []
    stored = client.get(f"/ride_requests/{req['id']}", headers=rider_headers).json()["data"]["item"]
    assert stored["status"] == "accepted"
    assert stored["ride_id"] == ride["id"]
    assert "claim_token" not in stored


def test_request_expiring_now_is_not_pending(client, make_user, make_driver, monkeypatch):
    frozen = datetime.now(timezone.utc)
    _, rider_headers = make_user("5550000059")
    _, driver_headers = make_driver("5550000060")
    monkeypatch.setattr(realtime.sio, "emit", AsyncMock())
    monkeypatch.setattr(main, "RIDE_REQUEST_TTL_SECONDS", 0)
    monkeypatch.setattr(main, "_now", lambda: frozen)
    monkeypatch.setattr(crud, "_now", lambda: frozen)

    req = client.post("/ride_requests", json={"pickup": PICKUP, "dropoff": DROPOFF},
                      headers=rider_headers).json()["data"]["item"]
    assert client.get("/ride_requests/pending", headers=driver_headers).json()["data"]["items"] == []
    assert client.post(f"/ride_requests/{req['id']}/accept", headers=driver_headers).status_code == 410


# -------------------- Partial updates / fares --------------------

def test_ride_update_can_clear_nullable_fields(client, make_user, make_driver, monkeypatch):
    monkeypatch.setattr(realtime.sio, "emit", AsyncMock())
    driver, _ = make_driver("5550000061")
    _, headers = make_user("5550000062")
    ride = client.post("/rides", json=_ride_body(), headers=headers).json()["data"]["item"]
    client.put(f"/rides/{ride['id']}", json={"driver_id": driver["id"], "cancellation_reason": "late"},
               headers=headers)

    r = client.put(f"/rides/{ride['id']}", json={"driver_id": None, "cancellation_reason": None, "status": None},
                   headers=headers)
    assert r.status_code == 200
    item = r.json()["data"]["item"]
    assert item["driver_id"] is None
    assert item["cancellation_reason"] is None
    assert item["status"] == "requested"  # NOT NULL column left alone


def test_partial_client_fare_feeds_total(client, make_user):
    _, headers = make_user("5550000063")
    body = _ride_body(distance=5, estimated_duration=15, base_fare=10)
    ride = client.post("/rides", json=body, headers=headers).json()["data"]["item"]
    assert ride["base_fare"] == 10
    assert ride["distance_fare"] == 7.5
    assert ride["time_fare"] == 3.75
    assert ride["total_fare"] == 21.25
