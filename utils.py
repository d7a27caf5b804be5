# FILE: utils.py
# Fare and distance helpers

from decimal import Decimal, ROUND_HALF_UP
from math import radians, sin, cos, sqrt, atan2, ceil

EARTH_RADIUS_KM = 6371.0
MINUTES_PER_KM = 3  # rough city pace used for estimates

# vehicle_type -> rate
BASE_FARES = {
    "economy": 2.5,
    "comfort": 4.0,
    "premium": 6.0,
}
RATE_PER_KM = {
    "economy": 1.5,
    "comfort": 2.0,
    "premium": 2.5,
}
RATE_PER_MINUTE = {
    "economy": 0.25,
    "comfort": 0.35,
    "premium": 0.5,
}


def round2(value: float) -> float:
    """2 decimals, ties away from zero (1.125 -> 1.13), on the exact float value."""
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    h = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(h), sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def calculate_fare(distance_km: float, duration_min: float, vehicle_type: str = "economy") -> dict:
    """Base + distance * per-km rate + duration * per-minute rate.

    Every part is rounded to 2 decimals; the total is summed before rounding.
    Raises ValueError for an unknown vehicle type.
    """
    if vehicle_type not in BASE_FARES:
        raise ValueError(f"unknown vehicle type: {vehicle_type}")
    base_fare = BASE_FARES[vehicle_type]
    distance_fare = distance_km * RATE_PER_KM[vehicle_type]
    time_fare = duration_min * RATE_PER_MINUTE[vehicle_type]
    total_fare = base_fare + distance_fare + time_fare
    return {
        "base_fare": round2(base_fare),
        "distance_fare": round2(distance_fare),
        "time_fare": round2(time_fare),
        "total_fare": round2(total_fare),
    }


def estimate_duration_min(distance_km: float) -> int:
    return int(ceil(distance_km * MINUTES_PER_KM))


def estimate_trip(pickup_lat: float, pickup_lng: float, dropoff_lat: float, dropoff_lng: float,
                  vehicle_type: str = "economy") -> dict:
    distance = round2(haversine_km(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng))
    duration = estimate_duration_min(distance)
    out = {"distance": distance, "estimated_duration": duration}
    out.update(calculate_fare(distance, duration, vehicle_type))
    return out
