# FILE: models.py

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, Float, Numeric, Boolean, DateTime, Enum,
    ForeignKey, Index
)

from database import Base

VEHICLE_TYPES = ("economy", "comfort", "premium")
USER_TYPES = ("rider", "driver", "both")
RIDE_STATUSES = (
    "requested",
    "accepted",
    "driver_arriving",
    "arrived",
    "in_progress",
    "completed",
    "cancelled",
)
ACTIVE_RIDE_STATUSES = ("requested", "accepted", "driver_arriving", "arrived", "in_progress")
PAYMENT_METHODS = ("cash", "card", "wallet")
PAYMENT_STATUSES = ("pending", "completed", "failed")
PAYMENT_TYPES = ("card", "wallet", "bank_transfer")
RATING_TYPES = ("driver_rating", "rider_rating")
RIDE_REQUEST_STATUSES = ("pending", "accepted", "expired")


def utcnow():
    return datetime.now(timezone.utc)


def Money(**kw):
    return Column(Numeric(10, 2, asdecimal=False), **kw)


class UserTable(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(Text)
    email = Column(String(320))
    login_method = Column(String(64), default="password")
    role = Column(Enum("user", "admin", name="user_role"), default="user", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    last_signed_in = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class UserProfileTable(Base):
    __tablename__ = "user_profiles"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    user_type = Column(Enum(*USER_TYPES, name="user_type"), default="rider", nullable=False)
    phone_number = Column(String(20))
    profile_image_url = Column(Text)
    rating = Column(Numeric(3, 2, asdecimal=False), default=5.0)
    total_rides = Column(Integer, default=0)
    total_earnings = Money(default=0.0)
    bio = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class DriverTable(Base):
    __tablename__ = "drivers"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    vehicle_type = Column(Enum(*VEHICLE_TYPES, name="vehicle_type"), default="economy", nullable=False)
    vehicle_make = Column(String(100))
    vehicle_model = Column(String(100))
    vehicle_plate = Column(String(20), unique=True, index=True)
    vehicle_color = Column(String(50))
    vehicle_image_url = Column(Text)
    license_number = Column(String(50), unique=True)
    license_expiry = Column(DateTime(timezone=True), nullable=True)
    is_available = Column(Boolean, default=False, nullable=False, index=True)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    last_location_update = Column(DateTime(timezone=True), nullable=True)
    documents_verified = Column(Boolean, default=False)
    background_check_passed = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RideTable(Base):
    __tablename__ = "rides"
    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    pickup_address = Column(Text)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_address = Column(Text)
    distance = Column(Numeric(8, 2, asdecimal=False))
    estimated_duration = Column(Integer)
    actual_duration = Column(Integer)
    base_fare = Money(nullable=False)
    distance_fare = Money(default=0.0)
    time_fare = Money(default=0.0)
    total_fare = Money(nullable=False)
    status = Column(Enum(*RIDE_STATUSES, name="ride_status"), default="requested", nullable=False, index=True)
    vehicle_type = Column(Enum(*VEHICLE_TYPES, name="ride_vehicle_type"), default="economy", nullable=False)
    payment_method = Column(Enum(*PAYMENT_METHODS, name="ride_payment_method"), default="card")
    payment_status = Column(Enum(*PAYMENT_STATUSES, name="ride_payment_status"), default="pending")
    requested_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RatingTable(Base):
    __tablename__ = "ratings"
    id = Column(Integer, primary_key=True, index=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), unique=True, index=True, nullable=False)
    rated_by_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    rated_user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    rating_type = Column(Enum(*RATING_TYPES, name="rating_type"), nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class PaymentMethodTable(Base):
    __tablename__ = "payment_methods"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    payment_type = Column(Enum(*PAYMENT_TYPES, name="payment_type"), nullable=False)
    card_last4 = Column(String(4))
    card_brand = Column(String(50))
    wallet_balance = Money(default=0.0)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class RideRequestTable(Base):
    __tablename__ = "ride_requests"
    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    pickup_address = Column(Text)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_address = Column(Text)
    vehicle_type = Column(Enum(*VEHICLE_TYPES, name="request_vehicle_type"), default="economy", nullable=False)
    estimated_fare = Money(nullable=False)
    status = Column(Enum(*RIDE_REQUEST_STATUSES, name="ride_request_status"), default="pending", nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # set when claimed
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=True)
    claim_token = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class RefreshTokenTable(Base):
    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    token_hash = Column(String(128), unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), index=True)
    revoked = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (
        Index("ix_refresh_token_user_id_expires", "user_id", "expires_at"),
    )


class DeviceTokenTable(Base):
    __tablename__ = "device_tokens"
    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(255), unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    platform = Column(String(20), default="android")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)
