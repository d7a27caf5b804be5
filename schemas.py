from pydantic import BaseModel, Field  # import=BaseModel/Field for request DTOs
from typing import Literal, Optional  # import=Literal/Optional for field types

VehicleType = Literal["economy", "comfort", "premium"]  # fare tiers
UserType = Literal["rider", "driver", "both"]  # profile kind
RideStatus = Literal[
    "requested", "accepted", "driver_arriving", "arrived", "in_progress", "completed", "cancelled"
]  # ride lifecycle, any value may follow any other
PaymentMethodName = Literal["cash", "card", "wallet"]  # how a ride is paid
PaymentStatus = Literal["pending", "completed", "failed"]  # ride payment state
PaymentType = Literal["card", "wallet", "bank_transfer"]  # stored method kind
RatingType = Literal["driver_rating", "rider_rating"]  # who is being rated


# -------------------- Auth --------------------

class UserRegisterRequest(BaseModel):  # class=register body
    phone: str = Field(..., min_length=3, description="Login phone number")  # phone=normalized server side
    password: str = Field(..., min_length=6)  # password=plain, hashed with bcrypt
    name: str = Field("", description="Display name")  # name=optional
    email: Optional[str] = None  # email=optional


class UserLoginRequest(BaseModel):  # class=login body
    phone: str  # phone=any format
    password: str  # password=plain


class RefreshAccessRequest(BaseModel):  # class=refresh body
    refresh_token: str  # refresh_token=opaque token from login


class LogoutRequest(BaseModel):  # class=logout body
    refresh_token: Optional[str] = None  # refresh_token=revoked when given
    device_token: Optional[str] = None  # device_token=removed when given


class PushRegister(BaseModel):  # class=push register body
    token: str = Field(..., description="Expo push token or ntfy topic")  # token=device address
    platform: str = "android"  # platform=android/ios


class PushUnregister(BaseModel):  # class=push unregister body
    token: str  # token=device address


# -------------------- Profiles & drivers --------------------

class UserProfileCreate(BaseModel):  # class=create profile body
    user_type: UserType  # user_type=rider/driver/both
    phone_number: Optional[str] = None  # phone_number=contact number
    bio: Optional[str] = None  # bio=free text


class UserProfileUpdate(BaseModel):  # class=update profile body
    user_type: Optional[UserType] = None  # user_type=rider/driver/both
    bio: Optional[str] = None  # bio=null clears it


class DriverInfo(BaseModel):  # class=vehicle details
    vehicle_type: VehicleType = "economy"  # vehicle_type=fare tier
    vehicle_make: Optional[str] = None  # vehicle_make=brand
    vehicle_model: Optional[str] = None  # vehicle_model=model
    vehicle_plate: Optional[str] = None  # vehicle_plate=unique plate
    vehicle_color: Optional[str] = None  # vehicle_color=color
    license_number: Optional[str] = None  # license_number=unique license


class DriverLocationUpdate(BaseModel):  # class=GPS fix
    latitude: float = Field(..., ge=-90, le=90)  # latitude=degrees
    longitude: float = Field(..., ge=-180, le=180)  # longitude=degrees


class DriverAvailabilityUpdate(BaseModel):  # class=availability toggle
    is_available: bool  # is_available=online for new rides


# -------------------- Rides --------------------

class RideCreate(BaseModel):  # class=create ride body
    pickup_latitude: float  # pickup_latitude=degrees
    pickup_longitude: float  # pickup_longitude=degrees
    pickup_address: Optional[str] = None  # pickup_address=display text
    dropoff_latitude: float  # dropoff_latitude=degrees
    dropoff_longitude: float  # dropoff_longitude=degrees
    dropoff_address: Optional[str] = None  # dropoff_address=display text
    distance: Optional[float] = None  # distance=km, haversine when omitted
    estimated_duration: Optional[int] = None  # estimated_duration=minutes, derived when omitted
    base_fare: Optional[float] = Field(None, description="Omitted fares are computed from the coordinates")  # base_fare=tier base
    distance_fare: Optional[float] = None  # distance_fare=km part
    time_fare: Optional[float] = None  # time_fare=minute part
    total_fare: Optional[float] = None  # total_fare=sum of the parts when omitted
    vehicle_type: VehicleType = "economy"  # vehicle_type=fare tier
    payment_method: PaymentMethodName = "card"  # payment_method=cash/card/wallet


class RideUpdate(BaseModel):  # class=update ride body (only sent fields change)
    status: Optional[RideStatus] = None  # status=new lifecycle state
    driver_id: Optional[int] = None  # driver_id=null unassigns
    actual_duration: Optional[int] = None  # actual_duration=minutes
    payment_status: Optional[PaymentStatus] = None  # payment_status=pending/completed/failed
    cancellation_reason: Optional[str] = None  # cancellation_reason=null clears it


class RatingCreate(BaseModel):  # class=rating body
    ride_id: int  # ride_id=one rating per ride
    rated_user_id: int  # rated_user_id=who gets the score
    rating_type: RatingType  # rating_type=driver/rider rating
    score: int = Field(..., ge=1, le=5)  # score=1..5
    comment: Optional[str] = None  # comment=free text


class PaymentMethodCreate(BaseModel):  # class=new payment method
    payment_type: PaymentType  # payment_type=card/wallet/bank_transfer
    card_last4: Optional[str] = Field(None, min_length=4, max_length=4)  # card_last4=last four digits
    card_brand: Optional[str] = None  # card_brand=visa/mastercard/...
    is_default: bool = False  # is_default=clears the other defaults


class PaymentMethodUpdate(BaseModel):  # class=payment method flags
    is_default: Optional[bool] = None  # is_default=clears the other defaults
    is_active: Optional[bool] = None  # is_active=soft disable


class Location(BaseModel):  # class=coordinate pair
    latitude: float = Field(..., ge=-90, le=90)  # latitude=degrees
    longitude: float = Field(..., ge=-180, le=180)  # longitude=degrees


class FareEstimateRequest(BaseModel):  # class=estimate body
    pickup: Location  # pickup=start point
    dropoff: Location  # dropoff=end point
    vehicle_type: VehicleType = "economy"  # vehicle_type=fare tier


class RideRequestCreate(BaseModel):  # class=open ride request body
    pickup: Location  # pickup=start point
    dropoff: Location  # dropoff=end point
    pickup_address: Optional[str] = None  # pickup_address=shown to drivers
    dropoff_address: Optional[str] = None  # dropoff_address=display text
    vehicle_type: VehicleType = "economy"  # vehicle_type=fare tier
