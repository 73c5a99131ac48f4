"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

BookingStatusLiteral = Literal["pending", "confirmed", "active", "completed", "cancelled"]


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class BookingCreate(BaseModel):
    car_id: int
    start_date: datetime
    end_date: datetime
    address: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    contact: str = Field(..., min_length=3, max_length=30)
    total_amount: float = Field(..., gt=0)

    # Either one combined location or a pickup/dropoff pair
    location: Optional[Coordinates] = None
    pickup_coords: Optional[Coordinates] = None
    dropoff_coords: Optional[Coordinates] = None
    pickup_address: Optional[str] = Field(None, max_length=255)
    dropoff_address: Optional[str] = Field(None, max_length=255)

    needs_driver: bool = False
    driver_price: float = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are read as UTC so the window can always be compared
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_window_and_location(self):
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        has_pair = self.pickup_coords is not None or self.dropoff_coords is not None
        if self.location is not None and has_pair:
            raise ValueError("Provide either location or pickup/dropoff coordinates, not both")
        if self.location is None and (self.pickup_coords is None or self.dropoff_coords is None):
            raise ValueError("Missing location information")
        return self


class BookingResponse(BaseModel):
    id: int
    user_id: int
    car_id: int
    start_date: datetime
    end_date: datetime
    address: str
    email: str
    contact: str
    location_lat: Optional[float]
    location_lng: Optional[float]
    has_separate_locations: bool
    pickup_lat: Optional[float]
    pickup_lng: Optional[float]
    dropoff_lat: Optional[float]
    dropoff_lng: Optional[float]
    pickup_address: Optional[str]
    dropoff_address: Optional[str]
    total_amount: float
    status: str
    needs_driver: bool
    driver_price: float
    driver_id: Optional[int]
    driver_assigned: bool
    payment_method: str
    payment_status: str
    transaction_id: Optional[str]
    khalti_pidx: Optional[str]
    payment_conflict: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingStatusUpdate(BaseModel):
    status: BookingStatusLiteral


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
