"""
Pydantic schemas for drivers, assignments and reviews.
"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from carrental.schemas.booking import BookingResponse


class DriverCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    license_number: str = Field(..., min_length=1, max_length=50)
    phone: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    address: str = Field(..., min_length=1, max_length=255)
    date_of_birth: date
    experience: int = Field(..., ge=0)


class DriverUpdate(BaseModel):
    """Profile edit. Availability changes go through the status endpoint."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    license_number: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1, max_length=255)
    date_of_birth: Optional[date] = None
    experience: Optional[int] = Field(None, ge=0)


class DriverResponse(BaseModel):
    id: int
    name: str
    license_number: str
    phone: str
    email: str
    address: str
    date_of_birth: date
    experience: int
    status: str
    current_booking_id: Optional[int]
    rating: float
    is_active: bool

    model_config = {"from_attributes": True}


class DriverStatusUpdate(BaseModel):
    # `assigned` is accepted here so the service can refuse it with InvalidState
    status: Literal["available", "assigned", "on-leave", "inactive"]


class DriverAssignmentResponse(BaseModel):
    booking_id: int
    assigned_at: datetime
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class AssignmentResult(BaseModel):
    message: str
    driver: DriverResponse
    booking: BookingResponse


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewResponse(BaseModel):
    id: int
    user_id: int
    rating: int
    comment: Optional[str]
    reviewed_at: datetime

    model_config = {"from_attributes": True}


class DriverReviewsResponse(BaseModel):
    driver_id: int
    rating: float
    reviews: list[ReviewResponse]
