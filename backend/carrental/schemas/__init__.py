from carrental.schemas.user import UserCreate, UserResponse, UserLogin, Token, OtpRequest, OtpVerify
from carrental.schemas.car import CarCreate, CarResponse
from carrental.schemas.booking import BookingCreate, BookingResponse, BookingStatusUpdate
from carrental.schemas.driver import DriverCreate, DriverResponse, DriverStatusUpdate, ReviewCreate
from carrental.schemas.payment import (
    PaymentInitiateRequest,
    PaymentVerifyRequest,
    PaymentLookupRequest,
    KhaltiWebhookPayload,
)

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token", "OtpRequest", "OtpVerify",
    "CarCreate", "CarResponse",
    "BookingCreate", "BookingResponse", "BookingStatusUpdate",
    "DriverCreate", "DriverResponse", "DriverStatusUpdate", "ReviewCreate",
    "PaymentInitiateRequest", "PaymentVerifyRequest", "PaymentLookupRequest",
    "KhaltiWebhookPayload",
]
