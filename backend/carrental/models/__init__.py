from carrental.models.user import User
from carrental.models.car import Car, CarStatus
from carrental.models.booking import Booking, BookingStatus, PaymentStatus, PaymentMethod
from carrental.models.driver import Driver, DriverAssignment, DriverReview, DriverStatus

__all__ = [
    "User", "Car", "CarStatus",
    "Booking", "BookingStatus", "PaymentStatus", "PaymentMethod",
    "Driver", "DriverAssignment", "DriverReview", "DriverStatus",
]
