"""
Booking model representing a customer's rental of a car.

Key design decisions:
- `status` and `payment_status` are independent columns; the payment
  engine moves both in one conditional UPDATE so they never disagree
- `driver_assigned` mirrors `driver_id IS NOT NULL` and is enforced by a
  CHECK constraint
- `khalti_pidx` is indexed because webhooks and lookups correlate on it,
  never on the booking id
- `payment_conflict` marks a payment that completed after the booking was
  cancelled; it is left for an operator instead of resurrecting the booking
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
)

from carrental.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING, CONFIRMED, ACTIVE, COMPLETED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


class PaymentStatus:
    PENDING = "pending"
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, INITIATED, COMPLETED, FAILED, REFUNDED)
    # A Completed event arriving for a settled payment is a duplicate
    SETTLED = (COMPLETED, REFUNDED)


class PaymentMethod:
    COD = "cod"
    KHALTI = "khalti"

    ALL = (COD, KHALTI)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id"), nullable=False, index=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    address = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    contact = Column(String(30), nullable=False)

    # Single location bookings
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    # Separate pickup/dropoff bookings
    has_separate_locations = Column(Boolean, nullable=False, default=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    pickup_address = Column(String(255), nullable=True)
    dropoff_address = Column(String(255), nullable=True)

    total_amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)

    needs_driver = Column(Boolean, nullable=False, default=False)
    driver_price = Column(Float, nullable=False, default=0)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True, index=True)
    driver_assigned = Column(Boolean, nullable=False, default=False)

    payment_method = Column(String(20), nullable=False, default=PaymentMethod.COD)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(100), nullable=True)
    khalti_pidx = Column(String(100), nullable=True)
    payment_conflict = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_booking_window"),
        CheckConstraint("total_amount > 0", name="check_booking_amount_positive"),
        CheckConstraint("driver_price >= 0", name="check_driver_price_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'active', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'initiated', 'completed', 'failed', 'refunded')",
            name="check_booking_payment_status",
        ),
        CheckConstraint("payment_method IN ('cod', 'khalti')", name="check_booking_payment_method"),
        CheckConstraint(
            "(driver_assigned AND driver_id IS NOT NULL) OR (NOT driver_assigned AND driver_id IS NULL)",
            name="check_booking_driver_link",
        ),
        Index("ix_bookings_khalti_pidx", "khalti_pidx"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, user={self.user_id}, car={self.car_id}, "
            f"status={self.status}, payment={self.payment_status})>"
        )
