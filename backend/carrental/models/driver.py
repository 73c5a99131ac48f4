"""
Driver model with assignment state, history and reviews.

Key design decisions:
- `status` and `current_booking_id` only move together, through conditional
  UPDATEs in the driver service; the CHECK constraint pins
  "assigned iff current booking is set"
- Assignment history is an append-only table; a row is closed by setting
  `completed_at` exactly once
- `rating` is denormalized (mean of review ratings) so listings don't
  aggregate reviews on every read
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Date,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Index,
)

from carrental.db.base import Base, TimestampMixin


class DriverStatus:
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    ON_LEAVE = "on-leave"
    INACTIVE = "inactive"

    ALL = (AVAILABLE, ASSIGNED, ON_LEAVE, INACTIVE)
    # Statuses an admin may set by hand; `assigned` is reserved for assignment
    MANUAL = (AVAILABLE, ON_LEAVE, INACTIVE)


class Driver(Base, TimestampMixin):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    license_number = Column(String(50), unique=True, nullable=False)
    phone = Column(String(30), nullable=False)
    email = Column(String(255), nullable=False)
    address = Column(String(255), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    experience = Column(Integer, nullable=False)  # years

    status = Column(String(20), nullable=False, default=DriverStatus.AVAILABLE)
    current_booking_id = Column(Integer, ForeignKey("bookings.id", use_alter=True), nullable=True)
    rating = Column(Float, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'assigned', 'on-leave', 'inactive')",
            name="check_driver_status",
        ),
        CheckConstraint(
            "(status = 'assigned' AND current_booking_id IS NOT NULL) "
            "OR (status != 'assigned' AND current_booking_id IS NULL)",
            name="check_driver_current_booking",
        ),
        CheckConstraint("experience >= 0", name="check_driver_experience"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="check_driver_rating"),
        Index("ix_drivers_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Driver(id={self.id}, name={self.name}, status={self.status})>"


class DriverAssignment(Base):
    __tablename__ = "driver_assignments"

    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_driver_assignments_driver_booking", "driver_id", "booking_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DriverAssignment(driver={self.driver_id}, booking={self.booking_id}, "
            f"completed={self.completed_at is not None})>"
        )


class DriverReview(Base):
    __tablename__ = "driver_reviews"

    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("driver_id", "user_id", name="uq_driver_review_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="check_review_rating"),
    )
