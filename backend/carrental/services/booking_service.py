"""
Booking lifecycle controller.

STATE MACHINE
=============

  pending ──payment/admin──> confirmed ──admin──> active ──admin──> completed
     │                           │                  │
     └──user/admin──> cancelled <┴──────admin───────┘

- Customers may only cancel their own booking, and only while it is pending.
- Payment completion moves pending -> confirmed (see payment_service).
- Admin edits are trusted and unconditional, including moves out of the
  terminal states; moves outside the normal flow are logged as overrides.

Every status write is a conditional UPDATE on the status we observed, so
two concurrent transitions cannot both succeed. Moving a booking to
completed or cancelled first releases the driver currently on it; if that
fails, the transition fails and the request transaction rolls back.
"""

from typing import Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.models.booking import Booking, BookingStatus
from carrental.models.car import Car, CarStatus
from carrental.models.driver import DriverAssignment
from carrental.models.user import User
from carrental.schemas.booking import BookingCreate
from carrental.services.car_service import get_car
from carrental.services.driver_service import complete_driver_assignment, get_driver_on_booking
from carrental.core.errors import NotFound, InvalidTransition, InvalidState
from carrental.core.metrics import record_booking_transition
from carrental.core.logging import get_logger

logger = get_logger(__name__)


class Actor:
    USER = "user"
    ADMIN = "admin"


NORMAL_FLOW = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.ACTIVE, BookingStatus.CANCELLED},
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
}

USER_FLOW = {
    BookingStatus.PENDING: {BookingStatus.CANCELLED},
}


def is_transition_allowed(current: str, new: str, actor: str) -> bool:
    if actor == Actor.ADMIN:
        return True
    if actor == Actor.USER:
        return new in USER_FLOW.get(current, set())
    return False


async def create_booking(db: AsyncSession, user: User, data: BookingCreate) -> Booking:
    """Checkout: create a pending booking for an existing, available car."""
    car = await get_car(db, data.car_id)
    if car.status != CarStatus.AVAILABLE:
        raise InvalidState(f"Car {car.id} is not available for booking")

    booking = Booking(
        user_id=user.id,
        car_id=car.id,
        start_date=data.start_date,
        end_date=data.end_date,
        address=data.address,
        email=data.email,
        contact=data.contact,
        total_amount=data.total_amount,
        needs_driver=data.needs_driver,
        driver_price=data.driver_price if data.needs_driver else 0,
        status=BookingStatus.PENDING,
    )

    if data.location is not None:
        booking.location_lat = data.location.lat
        booking.location_lng = data.location.lng
        booking.has_separate_locations = False
    else:
        booking.pickup_lat = data.pickup_coords.lat
        booking.pickup_lng = data.pickup_coords.lng
        booking.dropoff_lat = data.dropoff_coords.lat
        booking.dropoff_lng = data.dropoff_coords.lng
        booking.pickup_address = data.pickup_address or "Pickup location"
        booking.dropoff_address = data.dropoff_address or "Dropoff location"
        booking.has_separate_locations = True

    db.add(booking)
    await db.flush()
    await db.refresh(booking)

    logger.info(
        "booking_created",
        booking_id=booking.id,
        user_id=user.id,
        car_id=car.id,
        total_amount=booking.total_amount,
        needs_driver=booking.needs_driver,
    )
    return booking


async def get_booking(db: AsyncSession, booking_id: int, user: Optional[User] = None) -> Booking:
    """
    Get a booking by ID. When `user` is given and is not an admin, the
    booking must belong to them; someone else's booking reads as missing.
    """
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()

    if not booking or (user is not None and not user.is_admin and booking.user_id != user.id):
        raise NotFound("Booking not found")
    return booking


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def list_bookings(db: AsyncSession, status_filter: Optional[str] = None) -> list[Booking]:
    query = select(Booking)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    result = await db.execute(query.order_by(Booking.created_at.desc(), Booking.id.desc()))
    return list(result.scalars().all())


async def list_flagged_bookings(db: AsyncSession) -> list[Booking]:
    """Bookings whose payment completed after they were cancelled."""
    result = await db.execute(
        select(Booking)
        .where(Booking.payment_conflict.is_(True))
        .order_by(Booking.updated_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


async def transition_booking_status(
    db: AsyncSession,
    booking_id: int,
    new_status: str,
    actor: str,
    user_id: Optional[int] = None,
) -> Booking:
    """Apply a status change for `actor`, or raise InvalidTransition."""
    if new_status not in BookingStatus.ALL:
        raise InvalidTransition(f"Unknown booking status '{new_status}'")

    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking or (actor == Actor.USER and booking.user_id != user_id):
        raise NotFound("Booking not found")

    current = booking.status
    if current == new_status:
        if actor == Actor.ADMIN:
            return booking
        raise InvalidTransition(f"Booking is already {current}")

    if not is_transition_allowed(current, new_status, actor):
        logger.info(
            "booking_transition_rejected",
            booking_id=booking_id,
            from_status=current,
            to_status=new_status,
            actor=actor,
        )
        if actor == Actor.USER and new_status == BookingStatus.CANCELLED:
            raise InvalidTransition("Only pending bookings can be cancelled")
        raise InvalidTransition(f"Cannot move booking from {current} to {new_status}")

    if actor == Actor.ADMIN and new_status not in NORMAL_FLOW.get(current, set()):
        logger.warning(
            "booking_admin_override",
            booking_id=booking_id,
            from_status=current,
            to_status=new_status,
        )

    # Driver sub-state first
    if new_status in BookingStatus.TERMINAL:
        driver = await get_driver_on_booking(db, booking_id)
        if driver is not None:
            await complete_driver_assignment(db, driver.id)

    update_result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == current)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if update_result.rowcount == 0:
        raise InvalidTransition("Booking status changed concurrently, reload and retry")

    await db.refresh(booking)

    record_booking_transition(current, new_status, actor)
    logger.info(
        "booking_status_changed",
        booking_id=booking_id,
        from_status=current,
        to_status=new_status,
        actor=actor,
    )
    return booking


async def cancel_booking(db: AsyncSession, booking_id: int, user_id: int) -> Booking:
    """Customer cancellation, pending bookings only."""
    return await transition_booking_status(
        db, booking_id, BookingStatus.CANCELLED, Actor.USER, user_id=user_id
    )


async def delete_booking(db: AsyncSession, booking_id: int) -> None:
    """Admin hard delete. Refused while a driver is still on the booking."""
    booking = await get_booking(db, booking_id)

    if await get_driver_on_booking(db, booking_id) is not None:
        raise InvalidState("Complete the driver assignment before deleting this booking")

    last_status = booking.status
    await db.execute(delete(DriverAssignment).where(DriverAssignment.booking_id == booking_id))
    await db.delete(booking)
    await db.flush()

    logger.warning("booking_deleted", booking_id=booking_id, status=last_status)


async def build_confirmation_email(db: AsyncSession, booking: Booking) -> dict:
    """Arguments for email_service.send_booking_confirmation."""
    user = (await db.execute(select(User).where(User.id == booking.user_id))).scalar_one()
    car = (await db.execute(select(Car).where(Car.id == booking.car_id))).scalar_one_or_none()
    return {
        "to": user.email,
        "name": user.name,
        "car_name": car.name if car else "your car",
        "start_date": booking.start_date,
        "end_date": booking.end_date,
    }
