"""
Driver service: assignment manager, driver administration and reviews.

CONCURRENCY STRATEGY: Conditional UPDATE (compare-and-swap)
============================================================

Problem:
  Two admins assign the same driver to two bookings at the same moment.
  Both read status='available', both write status='assigned'.
  Result: one driver, two bookings.

Solution:
  The availability flip is a single statement that only matches the state
  we expect to leave:

    UPDATE drivers SET status = 'assigned', current_booking_id = :booking
    WHERE id = :driver AND status = 'available'

  If rows_affected == 0, somebody else assigned the driver between our read
  and our write, and the request fails with DriverUnavailable. Completing an
  assignment matches on (status, current_booking_id) the same way.

  The booking side of an assignment runs in the same transaction; if it
  fails, the request session rolls back the driver update with it.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.models.booking import Booking, BookingStatus
from carrental.models.driver import Driver, DriverAssignment, DriverReview, DriverStatus
from carrental.models.user import User
from carrental.schemas.driver import DriverCreate, DriverUpdate
from carrental.core.errors import (
    NotFound,
    DriverUnavailable,
    InvalidState,
    InvalidTransition,
    INCONSISTENT_HISTORY,
)
from carrental.core.metrics import record_driver_assignment, inconsistent_history
from carrental.core.logging import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def get_driver(db: AsyncSession, driver_id: int) -> Driver:
    result = await db.execute(select(Driver).where(Driver.id == driver_id))
    driver = result.scalar_one_or_none()

    if not driver:
        raise NotFound(f"Driver {driver_id} not found")
    return driver


async def get_driver_on_booking(db: AsyncSession, booking_id: int) -> Optional[Driver]:
    """The driver currently assigned to a booking, if any."""
    result = await db.execute(
        select(Driver).where(
            Driver.current_booking_id == booking_id,
            Driver.status == DriverStatus.ASSIGNED,
        )
    )
    return result.scalar_one_or_none()


async def assign_driver(db: AsyncSession, booking_id: int, driver_id: int) -> tuple[Driver, Booking]:
    """
    Bind an available driver to a booking.
    Fails with DriverUnavailable if the driver is taken, including when a
    concurrent request takes it between our read and our write.
    """
    driver = await get_driver(db, driver_id)
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound(f"Booking {booking_id} not found")

    if driver.status != DriverStatus.AVAILABLE:
        record_driver_assignment("unavailable")
        logger.warning(
            "driver_assignment_rejected",
            driver_id=driver_id,
            booking_id=booking_id,
            driver_status=driver.status,
        )
        raise DriverUnavailable("Driver is not available")

    if booking.status in BookingStatus.TERMINAL:
        raise InvalidTransition(f"Cannot assign a driver to a {booking.status} booking")

    if await get_driver_on_booking(db, booking_id) is not None:
        raise InvalidTransition("Booking already has an assigned driver")

    observed_driver_id = booking.driver_id

    # Step 1: flip availability, only if still available
    update_result = await db.execute(
        update(Driver)
        .where(Driver.id == driver_id, Driver.status == DriverStatus.AVAILABLE)
        .values(status=DriverStatus.ASSIGNED, current_booking_id=booking_id)
        .execution_options(synchronize_session=False)
    )
    if update_result.rowcount == 0:
        record_driver_assignment("unavailable")
        logger.info("driver_assignment_lost_race", driver_id=driver_id, booking_id=booking_id)
        raise DriverUnavailable("Driver is not available")

    # Step 2: append history
    db.add(DriverAssignment(driver_id=driver_id, booking_id=booking_id, assigned_at=_now()))

    # Step 3: link the booking, only if nobody relinked it meanwhile
    booking_link_unchanged = (
        Booking.driver_id.is_(None)
        if observed_driver_id is None
        else Booking.driver_id == observed_driver_id
    )
    link_result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            booking_link_unchanged,
            Booking.status.notin_(BookingStatus.TERMINAL),
        )
        .values(driver_id=driver_id, driver_assigned=True)
        .execution_options(synchronize_session=False)
    )
    if link_result.rowcount == 0:
        # Raising rolls back step 1 and 2 with the request transaction
        raise InvalidTransition("Booking changed while assigning the driver")

    await db.flush()
    await db.refresh(driver)
    await db.refresh(booking)

    record_driver_assignment("assigned")
    logger.info("driver_assigned", driver_id=driver_id, booking_id=booking_id)
    return driver, booking


async def complete_driver_assignment(db: AsyncSession, driver_id: int) -> Driver:
    """
    Release a driver from its current booking.

    A missing open history entry is an InconsistentHistory anomaly: it is
    logged and counted, and the driver is released anyway.
    """
    driver = await get_driver(db, driver_id)

    if driver.status != DriverStatus.ASSIGNED or driver.current_booking_id is None:
        record_driver_assignment("invalid_state")
        raise InvalidState("Driver is not currently assigned to any booking")

    booking_id = driver.current_booking_id

    release_result = await db.execute(
        update(Driver)
        .where(
            Driver.id == driver_id,
            Driver.status == DriverStatus.ASSIGNED,
            Driver.current_booking_id == booking_id,
        )
        .values(status=DriverStatus.AVAILABLE, current_booking_id=None)
        .execution_options(synchronize_session=False)
    )
    if release_result.rowcount == 0:
        record_driver_assignment("invalid_state")
        raise InvalidState("Driver assignment changed concurrently")

    history_result = await db.execute(
        update(DriverAssignment)
        .where(
            DriverAssignment.driver_id == driver_id,
            DriverAssignment.booking_id == booking_id,
            DriverAssignment.completed_at.is_(None),
        )
        .values(completed_at=_now())
        .execution_options(synchronize_session=False)
    )
    if history_result.rowcount == 0:
        inconsistent_history.inc()
        logger.warning(
            "driver_history_inconsistent",
            kind=INCONSISTENT_HISTORY,
            driver_id=driver_id,
            booking_id=booking_id,
        )

    await db.flush()
    await db.refresh(driver)

    record_driver_assignment("completed")
    logger.info("driver_assignment_completed", driver_id=driver_id, booking_id=booking_id)
    return driver


async def create_driver(db: AsyncSession, driver_data: DriverCreate) -> Driver:
    existing = await db.execute(
        select(Driver).where(Driver.license_number == driver_data.license_number)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A driver with this license number already exists",
        )

    driver = Driver(**driver_data.model_dump(), status=DriverStatus.AVAILABLE)
    db.add(driver)
    await db.flush()
    await db.refresh(driver)

    logger.info("driver_created", driver_id=driver.id, license_number=driver.license_number)
    return driver


async def update_driver(db: AsyncSession, driver_id: int, driver_data: DriverUpdate) -> Driver:
    driver = await get_driver(db, driver_id)
    changes = driver_data.model_dump(exclude_unset=True, exclude_none=True)

    new_license = changes.get("license_number")
    if new_license and new_license != driver.license_number:
        existing = await db.execute(
            select(Driver.id).where(Driver.license_number == new_license, Driver.id != driver_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A driver with this license number already exists",
            )

    for field, value in changes.items():
        setattr(driver, field, value)
    await db.flush()
    await db.refresh(driver)

    logger.info("driver_updated", driver_id=driver_id, fields=sorted(changes))
    return driver


async def list_drivers(db: AsyncSession, status_filter: Optional[str] = None) -> list[Driver]:
    query = select(Driver)
    if status_filter:
        query = query.where(Driver.status == status_filter)
    result = await db.execute(query.order_by(Driver.created_at.desc(), Driver.id.desc()))
    return list(result.scalars().all())


async def list_available_drivers(db: AsyncSession) -> list[Driver]:
    result = await db.execute(
        select(Driver)
        .where(Driver.status == DriverStatus.AVAILABLE, Driver.is_active.is_(True))
        .order_by(Driver.rating.desc(), Driver.id.asc())
    )
    return list(result.scalars().all())


async def update_driver_status(db: AsyncSession, driver_id: int, new_status: str) -> Driver:
    """Manual availability edit. `assigned` only comes from assign_driver."""
    driver = await get_driver(db, driver_id)

    if new_status == DriverStatus.ASSIGNED:
        raise InvalidState("Drivers are assigned through a booking, not by status edit")
    if driver.status == DriverStatus.ASSIGNED:
        raise InvalidState("Cannot change status while driver is assigned to a booking")

    result = await db.execute(
        update(Driver)
        .where(Driver.id == driver_id, Driver.status != DriverStatus.ASSIGNED)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidState("Cannot change status while driver is assigned to a booking")

    await db.refresh(driver)
    logger.info("driver_status_updated", driver_id=driver_id, status=new_status)
    return driver


async def delete_driver(db: AsyncSession, driver_id: int) -> None:
    driver = await get_driver(db, driver_id)

    if driver.status == DriverStatus.ASSIGNED and driver.current_booking_id:
        raise InvalidState("Cannot delete driver with active booking")

    # Past bookings keep their data but lose the link to a removed driver
    await db.execute(
        update(Booking)
        .where(Booking.driver_id == driver_id)
        .values(driver_id=None, driver_assigned=False)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(DriverAssignment).where(DriverAssignment.driver_id == driver_id))
    await db.execute(delete(DriverReview).where(DriverReview.driver_id == driver_id))
    await db.delete(driver)
    await db.flush()

    logger.info("driver_deleted", driver_id=driver_id)


async def get_driver_history(db: AsyncSession, driver_id: int) -> list[DriverAssignment]:
    await get_driver(db, driver_id)
    result = await db.execute(
        select(DriverAssignment)
        .where(DriverAssignment.driver_id == driver_id)
        .order_by(DriverAssignment.assigned_at.asc(), DriverAssignment.id.asc())
    )
    return list(result.scalars().all())


async def list_reviews(db: AsyncSession, driver_id: int) -> tuple[Driver, list[DriverReview]]:
    driver = await get_driver(db, driver_id)
    result = await db.execute(
        select(DriverReview)
        .where(DriverReview.driver_id == driver_id)
        .order_by(DriverReview.reviewed_at.desc())
    )
    return driver, list(result.scalars().all())


async def add_review(
    db: AsyncSession,
    driver_id: int,
    user: User,
    rating: int,
    comment: Optional[str],
) -> tuple[Driver, list[DriverReview]]:
    """
    Add or update the caller's review of a driver, then recompute the
    driver's rating as the mean of all review ratings.
    Only customers with a completed booking driven by this driver may review.
    """
    driver = await get_driver(db, driver_id)

    driven_bookings = select(DriverAssignment.booking_id).where(
        DriverAssignment.driver_id == driver_id
    )
    eligible = await db.execute(
        select(func.count())
        .select_from(Booking)
        .where(
            Booking.id.in_(driven_bookings),
            Booking.user_id == user.id,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    if not eligible.scalar():
        raise InvalidState("You can only review drivers after completing a ride with them")

    existing = await db.execute(
        select(DriverReview).where(
            DriverReview.driver_id == driver_id,
            DriverReview.user_id == user.id,
        )
    )
    review = existing.scalar_one_or_none()
    if review:
        review.rating = rating
        review.comment = comment
        review.reviewed_at = _now()
    else:
        db.add(
            DriverReview(
                driver_id=driver_id,
                user_id=user.id,
                rating=rating,
                comment=comment,
                reviewed_at=_now(),
            )
        )
    await db.flush()

    mean = await db.execute(
        select(func.avg(DriverReview.rating)).where(DriverReview.driver_id == driver_id)
    )
    driver.rating = float(mean.scalar() or 0)
    await db.flush()

    logger.info("driver_reviewed", driver_id=driver_id, user_id=user.id, rating=driver.rating)
    return await list_reviews(db, driver_id)
