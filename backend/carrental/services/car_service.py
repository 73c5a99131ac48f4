"""
Car service handling inventory CRUD.
"""

from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.models.booking import Booking
from carrental.models.car import Car
from carrental.schemas.car import CarCreate, CarUpdate
from carrental.core.errors import NotFound, InvalidState
from carrental.core.logging import get_logger

logger = get_logger(__name__)


async def create_car(db: AsyncSession, car_data: CarCreate) -> Car:
    car = Car(**car_data.model_dump())
    db.add(car)
    await db.flush()
    await db.refresh(car)

    logger.info("car_created", car_id=car.id, name=car.name, price_per_day=car.price_per_day)
    return car


async def get_car(db: AsyncSession, car_id: int) -> Car:
    """Get a single car by ID."""
    result = await db.execute(select(Car).where(Car.id == car_id))
    car = result.scalar_one_or_none()

    if not car:
        raise NotFound(f"Car {car_id} not found")
    return car


async def list_cars(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    status: Optional[str] = None,
) -> tuple[list[Car], int]:
    """List cars with pagination, optionally filtered by status."""
    query = select(Car)

    if status:
        query = query.where(Car.status == status)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    cars_query = (
        query
        .order_by(Car.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(cars_query)
    cars = list(result.scalars().all())

    return cars, total


async def update_car(db: AsyncSession, car_id: int, car_data: CarUpdate) -> Car:
    car = await get_car(db, car_id)

    changes = car_data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(car, field, value)
    await db.flush()
    await db.refresh(car)

    logger.info("car_updated", car_id=car_id, fields=sorted(changes))
    return car


async def update_car_status(db: AsyncSession, car_id: int, new_status: str) -> Car:
    """Take a car off the market or put it back. Existing bookings are untouched."""
    car = await get_car(db, car_id)
    car.status = new_status
    await db.flush()
    await db.refresh(car)

    logger.info("car_status_updated", car_id=car_id, status=new_status)
    return car


async def delete_car(db: AsyncSession, car_id: int) -> None:
    car = await get_car(db, car_id)

    # Bookings keep their car; mark the car unavailable instead
    booking_count = await db.execute(
        select(func.count()).select_from(Booking).where(Booking.car_id == car_id)
    )
    if booking_count.scalar():
        raise InvalidState("Cannot delete a car that has bookings")

    await db.delete(car)
    await db.flush()
    logger.info("car_deleted", car_id=car_id)
