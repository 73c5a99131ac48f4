"""
Driver endpoints: admin management, assignment, and customer reviews.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.models.user import User
from carrental.schemas.booking import BookingResponse
from carrental.schemas.driver import (
    AssignmentResult,
    DriverAssignmentResponse,
    DriverCreate,
    DriverResponse,
    DriverReviewsResponse,
    DriverStatusUpdate,
    DriverUpdate,
    ReviewCreate,
    ReviewResponse,
)
from carrental.services import driver_service
from carrental.core.security import get_current_user, require_admin

router = APIRouter(prefix="/drivers", tags=["Drivers"])


def _reviews_response(driver, reviews) -> DriverReviewsResponse:
    return DriverReviewsResponse(
        driver_id=driver.id,
        rating=driver.rating,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get("/", response_model=list[DriverResponse], dependencies=[Depends(require_admin)])
async def list_drivers_endpoint(
    driver_status: Optional[Literal["available", "assigned", "on-leave", "inactive"]] = Query(
        None, alias="status"
    ),
    db: AsyncSession = Depends(get_db),
):
    return await driver_service.list_drivers(db, driver_status)


@router.get("/available", response_model=list[DriverResponse], dependencies=[Depends(require_admin)])
async def list_available_drivers_endpoint(db: AsyncSession = Depends(get_db)):
    return await driver_service.list_available_drivers(db)


@router.post(
    "/",
    response_model=DriverResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_driver_endpoint(driver_data: DriverCreate, db: AsyncSession = Depends(get_db)):
    return await driver_service.create_driver(db, driver_data)


@router.get("/{driver_id}", response_model=DriverResponse, dependencies=[Depends(require_admin)])
async def get_driver_endpoint(driver_id: int, db: AsyncSession = Depends(get_db)):
    return await driver_service.get_driver(db, driver_id)


@router.put("/{driver_id}", response_model=DriverResponse, dependencies=[Depends(require_admin)])
async def update_driver_endpoint(
    driver_id: int,
    driver_data: DriverUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await driver_service.update_driver(db, driver_id, driver_data)


@router.put("/{driver_id}/status", response_model=DriverResponse, dependencies=[Depends(require_admin)])
async def update_driver_status_endpoint(
    driver_id: int,
    status_update: DriverStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await driver_service.update_driver_status(db, driver_id, status_update.status)


@router.delete("/{driver_id}", dependencies=[Depends(require_admin)])
async def delete_driver_endpoint(driver_id: int, db: AsyncSession = Depends(get_db)):
    await driver_service.delete_driver(db, driver_id)
    return {"success": True, "message": "Driver deleted successfully"}


@router.put(
    "/{driver_id}/assign/{booking_id}",
    response_model=AssignmentResult,
    dependencies=[Depends(require_admin)],
)
async def assign_driver_endpoint(
    driver_id: int,
    booking_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Assign an available driver to a booking.
    409 DriverUnavailable if the driver is already on another booking.
    """
    driver, booking = await driver_service.assign_driver(db, booking_id, driver_id)
    return AssignmentResult(
        message="Driver assigned successfully",
        driver=DriverResponse.model_validate(driver),
        booking=BookingResponse.model_validate(booking),
    )


@router.put(
    "/{driver_id}/complete-assignment",
    response_model=DriverResponse,
    dependencies=[Depends(require_admin)],
)
async def complete_assignment_endpoint(driver_id: int, db: AsyncSession = Depends(get_db)):
    return await driver_service.complete_driver_assignment(db, driver_id)


@router.get(
    "/{driver_id}/history",
    response_model=list[DriverAssignmentResponse],
    dependencies=[Depends(require_admin)],
)
async def driver_history_endpoint(driver_id: int, db: AsyncSession = Depends(get_db)):
    return await driver_service.get_driver_history(db, driver_id)


@router.post("/{driver_id}/reviews", response_model=DriverReviewsResponse)
async def add_review_endpoint(
    driver_id: int,
    review: ReviewCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Review a driver after a completed ride; a second review replaces the first."""
    driver, reviews = await driver_service.add_review(
        db, driver_id, user, review.rating, review.comment
    )
    return _reviews_response(driver, reviews)


@router.get("/{driver_id}/reviews", response_model=DriverReviewsResponse)
async def list_reviews_endpoint(driver_id: int, db: AsyncSession = Depends(get_db)):
    driver, reviews = await driver_service.list_reviews(db, driver_id)
    return _reviews_response(driver, reviews)
