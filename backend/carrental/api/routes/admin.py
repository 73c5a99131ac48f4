"""
Admin endpoints: booking overview, conflict review, status overrides and
user management.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.models.user import User
from carrental.schemas.booking import BookingResponse, BookingStatusLiteral, BookingStatusUpdate
from carrental.schemas.user import UserResponse, UserRoleUpdate
from carrental.services.booking_service import (
    Actor,
    delete_booking,
    list_bookings,
    list_flagged_bookings,
    transition_booking_status,
)
from carrental.services import user_service
from carrental.core.security import require_admin

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/bookings", response_model=list[BookingResponse])
async def list_bookings_endpoint(
    booking_status: Optional[BookingStatusLiteral] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    return await list_bookings(db, booking_status)


@router.get("/bookings/flagged", response_model=list[BookingResponse])
async def list_flagged_bookings_endpoint(db: AsyncSession = Depends(get_db)):
    """Bookings paid after cancellation, waiting for an operator decision."""
    return await list_flagged_bookings(db)


@router.put("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status_endpoint(
    booking_id: int,
    status_update: BookingStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Admin status edit. Completing or cancelling releases the assigned driver."""
    return await transition_booking_status(db, booking_id, status_update.status, Actor.ADMIN)


@router.delete("/bookings/{booking_id}")
async def delete_booking_endpoint(booking_id: int, db: AsyncSession = Depends(get_db)):
    await delete_booking(db, booking_id)
    return {"success": True, "message": "Booking deleted successfully"}


@router.get("/users", response_model=list[UserResponse])
async def list_users_endpoint(db: AsyncSession = Depends(get_db)):
    return await user_service.list_users(db)


@router.put("/users/{user_id}/toggle-block", response_model=UserResponse)
async def toggle_block_endpoint(
    user_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.toggle_block(db, user_id, admin)


@router.put("/users/{user_id}/role", response_model=UserResponse)
async def update_role_endpoint(
    user_id: int,
    role_update: UserRoleUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_role(db, user_id, role_update.role, admin)
