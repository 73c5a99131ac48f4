"""
Customer booking endpoints: checkout, listing, cancellation.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.models.user import User
from carrental.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from carrental.services.booking_service import (
    build_confirmation_email,
    cancel_booking,
    create_booking,
    get_booking,
    get_user_bookings,
)
from carrental.services.email_service import send_booking_confirmation
from carrental.core.security import get_current_user
from carrental.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a pending booking. Payment and driver assignment follow separately."""
    booking = await create_booking(db, user, booking_data)
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    bookings = await get_user_bookings(db, user.id)
    return bookings


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id, user)
    return booking


@router.put("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending booking. Confirmed bookings can only be cancelled by an admin."""
    booking = await cancel_booking(db, booking_id, user.id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )


@router.post("/{booking_id}/send-confirmation")
async def send_confirmation_endpoint(
    booking_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Queue the booking confirmation email."""
    booking = await get_booking(db, booking_id, user)
    details = await build_confirmation_email(db, booking)
    background_tasks.add_task(send_booking_confirmation, **details)
    logger.info("confirmation_email_queued", booking_id=booking.id)
    return {"success": True, "message": "Confirmation email queued"}
