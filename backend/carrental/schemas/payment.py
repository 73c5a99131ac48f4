"""
Pydantic schemas for the Khalti payment endpoints.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from carrental.schemas.booking import BookingResponse


class PaymentInitiateRequest(BaseModel):
    booking_id: int
    return_url: Optional[str] = None


class PaymentInitiateResponse(BaseModel):
    success: bool = True
    pidx: str
    payment_url: str
    booking: BookingResponse


class PaymentVerifyRequest(BaseModel):
    booking_id: int
    token: str = Field(..., min_length=1)


class PaymentLookupRequest(BaseModel):
    pidx: str = Field(..., min_length=1)


class KhaltiWebhookPayload(BaseModel):
    """Khalti posts more fields than these; extras are kept for the log."""

    model_config = ConfigDict(extra="allow")

    pidx: Optional[str] = None
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    purchase_order_id: Optional[Any] = None
    total_amount: Optional[Any] = None


class ReconciliationResponse(BaseModel):
    success: bool
    outcome: str
    message: str
    booking: BookingResponse
