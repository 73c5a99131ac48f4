"""
Khalti payment endpoints.

The webhook always answers 200 so the gateway does not retry a delivery
we have already logged. Verify and lookup surface gateway errors as
503 (unavailable) or 402 (rejected).
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.models.user import User
from carrental.schemas.booking import BookingResponse
from carrental.schemas.payment import (
    KhaltiWebhookPayload,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentLookupRequest,
    PaymentVerifyRequest,
    ReconciliationResponse,
)
from carrental.services.booking_service import build_confirmation_email
from carrental.services.email_service import send_booking_confirmation
from carrental.services.gateway_factory import get_gateway
from carrental.services.interfaces.payment_gateway import PaymentGateway
from carrental.services.payment_service import (
    Outcome,
    ReconciliationResult,
    handle_webhook,
    initiate_payment,
    lookup_payment,
    verify_payment,
)
from carrental.core.config import get_settings
from carrental.core.security import get_current_user
from carrental.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payment", tags=["Payments"])


async def _queue_confirmation(
    db: AsyncSession,
    background_tasks: BackgroundTasks,
    result: ReconciliationResult,
) -> None:
    if result.outcome != Outcome.CONFIRMED or result.booking is None:
        return
    details = await build_confirmation_email(db, result.booking)
    background_tasks.add_task(send_booking_confirmation, **details)


def _to_response(result: ReconciliationResult) -> ReconciliationResponse:
    return ReconciliationResponse(
        success=result.success,
        outcome=result.outcome,
        message=result.message,
        booking=BookingResponse.model_validate(result.booking),
    )


@router.post("/khalti/initiate", response_model=PaymentInitiateResponse)
async def initiate_khalti_payment(
    request_data: PaymentInitiateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Open a Khalti session; the client redirects the customer to payment_url."""
    booking, initiated = await initiate_payment(
        db, gateway, request_data.booking_id, user, request_data.return_url
    )
    return PaymentInitiateResponse(
        pidx=initiated.pidx,
        payment_url=initiated.payment_url,
        booking=BookingResponse.model_validate(booking),
    )


@router.post("/khalti/verify", response_model=ReconciliationResponse)
async def verify_khalti_payment(
    request_data: PaymentVerifyRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    result = await verify_payment(db, gateway, request_data.booking_id, user, request_data.token)
    await _queue_confirmation(db, background_tasks, result)
    return _to_response(result)


@router.post("/khalti/lookup", response_model=ReconciliationResponse)
async def lookup_khalti_payment(
    request_data: PaymentLookupRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Settle a payment after the customer returns from the Khalti page."""
    result = await lookup_payment(db, gateway, request_data.pidx, user)
    await _queue_confirmation(db, background_tasks, result)
    return _to_response(result)


@router.post("/khalti-webhook", response_class=PlainTextResponse)
async def khalti_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    try:
        body = await request.json()
        payload = KhaltiWebhookPayload.model_validate(body)
        result = await handle_webhook(db, payload)
        await db.commit()
        await _queue_confirmation(db, background_tasks, result)
    except (ValueError, ValidationError) as e:
        logger.warning("webhook_payload_invalid", error=str(e))
    except Exception as e:
        await db.rollback()
        logger.exception("webhook_processing_failed", error=str(e))

    return PlainTextResponse("OK", status_code=status.HTTP_200_OK)


@router.get("/payment-return")
async def payment_return(request: Request):
    """Khalti redirects the customer here; forward to the frontend with the query intact."""
    frontend = get_settings().FRONTEND_URL
    if request.query_params.get("pidx"):
        target = f"{frontend}/user/payment-confirmation?{request.url.query}"
    else:
        target = f"{frontend}/user/mybooking"
    return RedirectResponse(target, status_code=status.HTTP_302_FOUND)
