"""
Payment reconciliation engine for the Khalti gateway.

THREE ENTRY POINTS, ONE TRANSITION
==================================

  verify   - the client hands us a payment token, we verify it synchronously
  webhook  - Khalti calls us, correlated only by the payment session id (pidx)
  lookup   - the customer is redirected back and we poll Khalti by pidx

All three end in reconcile_payment(). A gateway may deliver the same event
more than once (webhook retries, reloaded redirect pages), so applying an
event must be idempotent:

  UPDATE bookings
  SET payment_status = 'completed', transaction_id = :txn,
      status = CASE WHEN status = 'pending' THEN 'confirmed' ELSE status END,
      payment_conflict = CASE WHEN status = 'cancelled' THEN true ELSE payment_conflict END
  WHERE id = :id AND payment_status NOT IN ('completed', 'refunded')

  - rows_affected == 0 means another delivery already settled it: no-op,
    so a retried Completed arriving after a refund cannot undo the refund
  - only a pending booking is confirmed; an admin-confirmed or active one
    just records the payment
  - a cancelled booking stays cancelled and is flagged for an operator
    (PaymentConflict) instead of being resurrected

Re-initiating a payment replaces the booking's pidx, but the customer may
still pay on the older session. A webhook whose pidx no longer matches falls
back to its purchase_order_id, which is the booking id sent at initiation.

A gateway timeout during verify is GatewayUnavailable and writes nothing:
the payment stays pending/initiated for the webhook or a lookup to settle.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.models.booking import Booking, BookingStatus, PaymentMethod, PaymentStatus
from carrental.models.user import User
from carrental.schemas.payment import KhaltiWebhookPayload
from carrental.services.booking_service import get_booking
from carrental.services.car_service import get_car
from carrental.services.interfaces.payment_gateway import InitiatedPayment, PaymentGateway
from carrental.core.config import get_settings
from carrental.core.errors import NotFound, InvalidTransition, GatewayRejected, PAYMENT_CONFLICT
from carrental.core.metrics import record_payment_event, payment_conflicts
from carrental.core.logging import get_logger

logger = get_logger(__name__)


class PaymentSource:
    VERIFY = "verify"
    WEBHOOK = "webhook"
    LOOKUP = "lookup"


class Outcome:
    CONFIRMED = "confirmed"    # payment completed, booking pending -> confirmed
    RECORDED = "recorded"      # payment completed, booking was already past pending
    CONFLICT = "conflict"      # payment completed, booking cancelled; flagged
    DUPLICATE = "duplicate"    # event already applied
    REFUNDED = "refunded"
    FAILED = "failed"
    PENDING = "pending"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"


# Khalti status vocabulary
KHALTI_COMPLETED = "Completed"
KHALTI_IN_PROGRESS = ("Pending", "Initiated")
KHALTI_REFUNDED = ("Refunded", "Partially refunded")
KHALTI_FAILED = ("Expired", "User canceled", "Failed")

MESSAGES = {
    Outcome.CONFIRMED: "Payment verified successfully",
    Outcome.RECORDED: "Payment verified successfully",
    Outcome.CONFLICT: "Payment received for a cancelled booking; flagged for review",
    Outcome.DUPLICATE: "Payment already processed",
    Outcome.REFUNDED: "Payment refunded",
    Outcome.FAILED: "Payment failed",
    Outcome.PENDING: "Payment is pending",
    Outcome.IGNORED: "No change",
    Outcome.NOT_FOUND: "Booking not found",
}


@dataclass
class PaymentEvent:
    source: str
    status: str
    booking_id: Optional[int] = None
    pidx: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class ReconciliationResult:
    outcome: str
    booking: Optional[Booking]

    @property
    def success(self) -> bool:
        return self.outcome in (
            Outcome.CONFIRMED,
            Outcome.RECORDED,
            Outcome.CONFLICT,
            Outcome.DUPLICATE,
        )

    @property
    def message(self) -> str:
        return MESSAGES[self.outcome]


def to_paisa(amount: float) -> int:
    return int(round(amount * 100))


async def find_booking_by_pidx(db: AsyncSession, pidx: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.khalti_pidx == pidx))
    return result.scalars().first()


async def _find_booking(db: AsyncSession, event: PaymentEvent) -> Optional[Booking]:
    if event.booking_id is not None:
        result = await db.execute(select(Booking).where(Booking.id == event.booking_id))
        return result.scalar_one_or_none()
    if event.pidx:
        return await find_booking_by_pidx(db, event.pidx)
    return None


async def _apply_completed(db: AsyncSession, booking: Booking, event: PaymentEvent) -> str:
    if booking.payment_status in PaymentStatus.SETTLED:
        return Outcome.DUPLICATE

    observed_status = booking.status
    values = {
        "payment_status": PaymentStatus.COMPLETED,
        "payment_method": PaymentMethod.KHALTI,
        "status": case(
            (Booking.status == BookingStatus.PENDING, BookingStatus.CONFIRMED),
            else_=Booking.status,
        ),
        "payment_conflict": case(
            (Booking.status == BookingStatus.CANCELLED, True),
            else_=Booking.payment_conflict,
        ),
    }
    if event.transaction_id:
        values["transaction_id"] = event.transaction_id

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.payment_status.notin_(PaymentStatus.SETTLED))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(booking)

    if result.rowcount == 0:
        return Outcome.DUPLICATE

    if booking.status == BookingStatus.CANCELLED:
        payment_conflicts.inc()
        logger.warning(
            "payment_conflict",
            kind=PAYMENT_CONFLICT,
            booking_id=booking.id,
            pidx=booking.khalti_pidx,
            transaction_id=booking.transaction_id,
            source=event.source,
        )
        return Outcome.CONFLICT

    if observed_status == BookingStatus.PENDING and booking.status == BookingStatus.CONFIRMED:
        return Outcome.CONFIRMED
    return Outcome.RECORDED


async def _apply_refunded(db: AsyncSession, booking: Booking) -> str:
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.payment_status != PaymentStatus.REFUNDED)
        .values(payment_status=PaymentStatus.REFUNDED)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(booking)
    return Outcome.REFUNDED if result.rowcount else Outcome.DUPLICATE


async def _apply_failed(db: AsyncSession, booking: Booking) -> str:
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.payment_status.in_((PaymentStatus.PENDING, PaymentStatus.INITIATED)),
        )
        .values(payment_status=PaymentStatus.FAILED)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(booking)
    if result.rowcount:
        return Outcome.FAILED
    return Outcome.DUPLICATE if booking.payment_status == PaymentStatus.FAILED else Outcome.IGNORED


async def reconcile_payment(db: AsyncSession, event: PaymentEvent) -> ReconciliationResult:
    """Apply one gateway event to the booking it refers to."""
    booking = await _find_booking(db, event)
    if booking is None:
        record_payment_event(event.source, Outcome.NOT_FOUND)
        logger.warning(
            "payment_event_unmatched",
            source=event.source,
            pidx=event.pidx,
            booking_id=event.booking_id,
        )
        return ReconciliationResult(Outcome.NOT_FOUND, None)

    gateway_status = (event.status or "").strip()
    if gateway_status == KHALTI_COMPLETED:
        outcome = await _apply_completed(db, booking, event)
    elif gateway_status in KHALTI_REFUNDED:
        outcome = await _apply_refunded(db, booking)
    elif gateway_status in KHALTI_IN_PROGRESS:
        outcome = Outcome.PENDING
    elif gateway_status in KHALTI_FAILED and event.source == PaymentSource.LOOKUP:
        outcome = await _apply_failed(db, booking)
    else:
        outcome = Outcome.IGNORED

    record_payment_event(event.source, outcome)
    logger.info(
        "payment_reconciled",
        source=event.source,
        gateway_status=gateway_status,
        outcome=outcome,
        booking_id=booking.id,
        status=booking.status,
        payment_status=booking.payment_status,
    )
    return ReconciliationResult(outcome, booking)


async def initiate_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: int,
    user: User,
    return_url: Optional[str] = None,
) -> tuple[Booking, InitiatedPayment]:
    """Open a Khalti payment session for the caller's pending booking."""
    booking = await get_booking(db, booking_id, user)

    if booking.payment_status in PaymentStatus.SETTLED:
        raise InvalidTransition("Booking is already paid")
    if booking.status != BookingStatus.PENDING:
        raise InvalidTransition("Only pending bookings can be paid online")

    car = await get_car(db, booking.car_id)
    purchase_order_name = f"Car Rental: {car.name} ({booking.id})"
    amount_paisa = to_paisa(booking.total_amount)

    initiated = await gateway.initiate(
        amount_paisa=amount_paisa,
        purchase_order_id=str(booking.id),
        purchase_order_name=purchase_order_name,
        return_url=return_url or f"{get_settings().FRONTEND_URL}/user/payment-confirmation",
        customer_info={
            "name": user.name,
            "email": user.email or booking.email,
            "phone": user.phone or booking.contact,
        },
    )

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == BookingStatus.PENDING,
            Booking.payment_status.notin_(PaymentStatus.SETTLED),
        )
        .values(
            payment_method=PaymentMethod.KHALTI,
            payment_status=PaymentStatus.INITIATED,
            khalti_pidx=initiated.pidx,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransition("Booking changed while the payment was being initiated")

    await db.refresh(booking)
    logger.info(
        "payment_initiated",
        booking_id=booking.id,
        pidx=initiated.pidx,
        amount_paisa=amount_paisa,
    )
    return booking, initiated


async def verify_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    booking_id: int,
    user: User,
    token: str,
) -> ReconciliationResult:
    """
    Synchronous verification of a client-side payment token.
    GatewayUnavailable / GatewayRejected propagate and nothing is written.
    """
    booking = await get_booking(db, booking_id, user)

    if booking.payment_status in PaymentStatus.SETTLED:
        record_payment_event(PaymentSource.VERIFY, Outcome.DUPLICATE)
        return ReconciliationResult(Outcome.DUPLICATE, booking)

    verification = await gateway.verify(token, to_paisa(booking.total_amount))
    if not verification.succeeded:
        record_payment_event(PaymentSource.VERIFY, "rejected")
        logger.info("payment_verification_failed", booking_id=booking.id)
        raise GatewayRejected("Payment verification failed")

    return await reconcile_payment(
        db,
        PaymentEvent(
            source=PaymentSource.VERIFY,
            status=KHALTI_COMPLETED,
            booking_id=booking.id,
            transaction_id=verification.idx,
        ),
    )


async def _find_superseded_session(db: AsyncSession, payload: KhaltiWebhookPayload) -> Optional[int]:
    """Booking id for a webhook from an older session of a re-initiated payment."""
    order_id = str(payload.purchase_order_id or "").strip()
    if not order_id.isdigit():
        return None

    result = await db.execute(
        select(Booking.id).where(
            Booking.id == int(order_id),
            Booking.payment_method == PaymentMethod.KHALTI,
            Booking.khalti_pidx.is_not(None),
        )
    )
    booking_id = result.scalar_one_or_none()
    if booking_id is not None:
        logger.info(
            "webhook_matched_by_order_id",
            pidx=payload.pidx,
            booking_id=booking_id,
        )
    return booking_id


async def handle_webhook(db: AsyncSession, payload: KhaltiWebhookPayload) -> ReconciliationResult:
    """Gateway callback; a pidx matching no session, old or current, is a no-op."""
    if not payload.pidx:
        record_payment_event(PaymentSource.WEBHOOK, Outcome.IGNORED)
        logger.warning("webhook_missing_pidx")
        return ReconciliationResult(Outcome.IGNORED, None)

    booking_id = None
    if await find_booking_by_pidx(db, payload.pidx) is None:
        booking_id = await _find_superseded_session(db, payload)

    return await reconcile_payment(
        db,
        PaymentEvent(
            source=PaymentSource.WEBHOOK,
            booking_id=booking_id,
            status=payload.status or "",
            pidx=payload.pidx,
            transaction_id=payload.transaction_id,
        ),
    )


async def lookup_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    pidx: str,
    user: User,
) -> ReconciliationResult:
    """Poll the gateway for a session the caller was redirected back from."""
    booking = await find_booking_by_pidx(db, pidx)
    if booking is None or (not user.is_admin and booking.user_id != user.id):
        raise NotFound("Booking not found")

    looked_up = await gateway.lookup(pidx)
    return await reconcile_payment(
        db,
        PaymentEvent(
            source=PaymentSource.LOOKUP,
            status=looked_up.status,
            pidx=pidx,
            transaction_id=looked_up.transaction_id,
        ),
    )
