from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from roombook.database import get_db
from roombook.dependencies import get_payment_service, require_visitor
from roombook.payments import PaymentService
from roombook.rate_limit import limiter
from roombook.schemas import BookingCreate, CheckoutSession, PaymentStatus, Principal, WebhookAck

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/create-checkout-session", response_model=CheckoutSession)
@limiter.limit("10/minute")
def create_checkout_session(
    request: Request,
    booking_in: BookingCreate,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> CheckoutSession:
    return payments.start_checkout(db, principal, booking_in)


@router.post("/webhook", response_model=WebhookAck)
@limiter.exempt
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> WebhookAck:
    # Signature verification needs the exact bytes Stripe signed.
    payload = await request.body()
    return await run_in_threadpool(payments.handle_event, db, payload, stripe_signature)


@router.get("/verify/{booking_id}", response_model=PaymentStatus)
def verify_payment(
    booking_id: int,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> PaymentStatus:
    return payments.verify(db, principal, booking_id)
