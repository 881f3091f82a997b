"""Stripe checkout relay for the payment-first booking flow.

A visitor first asks for a checkout session: the request is validated and
priced, a booking reference is reserved in the session metadata, and no
booking row exists until Stripe reports ``checkout.session.completed``. The
webhook then creates the booking through :class:`BookingService` under the
same lock and conflict check as a direct booking. The session id is stored in
a unique column, so a redelivered event finds the existing booking instead of
inserting another one.
"""
from __future__ import annotations

import logging
from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import stripe
from sqlalchemy.orm import Session

from .config import Settings
from .derived import effective_status, to_cents
from .errors import Conflict, Forbidden, NotFound, PaymentProviderError, PaymentVerificationError, ValidationError
from .models import LIVE_STATUSES
from .references import unique_reference
from .schemas import BookingCreate, CheckoutSession, PaymentStatus, Principal, WebhookAck
from .state_machine import BookingService

logger = logging.getLogger(__name__)

SESSION_COMPLETED = "checkout.session.completed"
SESSION_EXPIRED = "checkout.session.expired"
METADATA_LIMIT = 500


class StripeGateway:
    """Thin wrapper over the Stripe SDK so tests can swap in a fake."""

    def __init__(self, settings: Settings) -> None:
        self._client = stripe.StripeClient(settings.stripe_secret_key)
        self._webhook_secret = settings.stripe_webhook_secret

    def create_checkout_session(self, params: Dict[str, Any]) -> Mapping[str, Any]:
        try:
            return self._client.checkout.sessions.create(params=params)
        except stripe.StripeError as exc:
            raise PaymentProviderError(f"Could not create checkout session: {exc.user_message or exc}") from exc

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        if not signature:
            raise PaymentVerificationError("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as exc:
            raise PaymentVerificationError("Invalid webhook payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise PaymentVerificationError("Webhook signature verification failed") from exc


def booking_metadata(principal: Principal, request: BookingCreate, reference: str, cost: Decimal) -> Dict[str, str]:
    metadata = {
        "booking_reference": reference,
        "visitor_id": str(principal.id),
        "room_id": str(request.room_id),
        "booking_date": request.booking_date.isoformat(),
        "start_time": request.start_time.isoformat(),
        "end_time": request.end_time.isoformat(),
        "purpose": request.purpose,
        "description": request.description or "",
        "expected_attendees": str(request.expected_attendees),
        "total_cost": str(cost),
    }
    return {key: value[:METADATA_LIMIT] for key, value in metadata.items()}


def request_from_metadata(metadata: Mapping[str, str]) -> BookingCreate:
    try:
        return BookingCreate(
            room_id=int(metadata["room_id"]),
            booking_date=date.fromisoformat(metadata["booking_date"]),
            start_time=time.fromisoformat(metadata["start_time"]),
            end_time=time.fromisoformat(metadata["end_time"]),
            purpose=metadata["purpose"],
            description=metadata.get("description") or None,
            expected_attendees=int(metadata.get("expected_attendees") or 1),
        )
    except (KeyError, ValueError) as exc:
        raise PaymentVerificationError("Checkout session metadata does not describe a booking") from exc


class PaymentService:
    def __init__(self, bookings: BookingService, gateway: StripeGateway, settings: Settings) -> None:
        self.bookings = bookings
        self.gateway = gateway
        self.settings = settings

    def start_checkout(self, db: Session, principal: Principal, request: BookingCreate) -> CheckoutSession:
        if principal.kind != "visitor":
            raise Forbidden("Only visitors can pay for bookings")
        room, cost = self.bookings.quote(db, request)
        if cost <= 0:
            raise ValidationError("This room is free of charge; book it directly")
        reference = unique_reference(db, self.bookings.repos.bookings, self.bookings.clock())
        base_url = self.settings.frontend_url.rstrip("/")
        session = self.gateway.create_checkout_session(
            {
                "mode": "payment",
                "payment_method_types": ["card"],
                "line_items": [
                    {
                        "price_data": {
                            "currency": self.settings.stripe_currency,
                            "product_data": {
                                "name": f"Room Booking: {room.room_name}",
                                "description": f"Booking Reference: {reference}",
                            },
                            "unit_amount": to_cents(cost),
                        },
                        "quantity": 1,
                    }
                ],
                "metadata": booking_metadata(principal, request, reference, cost),
                "success_url": f"{base_url}/booking/success?session_id={{CHECKOUT_SESSION_ID}}",
                "cancel_url": f"{base_url}/booking/cancel",
            }
        )
        logger.info("Checkout session %s opened for %s (%s)", session["id"], reference, cost)
        return CheckoutSession(session_id=session["id"], url=session.get("url"), booking_reference=reference, total_cost=cost)

    def handle_event(self, db: Session, payload: bytes, signature: Optional[str]) -> WebhookAck:
        event = self.gateway.construct_event(payload, signature)
        event_type = event["type"]
        session = event["data"]["object"]

        if event_type == SESSION_EXPIRED:
            logger.info("Checkout session %s expired; nothing reserved", session["id"])
            return WebhookAck(event_type=event_type, outcome="expired")
        if event_type != SESSION_COMPLETED:
            logger.info("Ignoring Stripe event %s", event_type)
            return WebhookAck(event_type=event_type, outcome="ignored")
        return self._complete(db, event_type, session)

    def _complete(self, db: Session, event_type: str, session: Mapping[str, Any]) -> WebhookAck:
        session_id = session["id"]
        metadata = session.get("metadata") or {}

        existing = self.bookings.repos.bookings.get_by_session(db, session_id)
        if existing is not None:
            logger.info("Duplicate completion for session %s ignored", session_id)
            return WebhookAck(event_type=event_type, outcome="duplicate", booking_reference=existing.booking_reference)

        request = request_from_metadata(metadata)
        try:
            quoted = Decimal(metadata["total_cost"])
            visitor_id = int(metadata["visitor_id"])
        except (KeyError, ArithmeticError, ValueError) as exc:
            raise PaymentVerificationError("Checkout session metadata is missing the amount or visitor") from exc
        if session.get("amount_total") != to_cents(quoted):
            raise PaymentVerificationError(
                f"Paid amount {session.get('amount_total')} does not match quoted {to_cents(quoted)} cents"
            )

        principal = Principal(id=visitor_id, kind="visitor")
        try:
            booking = self.bookings.create(
                db,
                principal,
                request,
                reference=metadata.get("booking_reference"),
                stripe_session_id=session_id,
                cost=quoted,
            )
        except (Conflict, NotFound):
            logger.error("Paid session %s could not be turned into a booking; refund required", session_id)
            return WebhookAck(event_type=event_type, outcome="rejected", booking_reference=metadata.get("booking_reference"))
        return WebhookAck(event_type=event_type, outcome="created", booking_reference=booking.booking_reference)

    def verify(self, db: Session, principal: Principal, booking_id: int) -> PaymentStatus:
        booking = self.bookings.get_for(db, principal, booking_id)
        status = effective_status(booking, self.bookings.clock())
        return PaymentStatus(
            booking_id=booking.id,
            booking_reference=booking.booking_reference,
            status=status,
            is_paid=status in LIVE_STATUSES and booking.stripe_session_id is not None,
        )
