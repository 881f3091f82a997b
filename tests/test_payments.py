import hashlib
import hmac
import json
import time as clock_time
from decimal import Decimal

import pytest

from conftest import WEBHOOK_SECRET, slot
from roombook.errors import Forbidden, PaymentVerificationError, ValidationError
from roombook.models import Booking, BookingStatus
from roombook.payments import PaymentService, StripeGateway, booking_metadata, request_from_metadata
from roombook.schemas import BookingCreate


@pytest.fixture()
def payments(service, settings, gateway) -> PaymentService:
    return PaymentService(service, gateway, settings)


def payload(event) -> bytes:
    return json.dumps(event).encode()


def stripe_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(clock_time.time())
    signed = f"{timestamp}.{body.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestCheckout:
    """Opening checkout sessions."""

    def test_session_carries_booking_details(self, payments, gateway, db_session, seed):
        """The session prices the slot and stores the request in metadata without booking it."""
        request = BookingCreate(**slot(seed.open_room.id, "09:00", "11:00"))

        session = payments.start_checkout(db_session, seed.alice, request)

        sent = gateway.sessions[0]
        assert session.session_id == "cs_test_1"
        assert session.total_cost == Decimal("80.00")
        assert sent["line_items"][0]["price_data"]["unit_amount"] == 8000
        assert sent["metadata"]["booking_reference"] == session.booking_reference
        assert sent["metadata"]["visitor_id"] == str(seed.alice.id)
        assert db_session.query(Booking).count() == 0

    def test_free_room_is_not_charged(self, payments, db_session, seed):
        """Zero-cost bookings go through the direct booking route."""
        seed.open_room.hourly_rate = Decimal("0.00")
        db_session.commit()
        with pytest.raises(ValidationError):
            payments.start_checkout(db_session, seed.alice, BookingCreate(**slot(seed.open_room.id, "09:00", "10:00")))

    def test_admin_cannot_pay(self, payments, db_session, seed):
        """Checkout is for visitors."""
        with pytest.raises(Forbidden):
            payments.start_checkout(db_session, seed.admin, BookingCreate(**slot(seed.open_room.id, "09:00", "10:00")))


class TestWebhook:
    """Turning Stripe events into bookings."""

    def _checkout(self, payments, db_session, seed, room=None, start="09:00", end="11:00"):
        room = room or seed.approval_room
        return payments.start_checkout(db_session, seed.alice, BookingCreate(**slot(room.id, start, end)))

    def test_completed_session_creates_booking(self, payments, gateway, db_session, seed):
        """A completed session creates a pending booking with the reserved reference."""
        session = self._checkout(payments, db_session, seed)

        ack = payments.handle_event(db_session, payload(gateway.completed_event()), "valid")

        booking = db_session.query(Booking).one()
        assert ack.outcome == "created"
        assert ack.booking_reference == session.booking_reference == booking.booking_reference
        assert booking.status == BookingStatus.PENDING_APPROVAL
        assert booking.stripe_session_id == session.session_id
        assert booking.total_cost == Decimal("50.00")
        assert booking.payment_date is not None

    def test_replayed_event_creates_one_booking(self, payments, gateway, db_session, seed):
        """Redelivery of the same event never inserts a second row."""
        self._checkout(payments, db_session, seed)
        event = payload(gateway.completed_event())

        first = payments.handle_event(db_session, event, "valid")
        second = payments.handle_event(db_session, event, "valid")

        assert first.outcome == "created"
        assert second.outcome == "duplicate"
        assert second.booking_reference == first.booking_reference
        assert db_session.query(Booking).count() == 1

    def test_amount_mismatch_rejected(self, payments, gateway, db_session, seed):
        """A paid amount differing from the quote is refused."""
        self._checkout(payments, db_session, seed)

        with pytest.raises(PaymentVerificationError):
            payments.handle_event(db_session, payload(gateway.completed_event(amount_total=100)), "valid")
        assert db_session.query(Booking).count() == 0

    def test_bad_signature_rejected(self, payments, gateway, db_session, seed):
        """Unsigned events are refused before anything is read."""
        self._checkout(payments, db_session, seed)

        with pytest.raises(PaymentVerificationError):
            payments.handle_event(db_session, payload(gateway.completed_event()), "forged")
        assert db_session.query(Booking).count() == 0

    def test_slot_taken_while_paying(self, payments, gateway, service, db_session, seed):
        """If the slot was booked during checkout the event is acknowledged as rejected."""
        self._checkout(payments, db_session, seed, room=seed.open_room)
        service.create(db_session, seed.bob, BookingCreate(**slot(seed.open_room.id, "10:00", "12:00")))

        ack = payments.handle_event(db_session, payload(gateway.completed_event()), "valid")

        assert ack.outcome == "rejected"
        assert db_session.query(Booking).count() == 1

    def test_expired_session_writes_nothing(self, payments, gateway, db_session, seed):
        """Expired sessions leave no trace."""
        self._checkout(payments, db_session, seed)
        event = {"type": "checkout.session.expired", "data": {"object": {"id": "cs_test_1"}}}

        ack = payments.handle_event(db_session, payload(event), "valid")

        assert ack.outcome == "expired"
        assert db_session.query(Booking).count() == 0

    def test_unrelated_event_ignored(self, payments, db_session, seed):
        """Other event types are acknowledged and ignored."""
        event = {"type": "payment_intent.created", "data": {"object": {"id": "pi_1"}}}
        ack = payments.handle_event(db_session, payload(event), "valid")
        assert ack.outcome == "ignored"


class TestVerify:
    """Payment status of a booking."""

    def test_paid_and_unpaid(self, payments, gateway, service, db_session, seed):
        """Only bookings created from a completed session report as paid."""
        payments.start_checkout(
            db_session, seed.alice, BookingCreate(**slot(seed.approval_room.id, "09:00", "10:00"))
        )
        payments.handle_event(db_session, payload(gateway.completed_event()), "valid")
        paid = db_session.query(Booking).filter(Booking.stripe_session_id.is_not(None)).one()
        direct = service.create(db_session, seed.alice, BookingCreate(**slot(seed.open_room.id, "09:00", "10:00")))

        assert payments.verify(db_session, seed.alice, paid.id).is_paid is True
        assert payments.verify(db_session, seed.alice, direct.id).is_paid is False
        with pytest.raises(Forbidden):
            payments.verify(db_session, seed.bob, paid.id)


class TestStripeGateway:
    """Signature checks through the Stripe SDK."""

    def test_valid_signature(self, settings):
        """A correctly signed payload is parsed into an event."""
        body = payload({"id": "evt_1", "object": "event", "type": "checkout.session.expired", "data": {"object": {"id": "cs_1"}}})

        event = StripeGateway(settings).construct_event(body, stripe_signature(body))

        assert event["type"] == "checkout.session.expired"
        assert event["data"]["object"]["id"] == "cs_1"

    def test_wrong_secret(self, settings):
        """A payload signed with another secret is refused."""
        body = payload({"id": "evt_1", "object": "event", "type": "checkout.session.expired", "data": {"object": {}}})

        with pytest.raises(PaymentVerificationError):
            StripeGateway(settings).construct_event(body, stripe_signature(body, "whsec_other"))

    def test_missing_signature(self, settings):
        """Requests without the signature header are refused."""
        with pytest.raises(PaymentVerificationError):
            StripeGateway(settings).construct_event(b"{}", None)


class TestMetadata:
    """Booking requests survive the trip through session metadata."""

    def test_round_trip(self, seed):
        """Metadata rebuilds the requested booking."""
        request = BookingCreate(**slot(seed.open_room.id, "09:00", "10:30", description="Quarterly review"))
        metadata = booking_metadata(seed.alice, request, "BK2030ABCDEFGH", Decimal("60.00"))

        assert all(isinstance(value, str) for value in metadata.values())
        assert request_from_metadata(metadata) == request

    def test_incomplete_metadata(self):
        """Metadata missing booking fields is a verification error."""
        with pytest.raises(PaymentVerificationError):
            request_from_metadata({"room_id": "1"})
