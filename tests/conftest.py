import json
import os
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("METRICS_ENABLED", "false")

from roombook.config import Settings, reset_settings_cache  # noqa: E402

reset_settings_cache()

from roombook.auth import get_password_hash  # noqa: E402
from roombook.database import Database  # noqa: E402
from roombook.errors import PaymentVerificationError  # noqa: E402
from roombook.models import Admin, AdminRole, Room, Visitor  # noqa: E402
from roombook.repositories import Repositories  # noqa: E402
from roombook.schemas import Principal  # noqa: E402
from roombook.state_machine import BookingService  # noqa: E402
from services.app import create_app  # noqa: E402

ROOT_EMAIL = "root@example.com"
ROOT_PASSWORD = "RootPass123!"
WEBHOOK_SECRET = "whsec_test_secret"

# Monday; bookings in the service tests fall on the following day.
NOW = datetime(2030, 1, 7, 8, 0)
DAY = date(2030, 1, 8)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeGateway:
    """Stands in for Stripe: records sessions, trusts signature ``valid``."""

    def __init__(self) -> None:
        self.sessions: List[Dict[str, Any]] = []

    def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({"id": session_id, **params})
        return {"id": session_id, "url": f"https://checkout.test/{session_id}"}

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if signature != "valid":
            raise PaymentVerificationError("Webhook signature verification failed")
        return json.loads(payload)

    def completed_event(self, index: int = -1, amount_total: Optional[int] = None) -> Dict[str, Any]:
        session = self.sessions[index]
        amount = session["line_items"][0]["price_data"]["unit_amount"]
        return {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session["id"],
                    "amount_total": amount if amount_total is None else amount_total,
                    "metadata": session["metadata"],
                }
            },
        }


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'roombook.db'}",
        rate_limiting_enabled=False,
        metrics_enabled=False,
        log_dir=str(tmp_path / "logs"),
        bootstrap_admin_email=ROOT_EMAIL,
        bootstrap_admin_password=ROOT_PASSWORD,
        stripe_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def app(settings, gateway):
    return create_app(settings, gateway=gateway)


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


# Service-level fixtures


@pytest.fixture()
def database(settings) -> Generator[Database, None, None]:
    db = Database(settings)
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture()
def db_session(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture()
def repos() -> Repositories:
    return Repositories()


@pytest.fixture()
def service(repos, settings, clock) -> BookingService:
    return BookingService(repos, settings, clock=clock)


@dataclass
class Seed:
    admin: Principal
    alice: Principal
    bob: Principal
    open_room: Room
    approval_room: Room


@pytest.fixture()
def seed(db_session) -> Seed:
    admin = Admin(
        username="admin",
        email="admin@example.com",
        hashed_password=get_password_hash("AdminPass1"),
        first_name="Ada",
        last_name="Admin",
        role=AdminRole.ADMIN,
    )
    alice = Visitor(email="alice@example.com", hashed_password="x", first_name="Alice", last_name="A")
    bob = Visitor(email="bob@example.com", hashed_password="x", first_name="Bob", last_name="B")
    open_room = Room(room_number="R101", room_name="Open Room", capacity=10, hourly_rate=Decimal("40.00"))
    approval_room = Room(
        room_number="R201",
        room_name="Approval Room",
        capacity=20,
        hourly_rate=Decimal("25.00"),
        requires_approval=True,
    )
    db_session.add_all([admin, alice, bob, open_room, approval_room])
    db_session.commit()
    return Seed(
        admin=Principal(id=admin.id, kind="admin", role=AdminRole.ADMIN),
        alice=Principal(id=alice.id, kind="visitor"),
        bob=Principal(id=bob.id, kind="visitor"),
        open_room=open_room,
        approval_room=approval_room,
    )


def slot(room_id: int, start: str, end: str, booking_date: date = DAY, **extra) -> Dict[str, Any]:
    return {
        "room_id": room_id,
        "booking_date": booking_date,
        "start_time": time.fromisoformat(start),
        "end_time": time.fromisoformat(end),
        "purpose": extra.pop("purpose", "Team meeting"),
        **extra,
    }


# HTTP helpers


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(client) -> Dict[str, str]:
    response = client.post("/api/admin/login", json={"email": ROOT_EMAIL, "password": ROOT_PASSWORD})
    assert response.status_code == 200, response.text
    return auth_header(response.json()["token"]["access_token"])


@pytest.fixture()
def register_visitor(client):
    def _register(email: str = "visitor@example.com", password: str = "Passw0rd!", **extra) -> Dict[str, str]:
        response = client.post(
            "/api/visitor/register",
            json={"email": email, "password": password, "first_name": "Vera", "last_name": "Visitor", **extra},
        )
        assert response.status_code == 201, response.text
        return auth_header(response.json()["token"]["access_token"])

    return _register


@pytest.fixture()
def create_room(client, admin_headers):
    def _create(room_number: str = "A-101", **fields) -> Dict[str, Any]:
        payload = {"room_number": room_number, "room_name": f"Room {room_number}", "capacity": 8, "hourly_rate": "40.00"}
        payload.update(fields)
        response = client.post("/api/admin/rooms", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create
