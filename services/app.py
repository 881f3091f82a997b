import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator

from roombook.auth import get_password_hash
from roombook.cache import SimpleTTLCache
from roombook.config import Settings, get_settings
from roombook.database import Database
from roombook.errors import register_error_handlers
from roombook.locks import RoomLocks
from roombook.logging_middleware import add_audit_middleware
from roombook.models import Admin, AdminRole
from roombook.payments import PaymentService, StripeGateway
from roombook.rate_limit import apply_rate_limiter
from roombook.repositories import Repositories
from roombook.state_machine import BookingService
from services.routers import admin, payment, visitor

logger = logging.getLogger(__name__)


def bootstrap_admin(app: FastAPI) -> None:
    """Create the configured super admin when no admin with that email exists."""
    settings: Settings = app.state.settings
    if not (settings.bootstrap_admin_email and settings.bootstrap_admin_password):
        return
    repos: Repositories = app.state.repos
    db = app.state.db.session()
    try:
        if repos.admins.get_by_email(db, settings.bootstrap_admin_email) is None:
            repos.admins.add(
                db,
                Admin(
                    username="superadmin",
                    email=settings.bootstrap_admin_email,
                    hashed_password=get_password_hash(settings.bootstrap_admin_password),
                    first_name="Super",
                    last_name="Admin",
                    role=AdminRole.SUPER_ADMIN,
                ),
            )
            db.commit()
            logger.info("Bootstrap super admin %s created", settings.bootstrap_admin_email)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.settings.run_db_migrations:
        app.state.db.create_all()
    bootstrap_admin(app)
    yield
    app.state.db.dispose()


def create_app(settings: Optional[Settings] = None, gateway: Optional[StripeGateway] = None) -> FastAPI:
    settings = settings or get_settings()
    fastapi_app = FastAPI(title="Room Booking API", version="2.0.0", lifespan=lifespan)

    repos = Repositories()
    bookings = BookingService(repos, settings, locks=RoomLocks(timeout=settings.booking_lock_timeout))
    fastapi_app.state.settings = settings
    fastapi_app.state.db = Database(settings)
    fastapi_app.state.repos = repos
    fastapi_app.state.bookings = bookings
    fastapi_app.state.payments = PaymentService(bookings, gateway or StripeGateway(settings), settings)
    fastapi_app.state.room_cache = SimpleTTLCache(ttl=settings.room_cache_ttl)

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app, settings)
    add_audit_middleware(fastapi_app, "roombook", settings.log_dir)
    register_error_handlers(fastapi_app)
    if settings.metrics_enabled:
        Instrumentator(registry=CollectorRegistry()).instrument(fastapi_app).expose(fastapi_app, include_in_schema=False)

    fastapi_app.include_router(admin.router)
    fastapi_app.include_router(visitor.router)
    fastapi_app.include_router(payment.router)

    @fastapi_app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "service": "roombook"}

    @fastapi_app.get("/api", tags=["health"])
    def api_index() -> dict:
        return {
            "message": "Room Booking System API",
            "version": fastapi_app.version,
            "endpoints": {
                "admin": "/api/admin",
                "visitor": "/api/visitor",
                "payment": "/api/payment",
            },
            "booking_workflow": {
                "status_flow": "pending_approval -> approved/rejected; approved/pending_approval -> completed once the slot ends",
                "auto_approval": "rooms that do not require approval are booked straight into approved",
                "cancellation": (
                    "only pending_approval bookings"
                    if settings.cancel_policy == "strict"
                    else "pending_approval and approved bookings"
                ),
                "updates": "only approved bookings",
                "payment_required": settings.require_payment,
            },
        }

    return fastapi_app


app = create_app()
