"""Reusable FastAPI dependencies for auth, services and database access."""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token, principal_from_claims
from .cache import SimpleTTLCache
from .config import Settings
from .database import get_db
from .models import AdminRole
from .payments import PaymentService
from .repositories import Repositories
from .schemas import Principal
from .state_machine import BookingService

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/api/visitor/login", auto_error=False)


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_repos(request: Request) -> Repositories:
    return request.app.state.repos


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.bookings


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payments


def get_room_cache(request: Request) -> SimpleTTLCache:
    return request.app.state.room_cache


def get_principal(
    token: Optional[str] = Depends(oauth_scheme),
    settings: Settings = Depends(get_settings_from_app),
    repos: Repositories = Depends(get_repos),
    db: Session = Depends(get_db),
) -> Principal:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    principal = principal_from_claims(decode_token(settings, token))
    accounts = repos.admins if principal.kind == "admin" else repos.visitors
    account = accounts.get(db, principal.id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account not found")
    if not account.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    if principal.kind == "admin":
        # Role changes take effect without waiting for the token to expire.
        principal = principal.model_copy(update={"role": account.role})
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return principal


def require_super_admin(principal: Principal = Depends(require_admin)) -> Principal:
    if principal.role != AdminRole.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return principal


def require_visitor(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != "visitor":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Visitor access required")
    return principal
