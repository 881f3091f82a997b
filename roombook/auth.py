"""Password hashing, JWT handling, and account authentication helpers."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .models import Admin, Visitor
from .repositories import AdminRepository, VisitorRepository
from .schemas import Principal, Token

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    settings: Settings, data: Dict[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_token(settings: Settings, account: Union[Admin, Visitor]) -> Token:
    claims: Dict[str, Any] = {"sub": str(account.id), "email": account.email}
    if isinstance(account, Admin):
        claims.update(user_type="admin", role=account.role.value)
    else:
        claims["user_type"] = "visitor"
    return Token(access_token=create_access_token(settings, claims))


def decode_token(settings: Settings, token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    try:
        return Principal(id=int(claims["sub"]), kind=claims["user_type"], role=claims.get("role"))
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token") from exc


def authenticate_admin(db: Session, admins: AdminRepository, email: str, password: str) -> Optional[Admin]:
    admin = admins.get_by_email(db, email)
    if not admin or not verify_password(password, admin.hashed_password):
        return None
    return admin


def authenticate_visitor(db: Session, visitors: VisitorRepository, email: str, password: str) -> Optional[Visitor]:
    visitor = visitors.get_by_email(db, email)
    if not visitor or not verify_password(password, visitor.hashed_password):
        return None
    return visitor
