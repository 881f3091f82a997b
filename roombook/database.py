"""Engine and session management, plus translation of store failures."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import Settings
from .errors import TransientStoreError


class Base(DeclarativeBase):
    pass


def _connect_args(settings: Settings) -> dict:
    if settings.database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.db_statement_timeout}
    if settings.database_url.startswith("postgresql"):
        timeout_ms = int(settings.db_statement_timeout * 1000)
        return {"options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"}
    return {}


def build_engine(settings: Settings) -> Engine:
    kwargs = {"connect_args": _connect_args(settings), "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_timeout"] = settings.db_pool_timeout
    return create_engine(settings.database_url, **kwargs)


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, settings: Settings) -> None:
        self.engine = build_engine(settings)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        from . import models  # noqa: F401  registers the tables

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.session_factory()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors() -> Iterator[None]:
    """Surface connection, lock and pool timeouts as retryable errors."""
    try:
        yield
    except PoolTimeoutError as exc:
        raise TransientStoreError("Timed out waiting for a database connection") from exc
    except OperationalError as exc:
        raise TransientStoreError(f"Database unavailable: {exc.orig}") from exc
