"""Public booking reference generation."""
from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from .repositories import BookingRepository

PREFIX = "BK"
ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 8


def generate_reference(now: datetime) -> str:
    suffix = "".join(secrets.choice(ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{PREFIX}{now.year}{suffix}"


def unique_reference(
    db: Session,
    bookings: BookingRepository,
    now: datetime,
    generate: Callable[[datetime], str] = generate_reference,
) -> str:
    """Draw candidates until one is not used by any booking."""
    while True:
        candidate = generate(now)
        if not bookings.reference_exists(db, candidate):
            return candidate
