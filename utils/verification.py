import hashlib
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional


def generate_single_use_secret() -> tuple[str, str]:
    """
    Returns (raw_secret, digest). Only the digest is ever persisted;
    the raw value goes to the user through the notification channel.
    """
    raw = secrets.token_urlsafe(32)
    return raw, hash_secret(raw)


def hash_secret(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_expiry_time(minutes: int = 0, hours: int = 0) -> datetime:
    return utcnow() + timedelta(minutes=minutes, hours=hours)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo; they are stored as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
