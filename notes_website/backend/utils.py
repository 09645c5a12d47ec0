import hashlib
import secrets
import string
import time
import uuid
from datetime import datetime, UTC

_BASE36 = string.digits + string.ascii_lowercase


def make_id(prefix: str) -> str:
    """Generate a unique ID with a given prefix."""
    return f"{prefix}_{uuid.uuid4()}"


def make_entry_id() -> str:
    """Return a time-ordered note ID like ``entry-1700000000000-k3j9x2``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"entry-{now_ms()}-{suffix}"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def time_now() -> str:
    """Return the current time in ISO format (UTC, millisecond precision)."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def later_than(previous: str) -> str:
    """Return ``time_now()``, bumped by a millisecond if it would not sort after ``previous``."""
    current = time_now()
    if current > previous:
        return current
    try:
        parsed = datetime.fromisoformat(previous.replace("Z", "+00:00"))
    except ValueError:
        return current
    bumped = parsed.timestamp() + 0.001
    return datetime.fromtimestamp(bumped, UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def hash_password(password: str) -> str:
    """Hash password using SHA-256."""
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    if password is None or password_hash is None:
        return False
    return secrets.compare_digest(hash_password(password), password_hash)
