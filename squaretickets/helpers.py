import hmac
import re
import time
from datetime import datetime, timezone
from typing import Optional


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def now_ts() -> float:
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    """Render a unix timestamp as an ISO-8601 UTC string (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_RE.match(email.strip()) is not None


def ct_equal(given: str, expected: str) -> bool:
    """Constant-time comparison for admin credentials."""
    return hmac.compare_digest(given.encode(), expected.encode())


def format_money(cents: int) -> str:
    # amounts are integer cents everywhere; only the display is decimal
    return f"{cents / 100:.2f}"
