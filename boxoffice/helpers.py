import time
import re
import secrets
from datetime import datetime, timezone
import hmac
from typing import Optional
from zoneinfo import ZoneInfo


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def to_local(ts: float, tz_name: str) -> str:
    return datetime.fromtimestamp(ts, tz=ZoneInfo(tz_name)).strftime(
        "%d.%m.%Y %H:%M:%S"
    )


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# no 0/O, 1/I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def random_code(n: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(n))


def new_link_code() -> str:
    return f"LNK-{random_code(6)}"


def new_order_code(via_link: bool) -> str:
    # event orders and link orders never share a prefix
    prefix = "LO" if via_link else "TK"
    return f"{prefix}-{random_code(8)}"


def slugify(name: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", name.lower(), flags=re.UNICODE)
    slug = re.sub(r"[\s_]+", "-", slug).strip("-")
    slug = re.sub(r"-{2,}", "-", slug)
    return f"{slug or 'event'}-{random_code(6).lower()}"
