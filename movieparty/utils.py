"""
Utility functions for IDs, clocks and HTTP range parsing
"""
import random
import re
import string
import time
from typing import Optional, Tuple

_SAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def generate_session_id(length: int = 12) -> str:
    """Generate a random connection-scoped session ID"""
    alphabet = string.ascii_lowercase + string.digits
    return "sess_" + "".join(random.choice(alphabet) for _ in range(length))


def now_ms() -> int:
    """Wall clock in milliseconds, used for client-facing timestamps"""
    return int(time.time() * 1000)


def safe_fragment(value: str, default: str = "default") -> str:
    """Reduce user input to something usable inside a file name"""
    cleaned = _SAFE_CHARS.sub("-", value or "").strip("-")
    return cleaned[:64] or default


class RangeNotSatisfiable(ValueError):
    pass


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single ``bytes=`` Range header against a file of ``size`` bytes.

    Returns ``None`` when no range was requested, otherwise the inclusive
    ``(start, end)`` span with ``end`` clamped to ``size - 1``. Suffix
    ranges (``bytes=-500``) select the last bytes of the file.

    Raises RangeNotSatisfiable for spans that fall outside the file or
    headers we cannot parse.
    """
    if not header:
        return None

    unit, _, spec = header.strip().partition("=")
    if unit.strip().lower() != "bytes" or not spec:
        raise RangeNotSatisfiable(header)

    # Multi-range requests are answered with the first span only
    first = spec.split(",")[0].strip()
    start_s, sep, end_s = first.partition("-")
    if not sep:
        raise RangeNotSatisfiable(header)

    try:
        if not start_s:
            suffix = int(end_s)
            if suffix <= 0 or size == 0:
                raise RangeNotSatisfiable(header)
            return max(size - suffix, 0), size - 1
        start = int(start_s)
        end = int(end_s) if end_s else size - 1
    except ValueError:
        raise RangeNotSatisfiable(header) from None

    end = min(end, size - 1)
    if start < 0 or start >= size or start > end:
        raise RangeNotSatisfiable(header)
    return start, end
