from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware wall-clock time; the default clock for every component."""
    return datetime.now(timezone.utc)
