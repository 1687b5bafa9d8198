from __future__ import annotations

import logging
import time
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000
LABEL_FORMAT = "%Y/%m/%d %H:%M"


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if name:
        try:
            return ZoneInfo(name)
        except Exception as exc:  # pragma: no cover - environment-dependent
            logger.warning("Failed to load timezone %s via zoneinfo (%s)", name, exc)
    local_tz = datetime.now().astimezone().tzinfo
    if local_tz:
        return local_tz
    logger.warning("System timezone unavailable, fallback to UTC")
    return timezone.utc


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def ms_to_datetime(epoch_ms: int, tz: Optional[tzinfo] = None) -> datetime:
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    if tz is not None:
        return moment.astimezone(tz)
    return moment


def format_label_time(epoch_ms: int, tz: Optional[tzinfo] = None) -> str:
    """Render an epoch-millisecond instant as ``YYYY/MM/DD HH:MM`` in ``tz``."""
    return ms_to_datetime(epoch_ms, tz).strftime(LABEL_FORMAT)
