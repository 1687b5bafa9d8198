from __future__ import annotations

import logging
from typing import Protocol

from time_utils import format_label_time

logger = logging.getLogger(__name__)

ALARM_NAME = "Sunrise"


class SchedulerRejected(Exception):
    """The alarm backend refused to register or cancel a wake-up."""


class AlarmBackend(Protocol):
    supports_idle_wakeups: bool

    def set_exact_and_allow_while_idle(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        ...

    def set_exact(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        ...

    def cancel(self, request_code: int) -> None:
        ...


def request_code(name: str) -> int:
    """32-bit string hash, identical across processes and interpreter runs.

    Matches Java's ``String.hashCode`` over UTF-16 code units, so a name
    always maps to the key an earlier run registered under.
    """
    data = name.encode("utf-16-be")
    h = 0
    for i in range(0, len(data), 2):
        h = (31 * h + int.from_bytes(data[i : i + 2], "big")) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


class AlarmScheduler:
    def __init__(self, backend: AlarmBackend):
        self.backend = backend

    def arm(self, name: str, trigger_at_ms: int) -> None:
        code = request_code(name)
        try:
            if self.backend.supports_idle_wakeups:
                self.backend.set_exact_and_allow_while_idle(code, trigger_at_ms, name)
            else:
                self.backend.set_exact(code, trigger_at_ms, name)
        except (OSError, RuntimeError, ValueError) as exc:
            raise SchedulerRejected(f"Could not set {name} alarm: {exc}") from exc
        logger.info("%s alarm set @ %s UTC (code=%s)", name, format_label_time(trigger_at_ms), code)

    def disarm(self, name: str) -> None:
        code = request_code(name)
        try:
            self.backend.cancel(code)
        except (OSError, RuntimeError, ValueError) as exc:
            raise SchedulerRejected(f"Could not cancel {name} alarm: {exc}") from exc
        logger.info("%s alarm canceled (code=%s)", name, code)
