from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, List, Optional

from time_utils import format_label_time, now_ms

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    request_code: int
    trigger_at_ms: int
    label: str
    allow_while_idle: bool = False

    def to_dict(self) -> dict:
        return {
            "request_code": self.request_code,
            "trigger_at_ms": self.trigger_at_ms,
            "label": self.label,
            "allow_while_idle": self.allow_while_idle,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Registration":
        if "request_code" not in data or "trigger_at_ms" not in data:
            raise ValueError("Registration payload missing request_code/trigger_at_ms fields")
        return cls(
            request_code=int(data["request_code"]),
            trigger_at_ms=int(data["trigger_at_ms"]),
            label=str(data.get("label") or ""),
            allow_while_idle=bool(data.get("allow_while_idle", False)),
        )


def load_registrations(path: Path) -> List[Registration]:
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load alarm registrations from %s: %s", path, exc)
        return []
    registrations: List[Registration] = []
    for item in payload or []:
        try:
            registrations.append(Registration.from_dict(item))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping registration due to parse error: %s", exc)
    return registrations


def save_registrations(path: Path, registrations: List[Registration]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump([r.to_dict() for r in registrations], f, indent=2)
    os.replace(tmp_path, path)


class LocalAlarmBackend:
    """In-process stand-in for the platform alarm service.

    Registrations live in a JSON registry so they outlive the process that
    created them. Every operation reads the registry afresh, so a second
    instance pointed at the same file sees and cancels what the first set.
    A daemon thread fires due registrations once and drops them.
    """

    def __init__(
        self,
        registry_path: Path,
        check_interval: float = 0.8,
        supports_idle_wakeups: bool = True,
        on_fire: Optional[Callable[[Registration], None]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.registry_path = registry_path
        self.check_interval = max(0.2, check_interval)
        self.supports_idle_wakeups = supports_idle_wakeups
        self.on_fire = on_fire
        self.clock = clock

        self._lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    def start(self) -> None:
        logger.info(
            "Alarm backend watching %s (%s registrations)",
            self.registry_path,
            len(self.registrations()),
        )
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name="alarm-backend", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
        self._thread = None

    def set_exact_and_allow_while_idle(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        self._register(Registration(request_code, trigger_at_ms, label, allow_while_idle=True))

    def set_exact(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        self._register(Registration(request_code, trigger_at_ms, label, allow_while_idle=False))

    def cancel(self, request_code: int) -> None:
        with self._lock:
            current = load_registrations(self.registry_path)
            remaining = [r for r in current if r.request_code != request_code]
            if len(remaining) == len(current):
                logger.debug("No registration %s to cancel", request_code)
                return
            save_registrations(self.registry_path, remaining)
        logger.info("Registration %s canceled", request_code)

    def registrations(self) -> List[Registration]:
        with self._lock:
            return sorted(load_registrations(self.registry_path), key=lambda r: r.trigger_at_ms)

    def is_registered(self, request_code: int) -> bool:
        return any(r.request_code == request_code for r in self.registrations())

    def _register(self, registration: Registration) -> None:
        if registration.trigger_at_ms < 0:
            raise ValueError("Trigger time must be a non-negative epoch millisecond value")
        with self._lock:
            current = [
                r for r in load_registrations(self.registry_path) if r.request_code != registration.request_code
            ]
            current.append(registration)
            save_registrations(self.registry_path, current)
        logger.info(
            "Registration %s (%s) due @ %s UTC",
            registration.request_code,
            registration.label,
            format_label_time(registration.trigger_at_ms),
        )

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                due = self.pop_due()
            except OSError as exc:
                logger.error("Alarm registry update failed: %s", exc)
                self._stop_event.wait(self.check_interval)
                continue
            if due:
                for registration in due:
                    self._fire(registration)
                continue
            self._stop_event.wait(self.check_interval)

    def pop_due(self) -> List[Registration]:
        now = self.clock()
        with self._lock:
            current = load_registrations(self.registry_path)
            due = [r for r in current if r.trigger_at_ms <= now]
            if due:
                save_registrations(self.registry_path, [r for r in current if r.trigger_at_ms > now])
        return due

    def _fire(self, registration: Registration) -> None:
        logger.info("Alarm %s fired (label=%s)", registration.request_code, registration.label)
        if self.on_fire:
            try:
                self.on_fire(registration)
            except Exception:  # pragma: no cover - callback safety
                logger.error("on_fire callback failed", exc_info=True)
