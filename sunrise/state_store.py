from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)

ARMED_KEY = "isAlarmSet"


class StoreWriteFailed(Exception):
    """The armed flag could not be persisted."""


class AlarmStateStore:
    """Persists the armed flag in a per-application key/value file.

    The file is ``<state_dir>/<app_id>.json``. Other keys in it are kept
    untouched on write.
    """

    def __init__(self, state_dir: Path, app_id: str = "com.rooster.rooster"):
        self.path = Path(state_dir) / f"{app_id}.json"
        self._lock = Lock()

    def load(self) -> bool:
        with self._lock:
            return bool(self._read_prefs().get(ARMED_KEY, False))

    def store(self, armed: bool) -> None:
        with self._lock:
            prefs = self._read_prefs()
            prefs[ARMED_KEY] = bool(armed)
            try:
                self._write_prefs(prefs)
            except OSError as exc:
                raise StoreWriteFailed(f"Failed to write {self.path}: {exc}") from exc
        logger.info("Stored %s=%s", ARMED_KEY, armed)

    def _read_prefs(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load preferences from %s: %s", self.path, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring non-object preferences in %s", self.path)
            return {}
        return payload

    def _write_prefs(self, prefs: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(prefs, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
