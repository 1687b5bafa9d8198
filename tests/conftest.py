from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from sunrise.location import PositionSource
from sunrise.models import Position, WeatherSample
from sunrise.orchestrator import SunriseAlarmOrchestrator, SunriseViews
from sunrise.scheduler import AlarmScheduler
from sunrise.state_store import AlarmStateStore, StoreWriteFailed
from sunrise.ui_loop import UiLoop
from sunrise.weather import WeatherOutcome, run_fetch

# 2024-06-01T10:00Z
FIX_TIME = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
FIX_TIME_MS = 1717236000000


class FakeButton:
    def __init__(self) -> None:
        self.label = ""
        self.enabled = True
        self.history: List[str] = []

    def set_label(self, text: str) -> None:
        self.label = text
        self.history.append(text)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled


class FakeText:
    def __init__(self) -> None:
        self.text = ""

    def set_text(self, text: str) -> None:
        self.text = text


class MemoryBackend:
    """Alarm backend keeping registrations in a dict; can be told to fail."""

    def __init__(self, supports_idle_wakeups: bool = True) -> None:
        self.supports_idle_wakeups = supports_idle_wakeups
        self.active = {}
        self.calls: List[tuple] = []
        self.fail_set = False
        self.fail_cancel = False

    def set_exact_and_allow_while_idle(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        self.calls.append(("set_exact_and_allow_while_idle", request_code, trigger_at_ms))
        if self.fail_set:
            raise RuntimeError("alarm service unavailable")
        self.active[request_code] = trigger_at_ms

    def set_exact(self, request_code: int, trigger_at_ms: int, label: str) -> None:
        self.calls.append(("set_exact", request_code, trigger_at_ms))
        if self.fail_set:
            raise RuntimeError("alarm service unavailable")
        self.active[request_code] = trigger_at_ms

    def cancel(self, request_code: int) -> None:
        self.calls.append(("cancel", request_code))
        if self.fail_cancel:
            raise RuntimeError("alarm service unavailable")
        self.active.pop(request_code, None)


class SpyScheduler(AlarmScheduler):
    def __init__(self, backend) -> None:
        super().__init__(backend)
        self.armed_with: List[tuple] = []
        self.disarmed_with: List[str] = []

    def arm(self, name: str, trigger_at_ms: int) -> None:
        self.armed_with.append((name, trigger_at_ms))
        super().arm(name, trigger_at_ms)

    def disarm(self, name: str) -> None:
        self.disarmed_with.append(name)
        super().disarm(name)


class FlakyStore(AlarmStateStore):
    def __init__(self, state_dir: Path) -> None:
        super().__init__(state_dir)
        self.fail_writes = False

    def store(self, armed: bool) -> None:
        if self.fail_writes:
            raise StoreWriteFailed("disk full")
        super().store(armed)


class ManualProvider:
    """Location provider whose updates are pushed by the test."""

    def __init__(self, ui: UiLoop) -> None:
        self.ui = ui
        self.listeners: List[Callable[[float, float, float], None]] = []

    def subscribe(self, listener) -> None:
        self.listeners.append(listener)

    def emit(self, latitude: float, longitude: float, altitude: float = 35.0) -> None:
        for listener in self.listeners:
            self.ui.post(listener, altitude, latitude, longitude)


class FakeWeather:
    """Answers synchronously but still hands the outcome over through the UI loop."""

    def __init__(self, sample: Optional[WeatherSample] = None, error: Optional[Exception] = None) -> None:
        self.sample = sample
        self.error = error
        self.fetched: List[Position] = []

    def fetch(self, position: Position) -> WeatherSample:
        self.fetched.append(position)
        if self.error is not None:
            raise self.error
        return self.sample

    def fetch_in_background(self, position: Position, ui: UiLoop, on_result: Callable[[WeatherOutcome], None]):
        ui.post(on_result, run_fetch(self.fetch, position))


@dataclass
class App:
    ui: UiLoop
    provider: ManualProvider
    weather: FakeWeather
    backend: MemoryBackend
    scheduler: SpyScheduler
    store: FlakyStore
    button: FakeButton
    place: FakeText
    advisories: List[str] = field(default_factory=list)
    orchestrator: Optional[SunriseAlarmOrchestrator] = None

    def start(self, granted: bool = True) -> None:
        self.orchestrator.on_create()
        self.orchestrator.on_permission_result(granted)
        self.ui.run_pending()

    def fix(self, latitude: float = 48.85, longitude: float = 2.35) -> None:
        self.provider.emit(latitude, longitude)
        self.ui.run_pending()


@pytest.fixture
def make_app(tmp_path):
    def _make(
        sample: Optional[WeatherSample] = None,
        error: Optional[Exception] = None,
        backend: Optional[MemoryBackend] = None,
        permission: bool = True,
    ) -> App:
        ui = UiLoop()
        provider = ManualProvider(ui)
        backend = backend or MemoryBackend()
        app = App(
            ui=ui,
            provider=provider,
            weather=FakeWeather(sample=sample, error=error),
            backend=backend,
            scheduler=SpyScheduler(backend),
            store=FlakyStore(tmp_path / "state"),
            button=FakeButton(),
            place=FakeText(),
        )
        views = SunriseViews(
            button=app.button,
            place=app.place,
            altitude=FakeText(),
            latitude=FakeText(),
            longitude=FakeText(),
            observed_at=FakeText(),
            advisory=app.advisories.append,
        )
        app.orchestrator = SunriseAlarmOrchestrator(
            ui=ui,
            position_source=PositionSource(provider, lambda: permission, clock=lambda: FIX_TIME),
            weather=app.weather,
            scheduler=app.scheduler,
            store=app.store,
            views=views,
            tz=timezone.utc,
        )
        return app

    return _make
