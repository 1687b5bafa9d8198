from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from time_utils import format_label_time

from .location import PermissionDenied, PositionSource
from .models import Position, WeatherSample
from .scheduler import ALARM_NAME, AlarmScheduler, SchedulerRejected
from .state_store import AlarmStateStore, StoreWriteFailed
from .ui_loop import UiLoop
from .weather import WeatherError, WeatherOutcome

logger = logging.getLogger(__name__)

SET_LABEL_TEMPLATE = "Wake me at sunrise ({when})"
UNSET_LABEL = "Tap to unset the alarm"


class LabelSink(Protocol):
    def set_label(self, text: str) -> None:
        ...

    def set_enabled(self, enabled: bool) -> None:
        ...


class TextSink(Protocol):
    def set_text(self, text: str) -> None:
        ...


class SunriseSource(Protocol):
    def fetch_in_background(
        self,
        position: Position,
        ui: UiLoop,
        on_result: Callable[[WeatherOutcome], None],
    ) -> Any:
        ...


@dataclass
class SunriseViews:
    button: LabelSink
    place: TextSink
    altitude: TextSink
    latitude: TextSink
    longitude: TextSink
    observed_at: TextSink
    advisory: Callable[[str], None]


class OrchestratorState(Enum):
    AWAITING_PERMISSION = "awaiting_permission"
    AWAITING_FIX = "awaiting_fix"
    AWAITING_SUNRISE = "awaiting_sunrise"
    READY = "ready"


class SunriseAlarmOrchestrator:
    """Drives the single sunrise toggle.

    Keeps the stored armed flag equal to whether the backend holds a
    registration for ``ALARM_NAME``. All methods run on the UI loop thread.
    """

    def __init__(
        self,
        ui: UiLoop,
        position_source: PositionSource,
        weather: SunriseSource,
        scheduler: AlarmScheduler,
        store: AlarmStateStore,
        views: SunriseViews,
        tz: Optional[tzinfo] = None,
    ):
        self.ui = ui
        self.position_source = position_source
        self.weather = weather
        self.scheduler = scheduler
        self.store = store
        self.views = views
        self.tz = tz

        self.state = OrchestratorState.AWAITING_PERMISSION
        self.armed = False
        self.permission_denied = False
        self.position: Optional[Position] = None
        self.sample: Optional[WeatherSample] = None
        self.last_weather_error: Optional[WeatherError] = None
        self.ignored_fixes = 0
        self._fetch_in_flight = False

    # lifecycle

    def on_create(self) -> None:
        self.armed = self.store.load()
        logger.info("Loaded armed=%s", self.armed)
        self.views.button.set_enabled(False)
        if self.armed:
            self.views.button.set_label(UNSET_LABEL)

    def on_permission_result(self, granted: bool) -> None:
        if self.state is not OrchestratorState.AWAITING_PERMISSION or self.permission_denied:
            logger.debug("Ignoring permission result in state %s", self.state.value)
            return
        if not granted:
            self._deny_permission()
            return
        try:
            self.position_source.request_fix(self._on_position)
        except PermissionDenied as exc:
            logger.warning("Location subscription refused: %s", exc)
            self._deny_permission()
            return
        self.views.advisory("Location permission granted")
        self._set_state(OrchestratorState.AWAITING_FIX)

    def on_permission_granted(self) -> None:
        self.on_permission_result(True)

    def on_permission_denied(self) -> None:
        self.on_permission_result(False)

    def _deny_permission(self) -> None:
        self.permission_denied = True
        self.views.button.set_enabled(False)
        self.views.advisory("Location permission denied")
        logger.warning("Location permission denied; sunrise alarm unavailable")

    # asynchronous arrivals

    def _on_position(self, position: Position) -> None:
        if self.position is not None:
            self.ignored_fixes += 1
            logger.debug("Ignoring location update #%s", self.ignored_fixes + 1)
            return
        self.position = position
        self.views.altitude.set_text(str(position.altitude))
        self.views.latitude.set_text(str(position.latitude))
        self.views.longitude.set_text(str(position.longitude))
        self.views.observed_at.set_text(position.observed_at.isoformat())
        self._set_state(OrchestratorState.AWAITING_SUNRISE)
        self._request_weather()

    def _request_weather(self) -> None:
        self._fetch_in_flight = True
        self.weather.fetch_in_background(self.position, self.ui, self._on_weather_outcome)

    def _on_weather_outcome(self, outcome: WeatherOutcome) -> None:
        self._fetch_in_flight = False
        if outcome.error is not None or outcome.sample is None:
            self.last_weather_error = outcome.error
            logger.error("Sunrise lookup failed: %s", outcome.error)
            self.views.advisory("Could not get the sunrise time")
            return
        self._on_weather(outcome.sample)

    def _on_weather(self, sample: WeatherSample) -> None:
        self.sample = sample
        self.last_weather_error = None
        self.armed = self.store.load()
        self.views.place.set_text(sample.place_name)
        self._set_state(OrchestratorState.READY)
        self._render_button()

    def retry_weather(self) -> bool:
        """Re-issue the sunrise lookup after a failed one. Returns True if a fetch started."""
        if (
            self.state is not OrchestratorState.AWAITING_SUNRISE
            or self.last_weather_error is None
            or self._fetch_in_flight
        ):
            return False
        logger.info("Retrying sunrise lookup after %s", type(self.last_weather_error).__name__)
        self.last_weather_error = None
        self._request_weather()
        return True

    def on_alarm_fired(self) -> None:
        """The one-shot registration is gone once it fires; clear the flag to match."""
        try:
            self.store.store(False)
        except StoreWriteFailed as exc:
            logger.error("Could not clear armed flag after firing: %s", exc)
            return
        self.armed = False
        if self.state is OrchestratorState.READY:
            self._render_button()

    # user action

    def toggle(self) -> bool:
        """Flip the alarm. Returns True when the armed state changed."""
        if self.state is not OrchestratorState.READY or self.sample is None:
            logger.debug("Toggle ignored in state %s", self.state.value)
            return False
        if self.armed:
            changed = self._disarm()
        else:
            changed = self._arm()
        if changed:
            self._render_button()
        return changed

    def _arm(self) -> bool:
        sunrise_ms = self.sample.sunrise_ms
        try:
            self.scheduler.arm(ALARM_NAME, sunrise_ms)
        except SchedulerRejected as exc:
            logger.error("Arm failed: %s", exc)
            self.views.advisory("Could not set the alarm")
            return False
        try:
            self.store.store(True)
        except StoreWriteFailed as exc:
            logger.error("Arm not persisted, rolling back: %s", exc)
            self._rollback(lambda: self.scheduler.disarm(ALARM_NAME))
            self.views.advisory("Could not save the alarm")
            return False
        self.armed = True
        self.views.advisory(f"The alarm has been set to {self.label_time()}")
        return True

    def _disarm(self) -> bool:
        try:
            self.scheduler.disarm(ALARM_NAME)
        except SchedulerRejected as exc:
            logger.error("Disarm failed: %s", exc)
            self.views.advisory("Could not cancel the alarm")
            return False
        try:
            self.store.store(False)
        except StoreWriteFailed as exc:
            logger.error("Disarm not persisted, rolling back: %s", exc)
            self._rollback(lambda: self.scheduler.arm(ALARM_NAME, self.sample.sunrise_ms))
            self.views.advisory("Could not save the alarm")
            return False
        self.armed = False
        self.views.advisory(f"{ALARM_NAME} alarm has been canceled")
        return True

    def _rollback(self, undo: Callable[[], None]) -> None:
        try:
            undo()
        except SchedulerRejected:
            logger.critical("Rollback failed; stored flag and alarm backend disagree", exc_info=True)

    # rendering

    def label_time(self) -> str:
        if self.sample is None:
            return ""
        return format_label_time(self.sample.sunrise_ms, self.tz)

    def button_label(self) -> str:
        if self.armed:
            return UNSET_LABEL
        return SET_LABEL_TEMPLATE.format(when=self.label_time())

    def _render_button(self) -> None:
        self.views.button.set_label(self.button_label())
        self.views.button.set_enabled(True)

    def _set_state(self, state: OrchestratorState) -> None:
        if self.state != state:
            logger.info("State -> %s", state.value)
        self.state = state
