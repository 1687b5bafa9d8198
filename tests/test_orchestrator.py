import time
from datetime import timezone

import httpx

from sunrise.location import PositionSource
from sunrise.models import WeatherSample
from sunrise.orchestrator import UNSET_LABEL, OrchestratorState, SunriseAlarmOrchestrator, SunriseViews
from sunrise.scheduler import ALARM_NAME, request_code
from sunrise.state_store import AlarmStateStore
from sunrise.ui_loop import UiLoop
from sunrise.weather import NetworkError, WeatherClient

from conftest import FIX_TIME_MS, FakeButton, FakeText, ManualProvider, MemoryBackend, SpyScheduler

SUNRISE_CODE = request_code(ALARM_NAME)
# 2024-06-02T04:00Z, the 2024-06-01 sunrise shifted by one day
PARIS = WeatherSample(place_name="Paris", sunrise_ms=1717300800000)


def _drain_until(ui, predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        ui.run_pending()
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_cold_start_reaches_ready_with_shifted_sunrise_label(tmp_path):
    payload = {"name": "Paris", "sys": {"sunrise": 1717214400}}
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
    client = WeatherClient("key", clock=lambda: FIX_TIME_MS, client=httpx.Client(transport=transport))

    ui = UiLoop()
    provider = ManualProvider(ui)
    button, place = FakeButton(), FakeText()
    store = AlarmStateStore(tmp_path)
    orch = SunriseAlarmOrchestrator(
        ui=ui,
        position_source=PositionSource(provider, lambda: True),
        weather=client,
        scheduler=SpyScheduler(MemoryBackend()),
        store=store,
        views=SunriseViews(button, place, FakeText(), FakeText(), FakeText(), FakeText(), lambda msg: None),
        tz=timezone.utc,
    )
    orch.on_create()
    orch.on_permission_granted()
    provider.emit(48.85, 2.35)

    assert _drain_until(ui, lambda: orch.state is OrchestratorState.READY)
    assert place.text == "Paris"
    assert "2024/06/02 04:00" in button.label
    assert button.enabled
    assert store.load() is False
    assert not store.path.exists()


def test_states_advance_in_order(make_app):
    app = make_app(sample=PARIS)
    app.orchestrator.on_create()
    assert app.orchestrator.state is OrchestratorState.AWAITING_PERMISSION
    assert app.button.enabled is False

    app.orchestrator.on_permission_granted()
    assert app.orchestrator.state is OrchestratorState.AWAITING_FIX

    app.provider.emit(48.85, 2.35)
    app.ui.run_pending()
    assert app.orchestrator.state is OrchestratorState.READY
    assert app.button.label == "Wake me at sunrise (2024/06/02 04:00)"


def test_toggle_arms_at_sample_sunrise(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()

    assert app.orchestrator.toggle() is True

    assert app.scheduler.armed_with == [("Sunrise", 1717300800000)]
    assert app.backend.active == {SUNRISE_CODE: 1717300800000}
    assert app.store.load() is True
    assert app.button.label == UNSET_LABEL


def test_restart_shows_unset_label_before_weather(make_app):
    first = make_app(sample=PARIS)
    first.start()
    first.fix()
    first.orchestrator.toggle()

    second = make_app(sample=PARIS, backend=first.backend)
    second.orchestrator.on_create()

    assert second.orchestrator.armed is True
    assert second.button.label == UNSET_LABEL
    assert second.button.enabled is False
    assert second.weather.fetched == []


def test_second_toggle_disarms(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.orchestrator.toggle()

    assert app.orchestrator.toggle() is True

    assert app.scheduler.disarmed_with == ["Sunrise"]
    assert app.backend.active == {}
    assert app.store.load() is False
    assert app.button.label == "Wake me at sunrise (2024/06/02 04:00)"


def test_permission_denied_keeps_toggle_disabled(make_app):
    app = make_app(sample=PARIS, permission=False)
    app.start(granted=False)
    app.fix()

    assert app.orchestrator.permission_denied
    assert app.button.enabled is False
    assert app.provider.listeners == []
    assert app.weather.fetched == []
    assert app.backend.calls == []
    assert app.orchestrator.toggle() is False
    assert "Location permission denied" in app.advisories

    app.orchestrator.on_permission_granted()
    assert app.orchestrator.state is OrchestratorState.AWAITING_PERMISSION


def test_grant_without_os_permission_is_treated_as_denied(make_app):
    app = make_app(sample=PARIS, permission=False)
    app.start(granted=True)

    assert app.orchestrator.permission_denied
    assert app.provider.listeners == []


def test_only_first_fix_triggers_weather_fetch(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.provider.emit(48.85, 2.35)
    app.provider.emit(48.86, 2.36)
    app.provider.emit(48.87, 2.37)
    app.ui.run_pending()

    assert len(app.weather.fetched) == 1
    assert app.weather.fetched[0].latitude == 48.85
    assert app.orchestrator.ignored_fixes == 2


def test_fixes_after_ready_are_ignored(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.fix(latitude=10.0, longitude=10.0)

    assert len(app.weather.fetched) == 1
    assert app.orchestrator.position.latitude == 48.85


def test_toggle_before_ready_does_nothing(make_app):
    app = make_app(sample=PARIS)
    app.start()

    assert app.orchestrator.toggle() is False
    assert app.backend.calls == []


def test_scheduler_failure_on_arm_leaves_store_untouched(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    label_before = app.button.label
    app.backend.fail_set = True

    assert app.orchestrator.toggle() is False

    assert app.store.load() is False
    assert app.orchestrator.armed is False
    assert app.button.label == label_before
    assert "Could not set the alarm" in app.advisories


def test_scheduler_failure_on_disarm_keeps_alarm(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.orchestrator.toggle()
    app.backend.fail_cancel = True

    assert app.orchestrator.toggle() is False

    assert app.store.load() is True
    assert SUNRISE_CODE in app.backend.active
    assert app.button.label == UNSET_LABEL


def test_store_failure_on_arm_rolls_back_registration(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.store.fail_writes = True

    assert app.orchestrator.toggle() is False

    assert app.backend.active == {}
    assert app.orchestrator.armed is False
    assert app.store.load() is False


def test_store_failure_on_disarm_rearms(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.orchestrator.toggle()
    app.store.fail_writes = True

    assert app.orchestrator.toggle() is False

    assert app.backend.active == {SUNRISE_CODE: PARIS.sunrise_ms}
    assert app.orchestrator.armed is True
    assert app.store.load() is True


def test_armed_flag_matches_registration_across_toggles_and_restarts(make_app):
    backend = MemoryBackend()
    app = make_app(sample=PARIS, backend=backend)
    app.start()
    app.fix()

    for step in range(7):
        if step % 3 == 2:
            app = make_app(sample=PARIS, backend=backend)
            app.start()
            app.fix()
        else:
            app.orchestrator.toggle()
        assert app.store.load() == (SUNRISE_CODE in backend.active)
        assert app.orchestrator.armed == app.store.load()


def test_weather_failure_stalls_until_retry(make_app):
    app = make_app(error=NetworkError("connection refused"))
    app.start()
    app.fix()

    assert app.orchestrator.state is OrchestratorState.AWAITING_SUNRISE
    assert isinstance(app.orchestrator.last_weather_error, NetworkError)
    assert app.button.enabled is False
    assert app.orchestrator.toggle() is False

    app.weather.error = None
    app.weather.sample = PARIS
    assert app.orchestrator.retry_weather() is True
    app.ui.run_pending()

    assert app.orchestrator.state is OrchestratorState.READY
    assert len(app.weather.fetched) == 2
    assert app.place.text == "Paris"


def test_retry_refused_without_prior_failure(make_app):
    app = make_app(sample=PARIS)
    app.start()
    assert app.orchestrator.retry_weather() is False
    app.fix()
    assert app.orchestrator.retry_weather() is False
    assert len(app.weather.fetched) == 1


def test_fired_alarm_clears_armed_flag(make_app):
    app = make_app(sample=PARIS)
    app.start()
    app.fix()
    app.orchestrator.toggle()
    app.backend.active.clear()

    app.orchestrator.on_alarm_fired()

    assert app.store.load() is False
    assert app.orchestrator.armed is False
    assert app.button.label.startswith("Wake me at sunrise")


def test_unexpected_weather_failure_can_be_retried(make_app):
    app = make_app(error=ValueError("year 33658 is out of range"))
    app.start()
    app.fix()

    assert app.orchestrator.state is OrchestratorState.AWAITING_SUNRISE
    assert app.orchestrator.last_weather_error is not None

    app.weather.error = None
    app.weather.sample = PARIS
    assert app.orchestrator.retry_weather() is True
    app.ui.run_pending()

    assert app.orchestrator.state is OrchestratorState.READY
    assert app.button.enabled
