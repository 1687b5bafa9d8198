import logging
import signal
from threading import Event, Thread

from config import Config, load_config, setup_logging
from sunrise.backend import LocalAlarmBackend, Registration
from sunrise.location import FixedLocationProvider, IpGeolocationProvider, PositionSource
from sunrise.orchestrator import SunriseAlarmOrchestrator, SunriseViews
from sunrise.scheduler import AlarmScheduler
from sunrise.state_store import AlarmStateStore
from sunrise.ui_loop import UiLoop
from sunrise.weather import WeatherClient
from time_utils import resolve_timezone

logger = logging.getLogger("rooster")

HELP_TEXT = "Commands: [t]oggle alarm, [r]etry sunrise lookup, [s]tatus, [q]uit"


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


class ConsoleButton:
    def __init__(self) -> None:
        self.label = ""
        self.enabled = False

    def set_label(self, text: str) -> None:
        self.label = text
        print(f"[button] {text}")

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.debug("Button enabled=%s", enabled)


class ConsoleText:
    def __init__(self, name: str) -> None:
        self.name = name
        self.text = ""

    def set_text(self, text: str) -> None:
        self.text = text
        print(f"[{self.name}] {text}")


def console_advisory(message: str) -> None:
    print(f"(!) {message}")


class RoosterRuntime:
    def __init__(self, config: Config):
        self.config = config
        self.stop_event = Event()
        self.ui = UiLoop()
        self.tzinfo = resolve_timezone(config.timezone_name)
        self.permission_granted = False

        self.button = ConsoleButton()
        self.views = SunriseViews(
            button=self.button,
            place=ConsoleText("place"),
            altitude=ConsoleText("altitude"),
            latitude=ConsoleText("latitude"),
            longitude=ConsoleText("longitude"),
            observed_at=ConsoleText("time"),
            advisory=console_advisory,
        )

        self.backend = LocalAlarmBackend(
            registry_path=config.alarm_registry_path,
            check_interval=max(0.2, config.alarm_check_interval_ms / 1000.0),
            supports_idle_wakeups=config.alarm_supports_idle,
            on_fire=self._on_alarm_fired,
        )
        self.weather = WeatherClient(
            api_key=config.openweather_api_key,
            base_url=config.openweather_url,
            units=config.openweather_units,
            timeout=config.http_timeout_s,
        )
        self.provider = self._build_provider()
        self.orchestrator = SunriseAlarmOrchestrator(
            ui=self.ui,
            position_source=PositionSource(self.provider, lambda: self.permission_granted),
            weather=self.weather,
            scheduler=AlarmScheduler(self.backend),
            store=AlarmStateStore(config.state_dir, config.app_id),
            views=self.views,
            tz=self.tzinfo,
        )
        self.input_thread: Thread | None = None

    def _build_provider(self):
        if self.config.has_fixed_location:
            logger.info(
                "Using fixed location lat=%s lon=%s",
                self.config.location_latitude,
                self.config.location_longitude,
            )
            return FixedLocationProvider(
                self.ui,
                latitude=self.config.location_latitude,
                longitude=self.config.location_longitude,
                altitude=self.config.location_altitude,
            )
        logger.info("No fixed location configured, using IP geolocation (%s)", self.config.ip_geolocation_url)
        return IpGeolocationProvider(self.ui, url=self.config.ip_geolocation_url, timeout=self.config.http_timeout_s)

    def start(self) -> None:
        self.backend.start()
        self.orchestrator.on_create()
        self.input_thread = Thread(target=self._input_loop, name="console-input", daemon=True)
        self.input_thread.start()

    def run(self) -> None:
        self.ui.run(self.stop_event)

    def shutdown(self) -> None:
        self.stop_event.set()
        self.backend.shutdown()
        self.weather.close()
        if isinstance(self.provider, IpGeolocationProvider):
            self.provider.close()

    def _ask_permission(self) -> bool:
        mode = self.config.location_permission
        if mode != "ask":
            return mode == "granted"
        answer = input("Allow Rooster to access your location? [y/N] ")
        return answer.strip().lower() in {"y", "yes"}

    def _on_permission(self, granted: bool) -> None:
        self.permission_granted = granted
        self.orchestrator.on_permission_result(granted)

    def _input_loop(self) -> None:
        try:
            self.ui.post(self._on_permission, self._ask_permission())
            print(HELP_TEXT)
            while not self.stop_event.is_set():
                command = input().strip().lower()
                if command in {"t", "toggle"}:
                    self.ui.post(self.orchestrator.toggle)
                elif command in {"r", "retry"}:
                    self.ui.post(self.orchestrator.retry_weather)
                elif command in {"s", "status"}:
                    self.ui.post(self._print_status)
                elif command in {"q", "quit", "exit"}:
                    break
                elif command:
                    print(HELP_TEXT)
        except EOFError:
            logger.info("Console input closed")
        self.stop_event.set()

    def _print_status(self) -> None:
        orch = self.orchestrator
        print(f"state={orch.state.value} armed={orch.armed} button={self.button.label!r}")
        for registration in self.backend.registrations():
            print(f"  registration {registration.request_code} ({registration.label}) @ {registration.trigger_at_ms}")

    def _on_alarm_fired(self, registration: Registration) -> None:
        print(f"\a*** {registration.label}! Time to get up. ***")
        self.ui.post(self.orchestrator.on_alarm_fired)


def main() -> None:
    config = load_config()
    setup_logging(config.log_level, config.log_dir)
    logger.info("Starting Rooster")
    signal.signal(signal.SIGINT, graceful_exit)

    runtime = RoosterRuntime(config)
    runtime.start()
    try:
        runtime.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
