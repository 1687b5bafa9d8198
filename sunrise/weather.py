from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Thread
from typing import Any, Callable, Optional, Tuple

import httpx

from time_utils import DAY_MS, format_label_time, now_ms

from .models import Position, WeatherSample
from .ui_loop import UiLoop

logger = logging.getLogger(__name__)

DEFAULT_WEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
# 9999-12-31T23:59:59Z, the last instant a datetime can hold
MAX_SUNRISE_S = 253_402_300_799


class WeatherError(Exception):
    """Base class for failures fetching the sunrise time."""


class NetworkError(WeatherError):
    """Connection or read failure."""


class BadResponse(WeatherError):
    """Malformed JSON or missing fields."""


class ServiceError(WeatherError):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class WeatherOutcome:
    sample: Optional[WeatherSample] = None
    error: Optional[WeatherError] = None

    @property
    def ok(self) -> bool:
        return self.sample is not None


def apply_future_shift(sunrise_ms: int, now: int) -> int:
    """Move a sunrise that is not in the future forward by exactly one day."""
    if sunrise_ms > now:
        return sunrise_ms
    shifted = sunrise_ms + DAY_MS
    if shifted <= now:
        logger.warning("Reported sunrise %s is more than a day old", sunrise_ms)
    return shifted


def parse_weather_payload(payload: Any) -> Tuple[str, int]:
    """Return ``(place_name, sunrise_seconds)`` from a current-weather document."""
    if not isinstance(payload, dict):
        raise BadResponse("Weather payload is not a JSON object")
    name = payload.get("name")
    if not isinstance(name, str):
        raise BadResponse("Weather payload missing name")
    sys_block = payload.get("sys")
    if not isinstance(sys_block, dict):
        raise BadResponse("Weather payload missing sys block")
    sunrise = sys_block.get("sunrise")
    if isinstance(sunrise, bool) or not isinstance(sunrise, int):
        raise BadResponse("Weather payload missing sys.sunrise")
    if not 0 <= sunrise <= MAX_SUNRISE_S:
        raise BadResponse(f"Weather payload sys.sunrise out of range: {sunrise}")
    return name, sunrise


def run_fetch(fetch: Callable[[Position], WeatherSample], position: Position) -> WeatherOutcome:
    try:
        return WeatherOutcome(sample=fetch(position))
    except WeatherError as exc:
        return WeatherOutcome(error=exc)
    except Exception as exc:
        logger.error("Unexpected failure fetching sunrise", exc_info=True)
        return WeatherOutcome(error=BadResponse(f"Unexpected failure: {exc}"))


class WeatherClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_WEATHER_URL,
        units: str = "metric",
        timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.units = units
        self.timeout = timeout
        self.clock = clock
        self._owns_client = client is None
        self._http = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def build_params(self, position: Position) -> dict:
        return {
            "lat": position.latitude,
            "lon": position.longitude,
            "appid": self.api_key,
            "units": self.units,
        }

    def fetch(self, position: Position) -> WeatherSample:
        """Query the service once and return the next sunrise at ``position``.

        Raises:
            NetworkError: the request could not be sent or the body not read.
            ServiceError: the service answered with a non-2xx status.
            BadResponse: the body cannot be decoded, is not JSON, or lacks a
                usable ``name``/``sys.sunrise``.
        """
        try:
            resp = self._http.get(self.base_url, params=self.build_params(position), timeout=self.timeout)
        except httpx.DecodingError as exc:
            raise BadResponse(f"Weather response body could not be decoded: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Weather request failed: {exc}") from exc

        if not resp.is_success:
            raise ServiceError(f"Weather service returned HTTP {resp.status_code}", resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise BadResponse(f"Weather response is not valid JSON: {exc}") from exc

        place_name, sunrise_s = parse_weather_payload(payload)
        reported_ms = sunrise_s * 1000
        sunrise_ms = apply_future_shift(reported_ms, self.clock())
        if sunrise_ms != reported_ms:
            logger.info("Reported sunrise already passed, shifted by 24h")
        logger.info("Sunrise at %s UTC for %s", format_label_time(sunrise_ms), place_name)
        return WeatherSample(place_name=place_name, sunrise_ms=sunrise_ms)

    def fetch_in_background(
        self,
        position: Position,
        ui: UiLoop,
        on_result: Callable[[WeatherOutcome], None],
    ) -> Thread:
        """Run ``fetch`` on a worker and hand the outcome to ``on_result`` on the UI loop."""

        def _work() -> None:
            ui.post(on_result, run_fetch(self.fetch, position))

        worker = Thread(target=_work, name="weather-fetch", daemon=True)
        worker.start()
        return worker
