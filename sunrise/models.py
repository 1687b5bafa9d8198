from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional

from time_utils import ms_to_datetime


@dataclass(frozen=True)
class Position:
    altitude: float
    latitude: float
    longitude: float
    observed_at: datetime

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class WeatherSample:
    place_name: str
    sunrise_ms: int

    def sunrise_at(self, tz: Optional[tzinfo] = None) -> datetime:
        return ms_to_datetime(self.sunrise_ms, tz)
