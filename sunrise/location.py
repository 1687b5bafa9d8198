from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Thread
from typing import Callable, Optional, Protocol

import httpx

from .models import Position
from .ui_loop import UiLoop

logger = logging.getLogger(__name__)

# (altitude, latitude, longitude)
LocationListener = Callable[[float, float, float], None]


class PermissionDenied(Exception):
    """Location access has not been granted."""


class LocationProvider(Protocol):
    def subscribe(self, listener: LocationListener) -> None:
        """Deliver every location update to ``listener`` on the UI thread."""


class PositionSource:
    def __init__(
        self,
        provider: LocationProvider,
        has_permission: Callable[[], bool],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.provider = provider
        self.has_permission = has_permission
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def request_fix(self, callback: Callable[[Position], None]) -> None:
        """Subscribe ``callback`` to fixes from the provider.

        The provider may keep delivering updates; filtering to the first one
        is left to the caller.
        """
        if not self.has_permission():
            raise PermissionDenied("Location permission not granted")

        def _on_update(altitude: float, latitude: float, longitude: float) -> None:
            try:
                position = Position(
                    altitude=float(altitude),
                    latitude=float(latitude),
                    longitude=float(longitude),
                    observed_at=self.clock(),
                )
            except (TypeError, ValueError) as exc:
                logger.warning("Discarding invalid location update: %s", exc)
                return
            callback(position)

        self.provider.subscribe(_on_update)
        logger.info("Subscribed to location updates (%s)", type(self.provider).__name__)


class FixedLocationProvider:
    """Reports one configured fix, e.g. for a desktop without a location service."""

    def __init__(self, ui: UiLoop, latitude: float, longitude: float, altitude: float = 0.0):
        self.ui = ui
        self.latitude = latitude
        self.longitude = longitude
        self.altitude = altitude

    def subscribe(self, listener: LocationListener) -> None:
        self.ui.post(listener, self.altitude, self.latitude, self.longitude)


class IpGeolocationProvider:
    """Approximate fix from the public IP address, looked up off the UI thread."""

    def __init__(
        self,
        ui: UiLoop,
        url: str = "http://ip-api.com/json",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.ui = ui
        self.url = url
        self.timeout = timeout
        self._owns_client = client is None
        self._http = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def subscribe(self, listener: LocationListener) -> Thread:
        worker = Thread(target=self._lookup, args=(listener,), name="ip-geolocation", daemon=True)
        worker.start()
        return worker

    def _lookup(self, listener: LocationListener) -> None:
        try:
            resp = self._http.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
            latitude = float(data["lat"])
            longitude = float(data["lon"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            # No fix means no callback; the caller stays waiting.
            logger.error("IP geolocation lookup failed: %s", exc)
            return
        logger.info("IP geolocation resolved to lat=%.4f lon=%.4f", latitude, longitude)
        self.ui.post(listener, 0.0, latitude, longitude)
