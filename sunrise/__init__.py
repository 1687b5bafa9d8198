"""Sunrise alarm subsystem for Rooster."""

from .orchestrator import OrchestratorState, SunriseAlarmOrchestrator, SunriseViews
from .scheduler import ALARM_NAME, AlarmScheduler, request_code
from .state_store import AlarmStateStore
from .weather import WeatherClient
