import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PERMISSION_MODES = ("ask", "granted", "denied")


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in {"1", "true", "True", "yes", "YES", "y"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _get_env_optional_float(name: str) -> Optional[float]:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return None
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


@dataclass
class Config:
    openweather_api_key: str
    openweather_url: str
    openweather_units: str
    http_timeout_s: float
    app_id: str
    state_dir: Path
    alarm_registry_path: Path
    alarm_check_interval_ms: int
    alarm_supports_idle: bool
    timezone_name: Optional[str]
    location_latitude: Optional[float]
    location_longitude: Optional[float]
    location_altitude: float
    location_permission: str
    ip_geolocation_url: str
    log_level: str
    log_dir: Path

    @property
    def has_fixed_location(self) -> bool:
        return self.location_latitude is not None and self.location_longitude is not None


def load_config(env_path: Optional[Path] = None, require_api_key: bool = True) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    openweather_api_key = os.getenv("OPENWEATHER_API_KEY") or ""
    if require_api_key and not openweather_api_key:
        raise ValueError("OPENWEATHER_API_KEY is required in .env")

    openweather_url = os.getenv("OPENWEATHER_URL", "https://api.openweathermap.org/data/2.5/weather")
    openweather_units = os.getenv("OPENWEATHER_UNITS", "metric")
    http_timeout_s = _get_env_float("HTTP_TIMEOUT_S", 10.0)
    app_id = os.getenv("APP_ID", "com.rooster.rooster")
    state_dir = Path(os.getenv("STATE_DIR", "data"))
    alarm_registry_path = Path(os.getenv("ALARM_REGISTRY_PATH", "data/registrations.json"))
    alarm_check_interval_ms = _get_env_int("ALARM_CHECK_INTERVAL_MS", 800)
    alarm_supports_idle = _get_env_bool("ALARM_SUPPORTS_IDLE", True)
    timezone_name = os.getenv("TIMEZONE") or None

    location_latitude = _get_env_optional_float("LOCATION_LATITUDE")
    location_longitude = _get_env_optional_float("LOCATION_LONGITUDE")
    location_altitude = _get_env_float("LOCATION_ALTITUDE", 0.0)
    if (location_latitude is None) != (location_longitude is None):
        logging.warning("LOCATION_LATITUDE and LOCATION_LONGITUDE must be set together; ignoring both")
        location_latitude = location_longitude = None

    location_permission = os.getenv("LOCATION_PERMISSION", "ask").strip().lower()
    if location_permission not in PERMISSION_MODES:
        raise ValueError(f"LOCATION_PERMISSION must be one of {', '.join(PERMISSION_MODES)}")
    ip_geolocation_url = os.getenv("IP_GEOLOCATION_URL", "http://ip-api.com/json")

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "logs"))

    return Config(
        openweather_api_key=openweather_api_key,
        openweather_url=openweather_url,
        openweather_units=openweather_units,
        http_timeout_s=http_timeout_s,
        app_id=app_id,
        state_dir=state_dir,
        alarm_registry_path=alarm_registry_path,
        alarm_check_interval_ms=alarm_check_interval_ms,
        alarm_supports_idle=alarm_supports_idle,
        timezone_name=timezone_name,
        location_latitude=location_latitude,
        location_longitude=location_longitude,
        location_altitude=location_altitude,
        location_permission=location_permission,
        ip_geolocation_url=ip_geolocation_url,
        log_level=log_level,
        log_dir=log_dir,
    )


def setup_logging(log_level: str = "INFO", log_dir: Path = Path("logs")) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)

    log_path = log_dir / "rooster.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
    # httpx logs request URLs, which carry the API key
    logging.getLogger("httpx").setLevel(logging.WARNING)
