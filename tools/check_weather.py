import argparse
from datetime import datetime, timezone

from config import load_config, setup_logging
from sunrise.models import Position
from sunrise.weather import WeatherClient, WeatherError
from time_utils import format_label_time, resolve_timezone


def main():
    parser = argparse.ArgumentParser(description="Fetch the next sunrise for a location")
    parser.add_argument("latitude", type=float)
    parser.add_argument("longitude", type=float)
    args = parser.parse_args()

    cfg = load_config()
    setup_logging("INFO", cfg.log_dir)
    client = WeatherClient(
        api_key=cfg.openweather_api_key,
        base_url=cfg.openweather_url,
        units=cfg.openweather_units,
        timeout=cfg.http_timeout_s,
    )
    position = Position(0.0, args.latitude, args.longitude, datetime.now(timezone.utc))
    try:
        sample = client.fetch(position)
    except WeatherError as exc:
        print(f"Lookup failed: {exc}")
        return
    finally:
        client.close()

    tz = resolve_timezone(cfg.timezone_name)
    print(f"{sample.place_name}: next sunrise {format_label_time(sample.sunrise_ms, tz)} ({sample.sunrise_ms} ms)")


if __name__ == "__main__":
    main()
