from config import load_config
from sunrise.backend import load_registrations
from sunrise.scheduler import ALARM_NAME, request_code
from time_utils import format_label_time, resolve_timezone


def main():
    cfg = load_config(require_api_key=False)
    tz = resolve_timezone(cfg.timezone_name)
    registrations = load_registrations(cfg.alarm_registry_path)
    if not registrations:
        print(f"No alarms registered in {cfg.alarm_registry_path}")
        return
    sunrise_code = request_code(ALARM_NAME)
    for r in registrations:
        marker = "*" if r.request_code == sunrise_code else " "
        idle = "idle-ok" if r.allow_while_idle else "exact"
        print(f"{marker} {r.request_code:>12} {r.label:<10} {format_label_time(r.trigger_at_ms, tz)} ({idle})")


if __name__ == "__main__":
    main()
