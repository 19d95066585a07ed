from dataclasses import dataclass, field
from enum import Enum

from zone_engine.node.core.enums import RelayMode


DEFAULT_GPIO_PIN_MAP = {1: 17, 2: 18, 3: 27, 4: 22}
DEFAULT_ZONE_COUNT = 4


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ZoneSettings:
    id: int
    name: str


@dataclass
class RelaySettings:
    mode: RelayMode = RelayMode.SIMULATED
    gpio_pin_map: dict[int, int] = field(default_factory=lambda: dict(DEFAULT_GPIO_PIN_MAP))
    gpio_active_high: bool = True
    http_base_url: str = "http://localhost:8080"
    http_timeout_sec: float = 5.0


@dataclass
class PersistenceSettings:
    state_file: str = "runtime/node/data/zone_state.json"
    run_log_file: str = "runtime/node/data/run_logs.json"
    max_log_entries: int = 200


@dataclass
class SchedulerSettings:
    enabled: bool = True
    check_interval_sec: int = 60
    expiry_poll_interval_sec: int = 5
    default_duration_sec: int = 600


@dataclass
class LoggingSettings:
    log_dir: str | None = None
    log_level: LogLevel = LogLevel.DEBUG
    console_level: LogLevel = LogLevel.WARNING


def default_zones() -> list[ZoneSettings]:
    return [ZoneSettings(id=i, name=f"Zone {i}") for i in range(1, DEFAULT_ZONE_COUNT + 1)]


@dataclass
class EngineConfig:
    """
    A class to hold the configuration of the whole zone engine.
    """
    zones: list[ZoneSettings] = field(default_factory=default_zones)
    relay: RelaySettings = field(default_factory=RelaySettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @staticmethod
    def from_dict(data: dict) -> 'EngineConfig':
        """
        Creates an EngineConfig instance from a dictionary. Missing sections fall back to defaults.
        """
        relay = data.get("relay", {})
        persistence = data.get("persistence", {})
        scheduler = data.get("scheduler", {})
        logging_data = data.get("logging", {})

        zones = [
            ZoneSettings(id=int(zone["id"]), name=str(zone.get("name", f"Zone {zone['id']}")))
            for zone in data.get("zones", [])
        ] or default_zones()

        pin_map = relay.get("gpio_pin_map")
        defaults = RelaySettings()

        return EngineConfig(
            zones=zones,
            relay=RelaySettings(
                mode=RelayMode(relay.get("mode", defaults.mode.value)),
                gpio_pin_map={int(k): int(v) for k, v in pin_map.items()} if pin_map else defaults.gpio_pin_map,
                gpio_active_high=bool(relay.get("gpio_active_high", defaults.gpio_active_high)),
                http_base_url=str(relay.get("http_base_url", defaults.http_base_url)),
                http_timeout_sec=float(relay.get("http_timeout_sec", defaults.http_timeout_sec)),
            ),
            persistence=PersistenceSettings(
                state_file=persistence.get("state_file", PersistenceSettings.state_file),
                run_log_file=persistence.get("run_log_file", PersistenceSettings.run_log_file),
                max_log_entries=int(persistence.get("max_log_entries", PersistenceSettings.max_log_entries)),
            ),
            scheduler=SchedulerSettings(
                enabled=bool(scheduler.get("enabled", SchedulerSettings.enabled)),
                check_interval_sec=int(scheduler.get("check_interval_sec", SchedulerSettings.check_interval_sec)),
                expiry_poll_interval_sec=int(scheduler.get("expiry_poll_interval_sec", SchedulerSettings.expiry_poll_interval_sec)),
                default_duration_sec=int(scheduler.get("default_duration_sec", SchedulerSettings.default_duration_sec)),
            ),
            logging=LoggingSettings(
                log_dir=logging_data.get("log_dir"),
                log_level=LogLevel(logging_data.get("log_level", LogLevel.DEBUG.value)),
                console_level=LogLevel(logging_data.get("console_level", LogLevel.WARNING.value)),
            ),
        )
