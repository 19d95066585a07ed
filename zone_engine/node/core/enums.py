from enum import Enum


# Provenance of a zone run
class RunSource(str, Enum):
    MANUAL = "manual"                       # Direct user action
    SCHEDULE = "schedule"                   # Triggered by the ScheduleTrigger


# Run-time state of a zone
class ZoneState(str, Enum):
    IDLE = "idle"                           # Relay off, zone ready
    ACTIVE = "active"                       # Relay on, zone watering


class RelayMode(str, Enum):
    SIMULATED = "mock"                      # In-memory relays, development and tests
    GPIO = "gpio"                           # Direct I/O pins on the controller board
    HTTP = "http"                           # Remote relay controller reached over HTTP


class ErrorKind(str, Enum):
    """Category of a failed control operation, lets callers react differently."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    POLICY = "policy"
    HARDWARE = "hardware"


class EventType(str, Enum):
    ZONE_STARTED = "zone_started"
    ZONE_STOPPED = "zone_stopped"
    RAIN_DELAY_CHANGED = "rain_delay_changed"
    LOG_UPDATED = "log_updated"
    SCHEDULE_TRIGGERED = "schedule_triggered"


DEFAULT_RUN_DURATION_SEC = 600
SECONDS_IN_MINUTE = 60
