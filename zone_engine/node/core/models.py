"""
Data models of the zone engine.

These dataclasses separate:
- persistent records kept in the state snapshot (`Zone`, `RainDelay`, `Schedule`, `ActiveRun`, `LastRun`)
- immutable history records kept by `RunLogger` (`RunLogEntry`)
- transient values returned to callers (`ControlResult`, `EngineStatus`, `EngineEvent`)
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import zone_engine.node.utils.time_utils as time_utils
from zone_engine.node.core.enums import RunSource, ErrorKind, EventType, ZoneState
from zone_engine.node.exceptions import ScheduleValidationError


START_TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


# ========================================
# Zone & rain delay (state snapshot)
# ========================================

@dataclass
class Zone:
    """One physical irrigation circuit controlled by one relay output."""
    id: int
    name: str
    is_active: bool = False
    end_time: Optional[datetime] = None

    @property
    def state(self) -> ZoneState:
        return ZoneState.ACTIVE if self.is_active else ZoneState.IDLE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "end_time": time_utils.to_iso(self.end_time),
        }

    @staticmethod
    def from_dict(data: dict) -> "Zone":
        return Zone(
            id=int(data["id"]),
            name=str(data["name"]),
            is_active=bool(data.get("is_active", False)),
            end_time=time_utils.from_iso(data.get("end_time")),
        )


@dataclass
class RainDelay:
    """Global suppression of zone starts until expires_at."""
    is_active: bool = False
    expires_at: Optional[datetime] = None
    hours_remaining: int = 0

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "expires_at": time_utils.to_iso(self.expires_at),
            "hours_remaining": self.hours_remaining,
        }

    @staticmethod
    def from_dict(data: dict) -> "RainDelay":
        return RainDelay(
            is_active=bool(data.get("is_active", False)),
            expires_at=time_utils.from_iso(data.get("expires_at")),
            hours_remaining=int(data.get("hours_remaining") or 0),
        )


@dataclass
class ActiveRun:
    """Start bookkeeping of a running zone, needed to log the real duration and source at stop time."""
    zone_id: int
    start_time: datetime
    source: RunSource

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "start_time": time_utils.to_iso(self.start_time),
            "source": self.source.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "ActiveRun":
        return ActiveRun(
            zone_id=int(data["zone_id"]),
            start_time=time_utils.from_iso(data["start_time"]),
            source=RunSource(data["source"]),
        )


@dataclass
class LastRun:
    zone_id: int
    zone_name: str
    started_at: datetime
    duration_sec: int

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "started_at": time_utils.to_iso(self.started_at),
            "duration_sec": self.duration_sec,
        }

    @staticmethod
    def from_dict(data: dict) -> "LastRun":
        return LastRun(
            zone_id=int(data["zone_id"]),
            zone_name=str(data["zone_name"]),
            started_at=time_utils.from_iso(data["started_at"]),
            duration_sec=int(data["duration_sec"]),
        )


# ========================================
# Schedules
# ========================================

def normalize_start_time(value: Any) -> str:
    """
    Validate a H:MM / HH:MM start time and return it zero-padded as HH:MM.

    :raises ScheduleValidationError: if the value is not a valid time of day.
    """
    if not isinstance(value, str):
        raise ScheduleValidationError("Invalid time format. Use HH:MM")
    match = START_TIME_PATTERN.match(value.strip())
    if match is None:
        raise ScheduleValidationError("Invalid time format. Use HH:MM")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def normalize_days_of_week(values: Any) -> list[int]:
    """
    Validate days of week (0 = Sunday ... 6 = Saturday), returns a sorted list without duplicates.

    :raises ScheduleValidationError: if the value is not a non-empty collection of integers 0-6.
    """
    if not isinstance(values, (list, tuple, set, frozenset)) or not values:
        raise ScheduleValidationError("Invalid daysOfWeek. Use array of numbers 0-6")
    days = set()
    for day in values:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ScheduleValidationError("Invalid daysOfWeek. Use array of numbers 0-6")
        days.add(day)
    return sorted(days)


def validate_duration(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ScheduleValidationError("Invalid durationSec. Must be a positive number of seconds")
    return value


@dataclass
class Schedule:
    """Recurring rule: time of day + days of week + duration for one zone."""
    id: str
    zone_id: int
    start_time: str
    days_of_week: list[int]
    duration_sec: int
    enabled: bool = True
    last_run: Optional[datetime] = None

    def matches(self, moment: datetime) -> bool:
        """True when the schedule is enabled and moment falls in its start minute on one of its days."""
        return (
            self.enabled
            and self.start_time == time_utils.minute_key(moment)
            and time_utils.day_of_week(moment) in self.days_of_week
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "start_time": self.start_time,
            "days_of_week": list(self.days_of_week),
            "duration_sec": self.duration_sec,
            "enabled": self.enabled,
            "last_run": time_utils.to_iso(self.last_run),
        }

    @staticmethod
    def from_dict(data: dict) -> "Schedule":
        return Schedule(
            id=str(data["id"]),
            zone_id=int(data["zone_id"]),
            start_time=normalize_start_time(data["start_time"]),
            days_of_week=normalize_days_of_week(data["days_of_week"]),
            duration_sec=int(data["duration_sec"]),
            enabled=bool(data.get("enabled", True)),
            last_run=time_utils.from_iso(data.get("last_run")),
        )


# ========================================
# Run log
# ========================================

@dataclass(frozen=True)
class RunLogEntry:
    """Immutable historical record of one completed (or aborted) zone run."""
    id: str
    zone_id: int
    zone_name: str
    source: RunSource
    started_at: datetime
    stopped_at: datetime
    duration_sec: int
    success: bool

    def to_dict(self) -> dict:
        """Convert the entry into a JSON-serializable dict."""
        return {
            "id": self.id,
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "source": self.source.value,
            "started_at": time_utils.to_iso(self.started_at),
            "stopped_at": time_utils.to_iso(self.stopped_at),
            "duration_sec": self.duration_sec,
            "success": self.success,
        }

    @staticmethod
    def from_dict(data: dict) -> "RunLogEntry":
        """Reconstruct a RunLogEntry from a dict (e.g. loaded from JSON)."""
        return RunLogEntry(
            id=str(data["id"]),
            zone_id=int(data["zone_id"]),
            zone_name=str(data["zone_name"]),
            source=RunSource(data["source"]),
            started_at=time_utils.from_iso(data["started_at"]),
            stopped_at=time_utils.from_iso(data["stopped_at"]),
            duration_sec=int(data["duration_sec"]),
            success=bool(data["success"]),
        )


# ========================================
# Values returned to callers
# ========================================

@dataclass
class ControlResult:
    """Outcome of a mutating control operation."""
    success: bool
    message: str
    error: Optional[ErrorKind] = None

    @staticmethod
    def ok(message: str) -> "ControlResult":
        return ControlResult(success=True, message=message)

    @staticmethod
    def failed(message: str, error: ErrorKind) -> "ControlResult":
        return ControlResult(success=False, message=message, error=error)


@dataclass
class EngineStatus:
    """Snapshot returned by ZoneManager.get_status()."""
    active_zone_id: Optional[int]
    active_zone_name: Optional[str]
    time_remaining: int
    elapsed_sec: int
    rain_delay: RainDelay
    last_run: Optional[LastRun]
    heartbeat: datetime


@dataclass
class EngineEvent:
    type: EventType
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: time_utils.now())
