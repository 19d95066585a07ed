# zone_engine/node/core/zone_manager.py

import copy
import random
import string
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Optional

import zone_engine.node.utils.time_utils as time_utils
from zone_engine.node.config.engine_config import ZoneSettings
from zone_engine.node.core.document_store import DocumentStore
from zone_engine.node.core.enums import RunSource, ErrorKind, EventType, DEFAULT_RUN_DURATION_SEC
from zone_engine.node.core.models import (
    Zone,
    RainDelay,
    Schedule,
    ActiveRun,
    LastRun,
    RunLogEntry,
    ControlResult,
    EngineStatus,
    EngineEvent,
    normalize_start_time,
    normalize_days_of_week,
    validate_duration,
)
from zone_engine.node.core.relay_driver import RelayDriver
from zone_engine.node.core.run_logger import RunLogger
from zone_engine.node.exceptions import (
    RelayError,
    PersistenceError,
    PolicyError,
    RainDelayActiveError,
    ScheduleValidationError,
    ValidationError,
    ZoneNotFoundError,
)
from zone_engine.node.utils.logger import get_logger


MAX_RAIN_DELAY_HOURS = 24
SCHEDULE_FIELDS = ("zone_id", "start_time", "days_of_week", "duration_sec", "enabled")


def generate_schedule_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"schedule_{int(time.time() * 1000)}_{suffix}"


class ZoneManager:
    """
    Single source of truth for zone state, rain delay and schedules.

    Owns the relay driver and the run logger; nothing else touches them.
    Every public operation runs under one re-entrant lock, so the scheduler
    thread and API worker threads never interleave inside a start/stop.
    At most one zone is active at any time.
    """

    # =========================================================================
    # Initialization
    # =========================================================================

    def __init__(self,
                 zones: Iterable[ZoneSettings],
                 relay_driver: RelayDriver,
                 run_logger: RunLogger,
                 store: DocumentStore,
                 default_duration_sec: int = DEFAULT_RUN_DURATION_SEC) -> None:
        self.logger = get_logger(self.__class__.__name__)
        self.relay_driver = relay_driver
        self.run_logger = run_logger
        self.store = store
        self.default_duration_sec = default_duration_sec

        self._lock = threading.RLock()
        self._listeners: list[Callable[[EngineEvent], None]] = []

        # Configured zones are authoritative for ids and names, the snapshot only restores runtime fields
        self.zones: dict[int, Zone] = {z.id: Zone(id=z.id, name=z.name) for z in zones}
        if not self.zones:
            raise ValueError("At least one zone must be configured.")

        self.rain_delay = RainDelay()
        self.schedules: list[Schedule] = []
        self.active_runs: dict[int, ActiveRun] = {}
        self.active_zone_id: Optional[int] = None
        self.active_zone_name: Optional[str] = None
        self.duration_sec: int = default_duration_sec
        self.last_run: Optional[LastRun] = None

        self._load_state()
        self._recover_interrupted_runs()

        self.logger.info(f"ZoneManager initialized with zones {list(self.zones)}.")


    # =========================================================================
    # Internal: State loading/saving
    # =========================================================================

    def _load_state(self) -> None:
        state = self.store.load()
        if state is None:
            self.logger.info("No saved state found. Initializing default state.")
            self._save_state()
            return
        if not isinstance(state, dict):
            self.logger.error("Saved state is not a dictionary. Initializing default state.")
            self._save_state()
            return

        try:
            self.rain_delay = RainDelay.from_dict(state.get("rain_delay") or {})
        except (TypeError, ValueError) as e:
            self.logger.error(f"Invalid rain delay in saved state: {e}. Rain delay reset.")

        for raw in state.get("zones") or []:
            try:
                saved = Zone.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.error(f"Invalid zone entry {raw!r} in saved state: {e}")
                continue
            zone = self.zones.get(saved.id)
            if zone is None:
                self.logger.warning(f"Zone {saved.id} from saved state is not configured anymore. Ignoring it.")
                continue
            zone.is_active = saved.is_active
            zone.end_time = saved.end_time

        for raw in state.get("schedules") or []:
            try:
                self.schedules.append(Schedule.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.error(f"Invalid schedule {raw!r} in saved state: {e}. Dropping it.")

        for raw in state.get("active_runs") or []:
            try:
                run = ActiveRun.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.error(f"Invalid active run {raw!r} in saved state: {e}")
                continue
            if run.zone_id in self.zones:
                self.active_runs[run.zone_id] = run

        if state.get("last_run"):
            try:
                self.last_run = LastRun.from_dict(state["last_run"])
            except (KeyError, TypeError, ValueError) as e:
                self.logger.error(f"Invalid last run in saved state: {e}")

        self.duration_sec = int(state.get("duration_sec") or self.default_duration_sec)
        self.logger.debug(f"Loaded state with {len(self.schedules)} schedules.")

    def _to_document(self) -> dict[str, Any]:
        return {
            "active_zone_id": self.active_zone_id,
            "active_zone_name": self.active_zone_name,
            "duration_sec": self.duration_sec,
            "rain_delay": self.rain_delay.to_dict(),
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "active_runs": [run.to_dict() for run in self.active_runs.values()],
            "schedules": [schedule.to_dict() for schedule in self.schedules],
            "zones": [zone.to_dict() for zone in self.zones.values()],
            "last_updated": time_utils.now_iso(),
        }

    def _save_state(self) -> None:
        """Persist the whole snapshot. Failures are logged, the in-memory state stays authoritative."""
        try:
            self.store.save(self._to_document())
        except PersistenceError as e:
            self.logger.error(f"Failed to save state: {e}")

    def _recover_interrupted_runs(self) -> None:
        """Zones still marked active after a restart were interrupted; close their runs as unsuccessful."""
        interrupted = [zone for zone in self.zones.values() if zone.is_active]
        orphaned = [zone_id for zone_id in self.active_runs if not self.zones[zone_id].is_active]
        for zone_id in orphaned:
            self.active_runs.pop(zone_id)

        if not interrupted and not orphaned:
            return

        self.logger.warning("Unclean shutdown detected.")
        for zone in interrupted:
            self.logger.warning(f"Zone {zone.id} was active during shutdown, stopping it and marking the run as failed.")
            self._stop_zone_locked(zone, success=False)
        self._save_state()


    # =========================================================================
    # Internal: events
    # =========================================================================

    def _emit(self, event_type: EventType, payload: dict) -> None:
        event = EngineEvent(type=event_type, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Event listener failed on {event_type.value}: {e}")


    # =========================================================================
    # Internal: zone transitions (caller holds the lock)
    # =========================================================================

    def _refresh_rain_delay(self, now: datetime) -> None:
        delay = self.rain_delay
        if not delay.is_active or delay.expires_at is None:
            return
        if now >= delay.expires_at:
            self.rain_delay = RainDelay()
            self._save_state()
            self.logger.info("Rain delay expired.")
            self._emit(EventType.RAIN_DELAY_CHANGED, self.rain_delay.to_dict())
        else:
            delay.hours_remaining = time_utils.hours_until(delay.expires_at, now)

    def _require_zone(self, zone_id: int) -> Zone:
        zone = self.zones.get(zone_id)
        if zone is None:
            raise ZoneNotFoundError(zone_id)
        return zone

    def _ensure_no_rain_delay(self, now: datetime) -> None:
        self._refresh_rain_delay(now)
        if self.rain_delay.is_active:
            raise RainDelayActiveError()

    def _stop_zone_locked(self, zone: Zone, success: bool = True) -> ControlResult:
        try:
            self.relay_driver.deactivate(zone.id)
        except RelayError as e:
            # Bookkeeping must go on, the run is logged as unsuccessful
            self.logger.error(f"Failed to deactivate relay for zone {zone.id}: {e}")
            success = False

        stopped_at = time_utils.now()
        run = self.active_runs.pop(zone.id, None)
        if run is not None:
            duration = max(0, time_utils.elapsed_seconds(run.start_time, stopped_at))
            entry = self.run_logger.add_log_entry(
                zone_id=zone.id,
                zone_name=zone.name,
                source=run.source,
                started_at=run.start_time,
                stopped_at=stopped_at,
                duration_sec=duration,
                success=success,
            )
            self.last_run = LastRun(zone_id=zone.id, zone_name=zone.name,
                                    started_at=run.start_time, duration_sec=duration)
            self._emit(EventType.LOG_UPDATED, entry.to_dict())

        zone.is_active = False
        zone.end_time = None
        if self.active_zone_id == zone.id:
            self.active_zone_id = None
            self.active_zone_name = None

        self._save_state()
        self.logger.info(f"Zone {zone.id} stopped (success={success}).")
        self._emit(EventType.ZONE_STOPPED, {"zone_id": zone.id, "zone_name": zone.name, "success": success})
        return ControlResult.ok(f"Zone {zone.id} stopped")


    # =========================================================================
    # Public API - Zone control
    # =========================================================================

    def add_listener(self, listener: Callable[[EngineEvent], None]) -> None:
        """Register a callback receiving every EngineEvent (zone started/stopped, log updated, ...)."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[EngineEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start_zone(self, zone_id: int, duration_sec: int | None = None,
                   source: RunSource | str = RunSource.MANUAL) -> ControlResult:
        """
        Start a zone for duration_sec seconds, stopping any other active zone first.

        Refused while the rain delay is active. Unknown zones and invalid durations are
        rejected before anything is stopped or switched.
        """
        if duration_sec is None:
            duration_sec = self.default_duration_sec

        with self._lock:
            # Every check runs before the active zone is stopped: a rejected start leaves it running (DESIGN.md, decision 4)
            try:
                self._ensure_no_rain_delay(time_utils.now())
                zone = self._require_zone(zone_id)
                source = RunSource(source)
                validate_duration(duration_sec)
            except PolicyError as e:
                self.logger.info(f"Start of zone {zone_id} refused: {e}")
                return ControlResult.failed(str(e), ErrorKind.POLICY)
            except ZoneNotFoundError as e:
                return ControlResult.failed(str(e), ErrorKind.NOT_FOUND)
            except (ValueError, ValidationError) as e:
                return ControlResult.failed(str(e), ErrorKind.VALIDATION)

            for active_zone in [z for z in self.zones.values() if z.is_active]:
                self.logger.info(f"Stopping active zone {active_zone.id} before starting zone {zone_id}.")
                self._stop_zone_locked(active_zone)

            try:
                self.relay_driver.activate(zone_id)
            except RelayError as e:
                self.logger.error(f"Failed to activate relay for zone {zone_id}: {e}")
                return ControlResult.failed(f"Failed to activate zone {zone_id}: {e}", ErrorKind.HARDWARE)

            now = time_utils.now()
            self.active_runs[zone_id] = ActiveRun(zone_id=zone_id, start_time=now, source=source)
            zone.is_active = True
            zone.end_time = time_utils.add_seconds(now, duration_sec)
            self.active_zone_id = zone_id
            self.active_zone_name = zone.name
            self.duration_sec = duration_sec
            self._save_state()

            self.logger.info(f"Zone {zone_id} started for {duration_sec} seconds ({source.value}).")
            self._emit(EventType.ZONE_STARTED, {"zone_id": zone_id, "zone_name": zone.name,
                                                "duration_sec": duration_sec, "source": source.value})
            return ControlResult.ok(f"Zone {zone_id} started for {duration_sec} seconds")

    def stop_zone(self, zone_id: int, success: bool = True) -> ControlResult:
        """
        Stop a zone and log its run. A relay that fails to switch off does not prevent
        the bookkeeping, the logged run is marked unsuccessful instead.
        """
        with self._lock:
            try:
                zone = self._require_zone(zone_id)
            except ZoneNotFoundError as e:
                return ControlResult.failed(str(e), ErrorKind.NOT_FOUND)
            return self._stop_zone_locked(zone, success)

    def get_status(self) -> EngineStatus:
        """
        Current snapshot. Expired rain delays are cleared and an active zone whose
        end time has passed is stopped before the snapshot is taken.
        """
        with self._lock:
            now = time_utils.now()
            self._refresh_rain_delay(now)

            time_remaining = 0
            elapsed = 0
            if self.active_zone_id is not None:
                zone = self.zones[self.active_zone_id]
                if zone.end_time is not None:
                    time_remaining = time_utils.seconds_until(zone.end_time, now)
                    if time_remaining == 0:
                        self.logger.info(f"Zone {zone.id} reached its end time, stopping it.")
                        self._stop_zone_locked(zone)
                if self.active_zone_id is not None and zone.id in self.active_runs:
                    elapsed = max(0, time_utils.elapsed_seconds(self.active_runs[zone.id].start_time, now))

            return EngineStatus(
                active_zone_id=self.active_zone_id,
                active_zone_name=self.active_zone_name,
                time_remaining=time_remaining,
                elapsed_sec=elapsed,
                rain_delay=copy.copy(self.rain_delay),
                last_run=copy.copy(self.last_run),
                heartbeat=now,
            )

    def get_zones(self) -> list[Zone]:
        with self._lock:
            return [copy.copy(zone) for zone in self.zones.values()]

    def get_zone(self, zone_id: int) -> Optional[Zone]:
        with self._lock:
            zone = self.zones.get(zone_id)
            return copy.copy(zone) if zone else None

    def shutdown(self) -> None:
        """Stop the active zone and release the relay hardware. Called on clean exit."""
        with self._lock:
            for zone in [z for z in self.zones.values() if z.is_active]:
                self._stop_zone_locked(zone)
            try:
                self.relay_driver.cleanup()
            except RelayError as e:
                self.logger.error(f"Relay cleanup failed: {e}")
        self.logger.info("ZoneManager shut down.")


    # =========================================================================
    # Public API - Rain delay
    # =========================================================================

    def set_rain_delay(self, is_active: bool, expires_at: datetime | None = None, hours: int | None = None) -> RainDelay:
        """Unconditional setter. An already active zone keeps running."""
        with self._lock:
            self.rain_delay = RainDelay(is_active=is_active,
                                        expires_at=expires_at if is_active else None,
                                        hours_remaining=(hours or 0) if is_active else 0)
            self._save_state()
            self.logger.info(f"Rain delay {'set until ' + str(expires_at) if is_active else 'cleared'}.")
            self._emit(EventType.RAIN_DELAY_CHANGED, self.rain_delay.to_dict())
            return copy.copy(self.rain_delay)

    def start_rain_delay(self, hours: float) -> RainDelay:
        """
        Activate the rain delay for the given number of hours from now.

        :raises ValidationError: if hours is not within (0, 24].
        """
        if isinstance(hours, bool) or not isinstance(hours, (int, float)) or not 0 < hours <= MAX_RAIN_DELAY_HOURS:
            raise ValidationError(f"Invalid hours. Must be greater than 0 and at most {MAX_RAIN_DELAY_HOURS}.")
        now = time_utils.now()
        expires_at = time_utils.add_seconds(now, hours * 3600)
        return self.set_rain_delay(True, expires_at, time_utils.hours_until(expires_at, now))

    def clear_rain_delay(self) -> RainDelay:
        return self.set_rain_delay(False)


    # =========================================================================
    # Public API - Schedules
    # =========================================================================

    def _validate_schedule_fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Returns normalized copies of the given fields. Raises ScheduleValidationError, never mutates."""
        unknown = set(fields) - set(SCHEDULE_FIELDS)
        if unknown:
            raise ScheduleValidationError(f"Unknown schedule fields: {', '.join(sorted(unknown))}")

        normalized = {}
        if "zone_id" in fields:
            if fields["zone_id"] not in self.zones:
                raise ScheduleValidationError(f"Zone {fields['zone_id']} not found")
            normalized["zone_id"] = fields["zone_id"]
        if "start_time" in fields:
            normalized["start_time"] = normalize_start_time(fields["start_time"])
        if "days_of_week" in fields:
            normalized["days_of_week"] = normalize_days_of_week(fields["days_of_week"])
        if "duration_sec" in fields:
            normalized["duration_sec"] = validate_duration(fields["duration_sec"])
        if "enabled" in fields:
            if not isinstance(fields["enabled"], bool):
                raise ScheduleValidationError("Invalid enabled flag. Must be true or false")
            normalized["enabled"] = fields["enabled"]
        return normalized

    def get_schedules(self) -> list[Schedule]:
        with self._lock:
            return [copy.deepcopy(schedule) for schedule in self.schedules]

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self._lock:
            for schedule in self.schedules:
                if schedule.id == schedule_id:
                    return copy.deepcopy(schedule)
            return None

    def create_schedule(self, zone_id: int, start_time: str, days_of_week: Iterable[int],
                        duration_sec: int, enabled: bool = True) -> Schedule:
        """
        Create and persist a new schedule. Overlapping schedules are allowed.

        :raises ScheduleValidationError: on unknown zone, malformed time, days or duration.
        """
        with self._lock:
            fields = self._validate_schedule_fields({
                "zone_id": zone_id,
                "start_time": start_time,
                "days_of_week": list(days_of_week) if isinstance(days_of_week, (set, frozenset, tuple)) else days_of_week,
                "duration_sec": duration_sec,
                "enabled": enabled,
            })
            existing_ids = {s.id for s in self.schedules}
            schedule_id = generate_schedule_id()
            while schedule_id in existing_ids:
                schedule_id = generate_schedule_id()

            schedule = Schedule(id=schedule_id, **fields)
            self.schedules.append(schedule)
            self._save_state()
            self.logger.info(f"Created schedule {schedule.id} for zone {schedule.zone_id} at {schedule.start_time}.")
            return copy.deepcopy(schedule)

    def update_schedule(self, schedule_id: str, **updates: Any) -> Optional[Schedule]:
        """
        Apply partial updates to a schedule. Returns None if the schedule does not exist.

        :raises ScheduleValidationError: if any update is invalid; nothing is changed then.
        """
        with self._lock:
            schedule = next((s for s in self.schedules if s.id == schedule_id), None)
            if schedule is None:
                return None
            fields = self._validate_schedule_fields(updates)
            for key, value in fields.items():
                setattr(schedule, key, value)
            self._save_state()
            self.logger.info(f"Updated schedule {schedule_id}: {sorted(fields)}.")
            return copy.deepcopy(schedule)

    def delete_schedule(self, schedule_id: str) -> bool:
        with self._lock:
            for index, schedule in enumerate(self.schedules):
                if schedule.id == schedule_id:
                    del self.schedules[index]
                    self._save_state()
                    self.logger.info(f"Deleted schedule {schedule_id}.")
                    return True
            return False

    def update_schedule_last_run(self, schedule_id: str, last_run: datetime) -> None:
        with self._lock:
            for schedule in self.schedules:
                if schedule.id == schedule_id:
                    schedule.last_run = last_run
                    self._save_state()
                    return

    def schedule_triggered(self, schedule: Schedule) -> None:
        """Notify listeners that a schedule started its zone."""
        zone = self.zones.get(schedule.zone_id)
        self._emit(EventType.SCHEDULE_TRIGGERED, {
            "schedule_id": schedule.id,
            "zone_id": schedule.zone_id,
            "zone_name": zone.name if zone else f"Zone {schedule.zone_id}",
            "duration_sec": schedule.duration_sec,
            "start_time": schedule.start_time,
        })


    # =========================================================================
    # Public API - Run log
    # =========================================================================

    def get_run_logs(self, limit: int | None = None) -> list[RunLogEntry]:
        return self.run_logger.get_logs(limit)

    def get_recent_runs(self, limit: int = 5) -> list[RunLogEntry]:
        return self.run_logger.get_recent_runs(limit)

    def clear_run_logs(self) -> None:
        self.run_logger.clear_logs()

    def count_run_logs(self) -> int:
        return len(self.run_logger)


