# zone_engine/node/core/controller/schedule_trigger.py

from datetime import datetime

import zone_engine.node.utils.time_utils as time_utils

from zone_engine.node.core.enums import RunSource, SECONDS_IN_MINUTE
from zone_engine.node.core.zone_manager import ZoneManager

from zone_engine.node.utils.logger import get_logger


RETRIGGER_GUARD_SECONDS = SECONDS_IN_MINUTE     # A schedule that ran this recently is not started again


class ScheduleTrigger:
    """
    Minute-granularity cron equivalent for user schedules.

    tick() should be called periodically (every 60 seconds by the TaskScheduler).
    Each wall-clock minute is evaluated at most once; every enabled schedule whose
    start time and day match that minute starts its zone with source "schedule".
    A failing schedule is logged and never prevents the others from firing.
    """

    def __init__(self, zone_manager: ZoneManager) -> None:
        self.zone_manager = zone_manager
        self.logger = get_logger(self.__class__.__name__)

        self._last_minute_checked: datetime | None = None


    # ===========================================================================================================
    # Public API
    # ===========================================================================================================

    @property
    def last_minute_checked(self) -> datetime | None:
        return self._last_minute_checked

    def tick(self, now: datetime | None = None) -> list[str]:
        """
        Evaluate schedules against the current minute.

        :param now: moment to evaluate, defaults to the current time.
        :return: ids of the schedules that started their zone during this tick.
        """
        now = now or time_utils.now()
        minute = now.replace(second=0, microsecond=0)

        # Prevent duplicate runs within the same minute
        if self._last_minute_checked == minute:
            return []
        self._last_minute_checked = minute

        triggered = []
        for schedule in self.zone_manager.get_schedules():
            try:
                if not schedule.matches(now):
                    continue

                if schedule.last_run is not None:
                    if abs(time_utils.elapsed_seconds(schedule.last_run, now)) < RETRIGGER_GUARD_SECONDS:
                        self.logger.info(f"Skipping schedule {schedule.id} - already ran recently.")
                        continue

                self.logger.info(f"Triggering schedule {schedule.id} for zone {schedule.zone_id} at {schedule.start_time}.")
                result = self.zone_manager.start_zone(schedule.zone_id, schedule.duration_sec, RunSource.SCHEDULE)
                if result.success:
                    self.zone_manager.update_schedule_last_run(schedule.id, now)
                    self.zone_manager.schedule_triggered(schedule)
                    triggered.append(schedule.id)
                    self.logger.info(f"Started zone {schedule.zone_id} for {schedule.duration_sec} seconds.")
                else:
                    self.logger.warning(f"Failed to start zone {schedule.zone_id} for schedule {schedule.id}: {result.message}")
            except Exception as e:
                self.logger.error(f"Error executing schedule {schedule.id}: {e}")

        return triggered
