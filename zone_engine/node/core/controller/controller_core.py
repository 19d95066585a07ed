# zone_engine/node/core/controller/controller_core.py

import threading

from zone_engine.node.utils.logger import get_logger

from zone_engine.node.config.engine_config import EngineConfig
from zone_engine.node.core.document_store import DocumentStore, JsonFileStore
from zone_engine.node.core.relay_driver import RelayDriver, create_relay_driver
from zone_engine.node.core.run_logger import RunLogger
from zone_engine.node.core.zone_manager import ZoneManager

from zone_engine.node.core.controller.schedule_trigger import ScheduleTrigger
from zone_engine.node.core.controller.task_scheduler import TaskScheduler


SCHEDULE_CHECK_TASK = "schedule-check"
ZONE_EXPIRY_TASK = "zone-expiry"


class ControllerCore:
    """
    Composes the engine: relay driver, run logger, zone manager, schedule trigger
    and the background task scheduler. One instance is built at startup and handed
    to the API layer; there is no module-level engine.
    """

    def __init__(self, config: EngineConfig,
                 state_store: DocumentStore | None = None,
                 log_store: DocumentStore | None = None,
                 relay_driver: RelayDriver | None = None):
        self.logger = get_logger(self.__class__.__name__)
        self.config = config

        self.relay_driver = relay_driver or create_relay_driver(config.relay)
        self.run_logger = RunLogger(
            store=log_store or JsonFileStore(config.persistence.run_log_file),
            max_entries=config.persistence.max_log_entries,
        )
        self.zone_manager = ZoneManager(
            zones=config.zones,
            relay_driver=self.relay_driver,
            run_logger=self.run_logger,
            store=state_store or JsonFileStore(config.persistence.state_file),
            default_duration_sec=config.scheduler.default_duration_sec,
        )
        self.schedule_trigger = ScheduleTrigger(self.zone_manager)
        self.task_scheduler = self._init_task_scheduler()

        self._shutdown_lock = threading.Lock()
        self._is_shut_down = False

        self.logger.info(f"ControllerCore initialized (relay mode: {self.relay_driver.mode.value}).")


    # ==================================================================================================================
    # Public API
    # ==================================================================================================================

    def start(self) -> None:
        """Start the background tasks (schedule checks and zone expiry polling)."""
        self.task_scheduler.start()

    def shutdown(self) -> None:
        """Stop background tasks, stop the active zone and release the relay hardware. Safe to call twice."""
        with self._shutdown_lock:
            if self._is_shut_down:
                return
            self._is_shut_down = True

        self.logger.info("Cleaning up resources...")
        try:
            self.task_scheduler.stop(timeout=10.0)
        except TimeoutError:
            self.logger.critical("Timeout while stopping the task scheduler during cleanup.")
        self.zone_manager.shutdown()


    # ==================================================================================================================
    # Private methods - Initialization
    # ==================================================================================================================

    def _init_task_scheduler(self) -> TaskScheduler:
        task_scheduler = TaskScheduler()
        if self.config.scheduler.enabled:
            task_scheduler.register_task(
                name=SCHEDULE_CHECK_TASK,
                fn=self.schedule_trigger.tick,
                interval=self.config.scheduler.check_interval_sec,
            )
        else:
            self.logger.warning("Schedules are disabled by configuration.")

        # Expiry is detected by get_status(), so poll it even when nobody else asks
        task_scheduler.register_task(
            name=ZONE_EXPIRY_TASK,
            fn=self.zone_manager.get_status,
            interval=self.config.scheduler.expiry_poll_interval_sec,
        )
        return task_scheduler
