# zone_engine/node/core/controller/task_scheduler.py

import threading

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import zone_engine.node.utils.time_utils as time_utils

from zone_engine.node.utils.logger import get_logger


LOOP_SLEEP_INTERVAL = 1.0  # seconds


@dataclass
class ScheduledTask:
    name: str
    fn: Callable[[], object]
    interval: int  # seconds
    last_run: datetime | None = None
    initial_delay: float = 0.0  # seconds
    registered_at: datetime | None = None
    failures: int = 0


class TaskScheduler:
    """Cron-like scheduler for periodic background tasks of the engine, run on one daemon thread."""

    def __init__(self, loop_interval: float = LOOP_SLEEP_INTERVAL):
        self.tasks: dict[str, ScheduledTask] = {}
        self.loop_interval = loop_interval
        self._tasks_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.logger = get_logger(self.__class__.__name__)


    def register_task(self, name: str, fn: Callable[[], object],
                      interval: int, initial_delay: float = 0.0) -> None:
        """
        Register a periodic task.

        :param name: Unique name of the task.
        :param fn: Function to execute periodically.
        :param interval: Interval between executions in seconds.
        :param initial_delay: Initial delay before the first execution in seconds.
        :raises ValueError: if a task with the same name is already registered or the interval is not positive.
        """

        if interval <= 0:
            raise ValueError("Task interval must be positive.")
        with self._tasks_lock:
            if name in self.tasks:
                raise ValueError(f"Task with name '{name}' is already registered.")

            self.tasks[name] = ScheduledTask(
                name=name,
                fn=fn,
                interval=interval,
                initial_delay=initial_delay,
                registered_at=time_utils.now(),
            )

        self.logger.info(f"Registered task '{name}' with interval {interval}s (initial_delay={initial_delay}s).")


    def unregister_task(self, name: str) -> None:
        """
        Unregister a periodic task.

        :raises ValueError: if a task with the given name is not registered.
        """

        with self._tasks_lock:
            if name not in self.tasks:
                raise ValueError(f"Task with name '{name}' is not registered.")
            self.tasks.pop(name)

        self.logger.info(f"Unregistered task '{name}'.")


    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


    def start(self) -> None:
        """Start the task scheduler."""

        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="TaskScheduler", daemon=True)
        self._thread.start()
        self.logger.info("TaskScheduler started.")


    def stop(self, timeout: float = 10.0) -> None:
        """
        Stop the task scheduler. Wait for the scheduler thread to terminate.

        :raises TimeoutError: if the scheduler thread fails to stop within the given timeout.
        """

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                raise TimeoutError("Failed to stop TaskScheduler thread within the given timeout.")
            self._thread = None

        self.logger.info("TaskScheduler stopped.")


    def run_pending(self, now: datetime | None = None) -> list[str]:
        """
        Execute every task that is due at `now`. Used by the loop and directly by tests.

        :return: names of the executed tasks.
        """
        now = now or time_utils.now()
        with self._tasks_lock:
            tasks = list(self.tasks.values())

        executed = []
        for task in tasks:
            if task.last_run is None:
                first_due = (task.registered_at or now) + timedelta(seconds=task.initial_delay)
                if now < first_due:
                    # Not yet time for the first run
                    continue
            elif time_utils.elapsed_seconds(task.last_run, now) < task.interval:
                continue
            self._execute_task(task, now)
            executed.append(task.name)
        return executed


    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending()
            # Sleep a short while to avoid busy waiting
            self._stop_event.wait(timeout=self.loop_interval)


    def _execute_task(self, task: ScheduledTask, now: datetime) -> None:
        task.last_run = now
        try:
            task.fn()
        except Exception as e:
            task.failures += 1
            self.logger.error(f"Task '{task.name}' raised an exception: {e}")
