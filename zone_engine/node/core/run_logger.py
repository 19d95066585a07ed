# zone_engine/node/core/run_logger.py

import random
import string
import threading
import time
from datetime import datetime

from zone_engine.node.core.document_store import DocumentStore
from zone_engine.node.core.enums import RunSource
from zone_engine.node.core.models import RunLogEntry
from zone_engine.node.exceptions import PersistenceError
from zone_engine.node.utils.logger import get_logger


DEFAULT_MAX_ENTRIES = 200       # Keep last 200 runs
DEFAULT_RECENT_RUNS = 5


def generate_log_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"log_{int(time.time() * 1000)}_{suffix}"


class RunLogger:
    """
    Append-only, size-capped history of completed watering runs.

    Entries are kept newest-first. When the collection grows past max_entries
    only the oldest entries are dropped; existing entries are never modified.
    """

    def __init__(self, store: DocumentStore, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("max_entries must be a positive integer.")

        self.logger = get_logger(self.__class__.__name__)
        self.store = store
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._logs: list[RunLogEntry] = self._load_logs()


    # =========================================================================
    # Internal: loading/saving
    # =========================================================================

    def _load_logs(self) -> list[RunLogEntry]:
        data = self.store.load()
        if data is None:
            self.logger.info("No run log found, initialized new run log.")
            return []
        if not isinstance(data, list):
            self.logger.error("Run log document is not a list. Starting with an empty run log.")
            return []

        logs = []
        for raw in data:
            try:
                logs.append(RunLogEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed run log entry {raw!r}: {e}")

        logs = logs[:self.max_entries]
        self.logger.info(f"Loaded {len(logs)} run log entries.")
        return logs

    def _save_logs(self) -> None:
        try:
            self.store.save([entry.to_dict() for entry in self._logs])
        except PersistenceError as e:
            # In-memory log stays authoritative, the next successful write reconciles the file
            self.logger.error(f"Failed to save run logs: {e}")


    # =========================================================================
    # Public API
    # =========================================================================

    def add_log_entry(self, zone_id: int, zone_name: str, source: RunSource,
                      started_at: datetime, stopped_at: datetime,
                      duration_sec: int, success: bool) -> RunLogEntry:
        """Create a new entry with a unique id, insert it at the front and rotate the log."""
        with self._lock:
            existing_ids = {entry.id for entry in self._logs}
            log_id = generate_log_id()
            while log_id in existing_ids:
                log_id = generate_log_id()

            entry = RunLogEntry(
                id=log_id,
                zone_id=zone_id,
                zone_name=zone_name,
                source=source,
                started_at=started_at,
                stopped_at=stopped_at,
                duration_sec=duration_sec,
                success=success,
            )

            self._logs.insert(0, entry)
            if len(self._logs) > self.max_entries:
                del self._logs[self.max_entries:]

            self._save_logs()

        status_label = "OK" if success else "FAILED"
        self.logger.info(f"[{status_label}] Zone {zone_id} ran for {duration_sec} seconds ({source.value})")
        return entry

    def get_logs(self, limit: int | None = None) -> list[RunLogEntry]:
        """Newest-first copy of the log, optionally capped to limit entries."""
        with self._lock:
            if limit is None:
                return list(self._logs)
            return self._logs[:max(0, limit)]

    def get_recent_runs(self, limit: int = DEFAULT_RECENT_RUNS) -> list[RunLogEntry]:
        return self.get_logs(limit)

    def clear_logs(self) -> None:
        with self._lock:
            self._logs = []
            self._save_logs()
        self.logger.info("All run logs cleared.")

    def __len__(self) -> int:
        return len(self._logs)
