import re
import pytest
from datetime import datetime, timedelta

from zone_engine.node.core.document_store import JsonFileStore, MemoryStore
from zone_engine.node.core.enums import RunSource
from zone_engine.node.core.run_logger import RunLogger


START = datetime(2025, 6, 22, 20, 0, 0)


# ---------------------- Helpers ----------------------

def add_run(run_logger, zone_id, duration_sec=60, success=True, source=RunSource.MANUAL):
    return run_logger.add_log_entry(
        zone_id=zone_id,
        zone_name=f"Zone {zone_id}",
        source=source,
        started_at=START,
        stopped_at=START + timedelta(seconds=duration_sec),
        duration_sec=duration_sec,
        success=success,
    )


# ---------------------- Tests ----------------------

def test_entries_are_newest_first():
    run_logger = RunLogger(MemoryStore())
    for zone_id in (1, 2, 3):
        add_run(run_logger, zone_id)

    assert [entry.zone_id for entry in run_logger.get_logs()] == [3, 2, 1]


def test_entry_ids_are_unique_and_well_formed():
    run_logger = RunLogger(MemoryStore())
    entries = [add_run(run_logger, 1) for _ in range(20)]

    ids = [entry.id for entry in entries]
    assert len(set(ids)) == 20
    assert all(re.fullmatch(r"log_\d+_[a-z0-9]{9}", log_id) for log_id in ids)


def test_cap_drops_exactly_the_oldest():
    run_logger = RunLogger(MemoryStore(), max_entries=3)
    for zone_id in (1, 2, 3):
        add_run(run_logger, zone_id)
    kept = [entry.id for entry in run_logger.get_logs()]

    add_run(run_logger, 4)

    logs = run_logger.get_logs()
    assert len(logs) == 3
    assert [entry.zone_id for entry in logs] == [4, 3, 2]
    assert [entry.id for entry in logs[1:]] == kept[:2]


def test_limit_and_recent_runs():
    run_logger = RunLogger(MemoryStore())
    for zone_id in range(1, 8):
        add_run(run_logger, zone_id)

    assert [entry.zone_id for entry in run_logger.get_logs(2)] == [7, 6]
    assert len(run_logger.get_recent_runs()) == 5
    assert run_logger.get_logs(0) == []
    assert len(run_logger) == 7


def test_logs_are_persisted_to_json(tmp_path):
    path = tmp_path / "run_logs.json"
    run_logger = RunLogger(JsonFileStore(str(path)))
    first = add_run(run_logger, 1, duration_sec=180, source=RunSource.SCHEDULE)
    second = add_run(run_logger, 2, success=False)

    reloaded = RunLogger(JsonFileStore(str(path)))

    assert reloaded.get_logs() == [second, first]
    assert reloaded.get_logs()[1].source == RunSource.SCHEDULE


def test_corrupt_log_file_starts_empty(tmp_path):
    path = tmp_path / "run_logs.json"
    path.write_text("{ not json", encoding="utf-8")

    run_logger = RunLogger(JsonFileStore(str(path)))

    assert run_logger.get_logs() == []
    add_run(run_logger, 1)
    assert len(RunLogger(JsonFileStore(str(path)))) == 1


def test_malformed_entries_are_skipped():
    valid = RunLogger(MemoryStore())
    entry = add_run(valid, 2)
    store = MemoryStore([{"id": "broken"}, entry.to_dict(), "garbage"])

    run_logger = RunLogger(store)

    assert run_logger.get_logs() == [entry]


def test_save_failure_keeps_entry_in_memory(failing_store):
    run_logger = RunLogger(failing_store)

    entry = add_run(run_logger, 1)

    assert run_logger.get_logs() == [entry]


def test_clear_logs():
    store = MemoryStore()
    run_logger = RunLogger(store)
    add_run(run_logger, 1)

    run_logger.clear_logs()

    assert len(run_logger) == 0
    assert store.load() == []


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        RunLogger(MemoryStore(), max_entries=0)
