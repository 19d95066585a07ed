import os
import tempfile
from datetime import datetime, timedelta

# Keep test logs out of the project runtime directory, must happen before the logger module is imported
os.environ.setdefault("ZONE_ENGINE_LOG_DIR", tempfile.mkdtemp(prefix="zone_engine_logs_"))

import pytest

import zone_engine.node.utils.time_utils as time_utils
from zone_engine.node.config.engine_config import default_zones
from zone_engine.node.core.document_store import MemoryStore
from zone_engine.node.core.relay_driver import SimulatedRelayDriver
from zone_engine.node.core.run_logger import RunLogger
from zone_engine.node.core.zone_manager import ZoneManager
from zone_engine.node.exceptions import PersistenceError, RelayWriteError


MONDAY_6AM = datetime(2025, 1, 6, 6, 0, 0)


# ---------------------- Mocks/Fakes ----------------------

class FakeClock:
    """Replaces time_utils.now; time only moves when advance() is called."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self, utc: bool = False) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment


class FailingRelayDriver(SimulatedRelayDriver):
    """Simulated relays that raise RelayWriteError for the zones listed in fail_activate / fail_deactivate."""

    def __init__(self):
        super().__init__()
        self.fail_activate: set[int] = set()
        self.fail_deactivate: set[int] = set()

    def activate(self, zone_id: int) -> None:
        if zone_id in self.fail_activate:
            raise RelayWriteError(f"Relay of zone {zone_id} stuck", zone_id=zone_id, action="on")
        super().activate(zone_id)

    def deactivate(self, zone_id: int) -> None:
        if zone_id in self.fail_deactivate:
            raise RelayWriteError(f"Relay of zone {zone_id} stuck", zone_id=zone_id, action="off")
        super().deactivate(zone_id)


class FailingStore(MemoryStore):
    def save(self, document) -> None:
        raise PersistenceError("disk full")


# ---------------------- Fixtures ----------------------

@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock(MONDAY_6AM)
    monkeypatch.setattr(time_utils, "now", fake)
    return fake


@pytest.fixture
def relay():
    return FailingRelayDriver()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def state_store():
    return MemoryStore()


@pytest.fixture
def run_logger():
    return RunLogger(MemoryStore())


@pytest.fixture
def manager(clock, relay, run_logger, state_store):
    return ZoneManager(
        zones=default_zones(),
        relay_driver=relay,
        run_logger=run_logger,
        store=state_store,
    )
