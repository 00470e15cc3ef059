import pytest

from carewatch.engine.emergency import EmergencyEngine
from carewatch.store.memory import InMemoryStore
from carewatch.store.sqlite import SqliteStore

DEVICE_ID = "ESP32-AB12CD"


class FakeClock:
    """Manually advanced server clock"""

    def __init__(self, start: float = 1000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock(step=0.001)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        store = InMemoryStore(tenant="test-app", clock=clock)
    else:
        store = SqliteStore(db_path=str(tmp_path / "carewatch.db"), tenant="test-app", clock=clock)
    yield store
    store.close()


@pytest.fixture
def memory_store(clock):
    store = InMemoryStore(tenant="test-app", clock=clock)
    yield store
    store.close()


@pytest.fixture
def device(store):
    return store.create_device(DEVICE_ID, paired_wearer_ref="wearer-1")


@pytest.fixture
def engine(store, device):
    return EmergencyEngine(store)
