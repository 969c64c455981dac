import pytest
from asimpy import Environment

from seatbook.config import Settings
from tests.sim_helpers import FakeWallClock, Task


@pytest.fixture
def env():
    return Environment()


@pytest.fixture
def run_sim(env):
    """Run a coroutine factory to completion in virtual time."""

    def _run(factory, horizon: float = 100.0):
        task = Task(env, factory)
        env.run(until=env.now + horizon)
        assert task.done, "simulated task did not finish"
        return task.result

    return _run


@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def quiet_settings():
    """Deterministic cluster: no drift, no random replication failures."""
    return Settings(
        REPLICA_COUNT=2,
        CLOCK_DRIFT_MAX=0.0,
        REPLICATION_FAILURE_RATE=0.0,
        SEAT_ROWS=3,
        SEATS_PER_ROW=6,
        REDIS_URL=None,
    )
