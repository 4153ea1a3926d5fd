import sys, pathlib

import pytest
from loguru import logger

ROOT = pathlib.Path(__file__).resolve().parents[1]
TESTS = pathlib.Path(__file__).resolve().parent
for p in (ROOT, TESTS):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from factories import FakeClock  # noqa: E402
from habit.storage import SQLiteHabitStore  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    s = SQLiteHabitStore(str(tmp_path / "momentum_test.db"))
    yield s
    s.close()


@pytest.fixture(autouse=True)
def _quiet_logs():
    # tests that inspect log output attach their own sinks
    logger.remove()
    yield
