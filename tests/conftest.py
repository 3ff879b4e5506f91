"""
Shared fixtures: in-memory store, deterministic settings, engine, request factory
"""
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from oddsflow.core.storage import LearningStore, StoreUnavailableError


class FakeClock:
    """Manually advanced clock"""
    
    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start
    
    def __call__(self) -> float:
        return self.t
    
    def advance(self, seconds: float) -> None:
        self.t += seconds


class FailingStore(LearningStore):
    """Backend that is always unreachable"""
    
    def __init__(self):
        self.calls = 0
    
    def _fail(self, *args):
        self.calls += 1
        raise StoreUnavailableError("backend down")
    
    def get(self, key):
        self._fail()
    
    def put(self, key, record):
        self._fail()
    
    def append(self, log, record):
        self._fail()
    
    def query_recent(self, log, key, n):
        self._fail()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    from oddsflow.core.storage import MemoryStore
    return MemoryStore()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def test_settings(tmp_path):
    from oddsflow.config.settings import Settings
    return Settings(
        DATA_DIR=tmp_path,
        DB_PATH=tmp_path / "oddsflow.db",
        SIM_SEED=7,
        SIM_TRIALS=300,
        AUTOTUNE_MIN_CASES=2,
    )


@pytest.fixture
def engine(memory_store, test_settings, clock):
    from oddsflow.engine import AnalysisEngine
    return AnalysisEngine(memory_store, config=test_settings, clock=clock)


@pytest.fixture
def make_request():
    """Build a raw request payload (scenario A prices by default)"""
    def _make(open1=None, now1=None, ah=None, **extra):
        payload = {
            "home": "Lions",
            "away": "Tigers",
            "league": "test",
            "kickoff_ts": 1_700_100_000,
            "open1": open1 if open1 is not None else {"home": 2.10, "draw": 3.40, "away": 3.10},
            "now1": now1 if now1 is not None else {"home": 1.95, "draw": 3.60, "away": 3.80},
            "ah": ah if ah is not None else [],
        }
        payload.update(extra)
        return payload
    return _make


@pytest.fixture
def handicap_lines():
    return [
        {"line": "-0.5", "open_home": 1.95, "open_away": 1.95, "now_home": 1.80, "now_away": 2.10},
        {"line": "-0.75", "open_home": 2.20, "open_away": 1.72, "now_home": 2.02, "now_away": 1.86},
        {"line": "-0.25", "open_home": 1.70, "open_away": 2.25, "now_home": 1.62, "now_away": 2.40},
    ]
