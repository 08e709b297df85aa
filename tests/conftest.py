# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from success_core.notifications import RecordingNotifier
from success_core.offline.connection_manager import NetworkEvents
from success_core.offline.local_database import LocalDatabase


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_clients() -> List[Dict[str, Any]]:
    """A small client book covering every dashboard status"""
    return [
        {"id": "c1", "name": "Acme Corp", "status": "active", "nps_score": 9, "end_date": "2024-12-31"},
        {"id": "c2", "name": "Beta LLC", "status": "at-risk", "nps_score": 4, "end_date": "2024-06-30"},
        {"id": "c3", "name": "Gamma Inc", "status": "new", "nps_score": None, "end_date": "2025-03-31"},
        {"id": "c4", "name": "Delta Co", "status": "churned", "nps_score": 2, "end_date": "2024-02-15"},
        {"id": "c5", "name": "Epsilon", "status": "churned", "nps_score": 5, "end_date": "2024-02-28"},
        {"id": "c6", "name": "Zeta Ltd", "status": "active", "nps_score": 10, "end_date": "2024-11-30"},
    ]


# =============================================================================
# TIME FIXTURES
# =============================================================================

class FakeClock:
    """Manually advanced clock, callable like time.time"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class RecordingSleep:
    """Async sleep replacement that returns immediately and records delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fast_sleep():
    return RecordingSleep()


# =============================================================================
# STORAGE / EVENT FIXTURES
# =============================================================================

@pytest.fixture
def local_db(tmp_path):
    """Fresh SQLite database per test"""
    db = LocalDatabase(tmp_path / "test.db").initialize()
    yield db
    db.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def events():
    return NetworkEvents()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit():
    """Mock Streamlit for testing"""
    import sys

    # Create mock streamlit module
    mock_st = MagicMock()
    mock_st.session_state = {}

    # Store original and replace
    original_st = sys.modules.get('streamlit')
    sys.modules['streamlit'] = mock_st

    yield mock_st

    # Restore original
    if original_st:
        sys.modules['streamlit'] = original_st
    else:
        del sys.modules['streamlit']


class FakeQuery:
    """Chainable stand-in for a postgrest query builder"""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self.client = client
        self.table = table
        self._op = "select"
        self._range = None
        self._payload = None
        self._eq = None

    def select(self, columns: str = "*"):
        self._op = "select"
        return self

    def order(self, column: str, desc: bool = False):
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def insert(self, record):
        self._op, self._payload = "insert", record
        return self

    def update(self, values):
        self._op, self._payload = "update", values
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._eq = (column, value)
        return self

    async def execute(self):
        self.client.calls.append((self.table, self._op))
        if self.client.fail_with is not None:
            raise self.client.fail_with

        rows = self.client.tables.setdefault(self.table, [])
        if self._op == "select":
            start, end = self._range or (0, len(rows) - 1)
            return SimpleNamespace(data=[dict(r) for r in rows[start:end + 1]])
        if self._op == "insert":
            rows.append(dict(self._payload))
            return SimpleNamespace(data=[dict(self._payload)])

        column, value = self._eq
        matched = [r for r in rows if r.get(column) == value]
        if self._op == "update":
            for row in matched:
                row.update(self._payload)
        else:
            self.client.tables[self.table] = [r for r in rows if r.get(column) != value]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeRealtimeChannel:
    def __init__(self, name: str, error: Optional[Exception] = None):
        self.name = name
        self.error = error
        self.callback = None
        self.filters: Dict[str, Any] = {}
        self.subscribed = False
        self.removed = False

    def on_postgres_changes(self, event, callback, table=None, schema=None, filter=None):
        self.filters = {"event": event, "table": table, "schema": schema}
        self.callback = callback
        return self

    async def subscribe(self, callback=None):
        if self.error is not None:
            raise self.error
        self.subscribed = True
        return self

    def push(self, payload: Dict[str, Any]) -> None:
        self.callback(payload)


class FakeSession:
    """Stand-in for a supabase_auth Session model"""

    def __init__(self, access_token: str = "access", refresh_token: str = "refresh"):
        self.access_token = access_token
        self.refresh_token = refresh_token

    def model_dump(self, mode: str = "python") -> Dict[str, Any]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


class FakeAuth:
    """Async auth client: current session, set_session and state listeners"""

    def __init__(self):
        self.session: Optional[FakeSession] = None
        self.reject_with: Optional[Exception] = None
        self.set_calls: List[tuple] = []
        self.listeners: List[Any] = []

    async def get_session(self) -> Optional[FakeSession]:
        return self.session

    async def set_session(self, access_token: str, refresh_token: str):
        if self.reject_with is not None:
            raise self.reject_with
        self.set_calls.append((access_token, refresh_token))
        self.session = FakeSession(access_token, refresh_token)
        return SimpleNamespace(session=self.session)

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))

    def emit(self, event: str, session: Optional[FakeSession]) -> None:
        self.session = session
        for callback in list(self.listeners):
            callback(event, session)


class FakeSupabaseClient:
    """In-memory async Supabase client: tables, writes, realtime channels and auth"""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables = tables or {}
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.channels: List[FakeRealtimeChannel] = []
        self.auth = FakeAuth()
        self.subscribe_error: Optional[Exception] = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def channel(self, name: str) -> FakeRealtimeChannel:
        channel = FakeRealtimeChannel(name, self.subscribe_error)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeRealtimeChannel) -> None:
        channel.removed = True


@pytest.fixture
def fake_supabase(sample_clients):
    return FakeSupabaseClient({"clients": [dict(c) for c in sample_clients]})



@pytest.fixture
def make_session():
    """Factory for auth sessions the fake client hands out"""
    return FakeSession
