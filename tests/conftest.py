import pytest
from fastapi.testclient import TestClient

import gatedchat.events as events_mod
import gatedchat.main as main_mod
import gatedchat.verify_limits as limits_mod
from fakes import FakeConn, FakeStore


@pytest.fixture(autouse=True)
def _isolate_side_effects(tmp_path, monkeypatch):
    monkeypatch.setattr(events_mod, "EVENT_LOG_PATH", str(tmp_path / "events.log"))
    monkeypatch.setattr(limits_mod, "_REDIS_AVAILABLE", False)
    limits_mod._MEM_FAILS.clear()
    yield
    limits_mod._MEM_FAILS.clear()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def client(store):
    def _conn():
        yield FakeConn(store)

    main_mod.app.dependency_overrides[main_mod.get_conn] = _conn
    main_mod.app.dependency_overrides[main_mod.get_conn_or_none] = _conn
    with TestClient(main_mod.app, headers={"X-Forwarded-For": "127.0.0.1"}) as test_client:
        yield test_client
    main_mod.app.dependency_overrides.clear()
