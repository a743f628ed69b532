from __future__ import annotations

import pytest

from backend import session as session_store


@pytest.fixture(autouse=True)
def isolated_sessions(tmp_path, monkeypatch):
    monkeypatch.setattr(session_store, "SESSION_ROOT", tmp_path / "user_sessions")
    session_store.set_current_session(None)
    yield tmp_path / "user_sessions"
    session_store.set_current_session(None)


@pytest.fixture()
def session_id() -> str:
    return session_store.start_session()["session_id"]
