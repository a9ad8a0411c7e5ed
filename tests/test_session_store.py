"""
Tests for session persistence and the session model.
"""

import uuid

from craftkit.models.session import AuthSession, DisplayProfile
from craftkit.storage.session_store import SessionStore


def make_session(**changes) -> AuthSession:
    data = {
        "account_id": "abc",
        "access_token": "token",
        "refresh_token": "refresh",
        "expires_at": 2000.0,
        "profile": DisplayProfile(id="abc", name="Steve"),
    }
    data.update(changes)
    return AuthSession(**data)


class TestSessionStore:
    def test_round_trip(self, tmp_path):
        store = SessionStore(tmp_path / "session.json")
        session = make_session(xuid="123")

        store.save(session)

        assert store.load() == session

    def test_missing_file(self, tmp_path):
        assert SessionStore(tmp_path / "session.json").load() is None

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")
        assert SessionStore(path).load() is None

    def test_invalid_record_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text('{"account_id": "abc"}', encoding="utf-8")
        assert SessionStore(path).load() is None

    def test_clear(self, tmp_path):
        store = SessionStore(tmp_path / "session.json")
        store.clear()
        store.save(make_session())
        store.clear()
        assert store.load() is None


class TestAuthSession:
    def test_expiry_honours_skew(self):
        session = make_session(expires_at=1000.0)
        assert not session.is_expired(now=900.0, skew=60.0)
        assert session.is_expired(now=950.0, skew=60.0)
        assert session.is_expired(now=1001.0, skew=0)

    def test_session_without_expiry(self):
        assert not make_session(expires_at=None).is_expired(now=1e12)

    def test_offline_session(self):
        first = AuthSession.offline("Steve")
        second = AuthSession.offline("Steve")

        assert first == second
        assert uuid.UUID(first.profile.id).version == 3
        assert first.access_token == first.profile.id
        assert first.user_type == "legacy"
        assert first.refresh_token is None
        assert AuthSession.offline("Alex").profile.id != first.profile.id
