"""
Tests for token signing and the in-memory session store.
"""

import threading
from datetime import datetime, timedelta

import jwt
import pytest

from healthinspect.api.auth import (
    cleanup_expired_sessions,
    end_session,
    end_user_sessions,
    generate_token,
    session_snapshot,
    sessions,
    start_session,
    touch_session,
    verify_token,
)
from healthinspect.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from scripts.generate_secret_key import build_env


@pytest.fixture(autouse=True)
def clear_sessions():
    sessions.clear()
    yield
    sessions.clear()


def test_token_carries_role_and_district(make_user):
    user = make_user("pharmacy_inspector", district="huye")
    payload = jwt.decode(generate_token(user), SECRET_KEY, algorithms=["HS256"])
    assert payload["user_id"] == user.id
    assert payload["role"] == "pharmacy_inspector"
    assert payload["district"] == "huye"


def test_tokens_from_back_to_back_logins_differ(make_user):
    user = make_user("admin")
    first, second = generate_token(user), generate_token(user)
    assert first != second
    assert verify_token(first)["user_id"] == verify_token(second)["user_id"]


def test_verify_token_rejects_tampered_and_foreign_tokens(make_user):
    token = generate_token(make_user("admin"))
    assert verify_token(token + "x") is None
    assert verify_token(jwt.encode({"user_id": "u"}, "another-key-of-enough-length-000", algorithm="HS256")) is None


def test_session_lifecycle():
    start_session("t1", "u1")
    start_session("t2", "u1")
    start_session("t3", "u2")

    data = touch_session("t1")
    assert data["user_id"] == "u1"
    data["user_id"] = "someone-else"
    assert touch_session("t1")["user_id"] == "u1"
    assert touch_session("missing") is None

    assert end_session("t3") is True
    assert end_session("t3") is False
    assert end_user_sessions("u1") == 2
    assert session_snapshot() == []


def test_cleanup_drops_only_stale_sessions():
    start_session("fresh", "u1")
    start_session("stale", "u2")
    sessions["stale"]["last_activity"] = datetime.utcnow() - timedelta(hours=TOKEN_EXPIRY_HOURS, minutes=1)

    assert cleanup_expired_sessions() == 1
    assert list(sessions) == ["fresh"]


def test_concurrent_logins_and_sweeps():
    errors = []

    def login_many(prefix):
        try:
            for i in range(300):
                start_session(f"{prefix}-{i}", prefix)
                touch_session(f"{prefix}-{i}")
        except Exception as e:
            errors.append(e)

    def sweep():
        try:
            for _ in range(300):
                cleanup_expired_sessions()
                end_user_sessions("a")
                session_snapshot()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=login_many, args=(p,)) for p in ("a", "b", "c")]
    threads.append(threading.Thread(target=sweep))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    end_user_sessions("a")
    assert len(session_snapshot()) == 600


# ── .env starter ─────────────────────────────────────────────────────

def test_build_env_fills_every_setting():
    env = dict(line.split("=", 1) for line in build_env(db_uri="sqlite:///x.db").splitlines())
    assert set(env) == {"DB_URI", "JWT_SECRET_KEY", "API_HOST", "API_PORT", "SEED_PASSWORD"}
    assert env["DB_URI"] == "sqlite:///x.db"
    assert len(env["JWT_SECRET_KEY"]) == 64
    assert int(env["JWT_SECRET_KEY"], 16) >= 0
    assert len(build_env(64).split("JWT_SECRET_KEY=")[1].splitlines()[0]) == 128


def test_build_env_rejects_short_keys():
    with pytest.raises(ValueError, match="at least 32 bytes"):
        build_env(16)
