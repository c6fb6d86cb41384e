import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from storefront.core.config import settings
from storefront.core.db_errors import raise_on_lock_conflict, with_db_retry


class DummyOrig(Exception):
    def __init__(self, code: int, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.args = (code, message)


class DummySession:
    def __init__(self):
        self.rollback_calls = 0

    async def rollback(self):
        self.rollback_calls += 1


@pytest.fixture
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "DB_RETRY_ATTEMPTS", 2)
    monkeypatch.setattr(settings, "DB_RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "DB_RETRY_JITTER", 0.0)
    monkeypatch.setattr(settings, "DB_NOWAIT_LOCKS", True)


@pytest.mark.anyio
async def test_deadlock_is_retried_after_rollback(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def flaky_operation():
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("stmt", {}, DummyOrig(1213, "deadlock"))
        return "ok"

    result = await with_db_retry(session, flaky_operation, label="order_create")

    assert result == "ok"
    assert calls["count"] == 2
    assert session.rollback_calls == 1


@pytest.mark.anyio
async def test_retries_give_up_after_configured_attempts(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def always_waits():
        calls["count"] += 1
        raise OperationalError("stmt", {}, DummyOrig(1205, "lock wait timeout exceeded"))

    with pytest.raises(OperationalError):
        await with_db_retry(session, always_waits)

    assert calls["count"] == 2
    assert session.rollback_calls == 2


@pytest.mark.anyio
async def test_nowait_lock_conflict_not_retried(fast_retries):
    session = DummySession()
    calls = {"count": 0}

    async def nowait_operation():
        calls["count"] += 1
        raise OperationalError("stmt", {}, DummyOrig(3572, "could not obtain lock"))

    with pytest.raises(OperationalError):
        await with_db_retry(session, nowait_operation)

    assert calls["count"] == 1
    assert session.rollback_calls == 0


@pytest.mark.anyio
async def test_other_errors_propagate_immediately(fast_retries):
    session = DummySession()

    async def broken():
        raise OperationalError("stmt", {}, DummyOrig(1146, "table doesn't exist"))

    with pytest.raises(OperationalError):
        await with_db_retry(session, broken)
    assert session.rollback_calls == 0


def test_lock_conflict_translates_to_http_409():
    exc = OperationalError("stmt", {}, DummyOrig(3572, "could not obtain lock"))
    with pytest.raises(HTTPException) as ctx:
        raise_on_lock_conflict(exc)
    assert ctx.value.status_code == 409
    assert "locked" in ctx.value.detail


def test_non_lock_error_is_re_raised():
    exc = OperationalError("stmt", {}, DummyOrig(9999, "some other error"))
    with pytest.raises(OperationalError):
        raise_on_lock_conflict(exc)
