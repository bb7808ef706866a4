from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core import config, rate_limit
from app.core.exceptions import ConflictError, RateLimitExceeded
from app.db.transactions import is_transient, run_in_transaction


def _locked():
    return OperationalError("INSERT ...", {}, Exception("database is locked"))


def test_is_transient():
    assert is_transient(_locked())
    assert not is_transient(IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed")))


def test_transient_errors_are_retried(db):
    calls = []

    def work():
        calls.append(1)
        if len(calls) < 2:
            raise _locked()
        return "done"

    assert run_in_transaction(db, work) == "done"
    assert len(calls) == 2


def test_retries_are_bounded(db, monkeypatch):
    monkeypatch.setattr(config, "TRANSACTION_RETRY_ATTEMPTS", 3)
    calls = []

    def work():
        calls.append(1)
        raise _locked()

    with pytest.raises(ConflictError) as exc:
        run_in_transaction(db, work)
    assert exc.value.code == "transaction_conflict"
    assert len(calls) == 3


def test_other_errors_propagate_untouched(db):
    def work():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        run_in_transaction(db, work)


def test_rate_limit_window(db, clock):
    for expected in (1, 2, 3):
        assert rate_limit.hit(db, "booking:1", limit=3, window_seconds=60) == expected

    with pytest.raises(RateLimitExceeded) as exc:
        rate_limit.hit(db, "booking:1", limit=3, window_seconds=60)
    assert exc.value.retry_after == 60
    assert exc.value.to_dict()["reason"] == "rate_limited"

    # other keys have their own counter
    assert rate_limit.hit(db, "booking:2", limit=3, window_seconds=60) == 1

    clock.set(clock.now + timedelta(seconds=61))
    assert rate_limit.hit(db, "booking:1", limit=3, window_seconds=60) == 1
