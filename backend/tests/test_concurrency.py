"""
Atomic operation tests.

Verifies:
- Version-stamp conflicts are detected at flush and the whole body retried
- Retries back off exponentially and give up with RetryExhaustedError
- Non-conflict errors propagate immediately and roll the session back
- A ledger write that loses a race re-reads the balance it builds on
"""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.extensions import db
from app.models import Account, AccountTransaction
from app.services import concurrency, ledger_service
from app.services.concurrency import RetryExhaustedError, run_with_retry


def _concurrent_bump(account_id: int, delta: int = 500) -> None:
    """Commit a write to the account through a separate connection."""
    with db.engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE accounts SET balance_cents = balance_cents + :delta, "
                "version_id = version_id + 1 WHERE id = :id"
            ),
            {"delta": delta, "id": account_id},
        )


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(concurrency.time, "sleep", recorded.append)
    return recorded


class TestRunWithRetry:
    def test_returns_first_success(self, db_session, sleeps):
        assert run_with_retry(lambda: 42) == 42
        assert sleeps == []

    def test_retries_stale_data_with_backoff(self, db_session, sleeps):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_with_retry(_op, backoff_base=0.01) == "done"
        assert len(calls) == 3
        assert sleeps == [0.01, 0.02]

    def test_retries_operational_error(self, db_session, sleeps):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE accounts", {}, Exception("database is locked"))
            return True

        assert run_with_retry(_op) is True
        assert len(calls) == 2

    def test_exhaustion_raises(self, db_session, sleeps, caplog):
        def _op():
            raise StaleDataError("version mismatch")

        with pytest.raises(RetryExhaustedError) as excinfo:
            run_with_retry(_op, attempts=3, backoff_base=0.01)

        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_error, StaleDataError)
        # No sleep after the final attempt
        assert len(sleeps) == 2
        assert "Atomic operation conflicted (attempt 3/3)" in caplog.text

    def test_attempts_default_from_config(self, app, db_session, sleeps, monkeypatch):
        monkeypatch.setitem(app.config, "ATOMIC_RETRY_ATTEMPTS", 2)
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(RetryExhaustedError):
            run_with_retry(_op)
        assert len(calls) == 2

    def test_other_errors_propagate_without_retry(self, db_session, sleeps):
        calls = []

        def _op():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(_op)
        assert len(calls) == 1

    def test_integrity_error_retried_only_when_requested(self, db_session, sleeps):
        def _collide():
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            run_with_retry(_collide)

        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                _collide()
            return "winner"

        assert run_with_retry(_op, retry_on=(IntegrityError,)) == "winner"

    def test_failed_body_leaves_no_pending_write(self, db_session, sleeps):
        def _op():
            db.session.add(Account(name="Ghost", balance_cents=0, type="standard", status="open"))
            db.session.flush()
            raise ValueError("abort")

        with pytest.raises(ValueError):
            run_with_retry(_op)
        assert db_session.query(Account).filter_by(name="Ghost").count() == 0


class TestVersionConflicts:
    def test_stale_row_detected_and_body_replayed(self, db_session, sleeps):
        account = ledger_service.create_account("Cash", 1_000)
        calls = []

        def _op():
            calls.append(1)
            row = db.session.get(Account, account.id)
            balance = row.balance_cents
            if len(calls) == 1:
                _concurrent_bump(account.id)
            row.balance_cents = balance + 100
            db.session.commit()
            return row.balance_cents

        assert run_with_retry(_op) == 1_600
        assert len(calls) == 2

    def test_record_transaction_rereads_after_losing_race(self, db_session, sleeps, monkeypatch):
        account = ledger_service.create_account("Cash", 1_000)
        original_post = ledger_service._post
        raced = []

        def racing_post(target, *args, **kwargs):
            if not raced:
                raced.append(target.id)
                _concurrent_bump(target.id)
            return original_post(target, *args, **kwargs)

        monkeypatch.setattr(ledger_service, "_post", racing_post)

        tx = ledger_service.record_transaction(account.id, "income", 100, "Sale")

        assert raced == [account.id]
        assert tx.running_balance_cents == 1_600
        assert ledger_service.get_account(account.id).balance_cents == 1_600

    def test_persistent_conflict_exhausts_without_partial_write(self, app, db_session, sleeps, monkeypatch):
        monkeypatch.setitem(app.config, "ATOMIC_RETRY_ATTEMPTS", 3)
        cash = ledger_service.create_account("Cash", 1_000)
        bank = ledger_service.create_account("Bank")
        original_post = ledger_service._post

        def always_racing_post(target, *args, **kwargs):
            _concurrent_bump(target.id, delta=1)
            return original_post(target, *args, **kwargs)

        monkeypatch.setattr(ledger_service, "_post", always_racing_post)

        with pytest.raises(RetryExhaustedError):
            ledger_service.transfer(cash.id, bank.id, 250)

        # Only the opening-balance row exists; no transfer leg was committed
        assert db_session.query(AccountTransaction).filter_by(type="transfer").count() == 0
        # One concurrent bump per attempt landed on the source
        assert ledger_service.get_account(cash.id).balance_cents == 1_003
