"""
CLI command tests through the Flask CLI runner.
"""

from app.extensions import db
from app.models import Account, Course, User
from app.services import ledger_service


def test_seed_demo_is_repeatable(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "seed-demo"])
    assert result.exit_code == 0, result.output
    assert "DONE Demo data ready." in result.output
    assert db_session.query(User).count() == 4
    assert db_session.query(Course).filter_by(status="published").count() == 1
    assert db_session.get(User, "demo-accountant").role == "accountant"

    accounts_before = db_session.query(Account).count()
    result = runner.invoke(args=["system", "seed-demo"])
    assert result.exit_code == 0, result.output
    assert "already exist" in result.output
    assert db_session.query(Account).count() == accounts_before


def test_users_create_and_set_role(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["users", "create", "--uid", "cli-user", "--name", "Cli User", "--role", "creator"])
    assert "PASS Created user: cli-user" in result.output

    result = runner.invoke(args=["users", "create", "--uid", "cli-user"])
    assert "FAIL User 'cli-user' already exists" in result.output

    result = runner.invoke(args=["users", "set-role", "cli-user", "accountant"])
    assert "PASS cli-user is now 'accountant'" in result.output

    result = runner.invoke(args=["users", "list", "--role", "accountant"])
    assert "cli-user" in result.output


def test_ledger_liquidity_and_accounts(app, db_session):
    sales = ledger_service.create_account("Sales", 12_345)
    petty = ledger_service.create_account("Petty Cash", 500, parent_id=sales.id)
    ledger_service.create_account("Till", parent_id=petty.id)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "liquidity"])
    assert result.output.strip() == "123.45"

    result = runner.invoke(args=["ledger", "accounts"])
    assert "Petty Cash" in result.output
    assert "    Till" in result.output
    assert "Liquidity: 123.45" in result.output


def test_ledger_verify_flags_drift(app, db_session):
    cash = ledger_service.create_account("Cash", 1_000)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "verify"])
    assert result.exit_code == 0
    assert f"PASS Account {cash.id}" in result.output

    db_session.get(Account, cash.id).balance_cents = 1
    db_session.commit()

    result = runner.invoke(args=["ledger", "verify", "--account-id", str(cash.id)])
    assert result.exit_code == 1
    assert "FAIL Account" in result.output


def test_close_settled(app, db_session):
    sales = ledger_service.create_account("Sales")
    acme = ledger_service.create_receivable("Acme Corp", 700, sales.id)
    ledger_service.settle_receivable(acme.id, 700)
    row = db_session.get(Account, acme.id)
    row.status = "open"
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["ledger", "close-settled"])

    assert f"PASS Closed 1 receivable(s): {acme.id}" in result.output
    db.session.expire_all()
    assert db_session.get(Account, acme.id).status == "closed"


def test_users_show(app, db_session, student):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["users", "show", student.id])
    assert result.exit_code == 0, result.output
    assert "Sam Student (student), role 'student'" in result.output
    assert "Badges: (none)" in result.output

    result = runner.invoke(args=["users", "show", "ghost"])
    assert result.exit_code == 1
    assert "User ghost not found" in result.output
