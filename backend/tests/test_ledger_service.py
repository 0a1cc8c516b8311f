"""
Ledger engine tests.

Verifies:
- Balance equals the signed sum of transactions; running balances match prefix sums
- Receivable issuance credits both the receivable and its parent atomically
- Settlement rejects overpayment without mutation and closes at exactly zero
- Transfers are balance-neutral and share one transfer_id
- Deleting an account removes its transactions and leaves children orphaned
"""

import pytest

from app.models import Account, AccountTransaction
from app.services import ledger_service
from app.services.ledger_service import (
    ACCOUNT_STATUS_CLOSED,
    ACCOUNT_STATUS_OPEN,
    ACCOUNT_TYPE_RECEIVABLE,
    AccountNotFoundError,
    OverpaymentError,
)
from app.validation import ValidationError


def _history_oldest_first(account_id):
    return list(reversed(ledger_service.list_transactions(account_id)))


# =============================================================================
# ACCOUNT CREATION & TRANSACTIONS
# =============================================================================


class TestCreateAccount:
    def test_opening_balance_posts_one_income(self, db_session, accountant):
        account = ledger_service.create_account("Cash", 10_000, actor=accountant)

        assert account.balance_cents == 10_000
        assert account.status == ACCOUNT_STATUS_OPEN
        assert account.type == "standard"

        rows = ledger_service.list_transactions(account.id)
        assert len(rows) == 1
        assert rows[0].type == "income"
        assert rows[0].amount_cents == 10_000
        assert rows[0].running_balance_cents == 10_000
        assert rows[0].created_by == accountant.id
        assert rows[0].created_by_name == "Ari Accountant"

    def test_zero_opening_balance_posts_nothing(self, db_session):
        account = ledger_service.create_account("Bank")
        assert account.balance_cents == 0
        assert ledger_service.list_transactions(account.id) == []

    def test_negative_opening_balance_posts_expense(self, db_session):
        account = ledger_service.create_account("Overdraft", -2_500)
        rows = ledger_service.list_transactions(account.id)

        assert account.balance_cents == -2_500
        assert rows[0].type == "expense"
        assert rows[0].amount_cents == 2_500
        assert rows[0].running_balance_cents == -2_500

    def test_unknown_actor_name_defaults(self, db_session):
        account = ledger_service.create_account("Cash", 100)
        tx = ledger_service.list_transactions(account.id)[0]
        assert tx.created_by is None
        assert tx.created_by_name == "N/A"

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_rejected(self, db_session, name):
        with pytest.raises(ValidationError):
            ledger_service.create_account(name, 100)
        assert db_session.query(Account).count() == 0

    @pytest.mark.parametrize("amount", ["abc", 12.5, "12.50", True, "1e3"])
    def test_non_integer_balance_rejected(self, db_session, amount):
        with pytest.raises(ValidationError):
            ledger_service.create_account("Cash", amount)

    def test_missing_parent_rejected(self, db_session):
        with pytest.raises(AccountNotFoundError):
            ledger_service.create_account("Child", 0, parent_id=999)
        assert db_session.query(Account).count() == 0


class TestRecordTransaction:
    def test_balance_is_sum_of_signed_amounts(self, db_session):
        account = ledger_service.create_account("Cash", 1_000)
        ledger_service.record_transaction(account.id, "expense", 300, "Supplies")
        ledger_service.record_transaction(account.id, "income", 450, "Sale")
        ledger_service.record_transaction(account.id, "expense", 2_000, "Rent")

        refreshed = ledger_service.get_account(account.id)
        assert refreshed.balance_cents == 1_000 - 300 + 450 - 2_000

        prefix = 0
        for tx in _history_oldest_first(account.id):
            prefix += tx.signed_amount_cents
            assert tx.running_balance_cents == prefix
        assert prefix == refreshed.balance_cents

    def test_balance_may_go_negative(self, db_session):
        account = ledger_service.create_account("Cash")
        tx = ledger_service.record_transaction(account.id, "expense", 500, "Fees")
        assert tx.running_balance_cents == -500
        assert ledger_service.get_account(account.id).balance_cents == -500

    @pytest.mark.parametrize("amount", [0, -5, None, "x"])
    def test_non_positive_amount_rejected(self, db_session, amount):
        account = ledger_service.create_account("Cash", 100)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(account.id, "income", amount, "note")
        assert ledger_service.get_account(account.id).balance_cents == 100

    def test_blank_note_rejected(self, db_session):
        account = ledger_service.create_account("Cash", 100)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(account.id, "income", 10, "  ")

    @pytest.mark.parametrize("tx_type", ["payment", "transfer", "refund"])
    def test_only_income_and_expense_recordable(self, db_session, tx_type):
        account = ledger_service.create_account("Cash", 100)
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(account.id, tx_type, 10, "note")

    def test_missing_account(self, db_session):
        with pytest.raises(AccountNotFoundError):
            ledger_service.record_transaction(404, "income", 10, "note")
        assert db_session.query(AccountTransaction).count() == 0

    def test_history_newest_first_and_limit(self, db_session):
        account = ledger_service.create_account("Cash", 100)
        ledger_service.record_transaction(account.id, "income", 1, "one")
        ledger_service.record_transaction(account.id, "income", 2, "two")

        rows = ledger_service.list_transactions(account.id)
        assert [r.note for r in rows] == ["two", "one", "Opening balance"]
        assert [r.note for r in ledger_service.list_transactions(account.id, limit=1)] == ["two"]


# =============================================================================
# RECEIVABLES
# =============================================================================


class TestReceivables:
    def test_create_receivable_credits_parent_and_receivable(self, db_session):
        sales = ledger_service.create_account("Sales", 7_000)
        receivable = ledger_service.create_receivable("Acme Corp", 50_000, sales.id)

        parent = ledger_service.get_account(sales.id)
        assert receivable.balance_cents == 50_000
        assert receivable.initial_amount_cents == 50_000
        assert receivable.type == ACCOUNT_TYPE_RECEIVABLE
        assert receivable.status == ACCOUNT_STATUS_OPEN
        assert receivable.parent_id == sales.id
        assert parent.balance_cents == 57_000

        own = ledger_service.list_transactions(receivable.id)
        assert len(own) == 1
        assert own[0].type == "income"
        assert own[0].running_balance_cents == 50_000

        parent_latest = ledger_service.list_transactions(sales.id)[0]
        assert parent_latest.type == "income"
        assert parent_latest.note == "Invoice issued to Acme Corp"
        assert parent_latest.running_balance_cents == 57_000

    def test_missing_parent_leaves_nothing_behind(self, db_session):
        with pytest.raises(AccountNotFoundError):
            ledger_service.create_receivable("Acme Corp", 100, 12345)
        assert db_session.query(Account).count() == 0
        assert db_session.query(AccountTransaction).count() == 0

    def test_parent_required(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.create_receivable("Acme Corp", 100, None)

    def test_full_settlement_closes(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 50_000, sales.id)

        settlement = ledger_service.settle_receivable(acme.id, 50_000)

        assert settlement.closed is True
        assert settlement.transaction.type == "payment"
        assert settlement.transaction.running_balance_cents == 0
        refreshed = ledger_service.get_account(acme.id)
        assert refreshed.balance_cents == 0
        assert refreshed.status == ACCOUNT_STATUS_CLOSED
        # Collection does not move the parent
        assert ledger_service.get_account(sales.id).balance_cents == 50_000

    def test_partial_settlement_stays_open(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 50_000, sales.id)

        settlement = ledger_service.settle_receivable(acme.id, 20_000)

        assert settlement.closed is False
        refreshed = ledger_service.get_account(acme.id)
        assert refreshed.balance_cents == 30_000
        assert refreshed.status == ACCOUNT_STATUS_OPEN

    def test_receivable_deleted_before_close_keeps_payment_result(self, db_session, monkeypatch):
        sales = ledger_service.create_account("Sales")
        acme_id = ledger_service.create_receivable("Acme Corp", 700, sales.id).id
        close = ledger_service._close_receivable

        def _deleted_first(receivable_id):
            ledger_service.delete_account(receivable_id)
            return close(receivable_id)

        monkeypatch.setattr(ledger_service, "_close_receivable", _deleted_first)

        settlement = ledger_service.settle_receivable(acme_id, 700)

        assert settlement.closed is False
        assert settlement.account is None
        assert ledger_service.get_account(sales.id).balance_cents == 700

    def test_overpayment_rejected_without_mutation(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 50_000, sales.id)

        with pytest.raises(OverpaymentError):
            ledger_service.settle_receivable(acme.id, 50_001)

        refreshed = ledger_service.get_account(acme.id)
        assert refreshed.balance_cents == 50_000
        assert refreshed.status == ACCOUNT_STATUS_OPEN
        assert len(ledger_service.list_transactions(acme.id)) == 1

    def test_overpayment_is_a_validation_error(self):
        assert issubclass(OverpaymentError, ValidationError)

    def test_settling_standard_account_rejected(self, db_session):
        cash = ledger_service.create_account("Cash", 100)
        with pytest.raises(ValidationError):
            ledger_service.settle_receivable(cash.id, 50)
        assert ledger_service.get_account(cash.id).balance_cents == 100

    def test_close_settled_repairs_open_zero_balance(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 1_000, sales.id)
        ledger_service.settle_receivable(acme.id, 1_000)

        # Simulate a crash between the payment and the close step
        acme_row = db_session.get(Account, acme.id)
        acme_row.status = ACCOUNT_STATUS_OPEN
        db_session.commit()

        assert ledger_service.close_settled_receivables() == [acme.id]
        assert ledger_service.get_account(acme.id).status == ACCOUNT_STATUS_CLOSED
        assert ledger_service.close_settled_receivables() == []

    def test_receivable_parents_are_root_standard_accounts(self, db_session):
        sales = ledger_service.create_account("Sales")
        ledger_service.create_account("Sub", parent_id=sales.id)
        ledger_service.create_receivable("Acme Corp", 100, sales.id)
        bank = ledger_service.create_account("Bank")

        assert [a.id for a in ledger_service.list_receivable_parents()] == [bank.id, sales.id]


# =============================================================================
# TRANSFERS
# =============================================================================


class TestTransfer:
    def test_transfer_scenario(self, db_session):
        cash = ledger_service.create_account("Cash", 12_000)
        bank = ledger_service.create_account("Bank")

        debit, credit = ledger_service.transfer(cash.id, bank.id, 4_000)

        assert ledger_service.get_account(cash.id).balance_cents == 8_000
        assert ledger_service.get_account(bank.id).balance_cents == 4_000
        assert debit.transfer_id == credit.transfer_id
        assert debit.direction == "out"
        assert credit.direction == "in"
        assert debit.running_balance_cents == 8_000
        assert credit.running_balance_cents == 4_000
        assert debit.note == "Transfer to Bank"

    def test_transfer_is_balance_neutral(self, db_session):
        a = ledger_service.create_account("A", 500)
        b = ledger_service.create_account("B", -200)
        before = a.balance_cents + b.balance_cents

        ledger_service.transfer(a.id, b.id, 750, note="Rebalance")

        after = ledger_service.get_account(a.id).balance_cents + ledger_service.get_account(b.id).balance_cents
        assert after == before

    def test_same_account_rejected(self, db_session):
        a = ledger_service.create_account("A", 500)
        with pytest.raises(ValidationError):
            ledger_service.transfer(a.id, a.id, 100)

    def test_receivable_leg_rejected(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 1_000, sales.id)
        with pytest.raises(ValidationError):
            ledger_service.transfer(sales.id, acme.id, 100)
        assert ledger_service.get_account(sales.id).balance_cents == 1_000

    def test_missing_destination_leaves_source_untouched(self, db_session):
        a = ledger_service.create_account("A", 500)
        with pytest.raises(AccountNotFoundError):
            ledger_service.transfer(a.id, 999, 100)
        assert ledger_service.get_account(a.id).balance_cents == 500
        assert len(ledger_service.list_transactions(a.id)) == 1


# =============================================================================
# DELETION & AGGREGATES
# =============================================================================


class TestDeleteAndAggregates:
    def test_cash_scenario_then_delete(self, db_session):
        cash = ledger_service.create_account("Cash", 10_000)
        tx = ledger_service.record_transaction(cash.id, "expense", 3_000, "Supplies")
        assert tx.running_balance_cents == 7_000
        ledger_service.record_transaction(cash.id, "income", 5_000, "Sale")
        assert ledger_service.get_account(cash.id).balance_cents == 12_000

        deleted = ledger_service.delete_account(cash.id)

        assert deleted == 3
        with pytest.raises(AccountNotFoundError):
            ledger_service.get_account(cash.id)
        assert db_session.query(AccountTransaction).filter_by(account_id=cash.id).count() == 0

    def test_delete_missing_account(self, db_session):
        with pytest.raises(AccountNotFoundError):
            ledger_service.delete_account(42)

    def test_delete_does_not_touch_children_or_parent(self, db_session):
        sales = ledger_service.create_account("Sales")
        acme = ledger_service.create_receivable("Acme Corp", 2_000, sales.id)
        child = ledger_service.create_account("Sub", 300, parent_id=sales.id)

        ledger_service.delete_account(acme.id)
        assert ledger_service.get_account(sales.id).balance_cents == 2_000

        ledger_service.delete_account(sales.id)
        tree = ledger_service.get_account_tree()
        assert [o["id"] for o in tree["orphans"]] == [child.id]

    def test_account_tree_nests_every_level(self, db_session):
        sales = ledger_service.create_account("Sales", 1_000)
        region = ledger_service.create_account("Region", 400, parent_id=sales.id)
        store = ledger_service.create_account("Store", 2_500, parent_id=region.id)

        tree = ledger_service.get_account_tree()

        assert [r["id"] for r in tree["roots"]] == [sales.id]
        assert tree["orphans"] == []
        root = tree["roots"][0]
        assert [c["id"] for c in root["children"]] == [region.id]
        middle = root["children"][0]
        assert [c["id"] for c in middle["children"]] == [store.id]
        assert middle["rollup_balance_cents"] == 2_900
        assert root["children_balance_cents"] == 2_900
        assert root["rollup_balance_cents"] == 3_900

    def test_orphan_keeps_its_subtree(self, db_session):
        sales = ledger_service.create_account("Sales")
        region = ledger_service.create_account("Region", parent_id=sales.id)
        store = ledger_service.create_account("Store", 75, parent_id=region.id)

        ledger_service.delete_account(sales.id)
        tree = ledger_service.get_account_tree()

        assert tree["roots"] == []
        assert [o["id"] for o in tree["orphans"]] == [region.id]
        assert tree["orphans"][0]["children"][0]["id"] == store.id
        assert tree["orphans"][0]["rollup_balance_cents"] == 75

    def test_liquidity_sums_root_standard_accounts(self, db_session):
        sales = ledger_service.create_account("Sales", 1_000)
        ledger_service.create_account("Sub", 5_000, parent_id=sales.id)
        ledger_service.create_receivable("Acme Corp", 2_000, sales.id)
        ledger_service.create_account("Bank", -400)

        # Sales (1000 + 2000 from the invoice) + Bank (-400)
        assert ledger_service.get_company_liquidity() == 2_600

    def test_account_tree_rollup(self, db_session):
        sales = ledger_service.create_account("Sales", 1_000)
        ledger_service.create_account("Sub", 250, parent_id=sales.id)

        tree = ledger_service.get_account_tree()
        root = tree["roots"][0]
        assert root["id"] == sales.id
        assert root["children_balance_cents"] == 250
        assert root["rollup_balance_cents"] == 1_250
        assert tree["liquidity_cents"] == 1_000

    def test_verify_history_detects_drift(self, db_session):
        cash = ledger_service.create_account("Cash", 1_000)
        ledger_service.record_transaction(cash.id, "expense", 100, "Fees")
        assert ledger_service.verify_account_history(cash.id).ok

        row = db_session.get(Account, cash.id)
        row.balance_cents = 5
        db_session.commit()

        check = ledger_service.verify_account_history(cash.id)
        assert not check.ok
        assert check.replayed_balance_cents == 900
        assert check.recorded_balance_cents == 5
