# Overview: Service-layer operations for the accounting ledger; encapsulates business logic and database work.

"""
Ledger Invariants (authoritative)

- Account.balance_cents == signed sum of the account's transactions.
  income and transfer-in add; expense, payment and transfer-out subtract.
- Every balance change writes exactly one AccountTransaction whose
  running_balance_cents is the balance right after it was applied.
- Transactions are append-only; they disappear only together with their
  account (delete_account).
- Each operation is one atomic body run through run_with_retry. Account rows
  carry a version stamp, so two operations touching the same account
  serialize (the loser retries); disjoint accounts never coordinate.
- No lower bound on balances: accounts may go negative.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Account, AccountTransaction
from ..validation import (
    ValidationError,
    coerce_cents,
    coerce_positive_cents,
    optional_text,
    require_choice,
    require_text,
)
from app.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class LedgerError(Exception):
    """Raised for ledger operation errors."""
    pass


class AccountNotFoundError(LedgerError):
    """Referenced account is missing at transaction time."""

    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class OverpaymentError(ValidationError):
    """Settlement larger than the receivable's outstanding balance."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

ACCOUNT_TYPE_STANDARD = "standard"
ACCOUNT_TYPE_RECEIVABLE = "receivable"

ACCOUNT_STATUS_OPEN = "open"
ACCOUNT_STATUS_CLOSED = "closed"

TX_INCOME = "income"
TX_EXPENSE = "expense"
TX_PAYMENT = "payment"
TX_TRANSFER = "transfer"

# Types a user may record directly; payment and transfer have dedicated operations
RECORDABLE_TX_TYPES = [TX_INCOME, TX_EXPENSE]

TRANSFER_OUT = "out"
TRANSFER_IN = "in"

NAME_MAX_LENGTH = 120


@dataclass
class Settlement:
    account: Account | None
    transaction: AccountTransaction
    closed: bool


@dataclass
class HistoryCheck:
    account_id: int
    recorded_balance_cents: int
    replayed_balance_cents: int
    mismatches: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches and self.recorded_balance_cents == self.replayed_balance_cents

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "ok": self.ok,
            "recorded_balance_cents": self.recorded_balance_cents,
            "replayed_balance_cents": self.replayed_balance_cents,
            "mismatches": self.mismatches,
        }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _actor_fields(actor) -> tuple[str | None, str]:
    if actor is None:
        return None, "N/A"
    return actor.id, actor.display_name or "N/A"


def _signed_delta(tx_type: str, amount_cents: int, direction: str | None = None) -> int:
    if tx_type == TX_INCOME:
        return amount_cents
    if tx_type == TX_TRANSFER:
        return amount_cents if direction == TRANSFER_IN else -amount_cents
    # expense, payment
    return -amount_cents


def _post(
    account: Account,
    tx_type: str,
    amount_cents: int,
    note: str,
    actor=None,
    *,
    direction: str | None = None,
    transfer_id: str | None = None,
    now=None,
) -> AccountTransaction:
    """
    Apply one balance change to account and append its transaction row.

    Caller owns the atomic body and the commit.
    """
    new_balance = account.balance_cents + _signed_delta(tx_type, amount_cents, direction)
    created_by, created_by_name = _actor_fields(actor)

    account.balance_cents = new_balance
    tx = AccountTransaction(
        account=account,
        type=tx_type,
        amount_cents=amount_cents,
        direction=direction,
        transfer_id=transfer_id,
        note=note,
        running_balance_cents=new_balance,
        created_at=now or utcnow(),
        created_by=created_by,
        created_by_name=created_by_name,
    )
    db.session.add(tx)
    return tx


def _get_locked(account_id: int) -> Account:
    account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
    if not account:
        raise AccountNotFoundError(account_id)
    return account


# =============================================================================
# ACCOUNT CREATION
# =============================================================================

def create_account(
    name: str,
    initial_balance_cents: int = 0,
    parent_id: int | None = None,
    actor=None,
) -> Account:
    """
    Create a standard account, optionally under a parent.

    A non-zero opening balance is posted as one transaction in the same
    commit so the balance invariant holds from the first row: income for a
    positive opening balance, expense (with the magnitude) for a negative one.

    Raises:
        ValidationError: Blank name or non-integer balance (before any store call)
        AccountNotFoundError: parent_id given but missing
    """
    name = require_text(name, "name", NAME_MAX_LENGTH)
    initial_balance_cents = coerce_cents(initial_balance_cents, "initial_balance_cents")

    def _op():
        if parent_id is not None:
            parent = db.session.query(Account).filter_by(id=parent_id).first()
            if not parent:
                raise AccountNotFoundError(parent_id)

        now = utcnow()
        account = Account(
            name=name,
            balance_cents=0,
            type=ACCOUNT_TYPE_STANDARD,
            status=ACCOUNT_STATUS_OPEN,
            parent_id=parent_id,
            created_at=now,
            created_by=actor.id if actor else None,
        )
        db.session.add(account)

        if initial_balance_cents > 0:
            _post(account, TX_INCOME, initial_balance_cents, "Opening balance", actor, now=now)
        elif initial_balance_cents < 0:
            _post(account, TX_EXPENSE, -initial_balance_cents, "Opening balance", actor, now=now)

        db.session.commit()
        return account

    account = run_with_retry(_op)
    current_app.logger.info(
        "Created account %s (%r) with opening balance %d", account.id, account.name, account.balance_cents
    )
    return account


# =============================================================================
# TRANSACTIONS
# =============================================================================

def record_transaction(
    account_id: int,
    tx_type: str,
    amount_cents: int,
    note: str,
    actor=None,
) -> AccountTransaction:
    """
    Record an income or expense against one account.

    The account's balance is read inside the atomic body; a concurrent writer
    on the same account makes this body retry from the read.

    Raises:
        ValidationError: Bad type, non-positive amount, blank note
        AccountNotFoundError: Account missing at transaction time
    """
    tx_type = require_choice(tx_type, "transaction type", RECORDABLE_TX_TYPES)
    amount_cents = coerce_positive_cents(amount_cents, "amount_cents")
    note = require_text(note, "note")

    def _op():
        account = _get_locked(account_id)
        tx = _post(account, tx_type, amount_cents, note, actor)
        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    current_app.logger.info(
        "Recorded %s of %d on account %s (running balance %d)",
        tx.type, tx.amount_cents, tx.account_id, tx.running_balance_cents,
    )
    return tx


def list_transactions(account_id: int, limit: int | None = None) -> list[AccountTransaction]:
    """Transaction history, newest first."""
    get_account(account_id)
    query = (
        db.session.query(AccountTransaction)
        .filter_by(account_id=account_id)
        .order_by(AccountTransaction.created_at.desc(), AccountTransaction.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


# =============================================================================
# RECEIVABLES
# =============================================================================

def create_receivable(
    customer_name: str,
    invoice_amount_cents: int,
    parent_id: int,
    actor=None,
) -> Account:
    """
    Open a receivable for a customer invoice under a parent account.

    The invoice is recognized as revenue immediately: in one commit the new
    receivable gets an income posting for the full amount and the parent's
    balance rises by the same amount through its own income posting.

    The engine only requires the parent to exist; restricting parents to root
    standard accounts is the caller's filter (see list_receivable_parents).

    Raises:
        ValidationError: Blank customer name or non-positive amount
        AccountNotFoundError: Parent missing at transaction time
    """
    customer_name = require_text(customer_name, "customer_name", NAME_MAX_LENGTH)
    invoice_amount_cents = coerce_positive_cents(invoice_amount_cents, "invoice_amount_cents")
    if parent_id is None:
        raise ValidationError("parent_id is required for a receivable")

    def _op():
        parent = _get_locked(parent_id)
        now = utcnow()

        receivable = Account(
            name=customer_name,
            balance_cents=0,
            type=ACCOUNT_TYPE_RECEIVABLE,
            status=ACCOUNT_STATUS_OPEN,
            parent_id=parent.id,
            initial_amount_cents=invoice_amount_cents,
            created_at=now,
            created_by=actor.id if actor else None,
        )
        db.session.add(receivable)

        _post(receivable, TX_INCOME, invoice_amount_cents, "Invoice issued", actor, now=now)
        _post(parent, TX_INCOME, invoice_amount_cents, f"Invoice issued to {customer_name}", actor, now=now)

        db.session.commit()
        return receivable

    receivable = run_with_retry(_op)
    current_app.logger.info(
        "Opened receivable %s (%r) for %d under account %s",
        receivable.id, receivable.name, invoice_amount_cents, parent_id,
    )
    return receivable


def settle_receivable(receivable_id: int, payment_amount_cents: int, actor=None) -> Settlement:
    """
    Apply a customer payment to a receivable.

    Only the receivable moves; the parent already recognized the revenue when
    the invoice was issued and is not touched here.

    When the payment brings the balance to exactly zero the receivable is
    closed in a second, separate atomic step after the payment commits.
    A failure between the two leaves a zero-balance open receivable;
    close_settled_receivables() repairs that state.

    Raises:
        ValidationError: Non-positive amount, or account is not a receivable
        OverpaymentError: Payment exceeds outstanding balance (no mutation)
        AccountNotFoundError: Receivable missing at transaction time
    """
    payment_amount_cents = coerce_positive_cents(payment_amount_cents, "payment_amount_cents")

    def _op():
        receivable = _get_locked(receivable_id)
        if receivable.type != ACCOUNT_TYPE_RECEIVABLE:
            raise ValidationError(f"Account {receivable_id} is not a receivable")
        if payment_amount_cents > receivable.balance_cents:
            raise OverpaymentError(
                f"Payment of {payment_amount_cents} exceeds outstanding balance of {receivable.balance_cents}"
            )
        tx = _post(receivable, TX_PAYMENT, payment_amount_cents, "Payment received", actor)
        db.session.commit()
        return tx

    tx = run_with_retry(_op)
    remaining = tx.running_balance_cents

    current_app.logger.info(
        "Settled %d on receivable %s (remaining %d)",
        payment_amount_cents, receivable_id, remaining,
    )

    # The payment is committed; a receivable deleted since then is reported
    # as not closed rather than failing the settlement.
    try:
        closed = _close_receivable(receivable_id) if remaining == 0 else False
        account = get_account(receivable_id)
    except AccountNotFoundError:
        current_app.logger.warning(
            "Receivable %s disappeared after settlement; close step skipped", receivable_id
        )
        return Settlement(account=None, transaction=tx, closed=False)

    if closed:
        current_app.logger.info("Closed receivable %s", receivable_id)
    return Settlement(account=account, transaction=tx, closed=closed)


def _close_receivable(receivable_id: int) -> bool:
    """Close a receivable whose balance is zero. Idempotent."""
    def _op():
        receivable = _get_locked(receivable_id)
        if receivable.balance_cents != 0:
            db.session.rollback()
            return False
        if receivable.status != ACCOUNT_STATUS_CLOSED:
            receivable.status = ACCOUNT_STATUS_CLOSED
            db.session.commit()
        return True

    return run_with_retry(_op)


def close_settled_receivables() -> list[int]:
    """
    Close every open receivable that already sits at zero.

    Returns:
        Ids of the receivables that were closed
    """
    candidate_ids = [
        row.id
        for row in db.session.query(Account.id).filter(
            Account.type == ACCOUNT_TYPE_RECEIVABLE,
            Account.status == ACCOUNT_STATUS_OPEN,
            Account.balance_cents == 0,
        )
    ]
    closed = [rid for rid in candidate_ids if _close_receivable(rid)]
    if closed:
        current_app.logger.info("Closed %d settled receivable(s): %s", len(closed), closed)
    return closed


def list_receivable_parents() -> list[Account]:
    """Accounts eligible to hold receivables: root standard accounts."""
    return (
        db.session.query(Account)
        .filter(Account.type == ACCOUNT_TYPE_STANDARD, Account.parent_id.is_(None))
        .order_by(Account.name.asc())
        .all()
    )


# =============================================================================
# TRANSFERS
# =============================================================================

def transfer(
    from_account_id: int,
    to_account_id: int,
    amount_cents: int,
    note: str | None = None,
    actor=None,
) -> tuple[AccountTransaction, AccountTransaction]:
    """
    Move money between two standard accounts.

    Both legs are written in one commit and share a transfer_id. Each leg's
    running balance is its own account's snapshot; the pair is
    balance-neutral across the two accounts.

    Returns:
        (debit leg, credit leg)

    Raises:
        ValidationError: Same account, non-positive amount, non-standard account
        AccountNotFoundError: Either account missing at transaction time
    """
    amount_cents = coerce_positive_cents(amount_cents, "amount_cents")
    note = optional_text(note, "note")
    if from_account_id == to_account_id:
        raise ValidationError("Cannot transfer to the same account")

    def _op():
        # Fixed lock order (by id) across both rows
        rows = lock_for_update(
            db.session.query(Account)
            .filter(Account.id.in_([from_account_id, to_account_id]))
            .order_by(Account.id)
        ).all()
        by_id = {a.id: a for a in rows}
        source = by_id.get(from_account_id)
        if not source:
            raise AccountNotFoundError(from_account_id)
        destination = by_id.get(to_account_id)
        if not destination:
            raise AccountNotFoundError(to_account_id)

        for account in (source, destination):
            if account.type != ACCOUNT_TYPE_STANDARD:
                raise ValidationError(f"Transfers require standard accounts; {account.id} is {account.type}")

        transfer_id = uuid.uuid4().hex
        now = utcnow()
        debit = _post(
            source, TX_TRANSFER, amount_cents, note or f"Transfer to {destination.name}", actor,
            direction=TRANSFER_OUT, transfer_id=transfer_id, now=now,
        )
        credit = _post(
            destination, TX_TRANSFER, amount_cents, note or f"Transfer from {source.name}", actor,
            direction=TRANSFER_IN, transfer_id=transfer_id, now=now,
        )
        db.session.commit()
        return debit, credit

    debit, credit = run_with_retry(_op)
    current_app.logger.info(
        "Transferred %d from account %s to account %s (transfer %s)",
        amount_cents, from_account_id, to_account_id, debit.transfer_id,
    )
    return debit, credit


# =============================================================================
# DELETION
# =============================================================================

def delete_account(account_id: int) -> int:
    """
    Delete an account and all of its transactions in one commit.

    Child accounts are left in place with a dangling parent_id, and any
    balance this account contributed to a parent stays on the parent.

    Returns:
        Number of transactions deleted with the account
    """
    def _op():
        account = _get_locked(account_id)
        transactions = db.session.query(AccountTransaction).filter_by(account_id=account_id).all()
        for tx in transactions:
            db.session.delete(tx)
        db.session.delete(account)
        db.session.commit()
        return len(transactions)

    deleted = run_with_retry(_op)
    current_app.logger.info("Deleted account %s with %d transaction(s)", account_id, deleted)
    return deleted


# =============================================================================
# READS & AGGREGATES
# =============================================================================

def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise AccountNotFoundError(account_id)
    return account


def list_accounts() -> list[Account]:
    return db.session.query(Account).order_by(Account.name.asc(), Account.id.asc()).all()


def get_company_liquidity() -> int:
    """Sum of balances over root standard accounts. Derived, never stored."""
    total = (
        db.session.query(func.coalesce(func.sum(Account.balance_cents), 0))
        .filter(Account.type == ACCOUNT_TYPE_STANDARD, Account.parent_id.is_(None))
        .scalar()
    )
    return int(total or 0)


def _tree_node(account: Account, children: dict[int, list[Account]]) -> dict:
    kids = [_tree_node(k, children) for k in children.get(account.id, [])]
    descendants_balance = sum(k["rollup_balance_cents"] for k in kids)
    return {
        **account.to_dict(),
        "children": kids,
        "children_balance_cents": descendants_balance,
        "rollup_balance_cents": account.balance_cents + descendants_balance,
    }


def get_account_tree() -> dict:
    """
    Root accounts with their nested descendants and balance rollups.

    children_balance_cents sums every descendant at any depth, so a root's
    rollup_balance_cents covers its whole subtree. Accounts whose parent no
    longer exists (see delete_account) are returned with their own subtrees
    under "orphans" instead of being dropped.
    """
    accounts = list_accounts()
    ids = {a.id for a in accounts}
    children: dict[int, list[Account]] = {}
    top_level = []
    orphans = []
    for account in accounts:
        if account.is_root:
            top_level.append(account)
        elif account.parent_id in ids:
            children.setdefault(account.parent_id, []).append(account)
        else:
            orphans.append(account)

    return {
        "roots": [_tree_node(a, children) for a in top_level],
        "orphans": [_tree_node(o, children) for o in orphans],
        "liquidity_cents": get_company_liquidity(),
    }


def verify_account_history(account_id: int) -> HistoryCheck:
    """
    Replay an account's transactions oldest-first and compare snapshots.

    Every row whose running_balance_cents differs from the replayed prefix
    sum is reported, and the final replayed value is compared with the
    stored balance.
    """
    account = get_account(account_id)
    transactions = (
        db.session.query(AccountTransaction)
        .filter_by(account_id=account_id)
        .order_by(AccountTransaction.created_at.asc(), AccountTransaction.id.asc())
        .all()
    )

    replayed = 0
    mismatches = []
    for tx in transactions:
        replayed += tx.signed_amount_cents
        if tx.running_balance_cents != replayed:
            mismatches.append({
                "transaction_id": tx.id,
                "expected_running_balance_cents": replayed,
                "recorded_running_balance_cents": tx.running_balance_cents,
            })

    return HistoryCheck(
        account_id=account.id,
        recorded_balance_cents=account.balance_cents,
        replayed_balance_cents=replayed,
        mismatches=mismatches,
    )
