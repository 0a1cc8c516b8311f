from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Account(db.Model):
    """
    Balance-bearing ledger account.

    balance_cents always equals the signed sum of the account's transactions
    (opening balance included); every mutation bumps version_id so concurrent
    writers on the same account conflict instead of overwriting each other.

    TYPES:
    - standard: ordinary account, may have a parent (one level in practice)
    - receivable: money owed by a customer, always has a standard parent
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_type_parent", "type", "parent_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, index=True)
    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    type = db.Column(db.String(16), nullable=False, default="standard")
    status = db.Column(db.String(16), nullable=False, default="open")

    # No FK cascade: deleting a parent leaves children with a dangling parent_id
    parent_id = db.Column(db.Integer, nullable=True, index=True)

    # Receivables only; immutable after creation
    initial_amount_cents = db.Column(db.BigInteger, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance_cents": self.balance_cents,
            "type": self.type,
            "status": self.status,
            "parent_id": self.parent_id,
            "initial_amount_cents": self.initial_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
            "version_id": self.version_id,
        }


class AccountTransaction(db.Model):
    """
    Append-only record of one balance change on an account.

    running_balance_cents is the owning account's balance immediately after
    this row was applied; it is a snapshot taken at write time and is never
    recomputed.
    """
    __tablename__ = "account_transactions"
    __table_args__ = (
        db.Index("ix_account_transactions_account_created", "account_id", "created_at"),
        db.CheckConstraint("amount_cents > 0", name="ck_account_transactions_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    # income, expense, payment, transfer
    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)

    # Transfer legs only: "out" on the debited account, "in" on the credited one
    direction = db.Column(db.String(8), nullable=True)
    transfer_id = db.Column(db.String(32), nullable=True, index=True)

    note = db.Column(db.Text, nullable=False, default="")
    running_balance_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.String(128), nullable=True)
    created_by_name = db.Column(db.String(255), nullable=True)

    account = db.relationship("Account", backref=db.backref("transactions", lazy=True))

    @property
    def signed_amount_cents(self) -> int:
        if self.type == "income":
            return self.amount_cents
        if self.type == "transfer" and self.direction == "in":
            return self.amount_cents
        return -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "direction": self.direction,
            "transfer_id": self.transfer_id,
            "note": self.note,
            "running_balance_cents": self.running_balance_cents,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
        }
