from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from freightdesk.time_utils import to_utc_z


TRANSACTION_TYPES = ("debit", "credit", "refund", "adjustment")
TRANSACTION_STATUSES = ("completed", "pending", "failed")

_ORDER_REFUND = "transaction_type = 'refund' AND reference_id IS NULL"
_REFERENCE_REFUND = "transaction_type = 'refund' AND reference_id IS NOT NULL"


class BalanceTransaction(db.Model):
    """
    One row of the append-only balance ledger.

    Sign convention: negative amount = debit, positive = credit/refund.
    base_amount is set only on rows that belong to a dual (customer +
    supervisor) pair. Rows are never updated or deleted; corrections are
    new offsetting rows.

    Refund uniqueness is enforced by the store: one refund pair per order
    (reference_id NULL) and one per referenced artifact such as an
    insurance certificate (reference_id set).
    """
    __tablename__ = "balance_transactions"
    __table_args__ = (
        db.Index("ix_balance_tx_order_type_side", "order_id", "transaction_type", "is_supervisor_transaction"),
        db.Index("ix_balance_tx_user_created", "user_id", "created_at"),
        db.Index(
            "uq_balance_tx_order_refund",
            "order_id",
            "is_supervisor_transaction",
            unique=True,
            sqlite_where=text(_ORDER_REFUND),
            postgresql_where=text(_ORDER_REFUND),
        ),
        db.Index(
            "uq_balance_tx_reference_refund",
            "reference_id",
            "is_supervisor_transaction",
            unique=True,
            sqlite_where=text(_REFERENCE_REFUND),
            postgresql_where=text(_REFERENCE_REFUND),
        ),
        db.CheckConstraint(
            "transaction_type IN ('debit', 'credit', 'refund', 'adjustment')",
            name="ck_balance_tx_type",
        ),
        db.CheckConstraint(
            "status IN ('completed', 'pending', 'failed')",
            name="ck_balance_tx_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable id, e.g. TXN-2026-000042 (allocated from transaction_sequences)
    transaction_id = db.Column(db.String(32), nullable=False, unique=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_email = db.Column(db.String(255), nullable=True)
    company_name = db.Column(db.String(255), nullable=True)
    order_account = db.Column(db.String(32), nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_number = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True, index=True)

    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    base_amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    is_supervisor_transaction = db.Column(db.Boolean, nullable=False, default=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="completed")

    description = db.Column(db.String(255), nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("balance_transactions", lazy=True))

    def __repr__(self) -> str:
        side = "supervisor" if self.is_supervisor_transaction else "customer"
        return f"<BalanceTransaction {self.transaction_id} {self.transaction_type} {side} {self.amount}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "company_name": self.company_name,
            "order_account": self.order_account,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "reference_id": self.reference_id,
            "amount": float(self.amount) if self.amount is not None else None,
            "base_amount": float(self.base_amount) if self.base_amount is not None else None,
            "transaction_type": self.transaction_type,
            "is_supervisor_transaction": self.is_supervisor_transaction,
            "status": self.status,
            "description": self.description,
            "metadata": dict(self.meta or {}),
            "created_at": to_utc_z(self.created_at),
        }


class TransactionSequence(db.Model):
    """
    Atomic per-year counters for human-readable transaction ids.

    Incremented with a single UPDATE ... SET next_number = next_number + 1,
    never derived from a COUNT over existing rows.
    """
    __tablename__ = "transaction_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "year", name="uq_transaction_sequences_prefix_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class UserBalance(db.Model):
    """
    Cached balance per user, recomputed from the ledger.

    Not authoritative: the balance_transactions rows are.
    """
    __tablename__ = "user_balances"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    current_balance = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    available_balance = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    pending_balance = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    credit_limit = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "current_balance": float(self.current_balance or 0),
            "available_balance": float(self.available_balance or 0),
            "pending_balance": float(self.pending_balance or 0),
            "credit_limit": float(self.credit_limit or 0),
            "currency": self.currency,
            "updated_at": to_utc_z(self.updated_at),
        }
