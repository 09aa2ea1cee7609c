# Overview: Service-layer operations for the cached user balance; recomputed from the ledger.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import BalanceTransaction, UserBalance
from freightdesk.time_utils import utcnow
from .price_ratio import round_money


def _sum_for(user_id: int, status: str) -> float:
    total = (
        db.session.query(func.coalesce(func.sum(BalanceTransaction.amount), 0))
        .filter(
            BalanceTransaction.user_id == user_id,
            BalanceTransaction.status == status,
        )
        .scalar()
    )
    return round_money(total or 0)


def refresh_user_balance(user_id: int) -> UserBalance:
    """
    Recompute the cached balance for a user from the ledger.

    Caller commits. The ledger rows stay authoritative; this row only
    speeds up reads.
    """
    balance = UserBalance.query.filter_by(user_id=user_id).first()
    if not balance:
        balance = UserBalance(user_id=user_id, credit_limit=0, currency="USD")
        db.session.add(balance)

    current = _sum_for(user_id, "completed")
    pending = _sum_for(user_id, "pending")

    balance.current_balance = current
    balance.pending_balance = pending
    balance.available_balance = round_money(current + float(balance.credit_limit or 0))
    balance.updated_at = utcnow()
    db.session.flush()
    return balance


def refresh_balances(user_ids) -> None:
    for user_id in sorted(set(uid for uid in user_ids if uid is not None)):
        refresh_user_balance(user_id)


def get_user_balance(user_id: int) -> dict:
    balance = UserBalance.query.filter_by(user_id=user_id).first()
    if not balance:
        return {
            "user_id": user_id,
            "current_balance": 0.0,
            "available_balance": 0.0,
            "pending_balance": 0.0,
            "credit_limit": 0.0,
            "currency": "USD",
            "updated_at": None,
        }
    return balance.to_dict()
