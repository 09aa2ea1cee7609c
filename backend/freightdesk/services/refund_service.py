# Overview: Service-layer operations for refunds; mirrors original debit pairs exactly once.

"""
Refund / Reconciliation

WHY: Cancelled and rejected orders (and cancelled insurance) must give the
customer their money back, mirroring the original charge on both ledgers.

ALGORITHM:
1. Idempotency: a refund pair already exists -> no-op success
   (status "already_refunded").
2. Locate the original customer debit and its supervisor debit.
   - customer debit missing -> OriginalTransactionNotFound
   - supervisor debit missing -> explicit degraded mode: single-sided
     customer refund, logged, status "degraded", metadata.degraded_refund
3. Emit the refund pair with the absolute magnitudes of the originals
   (never recomputed from order.amount).
4. Append a status-history entry to the order.

Order refunds are rows with reference_id NULL; refunds of referenced
artifacts (insurance certificates) carry reference_id. Partial unique
indexes enforce one refund pair per order / per reference, so a racing
duplicate fails at the store and is reported as already refunded.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..extensions import db
from ..models import BalanceTransaction, Order
from freightdesk.time_utils import to_utc_z, utcnow
from .errors import NoSupervisorFound, OrderNotFound, OriginalTransactionNotFound
from .results import (
    STATUS_ALREADY_REFUNDED,
    STATUS_COMPLETED,
    STATUS_DEGRADED,
    LedgerResult,
    ledger_boundary,
)
from .transaction_service import (
    DualTransactionData,
    create_dual_transaction,
    create_single_transaction,
    resolve_supervisor_id,
)

logger = logging.getLogger(__name__)


def _scoped(query, order_id: Optional[int], reference_id: Optional[str]):
    if reference_id is not None:
        return query.filter(BalanceTransaction.reference_id == reference_id)
    return query.filter(
        BalanceTransaction.order_id == order_id,
        BalanceTransaction.reference_id.is_(None),
    )


def existing_refunds(order_id: Optional[int] = None, reference_id: Optional[str] = None) -> list[BalanceTransaction]:
    query = BalanceTransaction.query.filter(BalanceTransaction.transaction_type == "refund")
    return _scoped(query, order_id, reference_id).order_by(BalanceTransaction.id.asc()).all()


def locate_original_pair(order_id: Optional[int] = None, reference_id: Optional[str] = None):
    """(customer debit, supervisor debit or None) for an order or reference."""
    base = _scoped(
        BalanceTransaction.query.filter(BalanceTransaction.transaction_type == "debit"),
        order_id,
        reference_id,
    )
    customer_row = (
        base.filter(BalanceTransaction.is_supervisor_transaction.is_(False))
        .order_by(BalanceTransaction.id.asc())
        .first()
    )
    supervisor_row = (
        base.filter(BalanceTransaction.is_supervisor_transaction.is_(True))
        .order_by(BalanceTransaction.id.asc())
        .first()
    )
    return customer_row, supervisor_row


def _already_refunded(order_id, reference_id) -> LedgerResult:
    rows = existing_refunds(order_id, reference_id)
    return LedgerResult.success(
        {
            "order_id": order_id,
            "reference_id": reference_id,
            "refund_transactions": [row.transaction_id for row in rows],
        },
        status=STATUS_ALREADY_REFUNDED,
    )


def refund_supervisor_id(original_supervisor_id: int) -> int:
    """
    Admin that receives the supervisor refund row.

    The admin who recorded the original debit while still an active admin,
    otherwise the current supervisor.

    Raises:
        NoSupervisorFound: no active admin exists
    """
    try:
        return resolve_supervisor_id(original_supervisor_id)
    except NoSupervisorFound:
        supervisor_id = resolve_supervisor_id(None)
        logger.warning(
            "Original supervisor %s is no longer an active admin; refund mirrored to supervisor %s",
            original_supervisor_id, supervisor_id,
        )
        return supervisor_id


def append_status_history(order: Order, entry: dict) -> None:
    """Append-only: assign a new list so the JSON change is tracked."""
    stamped = {"timestamp": to_utc_z(utcnow())}
    stamped.update(entry)
    order.status_history = list(order.status_history or []) + [stamped]


def refund_pair(
    *,
    order_id: Optional[int] = None,
    reference_id: Optional[str] = None,
    reason: str,
    event: str,
    order: Optional[Order] = None,
    commit: bool = True,
) -> LedgerResult:
    """
    Refund the original debit pair of an order (or of a reference).

    Not wrapped in ledger_boundary itself; callers are.
    """
    if existing_refunds(order_id, reference_id):
        logger.info("Refund skipped, already refunded: order=%s reference=%s", order_id, reference_id)
        return _already_refunded(order_id, reference_id)

    customer_row, supervisor_row = locate_original_pair(order_id, reference_id)
    if customer_row is None:
        raise OriginalTransactionNotFound(
            "Original customer debit not found",
            order_id=order_id,
            reference_id=reference_id,
        )

    customer_amount = abs(float(customer_row.amount))
    metadata = {
        "refund_type": event,
        "original_order_id": order_id,
        "original_transaction_id": customer_row.transaction_id,
    }

    if supervisor_row is None:
        logger.warning(
            "Supervisor debit missing for order=%s reference=%s; writing degraded single-sided refund of %.2f",
            order_id, reference_id, customer_amount,
        )
        metadata["degraded_refund"] = True
        result = create_single_transaction(
            customer_row.user_id,
            customer_amount,
            "refund",
            reason,
            order_id=customer_row.order_id,
            order_number=customer_row.order_number,
            reference_id=reference_id,
            metadata=metadata,
            commit=False,
        )
        status = STATUS_DEGRADED
        base_amount = None
    else:
        base_amount = abs(float(supervisor_row.amount))
        metadata["original_supervisor_transaction_id"] = supervisor_row.transaction_id
        result = create_dual_transaction(
            customer_row.user_id,
            refund_supervisor_id(supervisor_row.user_id),
            DualTransactionData(
                customer_amount=customer_amount,
                base_amount=base_amount,
                transaction_type="refund",
                description=reason,
                order_id=customer_row.order_id,
                order_number=customer_row.order_number,
                reference_id=reference_id,
                metadata=metadata,
            ),
            commit=False,
        )
        status = STATUS_COMPLETED

    if not result.ok:
        if (result.data or {}).get("constraint_violation") and existing_refunds(order_id, reference_id):
            logger.info("Concurrent refund detected for order=%s reference=%s", order_id, reference_id)
            return _already_refunded(order_id, reference_id)
        return result

    if status == STATUS_DEGRADED:
        customer_tx_id, supervisor_tx_id = result.data.transaction_id, None
    else:
        customer_tx_id, supervisor_tx_id = result.data["customer_tx_id"], result.data["supervisor_tx_id"]

    if order is not None:
        append_status_history(order, {
            "status": order.status,
            "event": event,
            "source": "refund",
            "refund_transaction_id": customer_tx_id,
            "refund_amount": customer_amount,
        })

    if commit:
        db.session.commit()

    logger.info(
        "Refund %s for order=%s reference=%s: %.2f (base %s)",
        status, order_id, reference_id, customer_amount, base_amount,
    )
    return LedgerResult.success(
        {
            "order_id": order_id,
            "reference_id": reference_id,
            "customer_tx_id": customer_tx_id,
            "supervisor_tx_id": supervisor_tx_id,
            "refund_amount": customer_amount,
            "base_refund_amount": base_amount,
            "degraded": status == STATUS_DEGRADED,
        },
        status=status,
    )


@ledger_boundary
def refund_order(order_id: int, reason: Optional[str] = None, *, event: str = "order_refund", commit: bool = True) -> LedgerResult:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
    return refund_pair(
        order_id=order.id,
        reason=reason or f"Order refund - {order.order_number}",
        event=event,
        order=order,
        commit=commit,
    )


@ledger_boundary
def refund_reference(
    reference_id: str,
    reason: str,
    *,
    event: str,
    order: Optional[Order] = None,
    commit: bool = True,
) -> LedgerResult:
    return refund_pair(
        order_id=order.id if order else None,
        reference_id=reference_id,
        reason=reason,
        event=event,
        order=order,
        commit=commit,
    )


# =============================================================================
# RECONCILIATION SWEEP
# =============================================================================

def find_unpaired_transactions(order_id: Optional[int] = None) -> list[dict]:
    """
    Dual-ledger rows missing their counterpart.

    Supervisor rows name their customer row in metadata.paired_transaction_id;
    a customer row with base_amount set and no such supervisor row (or a
    supervisor row pointing at nothing) is unpaired.
    """
    query = BalanceTransaction.query.filter(BalanceTransaction.base_amount.isnot(None))
    if order_id is not None:
        query = query.filter(BalanceTransaction.order_id == order_id)
    rows = query.order_by(BalanceTransaction.id.asc()).all()

    customer_rows = {row.transaction_id: row for row in rows if not row.is_supervisor_transaction}
    paired = set()
    unpaired = []

    for row in rows:
        if not row.is_supervisor_transaction:
            continue
        partner = (row.meta or {}).get("paired_transaction_id")
        if partner in customer_rows:
            paired.add(partner)
        else:
            unpaired.append(row)

    unpaired.extend(row for tx_id, row in customer_rows.items() if tx_id not in paired)
    unpaired.sort(key=lambda row: row.id)

    return [
        {
            "transaction_id": row.transaction_id,
            "order_id": row.order_id,
            "reference_id": row.reference_id,
            "transaction_type": row.transaction_type,
            "is_supervisor_transaction": row.is_supervisor_transaction,
            "amount": float(row.amount),
            "missing": "customer" if row.is_supervisor_transaction else "supervisor",
        }
        for row in unpaired
    ]
