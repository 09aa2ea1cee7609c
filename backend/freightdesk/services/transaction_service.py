# Overview: Service-layer operations for the balance ledger; writes paired customer/supervisor rows.

"""
Dual Transaction Writer

WHY: Every priced business event (order placement, refund, insurance
purchase, manual adjustment) moves money twice: the customer is charged
the marked-up price and the supervisor (admin) ledger records the base
cost. The two rows must always exist together.

DESIGN:
- Two rows or zero: both inserts run through execute_atomic (one SAVEPOINT).
- Sign convention: debit -> negative amounts, credit/refund -> positive.
  Customer row magnitude = customer_amount, supervisor row = base_amount.
  base_amount (positive magnitude) is stored on both rows of a pair.
- transaction_id comes from the transaction_sequences counter, never from
  counting existing rows.
- A missing supervisor is an error (NoSupervisorFound), never a skip.
- Rows are append-only; corrections are new offsetting rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import or_

from ..extensions import db
from ..models import BalanceTransaction, User
from ..models.users import USER_TYPE_ADMIN, USER_TYPE_CUSTOMER
from freightdesk.time_utils import days_back
from .atomic_service import AtomicOperation, OP_INSERT, execute_atomic
from .balance_service import refresh_balances
from .errors import InvalidInput, NoSupervisorFound, PermissionDenied
from .price_ratio import require_price, round_money, to_base_price
from .pricing_service import effective_ratio
from .results import LedgerResult, ledger_boundary
from .sequence_service import next_transaction_id

logger = logging.getLogger(__name__)


DUAL_TRANSACTION_TYPES = ("debit", "credit", "refund")
SINGLE_TRANSACTION_TYPES = ("debit", "credit", "refund", "adjustment")

DATE_RANGES = {"7days": 7, "30days": 30, "90days": 90}


@dataclass
class DualTransactionData:
    """Inputs of one priced business event; amounts are positive magnitudes."""
    customer_amount: Any
    base_amount: Any
    transaction_type: str
    description: str
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    reference_id: Optional[str] = None
    status: str = "completed"
    metadata: dict = field(default_factory=dict)


def signed_amount(magnitude: float, transaction_type: str) -> float:
    """Apply the ledger sign convention to a positive magnitude."""
    magnitude = round_money(abs(magnitude))
    return -magnitude if transaction_type == "debit" else magnitude


def resolve_supervisor_id(explicit: Optional[int] = None) -> int:
    """
    Supervisor (admin) user that records base costs.

    An explicit id must name an active admin. Otherwise the first active
    admin by id is used.

    Raises:
        NoSupervisorFound: nothing resolves
    """
    if explicit is not None:
        user = db.session.get(User, explicit)
        if user and user.user_type == USER_TYPE_ADMIN and user.is_active:
            return user.id
        raise NoSupervisorFound(f"User {explicit} cannot act as supervisor", supervisor_user_id=explicit)

    supervisor = (
        User.query
        .filter_by(user_type=USER_TYPE_ADMIN, is_active=True)
        .order_by(User.id.asc())
        .first()
    )
    if not supervisor:
        raise NoSupervisorFound("No supervisor user configured")
    return supervisor.id


def _validate_dual(data: DualTransactionData) -> None:
    if data.transaction_type not in DUAL_TRANSACTION_TYPES:
        raise InvalidInput(
            f"Invalid transaction type for dual write: {data.transaction_type!r}",
            field="transaction_type",
        )
    require_price(data.customer_amount, "customer amount")
    require_price(data.base_amount, "base amount")
    if not data.description:
        raise InvalidInput("Description is required", field="description")


def _load_user(user_id: int, label: str) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user:
        raise InvalidInput(f"{label} user not found", user_id=user_id)
    return user


def build_dual_operations(
    customer: User,
    supervisor: User,
    data: DualTransactionData,
    *,
    order_index: Optional[int] = None,
) -> list[AtomicOperation]:
    """
    The two insert operations of a dual pair.

    With order_index set, order_id/order_number are read from the order row
    inserted earlier in the same atomic batch.
    """
    base_amount = round_money(data.base_amount)
    customer_amount = round_money(data.customer_amount)

    def _order_ref(prior: list) -> tuple:
        if order_index is None:
            return data.order_id, data.order_number
        order = prior[order_index]
        return order.id, order.order_number

    def _metadata(order_id) -> dict:
        meta = dict(data.metadata)
        meta.update({
            "transaction_type": data.transaction_type,
            "order_id": order_id,
            "customer_user_id": customer.id,
            "actual_user_id": customer.id,
            "supervisor_user_id": supervisor.id,
        })
        return meta

    def _customer_row(prior: list) -> dict:
        order_id, order_number = _order_ref(prior)
        return {
            "transaction_id": next_transaction_id(),
            "user_id": customer.id,
            "user_email": customer.email,
            "company_name": customer.display_name,
            "order_account": customer.order_account,
            "order_id": order_id,
            "order_number": order_number,
            "reference_id": data.reference_id,
            "amount": signed_amount(customer_amount, data.transaction_type),
            "base_amount": base_amount,
            "transaction_type": data.transaction_type,
            "is_supervisor_transaction": False,
            "status": data.status,
            "description": data.description,
            "metadata": _metadata(order_id),
        }

    def _supervisor_row(prior: list) -> dict:
        order_id, order_number = _order_ref(prior)
        meta = _metadata(order_id)
        meta["paired_transaction_id"] = prior[-1].transaction_id
        return {
            "transaction_id": next_transaction_id(),
            "user_id": supervisor.id,
            "user_email": supervisor.email,
            "company_name": supervisor.display_name,
            "order_account": supervisor.order_account,
            "order_id": order_id,
            "order_number": order_number,
            "reference_id": data.reference_id,
            "amount": signed_amount(base_amount, data.transaction_type),
            "base_amount": base_amount,
            "transaction_type": data.transaction_type,
            "is_supervisor_transaction": True,
            "status": data.status,
            "description": f"{data.description} (Base Cost)",
            "metadata": meta,
        }

    return [
        AtomicOperation("balance_transactions", OP_INSERT, data=_customer_row),
        AtomicOperation("balance_transactions", OP_INSERT, data=_supervisor_row),
    ]


def prepare_dual(customer_user_id: int, supervisor_user_id: Optional[int], data: DualTransactionData):
    """Validate inputs and resolve both users; raises before anything is written."""
    _validate_dual(data)
    customer = _load_user(customer_user_id, "Customer")
    supervisor = db.session.get(User, resolve_supervisor_id(supervisor_user_id))
    return customer, supervisor


def pair_payload(customer_row: BalanceTransaction, supervisor_row: BalanceTransaction) -> dict:
    return {
        "customer_tx_id": customer_row.transaction_id,
        "supervisor_tx_id": supervisor_row.transaction_id,
        "customer_transaction": customer_row,
        "supervisor_transaction": supervisor_row,
    }


@ledger_boundary
def create_dual_transaction(
    customer_user_id: int,
    supervisor_user_id: Optional[int],
    data: DualTransactionData,
    *,
    commit: bool = True,
) -> LedgerResult:
    """
    Write one customer row and its supervisor row, or nothing.

    Returns:
        LedgerResult with data {customer_tx_id, supervisor_tx_id,
        customer_transaction, supervisor_transaction}
    """
    customer, supervisor = prepare_dual(customer_user_id, supervisor_user_id, data)

    result = execute_atomic(build_dual_operations(customer, supervisor, data), commit=False)
    if not result.ok:
        return result

    customer_row, supervisor_row = result.data
    refresh_balances([customer.id, supervisor.id])
    if commit:
        db.session.commit()

    logger.info(
        "Dual %s written: %s (%s) / %s (%s) order=%s",
        data.transaction_type,
        customer_row.transaction_id, customer_row.amount,
        supervisor_row.transaction_id, supervisor_row.amount,
        customer_row.order_id,
    )
    return LedgerResult.success(pair_payload(customer_row, supervisor_row))


@ledger_boundary
def create_single_transaction(
    user_id: int,
    amount,
    transaction_type: str,
    description: Optional[str] = None,
    *,
    order_id: Optional[int] = None,
    order_number: Optional[str] = None,
    reference_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    status: str = "completed",
    commit: bool = True,
) -> LedgerResult:
    """
    Write one ledger row with no supervisor counterpart.

    debit/credit/refund take a magnitude and get the usual sign;
    adjustment keeps the sign it is given.
    """
    if transaction_type not in SINGLE_TRANSACTION_TYPES:
        raise InvalidInput(f"Invalid transaction type: {transaction_type!r}", field="transaction_type")
    if transaction_type == "adjustment":
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount != amount:
            raise InvalidInput(f"Invalid amount: {amount!r}", field="amount")
        value = round_money(amount)
        if value == 0:
            raise InvalidInput("Adjustment amount must be non-zero", field="amount")
    else:
        require_price(amount, "amount")
        value = signed_amount(amount, transaction_type)

    user = _load_user(user_id, "Target")
    row_data = {
        "transaction_id": None,
        "user_id": user.id,
        "user_email": user.email,
        "company_name": user.display_name,
        "order_account": user.order_account,
        "order_id": order_id,
        "order_number": order_number,
        "reference_id": reference_id,
        "amount": value,
        "base_amount": None,
        "transaction_type": transaction_type,
        "is_supervisor_transaction": False,
        "status": status,
        "description": description or f"{transaction_type.capitalize()} transaction",
        "metadata": dict(metadata or {}),
    }

    def _row(prior: list) -> dict:
        return dict(row_data, transaction_id=next_transaction_id())

    result = execute_atomic([AtomicOperation("balance_transactions", OP_INSERT, data=_row)], commit=False)
    if not result.ok:
        return result

    row = result.data[0]
    refresh_balances([user.id])
    if commit:
        db.session.commit()
    return LedgerResult.success(row)


def create_manual_adjustment(
    actor,
    *,
    amount,
    transaction_type: str,
    description: Optional[str] = None,
    target_user_id: Optional[int] = None,
    dual: bool = False,
    order_id: Optional[int] = None,
    order_number: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> LedgerResult:
    """
    Admin balance adjustment requested through the API.

    Manual writes are admin-only and never of type refund; refunds come
    from the refund service so they mirror the original pair. For a dual
    write the given amount is the customer amount; the base amount is
    derived with the target customer's ratio.
    """
    if not actor.is_admin:
        return LedgerResult.failure(PermissionDenied("Insufficient permissions for this transaction"))
    if transaction_type == "refund":
        return LedgerResult.failure(
            InvalidInput("Refunds are issued by cancelling the order or certificate", field="transaction_type")
        )

    target_id = target_user_id or actor.id

    if not dual:
        return create_single_transaction(
            target_id,
            amount,
            transaction_type,
            description,
            order_id=order_id,
            order_number=order_number,
            reference_id=reference_id,
            metadata={"created_by": actor.id},
        )

    target = db.session.get(User, target_id)
    if not target or target.user_type != USER_TYPE_CUSTOMER:
        return LedgerResult.failure(InvalidInput("Dual transactions require a customer target", user_id=target_id))

    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return LedgerResult.failure(InvalidInput(f"Invalid amount: {amount!r}", field="amount"))
    try:
        customer_amount = round_money(abs(amount))
        base_amount = to_base_price(customer_amount, effective_ratio(target))
    except InvalidInput as exc:
        return LedgerResult.failure(exc)

    return create_dual_transaction(
        target.id,
        None,
        DualTransactionData(
            customer_amount=customer_amount,
            base_amount=base_amount,
            transaction_type=transaction_type,
            description=description or f"{transaction_type.capitalize()} transaction",
            order_id=order_id,
            order_number=order_number,
            reference_id=reference_id,
            metadata={"created_by": actor.id, "manual_adjustment": True},
        ),
    )


# =============================================================================
# QUERIES
# =============================================================================

def list_transactions(
    identity,
    *,
    user_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
    search: Optional[str] = None,
    date_range: str = "30days",
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """
    Ledger rows visible to the viewer.

    Customers: their own customer-side rows only.
    Admins: the target user's rows (default: their own) plus every
    supervisor row, enriched with the customer behind it.
    """
    query = BalanceTransaction.query
    if identity.is_admin:
        target_id = user_id or identity.id
        query = query.filter(or_(
            BalanceTransaction.user_id == target_id,
            BalanceTransaction.is_supervisor_transaction.is_(True),
        ))
    else:
        query = query.filter(
            BalanceTransaction.user_id == identity.id,
            BalanceTransaction.is_supervisor_transaction.is_(False),
        )

    if transaction_type and transaction_type != "all":
        query = query.filter(BalanceTransaction.transaction_type == transaction_type)

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            BalanceTransaction.transaction_id.ilike(pattern),
            BalanceTransaction.order_number.ilike(pattern),
            BalanceTransaction.company_name.ilike(pattern),
            BalanceTransaction.description.ilike(pattern),
        ))

    if date_range in DATE_RANGES:
        query = query.filter(BalanceTransaction.created_at >= days_back(DATE_RANGES[date_range]))

    total = query.count()
    rows = (
        query.order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    customer_ids = {
        (row.meta or {}).get("customer_user_id")
        for row in rows
        if row.is_supervisor_transaction
    }
    customers = {
        user.id: user
        for user in User.query.filter(User.id.in_([cid for cid in customer_ids if cid])).all()
    } if customer_ids else {}

    items = []
    for row in rows:
        item = row.to_dict()
        if row.is_supervisor_transaction:
            customer = customers.get((row.meta or {}).get("customer_user_id"))
            if customer:
                item["customer"] = {
                    "id": customer.id,
                    "email": customer.email,
                    "full_name": customer.full_name,
                    "user_type": customer.user_type,
                }
        items.append(item)

    return items, total
