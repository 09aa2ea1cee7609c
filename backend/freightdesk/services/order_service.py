# Overview: Service-layer operations for orders; placement, cancellation, carrier sync and refunds.

"""
Order Lifecycle

STATE MACHINE:
    pending_review -> confirmed | rejected | cancelled
    confirmed      -> in_transit | cancelled
    in_transit     -> delivered | exception | cancelled
    exception      -> in_transit | delivered | cancelled
cancelled, delivered and rejected are terminal. Carrier sync never moves
an order out of a terminal status.

MONEY:
- order.amount is the customer price; the base price lives on the
  supervisor ledger row and is never stored on the order.
- Placement writes the order and its debit pair in one atomic batch.
- Cancellation and refund are independent channels: once the carrier has
  cancelled, the cancellation is reported as successful even when the
  refund bookkeeping fails (that failure is logged for reconciliation).
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import BalanceTransaction, Order, User
from freightdesk.time_utils import to_utc_z, utcnow
from .atomic_service import AtomicOperation, OP_INSERT, execute_atomic
from .balance_service import refresh_balances
from .carrier_client import map_carrier_status
from .errors import (
    ExternalApiError,
    InvalidInput,
    InvalidOrderState,
    LedgerError,
    OrderNotFound,
    PermissionDenied,
    WriteFailed,
)
from .price_ratio import parse_number, round_money, to_base_price
from .pricing_service import effective_ratio
from .refund_service import append_status_history, refund_order
from .results import STATUS_SKIPPED, CancellationOutcome, LedgerResult, ledger_boundary
from .transaction_service import DualTransactionData, build_dual_operations, pair_payload, prepare_dual

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    "pending_review": {"confirmed", "rejected", "cancelled"},
    "confirmed": {"in_transit", "cancelled"},
    "in_transit": {"delivered", "exception", "cancelled"},
    "exception": {"in_transit", "delivered", "cancelled"},
    "cancelled": set(),
    "delivered": set(),
    "rejected": set(),
}

TERMINAL_STATUSES = {"cancelled", "delivered", "rejected"}
REFUNDABLE_STATUSES = {"rejected", "cancelled"}
MANUAL_REFUND_STATUSES = {"rejected", "cancelled", "exception"}

SERVICE_TYPES = ("LTL", "TL", "FBA")


def can_transition(old: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(old, set())


def get_order_for(identity, order_id: int) -> Order:
    """Admins see every order; customers only their own (404 otherwise)."""
    order = db.session.get(Order, order_id)
    if not order or (not identity.is_admin and order.user_id != identity.id):
        raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def base_amount_for(order: Order) -> float:
    """Base price of an order: the supervisor debit, else derived from the owner's ratio."""
    supervisor_row = (
        BalanceTransaction.query
        .filter_by(order_id=order.id, transaction_type="debit", is_supervisor_transaction=True)
        .filter(BalanceTransaction.reference_id.is_(None))
        .order_by(BalanceTransaction.id.asc())
        .first()
    )
    if supervisor_row is not None:
        return round_money(abs(float(supervisor_row.amount)))
    owner = db.session.get(User, order.user_id)
    return to_base_price(float(order.amount or 0), effective_ratio(owner))


def order_view(identity, order_id: int) -> dict:
    """
    Order as the viewer should see it.

    Admins see the base price in `amount` (with the stored customer price
    alongside); customers see their stored price.
    """
    order = get_order_for(identity, order_id)
    payload = order.to_dict()
    if identity.is_admin:
        payload["customer_amount"] = payload["amount"]
        payload["amount"] = base_amount_for(order)
    return payload


def list_orders(identity, *, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> tuple[list[dict], int]:
    query = Order.query
    if not identity.is_admin:
        query = query.filter(Order.user_id == identity.id)
    if status:
        query = query.filter(Order.status == status)
    total = query.count()
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return [row.to_dict() for row in rows], total


# =============================================================================
# PLACEMENT
# =============================================================================

@ledger_boundary
def place_order(identity, quote: dict, order_fields: Optional[dict] = None, *, carrier=None) -> LedgerResult:
    """
    Book an order from a customer-priced quote.

    quote["totalCharge"] is what the customer was shown (already marked
    up); the base price is recovered with the customer's ratio.
    """
    order_fields = dict(order_fields or {})

    customer_amount = parse_number(quote.get("totalCharge"))
    if customer_amount != customer_amount or customer_amount <= 0:
        raise InvalidInput("Quote totalCharge must be a positive amount", field="totalCharge")
    customer_amount = round_money(customer_amount)
    base_amount = to_base_price(customer_amount, effective_ratio(identity))

    order_number = order_fields.get("order_number") or quote.get("orderId")
    if not order_number:
        raise InvalidInput("order_number is required", field="order_number")
    order_number = str(order_number)
    if Order.query.filter_by(order_number=order_number).first():
        raise InvalidInput(f"Order {order_number} already exists", field="order_number")

    service_type = order_fields.get("service_type")
    if service_type and service_type not in SERVICE_TYPES:
        raise InvalidInput(f"Invalid service_type: {service_type!r}", field="service_type")

    data = DualTransactionData(
        customer_amount=customer_amount,
        base_amount=base_amount,
        transaction_type="debit",
        description=f"Order payment - {order_number}",
        metadata={"event": "order_placement"},
    )
    # Before any carrier call: no supervisor, no booking
    customer, supervisor = prepare_dual(identity.id, None, data)

    carrier_order_id = order_fields.get("carrier_order_id")
    if carrier is not None:
        response = carrier.place_order(dict(quote, orderId=order_number))
        carrier_data = response.get("data") if isinstance(response.get("data"), dict) else {}
        carrier_order_id = carrier_data.get("orderId") or carrier_order_id

    now = utcnow()
    order_row = {
        "user_id": customer.id,
        "order_number": order_number,
        "carrier_order_id": carrier_order_id,
        "status": "pending_review",
        "amount": customer_amount,
        "company_name": order_fields.get("company_name") or customer.display_name,
        "service_type": service_type,
        "carrier_name": order_fields.get("carrier_name") or quote.get("carrierName"),
        "status_history": [{
            "timestamp": to_utc_z(now),
            "status": "pending_review",
            "event": "order_placed",
            "source": "customer",
        }],
        "updated_at": now,
    }

    operations = [AtomicOperation("orders", OP_INSERT, data=order_row)]
    operations += build_dual_operations(customer, supervisor, data, order_index=0)

    result = execute_atomic(operations, commit=False)
    if not result.ok:
        return result

    order, customer_row, supervisor_row = result.data
    refresh_balances([customer.id, supervisor.id])
    db.session.commit()

    logger.info("Order %s placed: customer %.2f / base %.2f", order.order_number, customer_amount, base_amount)
    payload = pair_payload(customer_row, supervisor_row)
    payload["order"] = order
    return LedgerResult.success(payload)


# =============================================================================
# CANCELLATION / REJECTION
# =============================================================================

def _refund_after(order: Order, reason: str, event: str) -> LedgerResult:
    refund = refund_order(order.id, reason, event=event)
    if not refund.ok:
        logger.error(
            "Refund bookkeeping failed for order %s after %s; manual reconciliation required: %s",
            order.order_number, event, refund.error.message if refund.error else refund.status,
        )
    return refund


def cancel_order(identity, order_id: int, reason: Optional[str] = None, *, carrier) -> CancellationOutcome:
    """
    Customer cancellation (pending_review only).

    Repeating the call on an already cancelled order skips the carrier and
    re-runs the idempotent refund, which reports already_refunded.
    """
    try:
        order = get_order_for(identity, order_id)
    except LedgerError as exc:
        return CancellationOutcome(cancellation=LedgerResult.failure(exc))

    if order.status == "cancelled":
        refund = _refund_after(order, f"Order cancellation refund - {order.order_number}", "order_cancellation")
        return CancellationOutcome(
            cancellation=LedgerResult.success(order, status=STATUS_SKIPPED),
            refund=refund,
            extra={"message": "Order already cancelled"},
        )

    if order.status != "pending_review":
        return CancellationOutcome(cancellation=LedgerResult.failure(
            InvalidOrderState("Only orders with pending review status can be cancelled", status=order.status)
        ))

    try:
        carrier_result = carrier.cancel_order(order.order_number, reason)
    except ExternalApiError as exc:
        return CancellationOutcome(cancellation=LedgerResult.failure(exc))

    if not carrier_result.ok:
        return CancellationOutcome(cancellation=LedgerResult.failure(
            ExternalApiError(carrier_result.message or "Failed to cancel order", response=carrier_result.raw)
        ))

    now = utcnow()
    audit_remark = carrier_result.audit_remark or "Customer cancelled"
    order.status = "cancelled"
    order.carrier_status = "Cancelled"
    order.audit_remark = audit_remark
    order.updated_at = now
    order.last_api_sync = now
    append_status_history(order, {
        "status": "cancelled",
        "event": "customer_cancel",
        "source": "customer",
        "audit_remark": audit_remark,
        "reason": reason,
    })
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Order %s cancelled with carrier but local update failed", order.order_number)
        return CancellationOutcome(cancellation=LedgerResult.failure(
            WriteFailed("Order cancelled but failed to update local status", order_id=order_id)
        ))

    refund = _refund_after(order, f"Order cancellation refund - {order.order_number}", "order_cancellation")
    return CancellationOutcome(
        cancellation=LedgerResult.success(order),
        refund=refund,
        extra={"message": "Order cancelled successfully"},
    )


def reject_order(actor, order_id: int, reason: str) -> CancellationOutcome:
    """Admin review rejection; refunds the customer."""
    if not actor.is_admin:
        return CancellationOutcome(cancellation=LedgerResult.failure(PermissionDenied("Admin access required")))
    if not reason:
        return CancellationOutcome(cancellation=LedgerResult.failure(InvalidInput("Rejection reason is required")))

    try:
        order = get_order_for(actor, order_id)
    except LedgerError as exc:
        return CancellationOutcome(cancellation=LedgerResult.failure(exc))

    if not can_transition(order.status, "rejected"):
        return CancellationOutcome(cancellation=LedgerResult.failure(
            InvalidOrderState(f"Cannot reject order in status {order.status}", status=order.status)
        ))

    order.status = "rejected"
    order.audit_remark = reason
    order.updated_at = utcnow()
    append_status_history(order, {
        "status": "rejected",
        "event": "admin_reject",
        "source": "admin",
        "audit_remark": reason,
        "actor_id": actor.id,
    })
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to reject order %s", order_id)
        return CancellationOutcome(cancellation=LedgerResult.failure(WriteFailed("Failed to reject order")))

    refund = _refund_after(order, f"Order rejected - {reason}", "order_rejection")
    return CancellationOutcome(
        cancellation=LedgerResult.success(order),
        refund=refund,
        extra={"message": "Order rejected"},
    )


def request_refund(identity, order_id: int, reason: Optional[str] = None) -> LedgerResult:
    """Explicit refund for an order already in a refundable status."""
    try:
        order = get_order_for(identity, order_id)
    except LedgerError as exc:
        return LedgerResult.failure(exc)
    if order.status not in MANUAL_REFUND_STATUSES:
        return LedgerResult.failure(InvalidOrderState(
            f"Order in status {order.status} cannot be refunded", status=order.status
        ))
    return refund_order(order.id, reason or f"Order refund - {order.order_number}", event="refund_request")


# =============================================================================
# CARRIER SYNC
# =============================================================================

def sync_order(identity, order_id: int, *, carrier) -> LedgerResult:
    """
    Pull the carrier's view of an order and reconcile it locally.

    A terminal local status is kept whatever the carrier reports. A final
    status of rejected/cancelled triggers the idempotent refund; its result
    is returned under data["refund"].
    """
    try:
        order = get_order_for(identity, order_id)
        info = carrier.order_info(order.carrier_order_id or order.order_number)
    except LedgerError as exc:
        return LedgerResult.failure(exc)

    previous = order.status
    api_status = info.get("orderStatus")
    mapped = map_carrier_status(api_status)

    if previous in TERMINAL_STATUSES and mapped != previous:
        logger.info("Order %s is %s locally; ignoring carrier status %r", order.order_number, previous, api_status)
        final = previous
    else:
        final = mapped
        if final != previous and not can_transition(previous, final):
            logger.warning("Carrier moved order %s from %s to %s", order.order_number, previous, final)

    now = utcnow()
    order.status = final
    order.carrier_status = api_status
    order.audit_remark = info.get("auditRemark") or order.audit_remark
    order.tracking_number = info.get("trackNumber") or order.tracking_number
    order.pro_number = info.get("proNumber") or order.pro_number
    order.updated_at = now
    order.last_api_sync = now
    append_status_history(order, {
        "status": final,
        "api_status": api_status,
        "audit_remark": info.get("auditRemark"),
        "pickup_number": info.get("pickupNumber"),
        "delivery_number": info.get("deliveryNumber"),
        "insured_status": info.get("insuredStatus"),
        "files": info.get("files") or [],
        "source": "api_sync",
    })
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to store carrier sync for order %s", order_id)
        return LedgerResult.failure(WriteFailed("Failed to update order"))

    refund = None
    if final in REFUNDABLE_STATUSES:
        reason = "Order rejected by carrier" if final == "rejected" else "Order cancelled"
        refund = _refund_after(order, f"{reason} - {order.order_number}", f"carrier_{final}")

    return LedgerResult.success({
        "order": order,
        "previous_status": previous,
        "status_changed": final != previous,
        "refund": refund,
    })
