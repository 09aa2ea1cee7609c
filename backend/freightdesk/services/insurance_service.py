# Overview: Service-layer operations for cargo insurance; certificate purchase, cancellation and refunds.

"""
Insurance Ledger

WHY: Insurance is a second priced artifact on an order. The insurer
charges base cost; the customer pays it marked up by their ratio. The
purchase writes a dual debit pair referenced by the certificate
(reference_id = INS-<certificate id>), so it never collides with the
order's own ledger pair.

RULES:
- Purchase falls back to the quoted figures when the insurance API is not
  configured or fails; the certificate number is then generated locally.
- Cancellation proceeds locally even when the insurance API fails (logged).
- Refunds only within INSURANCE_REFUND_WINDOW_HOURS of purchase, mirroring
  the original pair, at most once per certificate.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InsuranceCertificate
from freightdesk.time_utils import hours_since, parse_iso_datetime, utcnow
from .atomic_service import AtomicOperation, OP_INSERT, execute_atomic
from .balance_service import refresh_balances
from .errors import CertificateNotFound, ExternalApiError, InvalidInput, LedgerError, WriteFailed
from .order_service import get_order_for
from .price_ratio import parse_number, round_money, to_customer_price
from .pricing_service import effective_ratio
from .refund_service import refund_reference
from .results import CancellationOutcome, LedgerResult, ledger_boundary
from .transaction_service import DualTransactionData, build_dual_operations, prepare_dual

logger = logging.getLogger(__name__)


CANCELLATION_REASONS = {
    "CANASD": "Assured does not want coverage",
    "CANNLN": "No longer needed",
    "CANPIE": "Purchased in error",
    "CANCHP": "Cheaper coverage found",
    "CANVAL": "Value incorrect",
    "CANREQ": "Requested by customer",
    "CANCOP": "Coverage purchased elsewhere",
    "CANREP": "Replaced by another certificate",
    "CANOTH": "Other",
}

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"


def validate_cancellation_reason(reason: Optional[str], additional_info: Optional[str] = None) -> None:
    if reason not in CANCELLATION_REASONS:
        raise InvalidInput(
            f"Invalid cancellation reason. Must be one of: {', '.join(CANCELLATION_REASONS)}",
            field="cancellation_reason",
        )
    if reason == "CANOTH" and not (additional_info or "").strip():
        raise InvalidInput("Additional information is required for reason CANOTH", field="cancellation_additional_info")


def _money(value, default: float = 0.0) -> float:
    number = parse_number(value)
    if number != number:
        return default
    return round_money(number)


def _generate_certificate_number() -> str:
    return f"CERT-{secrets.token_hex(4).upper()[:7]}"


def _purchase_from_api(client, quote: dict) -> Optional[dict]:
    if client is None or not getattr(client, "configured", False) or not quote.get("quote_token"):
        return None
    try:
        return client.purchase(quote["quote_token"], po_number=quote.get("po_number"))
    except ExternalApiError as exc:
        logger.warning("Insurance purchase API failed, using quoted figures: %s", exc.message)
        return None


@ledger_boundary
def purchase_insurance(identity, order_id: int, quote: dict, *, client=None) -> LedgerResult:
    """
    Buy a certificate for an order.

    quote carries base figures from the insurer: premium, service_fee, tax,
    total_cost, coverage_limit and an optional quote_token.
    """
    order = get_order_for(identity, order_id)
    if order.has_insurance:
        raise InvalidInput("Order already has insurance", order_id=order_id)

    api = _purchase_from_api(client, quote) or {}

    premium = _money(api.get("premium", quote.get("premium")))
    service_fee = _money(api.get("serviceFee", quote.get("service_fee")))
    tax = _money(api.get("tax", quote.get("tax")))
    if api:
        total_cost = round_money(premium + service_fee + tax)
    else:
        total_cost = _money(quote.get("total_cost"), default=-1.0)
    if total_cost <= 0:
        raise InvalidInput("Insurance total_cost must be a positive amount", field="total_cost")

    customer_cost = to_customer_price(total_cost, effective_ratio(order.user))
    certificate_number = api.get("certificateNumber") or _generate_certificate_number()

    data = DualTransactionData(
        customer_amount=customer_cost,
        base_amount=total_cost,
        transaction_type="debit",
        description=f"Insurance purchase - {certificate_number}",
        order_id=order.id,
        order_number=order.order_number,
        metadata={"event": "insurance_purchase", "certificate_number": certificate_number},
    )
    customer, supervisor = prepare_dual(order.user_id, None, data)

    certificate_row = {
        "user_id": order.user_id,
        "order_id": order.id,
        "certificate_number": certificate_number,
        "status": api.get("status") or STATUS_ACTIVE,
        "coverage_limit": _money(api.get("limit", quote.get("coverage_limit"))),
        "premium": premium,
        "service_fee": service_fee,
        "tax": tax,
        "total_cost": total_cost,
        "customer_cost": customer_cost,
        "certificate_link": api.get("certificateLink"),
        "purchased_at": utcnow(),
    }

    # reference_id needs the certificate id, known only after its insert
    pair_ops = build_dual_operations(customer, supervisor, data)
    for op in pair_ops:
        op.data = _with_reference(op.data)

    result = execute_atomic(
        [AtomicOperation("insurance_certificates", OP_INSERT, data=certificate_row)] + pair_ops,
        commit=False,
    )
    if not result.ok:
        return result

    certificate, customer_row, supervisor_row = result.data
    order.has_insurance = True
    order.insurance_certificate_number = certificate.certificate_number
    order.updated_at = utcnow()
    refresh_balances([customer.id, supervisor.id])
    db.session.commit()

    logger.info(
        "Insurance %s purchased for order %s: customer %.2f / base %.2f",
        certificate.certificate_number, order.order_number, customer_cost, total_cost,
    )
    return LedgerResult.success({
        "certificate": certificate,
        "customer_tx_id": customer_row.transaction_id,
        "supervisor_tx_id": supervisor_row.transaction_id,
    })


def _with_reference(row_builder):
    def build(prior: list) -> dict:
        row = row_builder(prior)
        row["reference_id"] = prior[0].ledger_reference
        return row
    return build


def get_certificate_for(identity, certificate_number: str) -> InsuranceCertificate:
    query = InsuranceCertificate.query.filter_by(certificate_number=certificate_number)
    if not identity.is_admin:
        query = query.filter_by(user_id=identity.id)
    certificate = query.first()
    if not certificate:
        raise CertificateNotFound("Certificate not found", certificate_number=certificate_number)
    return certificate


def cancel_insurance(
    identity,
    certificate_number: str,
    reason: str,
    additional_info: Optional[str] = None,
    *,
    client=None,
    email_assured: bool = False,
) -> CancellationOutcome:
    """
    Cancel a certificate; refund when inside the refund window.

    The refund channel is None when the window has passed.
    """
    try:
        validate_cancellation_reason(reason, additional_info)
        certificate = get_certificate_for(identity, certificate_number)
    except LedgerError as exc:
        return CancellationOutcome(cancellation=LedgerResult.failure(exc))

    if certificate.status == STATUS_CANCELLED:
        return CancellationOutcome(cancellation=LedgerResult.failure(
            InvalidInput("Certificate is already cancelled", certificate_number=certificate_number)
        ))

    api_response = None
    if client is not None and getattr(client, "configured", False):
        try:
            api_response = client.cancel_certificate(
                certificate_number,
                reason,
                additional_info=additional_info,
                user_id=certificate.user_id,
                email_assured=email_assured,
            )
        except ExternalApiError as exc:
            logger.error(
                "Insurance API cancel failed for %s, proceeding with local cancellation: %s",
                certificate_number, exc.message,
            )

    cancelled_at = parse_iso_datetime((api_response or {}).get("canceledDate")) or utcnow()
    certificate.status = STATUS_CANCELLED
    certificate.cancelled_at = cancelled_at
    certificate.cancellation_reason = reason
    certificate.cancellation_additional_info = additional_info
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to cancel certificate %s", certificate_number)
        return CancellationOutcome(cancellation=LedgerResult.failure(WriteFailed("Failed to update certificate")))

    window = current_app.config.get("INSURANCE_REFUND_WINDOW_HOURS", 24)
    elapsed = hours_since(certificate.purchased_at)
    refund = None
    if elapsed <= window:
        order = certificate.order
        refund = refund_reference(
            certificate.ledger_reference,
            f"Insurance refund - {certificate.certificate_number}",
            event="insurance_cancellation",
            order=order,
            commit=False,
        )
        if refund.ok:
            if order is not None:
                order.has_insurance = False
                order.insurance_certificate_number = None
                order.updated_at = utcnow()
            db.session.commit()
        else:
            logger.error(
                "Insurance refund failed for %s; manual reconciliation required: %s",
                certificate_number, refund.error.message if refund.error else refund.status,
            )
    else:
        logger.info("No refund for %s: %.1fh since purchase exceeds %sh window", certificate_number, elapsed, window)

    return CancellationOutcome(
        cancellation=LedgerResult.success(certificate),
        refund=refund,
        extra={"refunded": bool(refund and refund.ok), "hours_since_purchase": round(elapsed, 2)},
    )
