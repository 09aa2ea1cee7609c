# Overview: Flask API routes for order operations; placement, cancellation, sync, rejection and refunds.

"""
Order API Routes

Placement debits the customer and the supervisor in one write. Cancel,
reject and carrier sync hand the refund to the idempotent refund service;
the refund result is reported next to the cancellation result, never in
place of it.
"""

from contextlib import contextmanager

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..responses import error_response, outcome_response, result_response
from ..services import order_service
from ..services.carrier_client import carrier_session
from ..services.errors import LedgerError
from ..validation import ValidationError, as_int, json_body, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _carrier_configured() -> bool:
    config = current_app.config
    return bool(config.get("CARRIER_CLIENT_FACTORY") or config.get("RAPIDDEALS_API_KEY"))


@contextmanager
def _optional_carrier():
    """Placement books locally when no carrier credentials are set."""
    if not _carrier_configured():
        yield None
        return
    with carrier_session() as carrier:
        yield carrier


# =============================================================================
# PLACEMENT
# =============================================================================

@orders_bp.post("/place")
@require_auth
def place_order_route():
    """
    Place an order from a quote the customer was shown.

    Request body:
    {
        "quote": {"totalCharge": 123.45, "orderId": "RD-1001", ...},
        "order": {"order_number": "RD-1001", "service_type": "LTL", ...}  (optional)
    }

    Returns:
        201: Order placed, ledger pair written
        400: Invalid input
        409: No supervisor configured
        502: Carrier API failure
    """
    try:
        data = json_body()
        quote = data.get("quote")
        if not isinstance(quote, dict):
            return jsonify({"error": "quote object required"}), 400
        order_fields = data.get("order") if isinstance(data.get("order"), dict) else {}

        with _optional_carrier() as carrier:
            result = order_service.place_order(g.identity, quote, order_fields, carrier=carrier)
        return result_response(result, success_status=201)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
@require_auth
def list_orders_route():
    try:
        limit = min(as_int(request.args.get("limit", 50), "limit"), 500)
        offset = as_int(request.args.get("offset", 0), "offset")
        items, total = order_service.list_orders(
            g.identity,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"orders": items, "total": total, "limit": limit, "offset": offset}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.order_view(g.identity, order_id)}), 200
    except LedgerError as e:
        return error_response(e)


# =============================================================================
# CANCELLATION / REJECTION / REFUND
# =============================================================================

@orders_bp.post("/cancel")
@require_auth
def cancel_order_route():
    """
    Cancel a pending_review order with the carrier, then refund.

    Request body: {"order_id": 12, "reason": "..."}
    """
    try:
        data = json_body()
        require_fields(data, "order_id")
        order_id = as_int(data["order_id"], "order_id")

        with carrier_session() as carrier:
            outcome = order_service.cancel_order(g.identity, order_id, data.get("reason"), carrier=carrier)
        return outcome_response(outcome)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/reject")
@require_auth
@require_admin
def reject_order_route():
    """Request body: {"order_id": 12, "reason": "..."}"""
    try:
        data = json_body()
        require_fields(data, "order_id", "reason")
        outcome = order_service.reject_order(g.identity, as_int(data["order_id"], "order_id"), data["reason"])
        return outcome_response(outcome)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to reject order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/refund")
@require_auth
def refund_order_route():
    """
    Refund an order in a refundable status. Repeats report already_refunded.

    Request body: {"order_id": 12, "reason": "..."}
    """
    try:
        data = json_body()
        require_fields(data, "order_id")
        result = order_service.request_refund(g.identity, as_int(data["order_id"], "order_id"), data.get("reason"))
        return result_response(result)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to refund order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CARRIER SYNC
# =============================================================================

@orders_bp.post("/<int:order_id>/sync")
@require_auth
def sync_order_route(order_id: int):
    try:
        with carrier_session() as carrier:
            result = order_service.sync_order(g.identity, order_id, carrier=carrier)
        return result_response(result)
    except Exception:
        current_app.logger.exception("Failed to sync order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
