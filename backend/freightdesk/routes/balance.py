# Overview: Flask API routes for balances and ledger transactions; role-scoped listing and adjustments.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..responses import result_response
from ..services import balance_service, transaction_service
from ..validation import ValidationError, as_int, json_body, require_fields


balance_bp = Blueprint("balance", __name__, url_prefix="/api/balance")


@balance_bp.get("")
@require_auth
def get_balance_route():
    """Balance of the caller; admins may pass ?user_id=."""
    try:
        user_id = g.identity.id
        if request.args.get("user_id") and g.identity.is_admin:
            user_id = as_int(request.args["user_id"], "user_id")
        return jsonify({"balance": balance_service.get_user_balance(user_id)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@balance_bp.get("/transactions")
@require_auth
def list_transactions_route():
    """
    Ledger rows visible to the caller.

    Query params: user_id (admin), type, search, dateRange (7days|30days|90days|all),
    limit, offset.
    """
    try:
        user_id = None
        if request.args.get("user_id"):
            user_id = as_int(request.args["user_id"], "user_id")
        limit = min(as_int(request.args.get("limit", 100), "limit"), 500)
        offset = as_int(request.args.get("offset", 0), "offset")

        items, total = transaction_service.list_transactions(
            g.identity,
            user_id=user_id,
            transaction_type=request.args.get("type"),
            search=request.args.get("search"),
            date_range=request.args.get("dateRange", "30days"),
            limit=limit,
            offset=offset,
        )
        return jsonify({"transactions": items, "total": total, "limit": limit, "offset": offset}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@balance_bp.post("/transactions")
@require_auth
def create_transaction_route():
    """
    Manual ledger entry (admin only). Refunds are not accepted here.

    Request body:
    {
        "amount": 25.00,
        "transaction_type": "credit",
        "description": "Goodwill credit",  (optional)
        "user_id": 7,  (optional, defaults to the caller)
        "dual": false,  (writes the supervisor mirror row too)
        "order_id": 12, "order_number": "RD-1001", "reference_id": "..."  (optional)
    }
    """
    try:
        data = json_body()
        require_fields(data, "amount", "transaction_type")

        target_user_id = None
        if data.get("user_id") is not None:
            target_user_id = as_int(data["user_id"], "user_id")
        order_id = None
        if data.get("order_id") is not None:
            order_id = as_int(data["order_id"], "order_id")

        result = transaction_service.create_manual_adjustment(
            g.identity,
            amount=data["amount"],
            transaction_type=data["transaction_type"],
            description=data.get("description"),
            target_user_id=target_user_id,
            dual=bool(data.get("dual", False)),
            order_id=order_id,
            order_number=data.get("order_number"),
            reference_id=data.get("reference_id"),
        )
        return result_response(result, success_status=201)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500
