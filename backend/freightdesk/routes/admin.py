# Overview: Flask API routes for admin operations; customer price ratios and ledger reconciliation.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..extensions import db
from ..responses import error_response
from ..services import user_service
from ..services.errors import LedgerError
from ..services.refund_service import find_unpaired_transactions
from ..validation import ValidationError, as_int, json_body, require_fields


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.put("/users/<int:user_id>/price-ratio")
@require_auth
@require_admin
def set_price_ratio_route(user_id: int):
    """
    Set a customer's price ratio (percent markup over base cost).

    Request body: {"price_ratio": 25}

    Out-of-range values are clamped to [-50, 500]; the response reports the
    stored value and whether clamping happened.
    """
    try:
        data = json_body()
        require_fields(data, "price_ratio")

        normalization = user_service.set_price_ratio(user_id, data["price_ratio"])
        db.session.commit()

        return jsonify({
            "user_id": user_id,
            "requested": data["price_ratio"],
            "price_ratio": normalization.ratio,
            "clamped": normalization.clamped,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set price ratio")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/ledger/unpaired")
@require_auth
@require_admin
def unpaired_transactions_route():
    """Dual-ledger rows missing their counterpart; optional ?order_id=."""
    try:
        order_id = None
        if request.args.get("order_id"):
            order_id = as_int(request.args["order_id"], "order_id")
        items = find_unpaired_transactions(order_id)
        return jsonify({"unpaired": items, "count": len(items)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to scan for unpaired transactions")
        return jsonify({"error": "Internal server error"}), 500
