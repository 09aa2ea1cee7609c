# Overview: Flask API routes for cargo insurance; certificate purchase and cancellation.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth
from ..responses import outcome_response, result_response
from ..services import insurance_service
from ..services.insurance_client import insurance_session
from ..validation import ValidationError, as_int, json_body, require_fields


insurance_bp = Blueprint("insurance", __name__, url_prefix="/api/insurance")


@insurance_bp.post("/purchase")
@require_auth
def purchase_insurance_route():
    """
    Request body:
    {
        "order_id": 12,
        "quote": {"premium": 40, "service_fee": 5, "tax": 5, "total_cost": 50,
                  "coverage_limit": 100000, "quote_token": "..."}
    }
    """
    try:
        data = json_body()
        require_fields(data, "order_id")
        quote = data.get("quote")
        if not isinstance(quote, dict):
            return jsonify({"error": "quote object required"}), 400

        with insurance_session() as client:
            result = insurance_service.purchase_insurance(
                g.identity, as_int(data["order_id"], "order_id"), quote, client=client
            )
        return result_response(result, success_status=201)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to purchase insurance")
        return jsonify({"error": "Internal server error"}), 500


@insurance_bp.post("/cancel")
@require_auth
def cancel_insurance_route():
    """
    Request body:
    {
        "certificate_number": "CERT-AB12CD3",
        "reason": "CANNLN",
        "additional_info": "...",  (required for CANOTH)
        "email_assured": false
    }
    """
    try:
        data = json_body()
        require_fields(data, "certificate_number", "reason")

        with insurance_session() as client:
            outcome = insurance_service.cancel_insurance(
                g.identity,
                data["certificate_number"],
                data["reason"],
                data.get("additional_info"),
                client=client,
                email_assured=bool(data.get("email_assured", False)),
            )
        return outcome_response(outcome)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel insurance")
        return jsonify({"error": "Internal server error"}), 500


@insurance_bp.get("/reasons")
@require_auth
def cancellation_reasons_route():
    return jsonify({"reasons": insurance_service.CANCELLATION_REASONS}), 200
