# Overview: Flask API routes for pricing; prices quote payloads for the acting user.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth
from ..services import pricing_service
from ..services.price_ratio import normalize_ratio
from ..validation import ValidationError, json_body


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.post("/quote")
@require_auth
def price_quote_route():
    """
    Apply the viewer's ratio to a carrier quote.

    Request body: {"quote": {...}} or {"quotes": [{...}, ...]}.
    Admins get the payload back at base cost.
    """
    try:
        data = json_body()
        if isinstance(data.get("quotes"), list):
            quotes = data["quotes"]
            if not all(isinstance(q, dict) for q in quotes):
                return jsonify({"error": "quotes must be a list of objects"}), 400
            return jsonify({"quotes": pricing_service.apply_to_payloads(quotes, g.identity)})

        quote = data.get("quote")
        if not isinstance(quote, dict):
            return jsonify({"error": "quote object or quotes list required"}), 400
        return jsonify({"quote": pricing_service.apply_to_payload(quote, g.identity)})

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to price quote")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.get("/ratio")
@require_auth
def my_ratio_route():
    normalization = normalize_ratio(g.identity.price_ratio)
    return jsonify({
        "role": g.identity.role,
        "stored_ratio": g.identity.price_ratio,
        "effective_ratio": pricing_service.effective_ratio(g.identity),
        "clamped": normalization.clamped,
    })
