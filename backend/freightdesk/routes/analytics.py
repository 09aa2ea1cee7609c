# Overview: Flask API routes for pricing analytics; admin-only margin, customer and trend rollups.

"""
Pricing Analytics API Routes

All endpoints accept the same optional filters as query params:
start_date, end_date (ISO-8601), customer_id, transaction_type,
min_amount, max_amount.
"""

from flask import Blueprint, Response, jsonify, request

from ..decorators import require_admin, require_auth
from ..services import analytics_service
from ..services.analytics_service import AnalyticsFilters
from freightdesk.time_utils import utcnow


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


def _filters():
    return AnalyticsFilters.from_args(request.args)


@analytics_bp.get("/profit-margin")
@require_auth
@require_admin
def profit_margin_route():
    try:
        return jsonify(analytics_service.profit_margin(_filters())), 200
    except ValueError as e:
        return jsonify({"error": f"Invalid filter: {e}"}), 400


@analytics_bp.get("/customers")
@require_auth
@require_admin
def revenue_by_customer_route():
    try:
        return jsonify({"customers": analytics_service.revenue_by_customer(_filters())}), 200
    except ValueError as e:
        return jsonify({"error": f"Invalid filter: {e}"}), 400


@analytics_bp.get("/trends")
@require_auth
@require_admin
def trend_route():
    try:
        return jsonify({"trend": analytics_service.trend(_filters())}), 200
    except ValueError as e:
        return jsonify({"error": f"Invalid filter: {e}"}), 400


@analytics_bp.get("/summary")
@require_auth
@require_admin
def summary_route():
    try:
        return jsonify(analytics_service.summary_stats(_filters())), 200
    except ValueError as e:
        return jsonify({"error": f"Invalid filter: {e}"}), 400


@analytics_bp.get("/export")
@require_auth
@require_admin
def export_route():
    try:
        body = analytics_service.export_csv(_filters())
    except ValueError as e:
        return jsonify({"error": f"Invalid filter: {e}"}), 400

    filename = f"pricing-analytics-{utcnow().strftime('%Y%m%d')}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
