# backend/kasir/routes/reports.py
"""
Reporting routes. ADMIN only.

Dates are calendar dates (YYYY-MM-DD); both ends inclusive, both default
to today.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import reporting_service
from ..services.reporting_service import ReportError
from ..validation import ValidationError, parse_date_param
from ..decorators import require_auth, require_role

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _date_args():
    return (
        parse_date_param("start_date", request.args.get("start_date")),
        parse_date_param("end_date", request.args.get("end_date")),
    )


@reports_bp.get("/sales")
@require_auth
@require_role("ADMIN")
def sales_report_route():
    """
    Query params: start_date, end_date, customer_id or customer (name), page, per_page
    """
    customer_name = request.args.get("customer")
    if customer_name == "Semua":
        customer_name = None

    try:
        start, end = _date_args()
        result = reporting_service.sales_report(
            start=start,
            end=end,
            customer_id=request.args.get("customer_id", type=int),
            customer_name=customer_name,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except (ValidationError, ReportError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to generate sales report")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 200


@reports_bp.get("/sales/per-item")
@require_auth
@require_role("ADMIN")
def per_item_report_route():
    try:
        start, end = _date_args()
        result = reporting_service.per_item_report(
            start=start,
            end=end,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except (ValidationError, ReportError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to generate per-item report")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 200


@reports_bp.get("/dashboard")
@require_auth
@require_role("ADMIN")
def dashboard_route():
    """Query params: year (defaults to the current year)."""
    try:
        result = reporting_service.dashboard(request.args.get("year", type=int))
    except Exception:
        current_app.logger.exception("Failed to build dashboard")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 200


@reports_bp.get("/dashboard/years")
@require_auth
@require_role("ADMIN")
def available_years_route():
    return jsonify({"years": reporting_service.available_years()}), 200
