# backend/kasir/routes/sales.py
"""
Sales API routes.

Checkout accepts JSON or the POS form submission. Cart lines come as a
list (or its JSON text) under `lines` or `selectedProduk`, each
{id, quantity, diskon, event_produkId?}. Client-computed totals are ignored;
the server recomputes them.

Editing and deleting an invoice is ADMIN only.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.sales_service import SaleError
from ..services.stock_service import InsufficientStockError
from ..validation import ValidationError, NotFoundError, coerce_int, parse_date_param
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _request_data() -> dict:
    data = request.get_json(silent=True)
    if data is None and request.form:
        data = request.form.to_dict()
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")
    return data


def _optional_int(data: dict, key: str, default=None):
    value = data.get(key)
    if value in (None, ""):
        return default
    return coerce_int(key, value)


def _sale_kwargs(data: dict) -> dict:
    raw_lines = data.get("lines")
    if raw_lines is None:
        raw_lines = data.get("selectedProduk")

    amount_tendered = _optional_int(data, "amount_tendered")
    if amount_tendered is None:
        raise ValidationError("amount_tendered is required")
    if amount_tendered < 0:
        raise ValidationError("amount_tendered must be >= 0")

    return {
        "items": sales_service.parse_cart_items(raw_lines),
        "customer_id": _optional_int(data, "customer_id"),
        "adjustment": _optional_int(data, "adjustment", 0),
        "amount_tendered": amount_tendered,
        "sold_at": data.get("sold_at"),
    }


def _error_response(e: Exception):
    if isinstance(e, InsufficientStockError):
        return jsonify({"error": str(e), "details": e.details}), 409
    if isinstance(e, SaleError):
        return jsonify({"error": str(e), "details": e.details}), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    raise e


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Checkout.

    Responses:
    - 201 {"sale": {...with lines}}
    - 400 invalid cart or payment below the total
    - 409 insufficient stock (details list every short product)
    """
    try:
        kwargs = _sale_kwargs(_request_data())
        sale = sales_service.create_sale(user_id=g.current_user.id, **kwargs)
    except (SaleError, ValidationError, NotFoundError, InsufficientStockError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Sale %s created by user %s, net_total=%s", sale.id, g.current_user.id, sale.net_total
    )
    return jsonify({"sale": sales_service.sale_detail(sale)}), 201


@sales_bp.post("/quote")
@require_auth
def quote_sale_route():
    """Totals preview for the POS screen. amount_tendered is optional here."""
    try:
        data = _request_data()
        raw_lines = data.get("lines")
        if raw_lines is None:
            raw_lines = data.get("selectedProduk")
        totals = sales_service.quote_cart(
            items=sales_service.parse_cart_items(raw_lines),
            customer_id=_optional_int(data, "customer_id"),
            adjustment=_optional_int(data, "adjustment", 0),
            amount_tendered=_optional_int(data, "amount_tendered"),
            sold_at=data.get("sold_at"),
        )
    except (SaleError, ValidationError, NotFoundError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"totals": totals.to_dict()}), 200


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params:
    - search: operator name, customer name or invoice id
    - start_date, end_date: YYYY-MM-DD (inclusive)
    - customer_id, min_total, max_total: int
    - page, per_page
    """
    try:
        start = parse_date_param("start_date", request.args.get("start_date"))
        end = parse_date_param("end_date", request.args.get("end_date"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = sales_service.list_sales(
        search=request.args.get("search"),
        start=start,
        end=end,
        customer_id=request.args.get("customer_id", type=int),
        min_total=request.args.get("min_total", type=int),
        max_total=request.args.get("max_total", type=int),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except NotFoundError as e:
        return _error_response(e)
    return jsonify({"sale": sales_service.sale_detail(sale)}), 200


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_role("ADMIN")
def update_sale_route(sale_id: int):
    """
    Replace the invoice's lines; stock moves by the per-product difference.
    """
    try:
        data = _request_data()
        kwargs = _sale_kwargs(data)
        sale = sales_service.update_sale(
            sale_id,
            user_id=_optional_int(data, "user_id"),
            actor_user_id=g.current_user.id,
            **kwargs,
        )
    except (SaleError, ValidationError, NotFoundError, InsufficientStockError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Sale %s updated by user %s, net_total=%s", sale.id, g.current_user.id, sale.net_total
    )
    return jsonify({"sale": sales_service.sale_detail(sale)}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role("ADMIN")
def delete_sale_route(sale_id: int):
    """Void an invoice; its units go back to stock."""
    try:
        sale = sales_service.delete_sale(sale_id, actor_user_id=g.current_user.id)
    except (NotFoundError, ValidationError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Sale %s deleted by user %s", sale.id, g.current_user.id)
    return jsonify({"ok": True}), 200
