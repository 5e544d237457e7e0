# backend/kasir/routes/stock.py
"""
Stock adjustment and history routes.

Time semantics:
- start_date / end_date are calendar dates; end_date includes the whole day.
"""
from flask import Blueprint, request, current_app, g

from ..extensions import db
from ..models import Product
from ..services import stock_service
from ..services.stock_service import InsufficientStockError
from ..validation import ValidationError, NotFoundError, coerce_int, parse_date_param
from ..decorators import require_auth, require_role

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/adjust")
@require_auth
def adjust_stock_route():
    """
    Body: {product_id, amount, type: "in" | "out", note?}

    Responses:
    - 200 with the movement and the product's new stock
    - 400 on malformed input
    - 404 when the product is missing or deleted
    - 409 when an OUT exceeds the stock on hand
    """
    data = request.get_json(silent=True)
    if data is None and request.form:
        data = request.form.to_dict()
    data = data or {}

    try:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")
        if data.get("product_id") in (None, ""):
            raise ValidationError("product_id is required")
        if data.get("amount") in (None, ""):
            raise ValidationError("amount is required")
        product_id = coerce_int("product_id", data["product_id"])
        direction = str(data.get("type") or "").strip().lower()

        movement = stock_service.adjust_stock(
            product_id,
            data["amount"],
            direction,
            note=data.get("note") or None,
            user_id=g.current_user.id,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except InsufficientStockError as e:
        return {"error": str(e), "details": e.details}, 409
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    product = db.session.get(Product, product_id)
    current_app.logger.info(
        "Stock %s %s for product %s by user %s (now %s)",
        direction, movement.stock_in or movement.stock_out, product_id, g.current_user.id, product.stock,
    )
    return {"movement": movement.to_dict(), "stock": product.stock}, 200


@stock_bp.get("/<int:product_id>")
@require_auth
def get_stock_route(product_id: int):
    """Current stock of a live product, read fresh from the database."""
    try:
        stock = stock_service.get_stock(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"product_id": product_id, "stock": stock}, 200


@stock_bp.get("/history")
@require_auth
@require_role("ADMIN")
def stock_history_route():
    """
    Query params:
    - product_id: int (takes precedence over category_id)
    - category_id: int
    - start_date, end_date: YYYY-MM-DD
    - limit: int
    """
    try:
        start = parse_date_param("start_date", request.args.get("start_date"))
        end = parse_date_param("end_date", request.args.get("end_date"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    movements = stock_service.stock_history(
        product_id=request.args.get("product_id", type=int),
        category_id=request.args.get("category_id", type=int),
        start=start,
        end=end,
        limit=request.args.get("limit", type=int),
    )
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}, 200
