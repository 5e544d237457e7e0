# backend/kasir/routes/products.py
"""
Product management routes.

Create and update accept JSON or a form submission with the same field
names. Stock is only settable on create (opening stock); afterwards it
moves through POST /api/stock/adjust.
"""
from flask import Blueprint, request, current_app, g

from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    form_to_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"category_id", "name", "cost_price", "sale_price", "stock", "barcode", "image_path"},
    required_on_create={"category_id", "name", "cost_price", "sale_price"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"category_id", "name", "cost_price", "sale_price", "barcode", "image_path"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _request_payload(policy: ModelValidationPolicy) -> dict:
    payload = request.get_json(silent=True)
    if payload is None and request.form:
        payload = form_to_payload(request.form, policy.writable_fields)
    return payload or {}


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - search: product or category name
    - category_id: int (optional)
    - include_deleted: bool (optional)
    - page, per_page
    """
    return products_service.list_products(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        include_deleted=request.args.get("include_deleted", "").lower() in ("1", "true", "yes"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return product.to_dict(), 200


@products_bp.get("/barcode/<string:barcode>")
@require_auth
def get_product_by_barcode_route(barcode: str):
    """Scanner lookup for the POS screen."""
    try:
        product = products_service.get_product_by_barcode(barcode)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return product.to_dict(), 200


@products_bp.get("/barcodes")
@require_auth
def list_barcodes_route():
    items = products_service.list_barcodes(search=request.args.get("search"))
    return {"items": items, "count": len(items)}, 200


@products_bp.post("")
@require_auth
def create_product_route():
    payload = _request_payload(PRODUCT_CREATE_POLICY)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = products_service.create_product(patch=patch, user_id=g.current_user.id)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Product %s created (opening stock %s)", product.id, product.stock)
    return product.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = _request_payload(PRODUCT_UPDATE_POLICY)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = products_service.update_product(product_id, patch=patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500

    return product.to_dict(), 200


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/restore")
@require_auth
def restore_product_route(product_id: int):
    try:
        product = products_service.restore_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return product.to_dict(), 200
