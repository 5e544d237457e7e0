from flask import Blueprint, request, current_app

from ..models import Customer
from ..services import customers_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    form_to_payload,
    enforce_rules_status,
    ValidationError,
    NotFoundError,
)
from ..decorators import require_auth

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "phone", "status"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _request_payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None and request.form:
        payload = form_to_payload(request.form, CUSTOMER_POLICY.writable_fields)
    return payload or {}


@customers_bp.get("")
@require_auth
def list_customers_route():
    """
    Query params: search (name, phone or address), include_deleted, page, per_page
    """
    return customers_service.list_customers(
        search=request.args.get("search"),
        include_deleted=request.args.get("include_deleted", "").lower() in ("1", "true", "yes"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        customer = customers_service.get_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return customer.to_dict(), 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        patch = validate_payload(model=Customer, payload=_request_payload(), policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_status(patch)
        customer = customers_service.create_customer(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return {"error": "Internal server error"}, 500

    return customer.to_dict(), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        patch = validate_payload(model=Customer, payload=_request_payload(), policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_status(patch)
        customer = customers_service.update_customer(customer_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return {"error": "Internal server error"}, 500

    return customer.to_dict(), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    try:
        customers_service.delete_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200


@customers_bp.post("/<int:customer_id>/restore")
@require_auth
def restore_customer_route(customer_id: int):
    try:
        customer = customers_service.restore_customer(customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return customer.to_dict(), 200
