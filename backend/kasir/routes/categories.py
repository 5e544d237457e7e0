from flask import Blueprint, request, current_app

from ..models import Category
from ..services import categories_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    """
    Query params: search, include_deleted, page, per_page
    """
    return categories_service.list_categories(
        search=request.args.get("search"),
        include_deleted=request.args.get("include_deleted", "").lower() in ("1", "true", "yes"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@categories_bp.post("")
@require_auth
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = categories_service.create_category(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create category")
        return {"error": "Internal server error"}, 500

    return category.to_dict(), 201


@categories_bp.put("/<int:category_id>")
@require_auth
def update_category_route(category_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = categories_service.update_category(category_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update category")
        return {"error": "Internal server error"}, 500

    return category.to_dict(), 200


@categories_bp.delete("/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        categories_service.delete_category(category_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200


@categories_bp.post("/<int:category_id>/restore")
@require_auth
def restore_category_route(category_id: int):
    try:
        category = categories_service.restore_category(category_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return category.to_dict(), 200
