# backend/kasir/routes/users.py
"""
Operator account management. ADMIN only.
"""
from flask import Blueprint, request, current_app, g

from ..models import User
from ..services import auth_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_user,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, require_role

USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "display_name", "role", "address", "phone", "status"},
    required_on_create={"username", "display_name"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _split_password(payload: dict) -> tuple[dict, str | None]:
    payload = dict(payload)
    password = payload.pop("password", None)
    return payload, password


@users_bp.get("")
@require_auth
@require_role("ADMIN")
def list_users_route():
    return auth_service.list_users(
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@users_bp.get("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def get_user_route(user_id: int):
    try:
        user = auth_service.get_user(user_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return user.to_dict(), 200


@users_bp.post("")
@require_auth
@require_role("ADMIN")
def create_user_route():
    payload, password = _split_password(request.get_json(silent=True) or {})
    if not password:
        return {"error": "password is required"}, 400

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
        enforce_rules_user(patch)
        user = auth_service.create_user(patch=patch, password=password)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("User %s created by %s", user.id, g.current_user.id)
    return user.to_dict(), 201


@users_bp.put("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def update_user_route(user_id: int):
    """Password is optional; leave it out to keep the current one."""
    payload, password = _split_password(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
        enforce_rules_user(patch)
        user = auth_service.update_user(user_id, patch=patch, password=password)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update user")
        return {"error": "Internal server error"}, 500

    return user.to_dict(), 200


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role("ADMIN")
def delete_user_route(user_id: int):
    try:
        auth_service.delete_user(user_id, actor_user_id=g.current_user.id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"ok": True}, 200
