# backend/kasir/routes/events.py
"""
Promotion events and their per-product discounts.

Writes are ADMIN only; the POS reads active events to offer discounts.
Discounts are given as a percentage (0-100, two decimals) and stored as
basis points.
"""
from flask import Blueprint, request, current_app

from ..models import Event
from ..services import events_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    coerce_int,
    parse_discount_percent,
    parse_date_param,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_auth, require_role
from kasir.time_utils import parse_iso_datetime

EVENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "starts_at", "ends_at"},
    required_on_create={"name", "starts_at", "ends_at"},
)

events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("")
@require_auth
@require_role("ADMIN")
def list_events_route():
    return events_service.list_events(
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@events_bp.get("/active")
@require_auth
def active_events_route():
    """
    Query params:
    - at: ISO datetime, or
    - date: YYYY-MM-DD (whole day)
    Defaults to now.
    """
    try:
        at = None
        if request.args.get("at"):
            try:
                at = parse_iso_datetime(request.args["at"])
            except ValueError:
                raise ValidationError("at must be an ISO-8601 datetime")
        elif request.args.get("date"):
            at = parse_date_param("date", request.args["date"])
    except ValidationError as e:
        return {"error": str(e)}, 400

    items = events_service.active_events(at)
    return {"items": items, "count": len(items)}, 200


@events_bp.get("/<int:event_id>")
@require_auth
@require_role("ADMIN")
def get_event_route(event_id: int):
    try:
        event = events_service.get_event(event_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return events_service.event_detail(event), 200


@events_bp.post("")
@require_auth
@require_role("ADMIN")
def create_event_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Event, payload=payload, policy=EVENT_POLICY, partial=False)
        event = events_service.create_event(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create event")
        return {"error": "Internal server error"}, 500

    return event.to_dict(), 201


@events_bp.put("/<int:event_id>")
@require_auth
@require_role("ADMIN")
def update_event_route(event_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Event, payload=payload, policy=EVENT_POLICY, partial=True)
        event = events_service.update_event(event_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to update event")
        return {"error": "Internal server error"}, 500

    return event.to_dict(), 200


@events_bp.delete("/<int:event_id>")
@require_auth
@require_role("ADMIN")
def delete_event_route(event_id: int):
    try:
        events_service.delete_event(event_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200


@events_bp.get("/<int:event_id>/products")
@require_auth
@require_role("ADMIN")
def list_event_products_route(event_id: int):
    try:
        items = events_service.list_event_products(event_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"items": [ep.to_dict(include_product=True) for ep in items], "count": len(items)}, 200


@events_bp.get("/<int:event_id>/available-products")
@require_auth
@require_role("ADMIN")
def available_products_route(event_id: int):
    try:
        products = events_service.available_products(event_id, search=request.args.get("search"))
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"items": [p.to_dict() for p in products], "count": len(products)}, 200


@events_bp.post("/<int:event_id>/products")
@require_auth
@require_role("ADMIN")
def add_event_product_route(event_id: int):
    """
    Body: {product_id, discount_percent}
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("product_id") in (None, ""):
            raise ValidationError("product_id is required")
        product_id = coerce_int("product_id", data["product_id"])
        discount_bps = parse_discount_percent(data.get("discount_percent"))
        ep = events_service.add_event_product(event_id, product_id=product_id, discount_bps=discount_bps)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to add event product")
        return {"error": "Internal server error"}, 500

    return ep.to_dict(include_product=True), 201


@events_bp.put("/<int:event_id>/products/<int:event_product_id>")
@require_auth
@require_role("ADMIN")
def update_event_product_route(event_id: int, event_product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        discount_bps = parse_discount_percent(data.get("discount_percent"))
        ep = events_service.update_event_product(event_id, event_product_id, discount_bps=discount_bps)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return ep.to_dict(include_product=True), 200


@events_bp.delete("/<int:event_id>/products/<int:event_product_id>")
@require_auth
@require_role("ADMIN")
def remove_event_product_route(event_id: int, event_product_id: int):
    try:
        events_service.remove_event_product(event_id, event_product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200
