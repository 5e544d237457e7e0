# Overview: Time-boxed promotions and the per-product discounts attached to them.

"""
Events Service

An event discount reaches a sale only when the cashier picks the
EventProduct row for a line and the event is active at the sale time;
see sales_service._resolve_lines.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import Event, EventProduct, Product
from ..validation import ConflictError, NotFoundError, ValidationError, enforce_rules_event
from kasir.time_utils import day_range, utcnow
from .pagination import paginate

EVENT_MUTABLE_FIELDS = {"name", "description", "starts_at", "ends_at"}


def list_events(
    *,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = Event.live()
    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(Event.name.ilike(term), Event.description.ilike(term)))
    q = q.order_by(Event.starts_at.desc(), Event.id.desc())
    return paginate(q, page, per_page)


def get_event(event_id: int) -> Event:
    event = Event.live().filter(Event.id == event_id).first()
    if event is None:
        raise NotFoundError("Event not found")
    return event


def event_detail(event: Event) -> dict:
    data = event.to_dict()
    data["products"] = [ep.to_dict(include_product=True) for ep in _live_event_products(event.id)]
    return data


def create_event(*, patch: dict) -> Event:
    enforce_rules_event(patch)
    event = Event()
    for k, v in patch.items():
        if k in EVENT_MUTABLE_FIELDS:
            setattr(event, k, v)
    db.session.add(event)
    db.session.commit()
    return event


def update_event(event_id: int, *, patch: dict) -> Event:
    event = get_event(event_id)
    enforce_rules_event({
        "starts_at": patch.get("starts_at", event.starts_at),
        "ends_at": patch.get("ends_at", event.ends_at),
    })
    for k, v in patch.items():
        if k in EVENT_MUTABLE_FIELDS:
            setattr(event, k, v)
    db.session.commit()
    return event


def delete_event(event_id: int) -> Event:
    event = get_event(event_id)
    event.soft_delete()
    for ep in _live_event_products(event.id):
        ep.soft_delete()
    db.session.commit()
    return event


def _live_event_products(event_id: int) -> list[EventProduct]:
    return (
        EventProduct.live()
        .filter(EventProduct.event_id == event_id)
        .order_by(EventProduct.id.asc())
        .all()
    )


def list_event_products(event_id: int) -> list[EventProduct]:
    get_event(event_id)
    return _live_event_products(event_id)


def add_event_product(event_id: int, *, product_id: int, discount_bps: int) -> EventProduct:
    """
    Raises:
        NotFoundError: event or product missing
        ConflictError: product already in this event
    """
    get_event(event_id)
    product = Product.live().filter(Product.id == product_id).first()
    if product is None:
        raise NotFoundError("Product not found")
    _validate_bps(discount_bps)

    existing = EventProduct.live().filter(
        EventProduct.event_id == event_id,
        EventProduct.product_id == product_id,
    ).first()
    if existing is not None:
        raise ConflictError(f"{product.name} is already part of this event")

    ep = EventProduct(event_id=event_id, product_id=product_id, discount_bps=discount_bps)
    db.session.add(ep)
    db.session.commit()
    return ep


def _get_event_product(event_id: int, event_product_id: int) -> EventProduct:
    ep = EventProduct.live().filter(
        EventProduct.id == event_product_id,
        EventProduct.event_id == event_id,
    ).first()
    if ep is None:
        raise NotFoundError("Event product not found")
    return ep


def _validate_bps(discount_bps: int) -> None:
    if discount_bps < 0 or discount_bps > 10000:
        raise ValidationError("discount_percent must be between 0 and 100")


def update_event_product(event_id: int, event_product_id: int, *, discount_bps: int) -> EventProduct:
    """Changes apply to future sales only; existing lines keep their snapshot."""
    ep = _get_event_product(event_id, event_product_id)
    _validate_bps(discount_bps)
    ep.discount_bps = discount_bps
    db.session.commit()
    return ep


def remove_event_product(event_id: int, event_product_id: int) -> EventProduct:
    ep = _get_event_product(event_id, event_product_id)
    ep.soft_delete()
    db.session.commit()
    return ep


def available_products(event_id: int, *, search: str | None = None, limit: int = 50) -> list[Product]:
    """Products not yet attached to the event."""
    get_event(event_id)
    taken = db.session.query(EventProduct.product_id).filter(
        EventProduct.event_id == event_id,
        EventProduct.is_deleted.is_(False),
    )
    q = Product.live().filter(Product.id.notin_(taken))
    if search and search.strip():
        q = q.filter(Product.name.ilike(f"%{search.strip()}%"))
    return q.order_by(Product.name.asc()).limit(limit).all()


def active_events(at: datetime | date | None = None) -> list[dict]:
    """
    Events active at `at` with their products. A date covers the whole day.
    """
    if at is None:
        window_start = window_end = utcnow()
    elif isinstance(at, datetime):
        window_start = window_end = at
    else:
        window_start, window_end = day_range(at, at)

    events = (
        Event.live()
        .filter(Event.starts_at <= window_end, Event.ends_at >= window_start)
        .order_by(Event.starts_at.asc(), Event.id.asc())
        .all()
    )
    return [event_detail(event) for event in events]
