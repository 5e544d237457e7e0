"""
Sales Service - checkout, invoice edits and voids

Totals are always recomputed server-side from the cart with pricing_service;
client-side figures are a display convenience only. Stock moves through
stock_service with commit=False so the header, lines and every stock
movement of one checkout commit together or not at all.
"""

from __future__ import annotations

import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy import or_, cast, String

from ..extensions import db
from ..models import Sale, SaleLine, Product, Customer, User, EventProduct
from ..validation import ValidationError, NotFoundError, coerce_int
from kasir.time_utils import utcnow, parse_iso_datetime, day_range
from .pricing_service import CartLine, SaleTotals, compute_totals, DEFAULT_CUSTOMER_DISCOUNT_BPS
from .stock_service import (
    adjust_stock,
    InsufficientStockError,
    format_insufficient_message,
    DIRECTION_IN,
    DIRECTION_OUT,
)
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class CartItemInput:
    """One submitted cart line, before prices are looked up."""
    product_id: int
    quantity: int
    item_discount: int = 0
    event_product_id: int | None = None


@dataclass(frozen=True)
class ResolvedLine:
    cart_line: CartLine
    product: Product
    unit_cost: int
    event_product: EventProduct | None


def _first_present(raw: dict, *keys):
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return None


def parse_cart_items(raw) -> list[CartItemInput]:
    """
    Accepts the POS payload: a list (or its JSON text) of
    {id | product_id, quantity | qty, diskon | item_discount, event_produkId | event_product_id}.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("lines must be a JSON array")
    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise ValidationError("lines must be a JSON array")

    items = []
    for i, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            raise ValidationError(f"line {i} must be an object")

        product_id = _first_present(entry, "product_id", "id")
        if product_id is None:
            raise ValidationError(f"line {i}: product id is required")
        quantity = _first_present(entry, "quantity", "qty")
        if quantity is None:
            raise ValidationError(f"line {i}: quantity is required")

        quantity = coerce_int("quantity", quantity)
        if quantity < 1:
            raise ValidationError(f"line {i}: quantity must be >= 1")

        item_discount = coerce_int("item_discount", _first_present(entry, "item_discount", "diskon") or 0)
        if item_discount < 0:
            raise ValidationError(f"line {i}: item discount must be >= 0")

        event_product_id = _first_present(entry, "event_product_id", "event_produkId")

        items.append(CartItemInput(
            product_id=coerce_int("product_id", product_id),
            quantity=quantity,
            item_discount=item_discount,
            event_product_id=coerce_int("event_product_id", event_product_id) if event_product_id is not None else None,
        ))
    return items


def _customer_discount_bps() -> int:
    if has_app_context():
        return current_app.config.get("CUSTOMER_DISCOUNT_BPS", DEFAULT_CUSTOMER_DISCOUNT_BPS)
    return DEFAULT_CUSTOMER_DISCOUNT_BPS


def _parse_sold_at(value) -> datetime:
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        sold_at = value
    else:
        try:
            sold_at = parse_iso_datetime(str(value))
        except ValueError:
            raise ValidationError("sold_at must be an ISO-8601 datetime")
    if sold_at > utcnow() + timedelta(minutes=2):
        raise ValidationError("sold_at cannot be in the future")
    return sold_at


def _require_operator(user_id) -> User:
    if user_id in (None, ""):
        raise SaleError("Operator is required")
    user = User.live().filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise SaleError("Operator not found or inactive")
    return user


def _resolve_customer(customer_id) -> Customer | None:
    if customer_id in (None, ""):
        return None
    customer = Customer.live().filter(Customer.id == customer_id).first()
    if customer is None:
        raise SaleError("Customer not found")
    return customer


def _resolve_lines(
    items: list[CartItemInput],
    sold_at: datetime,
    snapshot_prices: dict[int, tuple[int, int]] | None = None,
    kept_event_product_ids: set[int] | None = None,
) -> list[ResolvedLine]:
    """
    Look up products and event discounts for submitted lines.

    snapshot_prices maps product_id -> (unit_price, unit_cost) for products
    already on an edited sale; those keep the price they were sold at and
    may have been deleted from the catalog since. The same goes for the
    event discounts in kept_event_product_ids.
    """
    snapshot_prices = snapshot_prices or {}
    kept_event_product_ids = kept_event_product_ids or set()
    resolved = []
    for item in items:
        product = (
            Product.live(include_deleted=item.product_id in snapshot_prices)
            .filter(Product.id == item.product_id)
            .first()
        )
        if product is None:
            raise SaleError(f"Product {item.product_id} not found")

        event_product = None
        event_bps = 0
        if item.event_product_id is not None:
            kept = item.event_product_id in kept_event_product_ids
            event_product = (
                EventProduct.live(include_deleted=kept)
                .filter(EventProduct.id == item.event_product_id)
                .first()
            )
            if event_product is None or event_product.product_id != product.id:
                raise SaleError(f"Event discount {item.event_product_id} does not apply to {product.name}")
            event = event_product.event
            if kept:
                active = event.starts_at <= sold_at <= event.ends_at
            else:
                active = event.is_active_at(sold_at)
            if not active:
                raise SaleError(f"Event discount for {product.name} is not active")
            event_bps = event_product.discount_bps

        unit_price, unit_cost = snapshot_prices.get(product.id, (product.sale_price, product.cost_price))

        resolved.append(ResolvedLine(
            cart_line=CartLine(
                product_id=product.id,
                quantity=item.quantity,
                unit_price=unit_price,
                item_discount=item.item_discount,
                event_discount_bps=event_bps,
                event_product_id=event_product.id if event_product else None,
            ),
            product=product,
            unit_cost=unit_cost,
            event_product=event_product,
        ))
    return resolved


def _quantities_by_product(pairs) -> "OrderedDict[int, int]":
    totals: OrderedDict[int, int] = OrderedDict()
    for product_id, qty in pairs:
        totals[product_id] = totals.get(product_id, 0) + qty
    return totals


def _check_stock(required: dict[int, int]) -> None:
    """Report every short product at once, before anything is written."""
    short = []
    for product_id, qty in required.items():
        if qty <= 0:
            continue
        product = db.session.get(Product, product_id)
        if product.stock < qty:
            short.append({
                "product_id": product.id,
                "name": product.name,
                "requested_quantity": qty,
                "stock": product.stock,
            })
    if short:
        raise InsufficientStockError(
            format_insufficient_message([s["name"] for s in short]),
            details={"items": short},
        )


def _totals_for(resolved: list[ResolvedLine], customer: Customer | None, adjustment: int,
                amount_tendered: int | None) -> SaleTotals:
    return compute_totals(
        [r.cart_line for r in resolved],
        is_registered_customer=customer is not None,
        adjustment=adjustment,
        amount_tendered=amount_tendered,
        customer_discount_bps=_customer_discount_bps(),
    )


def _require_payment(totals: SaleTotals, amount_tendered: int) -> None:
    if not totals.is_sufficient(amount_tendered):
        raise SaleError(
            "Payment is less than the total",
            details={"net_total": totals.net_total, "amount_tendered": amount_tendered},
        )


def _write_lines(sale: Sale, resolved: list[ResolvedLine], totals: SaleTotals) -> None:
    for r, lt in zip(resolved, totals.lines):
        db.session.add(SaleLine(
            sale_id=sale.id,
            product_id=r.product.id,
            event_product_id=lt.line.event_product_id,
            unit_price=lt.line.unit_price,
            unit_cost=r.unit_cost,
            item_discount=lt.line.item_discount,
            event_discount_bps=lt.line.event_discount_bps,
            quantity=lt.line.quantity,
            line_subtotal=lt.line_subtotal,
            line_total=lt.line_total,
            sold_at=sale.sold_at,
        ))


def _apply_totals(sale: Sale, totals: SaleTotals, amount_tendered: int) -> None:
    sale.subtotal = totals.subtotal
    sale.discount = totals.discount
    sale.customer_discount = totals.customer_discount
    sale.adjustment = totals.adjustment
    sale.net_total = totals.net_total
    sale.amount_tendered = amount_tendered
    sale.change = totals.change


def quote_cart(
    *,
    items: list[CartItemInput],
    customer_id: int | None = None,
    adjustment: int = 0,
    amount_tendered: int | None = None,
    sold_at=None,
) -> SaleTotals:
    """Totals preview for the POS screen; writes nothing."""
    sold_at_dt = _parse_sold_at(sold_at)
    customer = _resolve_customer(customer_id)
    resolved = _resolve_lines(items, sold_at_dt)
    return _totals_for(resolved, customer, adjustment, amount_tendered)


def create_sale(
    *,
    user_id: int,
    items: list[CartItemInput],
    amount_tendered: int,
    customer_id: int | None = None,
    adjustment: int = 0,
    sold_at=None,
) -> Sale:
    """
    Checkout: header, snapshot lines and one stock OUT per line, committed
    together. Any failure (validation, short stock, short payment) leaves
    no rows behind.
    """
    def _op():
        user = _require_operator(user_id)
        if not items:
            raise SaleError("Cannot create a sale with no lines")

        sold_at_dt = _parse_sold_at(sold_at)
        customer = _resolve_customer(customer_id)
        resolved = _resolve_lines(items, sold_at_dt)

        _check_stock(_quantities_by_product((r.product.id, r.cart_line.quantity) for r in resolved))

        totals = _totals_for(resolved, customer, adjustment, amount_tendered)
        _require_payment(totals, amount_tendered)

        sale = Sale(
            user_id=user.id,
            customer_id=customer.id if customer else None,
            sold_at=sold_at_dt,
        )
        _apply_totals(sale, totals, amount_tendered)
        db.session.add(sale)
        db.session.flush()

        _write_lines(sale, resolved, totals)

        for r in resolved:
            adjust_stock(
                r.product.id,
                r.cart_line.quantity,
                DIRECTION_OUT,
                note=f"Sale {sale.invoice_number}",
                user_id=user.id,
                sale_id=sale.id,
                commit=False,
            )

        db.session.commit()
        return sale

    return run_with_retry(_op)


def update_sale(
    sale_id: int,
    *,
    items: list[CartItemInput],
    amount_tendered: int,
    customer_id: int | None = None,
    adjustment: int = 0,
    user_id: int | None = None,
    sold_at=None,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Replace the lines of a sale.

    Stock is reconciled by the per-product quantity difference between the
    old and new lines, applied once: more units go OUT, fewer come back IN.
    Products already on the sale keep their original price snapshot.
    """
    def _op():
        sale = lock_for_update(Sale.live().filter(Sale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")
        if not items:
            raise SaleError("Cannot save a sale with no lines")

        operator = _require_operator(user_id if user_id is not None else sale.user_id)
        sold_at_dt = _parse_sold_at(sold_at) if sold_at not in (None, "") else sale.sold_at
        customer = _resolve_customer(customer_id)

        old_lines = sale.live_lines()
        snapshot_prices = {line.product_id: (line.unit_price, line.unit_cost) for line in old_lines}
        kept_event_product_ids = {line.event_product_id for line in old_lines if line.event_product_id}
        resolved = _resolve_lines(items, sold_at_dt, snapshot_prices, kept_event_product_ids)

        old_qty = _quantities_by_product((line.product_id, line.quantity) for line in old_lines)
        new_qty = _quantities_by_product((r.product.id, r.cart_line.quantity) for r in resolved)
        deltas = OrderedDict(
            (pid, new_qty.get(pid, 0) - old_qty.get(pid, 0))
            for pid in list(old_qty) + [p for p in new_qty if p not in old_qty]
        )

        for r in resolved:
            if r.product.is_deleted and deltas[r.product.id] > 0:
                raise SaleError(f"{r.product.name} is no longer sold; its quantity cannot be increased")

        _check_stock({pid: delta for pid, delta in deltas.items() if delta > 0})

        totals = _totals_for(resolved, customer, adjustment, amount_tendered)
        _require_payment(totals, amount_tendered)

        for line in old_lines:
            line.soft_delete()

        sale.user_id = operator.id
        sale.customer_id = customer.id if customer else None
        sale.sold_at = sold_at_dt
        _apply_totals(sale, totals, amount_tendered)
        _write_lines(sale, resolved, totals)

        for product_id, delta in deltas.items():
            if delta == 0:
                continue
            adjust_stock(
                product_id,
                abs(delta),
                DIRECTION_OUT if delta > 0 else DIRECTION_IN,
                note=f"Edit sale {sale.invoice_number}",
                user_id=actor_user_id or operator.id,
                sale_id=sale.id,
                commit=False,
                allow_deleted=delta < 0,
            )

        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int, *, actor_user_id: int | None = None) -> Sale:
    """Soft-delete a sale and return its units to stock."""
    def _op():
        sale = lock_for_update(Sale.live().filter(Sale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")

        lines = sale.live_lines()
        returned = _quantities_by_product((line.product_id, line.quantity) for line in lines)

        for line in lines:
            line.soft_delete()
        sale.soft_delete()

        for product_id, qty in returned.items():
            adjust_stock(
                product_id,
                qty,
                DIRECTION_IN,
                note=f"Delete sale {sale.invoice_number}",
                user_id=actor_user_id,
                sale_id=sale.id,
                commit=False,
                allow_deleted=True,
            )

        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = Sale.live().filter(Sale.id == sale_id).first()
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def sale_detail(sale: Sale) -> dict:
    data = sale.to_dict()
    data["customer"] = (
        {"id": sale.customer.id, "name": sale.customer.name, "address": sale.customer.address}
        if sale.customer else None
    )
    data["lines"] = [line.to_dict() for line in sale.live_lines()]
    return data


def list_sales(
    *,
    search: str | None = None,
    start: date | None = None,
    end: date | None = None,
    customer_id: int | None = None,
    min_total: int | None = None,
    max_total: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Paginated sale headers, newest first. `search` matches operator name,
    customer name or the sale id.
    """
    q = (
        Sale.live()
        .join(User, User.id == Sale.user_id)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
    )

    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(
            User.display_name.ilike(term),
            Customer.name.ilike(term),
            cast(Sale.id, String).like(term),
        ))

    start_dt, end_dt = day_range(start, end)
    if start_dt is not None:
        q = q.filter(Sale.sold_at >= start_dt)
    if end_dt is not None:
        q = q.filter(Sale.sold_at <= end_dt)

    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if min_total is not None:
        q = q.filter(Sale.net_total >= min_total)
    if max_total is not None:
        q = q.filter(Sale.net_total <= max_total)

    q = q.order_by(Sale.sold_at.desc(), Sale.id.desc())
    return paginate(q, page, per_page)
