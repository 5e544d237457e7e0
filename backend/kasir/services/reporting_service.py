# Overview: Read-only sales reports and dashboard aggregates over sale snapshots.

"""
All figures come from sale headers and line snapshots, never from live
product prices, so a later price change does not rewrite history.
Soft-deleted sales and lines are excluded everywhere.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Sale, SaleLine, Product, Category, Customer
from kasir.time_utils import day_range, year_range, utcnow, to_utc_z
from .pagination import page_params
from .pricing_service import round_half_up

WALK_IN_CUSTOMER_NAME = "Umum"
STATUS_PAID = "lunas"
STATUS_UNDERPAID = "kurang_bayar"

TOP_PRODUCTS_LIMIT = 30
TOP_CATEGORIES_LIMIT = 5
NEWEST_PRODUCTS_LIMIT = 5
TOP_CUSTOMERS_LIMIT = 3
RECENT_SALES_LIMIT = 30


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def _date_window(start: date | None, end: date | None):
    today = utcnow().date()
    start = start or today
    end = end or today
    if end < start:
        raise ReportError("end_date must not be before start_date")
    return start, end, *day_range(start, end)


def _pagination(page: int, per_page: int, total: int) -> dict:
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def _line_profit_expr():
    return SaleLine.quantity * (SaleLine.unit_price - SaleLine.unit_cost)


def sales_report(
    *,
    start: date | None = None,
    end: date | None = None,
    customer_id: int | None = None,
    customer_name: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    One row per invoice in [start, end] (both default to today).
    """
    start, end, start_dt, end_dt = _date_window(start, end)
    page, per_page = page_params(page, per_page)

    q = (
        Sale.live()
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .filter(Sale.sold_at >= start_dt, Sale.sold_at <= end_dt)
    )
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    elif customer_name:
        q = q.filter(Customer.name == customer_name)

    total = q.order_by(None).count()
    sales = (
        q.order_by(Sale.sold_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    profits = dict(
        db.session.query(SaleLine.sale_id, func.coalesce(func.sum(_line_profit_expr()), 0))
        .filter(
            SaleLine.sale_id.in_([s.id for s in sales]),
            SaleLine.is_deleted.is_(False),
        )
        .group_by(SaleLine.sale_id)
        .all()
    ) if sales else {}

    rows = []
    for sale in sales:
        outstanding = max(0, sale.net_total - sale.amount_tendered)
        rows.append({
            "id": sale.id,
            "invoice_number": sale.invoice_number,
            "sold_at": to_utc_z(sale.sold_at),
            "customer_name": sale.customer.name if sale.customer else "",
            "subtotal": sale.subtotal,
            "discount": sale.discount,
            "net_total": sale.net_total,
            "profit": int(profits.get(sale.id, 0)),
            "outstanding": outstanding,
            "status": STATUS_UNDERPAID if outstanding > 0 else STATUS_PAID,
        })

    customers = [
        name for (name,) in
        db.session.query(Customer.name)
        .filter(Customer.is_deleted.is_(False))
        .order_by(Customer.name.asc())
        .all()
    ]

    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "items": rows,
        "count": len(rows),
        "pagination": _pagination(page, per_page, total),
        "customers": customers,
    }


def per_item_report(
    *,
    start: date | None = None,
    end: date | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Sold lines grouped by product, most units first. The summary covers
    every product in the window, not just the current page.
    """
    start, end, start_dt, end_dt = _date_window(start, end)
    page, per_page = page_params(page, per_page)

    qty = func.sum(SaleLine.quantity)
    grouped = (
        db.session.query(
            Product.id.label("product_id"),
            Product.name.label("product_name"),
            Product.sale_price.label("sale_price"),
            qty.label("quantity"),
            func.sum(SaleLine.line_total).label("net_total"),
            func.sum(_line_profit_expr()).label("profit"),
        )
        .select_from(SaleLine)
        .join(Product, Product.id == SaleLine.product_id)
        .filter(
            SaleLine.is_deleted.is_(False),
            SaleLine.sold_at >= start_dt,
            SaleLine.sold_at <= end_dt,
        )
        .group_by(Product.id, Product.name, Product.sale_price)
    )

    all_rows = grouped.order_by(qty.desc(), Product.name.asc()).all()
    page_rows = all_rows[(page - 1) * per_page: page * per_page]

    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "items": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "sale_price": int(row.sale_price),
                "quantity": int(row.quantity or 0),
                "net_total": int(row.net_total or 0),
                "profit": int(row.profit or 0),
            }
            for row in page_rows
        ],
        "count": len(page_rows),
        "pagination": _pagination(page, per_page, len(all_rows)),
        "summary": {
            "total_sales": sum(int(row.net_total or 0) for row in all_rows),
            "total_profit": sum(int(row.profit or 0) for row in all_rows),
            "total_quantity": sum(int(row.quantity or 0) for row in all_rows),
        },
    }


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def dashboard_stats(year: int) -> dict:
    start_dt, end_dt = year_range(year)

    items_sold = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .filter(
            SaleLine.is_deleted.is_(False),
            SaleLine.sold_at >= start_dt,
            SaleLine.sold_at <= end_dt,
        )
        .scalar()
    )

    transactions, income = (
        db.session.query(func.count(Sale.id), func.coalesce(func.sum(Sale.net_total), 0))
        .filter(
            Sale.is_deleted.is_(False),
            Sale.sold_at >= start_dt,
            Sale.sold_at <= end_dt,
        )
        .one()
    )

    active_customers = (
        db.session.query(func.count(func.distinct(Customer.id)))
        .select_from(Customer)
        .join(Sale, Sale.customer_id == Customer.id)
        .filter(
            Customer.is_deleted.is_(False),
            Customer.status == "active",
            Sale.is_deleted.is_(False),
            Sale.sold_at >= start_dt,
            Sale.sold_at <= end_dt,
        )
        .scalar()
    )

    return {
        "items_sold": int(items_sold or 0),
        "transactions": int(transactions or 0),
        "income": int(income or 0),
        "active_customers": int(active_customers or 0),
    }


def growth_percent(current: int, previous: int) -> int:
    """Year-over-year change, whole percent. No baseline counts as 100% growth."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up(Decimal(current - previous) * 100 / Decimal(previous))


def dashboard_growth(year: int) -> dict:
    current = dashboard_stats(year)
    previous = dashboard_stats(year - 1)
    return {key: growth_percent(current[key], previous[key]) for key in current}


def top_products(year: int, limit: int = TOP_PRODUCTS_LIMIT) -> list[dict]:
    start_dt, end_dt = year_range(year)
    total = func.sum(SaleLine.line_total)
    rows = (
        db.session.query(
            Product.id,
            Product.name,
            func.avg(SaleLine.unit_price).label("avg_price"),
            func.sum(SaleLine.quantity).label("quantity"),
            total.label("total"),
        )
        .select_from(SaleLine)
        .join(Product, Product.id == SaleLine.product_id)
        .filter(
            SaleLine.is_deleted.is_(False),
            SaleLine.sold_at >= start_dt,
            SaleLine.sold_at <= end_dt,
        )
        .group_by(Product.id, Product.name)
        .order_by(total.desc())
        .limit(limit)
        .all()
    )

    grand_total = sum(int(row.total or 0) for row in rows)
    return [
        {
            "product_id": row.id,
            "product_name": row.name,
            "average_price": round_half_up(Decimal(str(row.avg_price or 0))),
            "quantity": int(row.quantity or 0),
            "total": int(row.total or 0),
            "contribution_percent": (
                round_half_up(Decimal(int(row.total or 0)) * 100 / grand_total) if grand_total else 0
            ),
        }
        for row in rows
    ]


def category_breakdown(year: int, limit: int = TOP_CATEGORIES_LIMIT) -> list[dict]:
    start_dt, end_dt = year_range(year)
    value = func.sum(SaleLine.line_total)
    rows = (
        db.session.query(Category.name, value.label("value"))
        .select_from(SaleLine)
        .join(Product, Product.id == SaleLine.product_id)
        .join(Category, Category.id == Product.category_id)
        .filter(
            SaleLine.is_deleted.is_(False),
            SaleLine.sold_at >= start_dt,
            SaleLine.sold_at <= end_dt,
        )
        .group_by(Category.name)
        .order_by(value.desc())
        .limit(limit)
        .all()
    )
    return [{"name": name, "value": int(v or 0)} for name, v in rows]


def newest_products(limit: int = NEWEST_PRODUCTS_LIMIT) -> list[dict]:
    products = Product.live().order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).all()
    return [
        {
            "product_id": p.id,
            "product_name": p.name,
            "sale_price": p.sale_price,
            "created_at": to_utc_z(p.created_at),
        }
        for p in products
    ]


def top_customers(year: int, limit: int = TOP_CUSTOMERS_LIMIT) -> list[dict]:
    """Highest spenders; walk-in sales are pooled under one "Umum" row."""
    start_dt, end_dt = year_range(year)
    total = func.sum(Sale.net_total)
    rows = (
        db.session.query(Sale.customer_id, Customer.name, total.label("total"))
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .filter(
            Sale.is_deleted.is_(False),
            Sale.sold_at >= start_dt,
            Sale.sold_at <= end_dt,
        )
        .group_by(Sale.customer_id, Customer.name)
        .order_by(total.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "customer_id": customer_id,
            "name": name or WALK_IN_CUSTOMER_NAME,
            "total": int(value or 0),
        }
        for customer_id, name, value in rows
    ]


def recent_sales(year: int, limit: int = RECENT_SALES_LIMIT) -> list[dict]:
    start_dt, end_dt = year_range(year)
    item_count = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .filter(SaleLine.sale_id == Sale.id, SaleLine.is_deleted.is_(False))
        .correlate(Sale)
        .scalar_subquery()
    )
    rows = (
        db.session.query(Sale, item_count.label("item_count"))
        .filter(
            Sale.is_deleted.is_(False),
            Sale.sold_at >= start_dt,
            Sale.sold_at <= end_dt,
        )
        .order_by(Sale.sold_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": sale.id,
            "invoice_number": sale.invoice_number,
            "customer_name": sale.customer.name if sale.customer else WALK_IN_CUSTOMER_NAME,
            "item_count": int(count or 0),
            "net_total": sale.net_total,
            "sold_at": to_utc_z(sale.sold_at),
        }
        for sale, count in rows
    ]


def available_years() -> list[int]:
    """Years with sales, newest first; the current year when there are none."""
    earliest, latest = (
        db.session.query(func.min(Sale.sold_at), func.max(Sale.sold_at))
        .filter(Sale.is_deleted.is_(False))
        .one()
    )
    if earliest is None or latest is None:
        return [utcnow().year]
    return list(range(latest.year, earliest.year - 1, -1))


def dashboard(year: int | None = None) -> dict:
    year = year or utcnow().year
    return {
        "year": year,
        "stats": dashboard_stats(year),
        "growth": dashboard_growth(year),
        "top_products": top_products(year),
        "categories": category_breakdown(year),
        "newest_products": newest_products(),
        "top_customers": top_customers(year),
        "recent_sales": recent_sales(year),
        "available_years": available_years(),
    }
