# Overview: Stock ledger; every stock change updates Product.stock and appends a StockMovement together.

"""
Kasir Stock Invariants (authoritative)

- Product.stock is never negative at rest.
- Product.stock changes only here, and every change appends exactly one
  StockMovement row (stock_in or stock_out = amount) in the same DB transaction.
- OUT is a single conditional UPDATE (stock = stock - amount WHERE stock >= amount),
  so two concurrent checkouts cannot both spend the same units.
- A rejected OUT leaves both the product and the movement table untouched.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from kasir.time_utils import day_range, utcnow
from .concurrency import run_with_retry

DIRECTION_IN = "in"
DIRECTION_OUT = "out"
DIRECTIONS = (DIRECTION_IN, DIRECTION_OUT)


class InsufficientStockError(ConflictError):
    """Raised when a stock OUT would take a product below zero."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def format_insufficient_message(names: list[str]) -> str:
    """"Insufficient stock for A", "... for A and B", "... for A, B, and C"."""
    if len(names) == 1:
        listed = names[0]
    elif len(names) == 2:
        listed = " and ".join(names)
    else:
        listed = f"{', '.join(names[:-1])}, and {names[-1]}"
    return f"Insufficient stock for {listed}"


def _validate_adjustment(amount, direction: str) -> int:
    amount = coerce_int("amount", amount)
    if amount <= 0:
        raise ValidationError("amount must be a positive integer")
    if direction not in DIRECTIONS:
        raise ValidationError("type must be 'in' or 'out'")
    return amount


def _adjust_stock_inner(
    *,
    product_id: int,
    amount: int,
    direction: str,
    note: str | None = None,
    user_id: int | None = None,
    sale_id: int | None = None,
    allow_deleted: bool = False,
) -> StockMovement:
    """Core ledger write without commit. Caller owns the transaction."""
    stmt = update(Product).where(Product.id == product_id)
    if not allow_deleted:
        stmt = stmt.where(Product.is_deleted.is_(False))
    if direction == DIRECTION_OUT:
        stmt = stmt.where(Product.stock >= amount).values(
            stock=Product.stock - amount,
            version_id=Product.version_id + 1,
        )
    else:
        stmt = stmt.values(
            stock=Product.stock + amount,
            version_id=Product.version_id + 1,
        )

    result = db.session.execute(stmt.execution_options(synchronize_session=False))

    # Reload so in-session Product objects see the new stock and version
    product = db.session.get(Product, product_id, populate_existing=True)

    if result.rowcount == 0:
        if product is None or (product.is_deleted and not allow_deleted):
            raise NotFoundError("Product not found")
        raise InsufficientStockError(
            format_insufficient_message([product.name]),
            details={"items": [{
                "product_id": product.id,
                "name": product.name,
                "requested_quantity": amount,
                "stock": product.stock,
            }]},
        )

    movement = StockMovement(
        product_id=product_id,
        stock_in=amount if direction == DIRECTION_IN else 0,
        stock_out=amount if direction == DIRECTION_OUT else 0,
        note=note,
        user_id=user_id,
        sale_id=sale_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_stock(
    product_id: int,
    amount,
    direction: str,
    *,
    note: str | None = None,
    user_id: int | None = None,
    sale_id: int | None = None,
    commit: bool = True,
    allow_deleted: bool = False,
) -> StockMovement:
    """
    Move `amount` units of a product in or out.

    commit=False lets the sales service fold several adjustments and its own
    rows into one transaction; the caller then commits or rolls back.

    allow_deleted=True is for returning units of a discontinued product to
    stock when a sale is voided or edited down.
    """
    if allow_deleted and direction == DIRECTION_OUT:
        raise ValidationError("allow_deleted only applies to stock coming back in")
    amount = _validate_adjustment(amount, direction)
    params = dict(
        product_id=product_id,
        amount=amount,
        direction=direction,
        note=note,
        user_id=user_id,
        sale_id=sale_id,
        allow_deleted=allow_deleted,
    )

    if not commit:
        return _adjust_stock_inner(**params)

    def _op():
        movement = _adjust_stock_inner(**params)
        db.session.commit()
        return movement

    return run_with_retry(_op)


def get_stock(product_id: int) -> int:
    product = Product.live().filter(Product.id == product_id).first()
    if product is None:
        raise NotFoundError("Product not found")
    return product.stock


def stock_history(
    *,
    product_id: int | None = None,
    category_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    """
    Movements newest first. A product filter takes precedence over a
    category filter; the end date includes the whole day.
    """
    q = db.session.query(StockMovement)

    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    elif category_id is not None:
        q = q.join(Product, Product.id == StockMovement.product_id).filter(
            Product.category_id == category_id
        )

    start_dt, end_dt = day_range(start, end)
    if start_dt is not None:
        q = q.filter(StockMovement.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(StockMovement.created_at <= end_dt)

    q = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
