# backend/kasir/services/products_service.py
"""
Products Service

Product master data. Stock is not writable here: an opening stock given on
create is booked through the stock ledger so the movement history always
sums to Product.stock.
"""
from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, Category
from ..validation import ConflictError, NotFoundError, ValidationError
from .pagination import paginate
from .stock_service import adjust_stock, DIRECTION_IN
from .concurrency import run_with_retry

PRODUCT_MUTABLE_FIELDS = {"category_id", "name", "cost_price", "sale_price", "barcode", "image_path"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _require_category(category_id: int) -> Category:
    category = Category.live().filter(Category.id == category_id).first()
    if category is None:
        raise ValidationError("Category not found")
    return category


def _ensure_barcode_free(barcode: str | None, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    # Deleted products keep their barcode; the unique constraint covers them too
    q = db.session.query(Product).filter(Product.barcode == barcode)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Barcode already exists")


def _save_with_barcode(op, barcode: str | None) -> Product:
    # Another request can take the barcode between the check and the commit
    try:
        return run_with_retry(op)
    except IntegrityError as e:
        if barcode and "barcode" in str(e.orig).lower():
            raise ConflictError("Barcode already exists") from e
        raise


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Paginated products, newest first. `search` matches product or category name.
    """
    q = Product.live(include_deleted=include_deleted).join(Category, Category.id == Product.category_id)

    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(term), Category.name.ilike(term)))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)

    q = q.order_by(Product.created_at.desc(), Product.id.desc())
    return paginate(q, page, per_page)


def get_product(product_id: int, *, include_deleted: bool = False) -> Product:
    p = Product.live(include_deleted=include_deleted).filter(Product.id == product_id).first()
    if p is None:
        raise NotFoundError("Product not found")
    return p


def get_product_by_barcode(barcode: str) -> Product:
    p = Product.live().filter(Product.barcode == barcode).first()
    if p is None:
        raise NotFoundError("Product not found")
    return p


def list_barcodes(*, search: str | None = None) -> list[dict]:
    """Rows for the label printing page."""
    q = Product.live().filter(Product.barcode.isnot(None))
    if search and search.strip():
        q = q.filter(Product.name.ilike(f"%{search.strip()}%"))
    return [
        {"id": p.id, "name": p.name, "barcode": p.barcode, "sale_price": p.sale_price}
        for p in q.order_by(Product.name.asc()).all()
    ]


def create_product(*, patch: dict, user_id: int | None = None) -> Product:
    """
    Create a product from a validated patch.

    A `stock` key in the patch becomes an opening IN movement.

    Raises:
        ValidationError: category missing
        ConflictError: barcode already used
    """
    opening_stock = patch.get("stock") or 0
    _require_category(patch["category_id"])
    _ensure_barcode_free(patch.get("barcode"))

    def _op():
        p = Product(stock=0)
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()

        if opening_stock > 0:
            adjust_stock(
                p.id,
                opening_stock,
                DIRECTION_IN,
                note="Opening stock",
                user_id=user_id,
                commit=False,
            )

        db.session.commit()
        return p

    return _save_with_barcode(_op, patch.get("barcode"))


def update_product(product_id: int, *, patch: dict) -> Product:
    if "stock" in patch:
        raise ValidationError("stock can only be changed through a stock adjustment")

    p = get_product(product_id)

    if "category_id" in patch and patch["category_id"] != p.category_id:
        _require_category(patch["category_id"])
    if "barcode" in patch and patch["barcode"] != p.barcode:
        _ensure_barcode_free(patch["barcode"], exclude_id=p.id)

    def _op():
        apply_product_patch(p, patch)
        db.session.commit()
        return p

    return _save_with_barcode(_op, patch.get("barcode"))


def delete_product(product_id: int) -> Product:
    p = get_product(product_id)
    p.soft_delete()
    db.session.commit()
    return p


def restore_product(product_id: int) -> Product:
    p = Product.only_deleted().filter(Product.id == product_id).first()
    if p is None:
        raise NotFoundError("Deleted product not found")
    p.restore()
    db.session.commit()
    return p
