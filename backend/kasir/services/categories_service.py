from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Category
from ..validation import ConflictError, NotFoundError
from .pagination import paginate


def _ensure_name_free(name: str, exclude_id: int | None = None) -> None:
    q = Category.live().filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Category name already exists")


def list_categories(
    *,
    search: str | None = None,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = Category.live(include_deleted=include_deleted)
    if search and search.strip():
        q = q.filter(Category.name.ilike(f"%{search.strip()}%"))
    q = q.order_by(Category.name.asc(), Category.id.asc())
    return paginate(q, page, per_page)


def get_category(category_id: int, *, include_deleted: bool = False) -> Category:
    category = Category.live(include_deleted=include_deleted).filter(Category.id == category_id).first()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def create_category(*, patch: dict) -> Category:
    _ensure_name_free(patch["name"])
    category = Category(name=patch["name"])
    db.session.add(category)
    db.session.commit()
    return category


def update_category(category_id: int, *, patch: dict) -> Category:
    category = get_category(category_id)
    if "name" in patch and patch["name"] != category.name:
        _ensure_name_free(patch["name"], exclude_id=category.id)
        category.name = patch["name"]
    db.session.commit()
    return category


def delete_category(category_id: int) -> Category:
    category = get_category(category_id)
    category.soft_delete()
    db.session.commit()
    return category


def restore_category(category_id: int) -> Category:
    category = Category.only_deleted().filter(Category.id == category_id).first()
    if category is None:
        raise NotFoundError("Deleted category not found")
    _ensure_name_free(category.name, exclude_id=category.id)
    category.restore()
    db.session.commit()
    return category
