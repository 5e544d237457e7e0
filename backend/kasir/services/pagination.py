from __future__ import annotations

from flask import current_app, has_app_context


def page_params(page: int | None, per_page: int | None) -> tuple[int, int]:
    default_size, max_size = 10, 100
    if has_app_context():
        default_size = current_app.config.get("DEFAULT_PAGE_SIZE", default_size)
        max_size = current_app.config.get("MAX_PAGE_SIZE", max_size)
    per_page = min(per_page or default_size, max_size)
    per_page = max(per_page, 1)
    page = max(page or 1, 1)
    return page, per_page


def paginate(query, page: int | None, per_page: int | None, serialize=None) -> dict:
    """
    Offset pagination over a SQLAlchemy query.

    Returns {"items", "count", "pagination": {page, per_page, total,
    total_pages, has_next, has_prev}}.
    """
    page, per_page = page_params(page, per_page)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    serialize = serialize or (lambda row: row.to_dict())

    return {
        "items": [serialize(row) for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
