from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer
from ..validation import NotFoundError
from .pagination import paginate

CUSTOMER_MUTABLE_FIELDS = {"name", "address", "phone", "status"}


def list_customers(
    *,
    search: str | None = None,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = Customer.live(include_deleted=include_deleted)
    if search and search.strip():
        term = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(term),
            Customer.phone.ilike(term),
            Customer.address.ilike(term),
        ))
    q = q.order_by(Customer.created_at.desc(), Customer.id.desc())
    return paginate(q, page, per_page)


def get_customer(customer_id: int) -> Customer:
    customer = Customer.live().filter(Customer.id == customer_id).first()
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def create_customer(*, patch: dict) -> Customer:
    customer = Customer()
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, *, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.commit()
    return customer


def delete_customer(customer_id: int) -> Customer:
    customer = get_customer(customer_id)
    customer.soft_delete()
    db.session.commit()
    return customer


def restore_customer(customer_id: int) -> Customer:
    customer = Customer.only_deleted().filter(Customer.id == customer_id).first()
    if customer is None:
        raise NotFoundError("Deleted customer not found")
    customer.restore()
    db.session.commit()
    return customer
