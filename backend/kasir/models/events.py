from __future__ import annotations

from datetime import datetime

from ..extensions import db
from .soft_delete import SoftDeleteMixin
from kasir.time_utils import to_utc_z


class Event(SoftDeleteMixin, db.Model):
    """
    Time-boxed promotion. Products join an event through EventProduct, each
    with its own percentage discount, applied only while the event is active.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_window", "starts_at", "ends_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def is_active_at(self, at: datetime) -> bool:
        return not self.is_deleted and self.starts_at <= at <= self.ends_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class EventProduct(SoftDeleteMixin, db.Model):
    __tablename__ = "event_products"
    __table_args__ = (
        db.CheckConstraint("discount_bps >= 0 AND discount_bps <= 10000", name="ck_event_products_discount_range"),
        db.Index("ix_event_products_event_product", "event_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # basis points: 2000 = 20%
    discount_bps = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    event = db.relationship("Event", backref=db.backref("event_products", lazy=True))
    product = db.relationship("Product")

    def to_dict(self, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "product_id": self.product_id,
            "discount_bps": self.discount_bps,
            "discount_percent": self.discount_bps / 100,
            "is_deleted": self.is_deleted,
        }
        if include_product and self.product is not None:
            data["product"] = {
                "id": self.product.id,
                "name": self.product.name,
                "sale_price": self.product.sale_price,
            }
        return data
