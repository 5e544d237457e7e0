from __future__ import annotations

from ..extensions import db
from .soft_delete import SoftDeleteMixin
from kasir.time_utils import to_utc_z


class Sale(SoftDeleteMixin, db.Model):
    """
    Sale header: one checkout's aggregates, written once by the sales
    service. All amounts are whole currency units.

    discount is the sum of event, per-item and customer discounts;
    customer_discount is kept separately for the receipt.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_sold_at", "sold_at"),
        db.Index("ix_sales_customer_sold_at", "customer_id", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    discount = db.Column(db.BigInteger, nullable=False, default=0)
    customer_discount = db.Column(db.BigInteger, nullable=False, default=0)
    adjustment = db.Column(db.BigInteger, nullable=False, default=0)
    net_total = db.Column(db.BigInteger, nullable=False, default=0)
    amount_tendered = db.Column(db.BigInteger, nullable=False, default=0)
    change = db.Column(db.BigInteger, nullable=False, default=0)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def invoice_number(self) -> str:
        year = self.sold_at.year if self.sold_at else ""
        return f"{self.id:04d}/INV/IK/{year}"

    def live_lines(self) -> list["SaleLine"]:
        return [line for line in self.lines if not line.is_deleted]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "user_id": self.user_id,
            "user_name": self.user.display_name if self.user else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "customer_discount": self.customer_discount,
            "adjustment": self.adjustment,
            "net_total": self.net_total,
            "amount_tendered": self.amount_tendered,
            "change": self.change,
            "sold_at": to_utc_z(self.sold_at),
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleLine(SoftDeleteMixin, db.Model):
    """
    Price snapshot of one product on a sale. Never recalculated from the
    live product afterwards; edits replace lines instead of mutating them.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.Index("ix_sale_lines_product_sold_at", "product_id", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    event_product_id = db.Column(db.Integer, db.ForeignKey("event_products.id"), nullable=True)

    unit_price = db.Column(db.BigInteger, nullable=False)
    unit_cost = db.Column(db.BigInteger, nullable=False)
    item_discount = db.Column(db.BigInteger, nullable=False, default=0)  # per unit
    event_discount_bps = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)

    line_subtotal = db.Column(db.BigInteger, nullable=False)  # unit_price * quantity
    line_total = db.Column(db.BigInteger, nullable=False)  # after event and item discounts, rounded for display

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")
    event_product = db.relationship("EventProduct")

    def to_dict(self) -> dict:
        event = self.event_product.event if self.event_product else None
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "event_product_id": self.event_product_id,
            "event_name": event.name if event else None,
            "unit_price": self.unit_price,
            "unit_cost": self.unit_cost,
            "item_discount": self.item_discount,
            "event_discount_bps": self.event_discount_bps,
            "quantity": self.quantity,
            "line_subtotal": self.line_subtotal,
            "line_total": self.line_total,
            "sold_at": to_utc_z(self.sold_at),
        }
