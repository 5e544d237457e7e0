from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only stock audit trail. Exactly one of stock_in / stock_out is
    non-zero. Product.stock equals the running sum of (stock_in - stock_out).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("stock_in >= 0 AND stock_out >= 0", name="ck_stock_movements_non_negative"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    stock_in = db.Column(db.Integer, nullable=False, default=0)
    stock_out = db.Column(db.Integer, nullable=False, default=0)

    note = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    @property
    def direction(self) -> str:
        return "in" if self.stock_in else "out"

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": product.name if product else None,
            "category_name": product.category.name if product and product.category else None,
            "stock_in": self.stock_in,
            "stock_out": self.stock_out,
            "direction": self.direction,
            "note": self.note,
            "user_id": self.user_id,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
        }
