from __future__ import annotations

from ..extensions import db
from .soft_delete import SoftDeleteMixin
from kasir.time_utils import to_utc_z


class Category(SoftDeleteMixin, db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
        }


class Product(SoftDeleteMixin, db.Model):
    """
    Product master data.

    `stock` is the denormalized running sum of StockMovement rows. It is only
    changed through services.stock_service so every change leaves a movement.
    Prices are whole currency units.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_name", "category_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    cost_price = db.Column(db.BigInteger, nullable=False, default=0)
    sale_price = db.Column(db.BigInteger, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)

    barcode = db.Column(db.String(64), nullable=True)
    image_path = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "name": self.name,
            "cost_price": self.cost_price,
            "sale_price": self.sale_price,
            "stock": self.stock,
            "barcode": self.barcode,
            "image_path": self.image_path,
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
