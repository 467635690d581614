from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


STOCK_IN_STOCK = "in_stock"
STOCK_LOW = "low_stock"
STOCK_OUT = "out_of_stock"
VALID_STOCK_STATUSES = {STOCK_IN_STOCK, STOCK_LOW, STOCK_OUT}


class Product(db.Model):
    """
    Catalog product sold by the case.

    base_price_cents is the list price; customers on a price list may see an
    override (PriceListItem). Stock is tracked only as a status flag.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("base_price_cents >= 0", name="ck_products_base_price_nonneg"),
        db.CheckConstraint("units_per_case >= 1", name="ck_products_units_per_case"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    base_price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="case")
    units_per_case = db.Column(db.Integer, nullable=False, default=1)
    stock_status = db.Column(db.String(16), nullable=False, default=STOCK_IN_STOCK)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    @property
    def is_orderable(self) -> bool:
        return bool(self.is_active) and self.stock_status != STOCK_OUT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "unit": self.unit,
            "units_per_case": self.units_per_case,
            "stock_status": self.stock_status,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PriceList(db.Model):
    """Named set of per-product price overrides assigned to customers."""
    __tablename__ = "price_lists"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PriceListItem(db.Model):
    """
    Price override for one product on one price list.

    At most one override per (price_list_id, product_id).
    """
    __tablename__ = "price_list_items"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "product_id", name="uq_price_list_items_list_product"),
        db.CheckConstraint("price_cents >= 0", name="ck_price_list_items_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    price_list = db.relationship("PriceList", backref=db.backref("items", lazy=True, cascade="all, delete-orphan"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "price_list_id": self.price_list_id,
            "product_id": self.product_id,
            "price_cents": self.price_cents,
            "created_at": to_utc_z(self.created_at),
        }
