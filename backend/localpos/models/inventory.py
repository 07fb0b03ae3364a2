from __future__ import annotations

from ..extensions import db
from localpos.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Screens read and write this table with plain SQL through
    store_service.execute/query; the model exists so the schema guard
    owns the DDL.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    price = db.Column(db.Float, nullable=False)
    cost = db.Column(db.Float, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    category = db.Column(db.Text, nullable=False)
    barcode = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "cost": self.cost,
            "stock": self.stock,
            "category": self.category,
            "barcode": self.barcode,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    contact_person = db.Column(db.Text, nullable=True)
    phone = db.Column(db.Text, nullable=True)
    email = db.Column(db.Text, nullable=True)
    address = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())


class Purchase(db.Model):
    """Stock purchase from a supplier; `items` is a JSON document."""
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    total = db.Column(db.Float, nullable=False)
    items = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())
