from __future__ import annotations

from ..extensions import db


class Sale(db.Model):
    """Completed sale; `items` is the JSON line list as captured at checkout."""
    __tablename__ = "sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    total = db.Column(db.Float, nullable=False)
    items = db.Column(db.Text, nullable=False)
    payment_method = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())


class CashMovement(db.Model):
    """Cash drawer movement: type is 'ingreso' (in) or 'salida' (out)."""
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())
