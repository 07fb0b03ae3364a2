from __future__ import annotations

from ..extensions import db


class SchemaMigration(db.Model):
    """One row per migration step applied to this store image."""
    __tablename__ = "schema_migrations"

    revision = db.Column(db.Text, primary_key=True)
    applied_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
