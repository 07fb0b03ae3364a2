from __future__ import annotations

from ..extensions import db


class Task(db.Model):
    """
    Tasks optionally assigned to a user.

    Earlier stores created `tasks` without the assignment columns;
    schema_service migrates that shape into this one.
    """
    __tablename__ = "tasks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    completed = db.Column(db.Boolean, nullable=True, default=False, server_default=db.false())

    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=True, server_default=db.func.now())
    due_date = db.Column(db.Text, nullable=True)
