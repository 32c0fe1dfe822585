"""
Module Access Request Service
History domain model.

Models:
    - AccessHistory: immutable, append-only event log for an access request.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTION_CREATED = "CREATED"
ACTION_APPROVED = "APPROVED"
ACTION_DENIED = "DENIED"
ACTION_CANCELLED = "CANCELLED"
ACTION_RENEWED = "RENEWED"

HISTORY_ACTIONS = frozenset({
    ACTION_CREATED,
    ACTION_APPROVED,
    ACTION_DENIED,
    ACTION_CANCELLED,
    ACTION_RENEWED,
})


class AccessHistory(db.Model):
    """
    One row per lifecycle event of an access request.

    Rows are NEVER updated or deleted. Ordering is (occurred_at, id) so
    entries written in the same instant keep insertion order.
    """

    __tablename__ = "access_request_history"
    __table_args__ = (
        db.Index("idx_access_history_request", "request_id", "occurred_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("access_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    action = db.Column(
        db.String(20), nullable=False,
        comment="CREATED | APPROVED | DENIED | CANCELLED | RENEWED",
    )
    description = db.Column(db.Text, nullable=False, default="")
    actor = db.Column(db.String(64), nullable=False, default="system")
    occurred_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        occurred_at = self.occurred_at
        if occurred_at is not None and occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        return {
            "id": self.id,
            "request_id": self.request_id,
            "action": self.action,
            "description": self.description,
            "actor": self.actor,
            "occurred_at": occurred_at.isoformat() if occurred_at else None,
        }

    def __repr__(self):
        return f"<AccessHistory #{self.id} req={self.request_id} {self.action}>"
