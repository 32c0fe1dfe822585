"""
Module Access Request Service
Access request domain model.

Models:
    - AccessRequest: one decision (approved or denied) for 1–3 modules.
    - access_request_modules: association table request ↔ module.

Status machine:
    ACTIVE    --cancel-->  CANCELLED   (terminal)
    ACTIVE    --renew--->  ACTIVE      (a NEW request is created; this one is untouched)
    DENIED                             (terminal, created directly)

There is no "expired" status: an ACTIVE request simply goes stale once
``expires_at`` has passed.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_ACTIVE = "ACTIVE"
STATUS_DENIED = "DENIED"
STATUS_CANCELLED = "CANCELLED"

ACCESS_REQUEST_STATUSES = (STATUS_ACTIVE, STATUS_DENIED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_DENIED, STATUS_CANCELLED})

ACCESS_REQUEST_TRANSITIONS = {
    "cancel": {"from": {STATUS_ACTIVE}, "to": STATUS_CANCELLED},
    "renew": {"from": {STATUS_ACTIVE}, "to": STATUS_ACTIVE},
}


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value else None


access_request_modules = db.Table(
    "access_request_modules",
    db.Column(
        "request_id", db.Integer,
        db.ForeignKey("access_requests.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "module_id", db.Integer,
        db.ForeignKey("modules.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
)


class AccessRequest(db.Model):
    """
    A single access decision for one requester.

    Business rules:
    - Rows are created exactly once, at decision time. No PENDING rows.
    - ``denial_reason`` is set iff status == DENIED.
    - ``approved_at`` / ``expires_at`` are set iff the request was ever ACTIVE
      and never change afterwards.
    - ``renewed_from_id`` points strictly backward to the renewed request.
    """

    __tablename__ = "access_requests"
    __table_args__ = (
        db.Index("idx_access_req_requester_status", "requester_id", "status"),
        db.Index("idx_access_req_requested_at", "requested_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    protocol = db.Column(
        db.String(32), nullable=False, unique=True,
        comment="PREFIX-YYYYMMDD-NNNN, e.g. SOL-20260115-0001",
    )
    requester_id = db.Column(db.String(64), nullable=False, index=True)
    department = db.Column(
        db.String(20),
        db.ForeignKey("departments.code", ondelete="RESTRICT"),
        nullable=False,
        comment="Captured at request time, never re-derived",
    )
    justification = db.Column(db.Text, nullable=False)
    urgent = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(
        db.String(20), nullable=False,
        comment="ACTIVE | DENIED | CANCELLED",
    )
    denial_reason = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    requested_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    renewed_from_id = db.Column(
        db.Integer,
        db.ForeignKey("access_requests.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    modules = db.relationship(
        "Module",
        secondary=access_request_modules,
        lazy="selectin",
        order_by="Module.name",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def module_ids(self) -> frozenset[int]:
        return frozenset(m.id for m in self.modules)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when the request was approved and its validity has lapsed."""
        expires_at = ensure_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= expires_at

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "protocol": self.protocol,
            "requester_id": self.requester_id,
            "department": self.department,
            "modules": [{"id": m.id, "name": m.name} for m in self.modules],
            "justification": self.justification,
            "urgent": self.urgent,
            "status": self.status,
            "denial_reason": self.denial_reason,
            "cancellation_reason": self.cancellation_reason,
            "requested_at": _iso(self.requested_at),
            "approved_at": _iso(self.approved_at),
            "expires_at": _iso(self.expires_at),
            "cancelled_at": _iso(self.cancelled_at),
            "renewed_from_id": self.renewed_from_id,
            "is_expired": self.is_expired(now),
        }

    def __repr__(self):
        return f"<AccessRequest {self.protocol} {self.status}>"
