"""
History Recorder — append-only event log for access requests.

``record`` adds the row to the caller's open transaction and flushes it;
it never commits. A failed write raises, which rolls back the parent
operation as well, so a transition can never succeed without its history
entry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.models import db
from app.models.history import HISTORY_ACTIONS, AccessHistory

logger = logging.getLogger(__name__)


def record(
    request_id: int,
    action: str,
    description: str = "",
    *,
    actor: str = "system",
    occurred_at: datetime | None = None,
) -> AccessHistory:
    """Append one history entry for ``request_id``.

    Raises:
        ValueError: empty or unknown action tag.
    """
    tag = (action or "").strip().upper()
    if not tag:
        raise ValueError("History action tag is required")
    if tag not in HISTORY_ACTIONS:
        raise ValueError(f"Unknown history action: {action}")

    entry = AccessHistory(
        request_id=request_id,
        action=tag,
        description=description or "",
        actor=actor or "system",
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )
    db.session.add(entry)
    db.session.flush()
    logger.debug("History %s recorded for request %s", tag, request_id)
    return entry


def history_for(request_id: int) -> list[AccessHistory]:
    """Chronological (oldest first) history of one request."""
    return list(
        db.session.execute(
            select(AccessHistory)
            .where(AccessHistory.request_id == request_id)
            .order_by(AccessHistory.occurred_at.asc(), AccessHistory.id.asc())
        ).scalars().all()
    )
