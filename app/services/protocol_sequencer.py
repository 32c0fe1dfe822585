"""
Protocol Sequencer — unique, day-scoped request identifiers.

Format: {PREFIX}-{YYYYMMDD}-{SEQ:04d}   (e.g. SOL-20260115-0001)

  - SEQ restarts at 1 on the first call of each calendar day (UTC).
  - SEQ never exceeds 9999; the 10000th call of a day raises
    ProtocolExhaustedError instead of wrapping.
  - Thread-safe: one lock guards read-date → compare → increment → format,
    so a call straddling midnight cannot mix two days.

The counter lives in this object, which the lifecycle service owns. The
optional ``resume`` callable lets a restarted process continue from the
highest sequence already persisted for the day; the unique index on
``access_requests.protocol`` is the final guard across processes.
A caller whose transaction rolls back hands its number to ``release``; it is
reused only if nothing was minted after it.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable

from sqlalchemy import func, select

from app.core.exceptions import ProtocolExhaustedError
from app.models import db
from app.models.access_request import AccessRequest

logger = logging.getLogger(__name__)

MAX_DAILY_SEQUENCE = 9999


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_protocol(prefix: str, day: date, sequence: int) -> str:
    return f"{prefix}-{day:%Y%m%d}-{sequence:04d}"


def parse_protocol(protocol: str) -> tuple[str, date, int]:
    """Split a protocol string into (prefix, day, sequence).

    Raises ValueError on malformed input.
    """
    try:
        prefix, day_part, seq_part = protocol.rsplit("-", 2)
    except ValueError:
        raise ValueError(f"Malformed protocol: {protocol!r}") from None
    if not prefix or len(day_part) != 8 or len(seq_part) != 4 or not seq_part.isdigit():
        raise ValueError(f"Malformed protocol: {protocol!r}")
    day = datetime.strptime(day_part, "%Y%m%d").date()
    return prefix, day, int(seq_part)


class ProtocolSequencer:
    """Mutex-guarded daily counter producing protocol strings."""

    def __init__(
        self,
        prefix: str = "SOL",
        clock: Callable[[], datetime] | None = None,
        resume: Callable[[str, date], int] | None = None,
    ) -> None:
        if not prefix or "-" in prefix:
            raise ValueError("Protocol prefix must be non-empty and contain no '-'")
        self.prefix = prefix
        self._clock = clock or _utc_now
        self._resume = resume
        self._lock = threading.Lock()
        self._day: date | None = None
        self._sequence = 0

    def next(self) -> str:
        """Mint the next protocol. Increments the shared daily counter."""
        with self._lock:
            today = self._clock().astimezone(timezone.utc).date()
            if today != self._day:
                self._day = today
                self._sequence = self._resume(self.prefix, today) if self._resume else 0
                logger.debug("Protocol counter reset for %s at %d", today, self._sequence)

            if self._sequence >= MAX_DAILY_SEQUENCE:
                raise ProtocolExhaustedError(
                    f"Daily protocol sequence exhausted for {today:%Y-%m-%d} "
                    f"(max {MAX_DAILY_SEQUENCE})"
                )
            self._sequence += 1
            return format_protocol(self.prefix, today, self._sequence)

    def release(self, protocol: str) -> bool:
        """Give back ``protocol`` if it is still the latest one minted today.

        Called when the transaction that used the number rolls back. If
        another caller has minted since, the number stays consumed and the
        day's sequence keeps a gap.
        """
        prefix, day, sequence = parse_protocol(protocol)
        with self._lock:
            if prefix != self.prefix or day != self._day or sequence != self._sequence:
                logger.info("Protocol %s not released; sequence has moved on", protocol)
                return False
            self._sequence -= 1
            return True

    def reset(self) -> None:
        """Forget the cached day so the next call consults ``resume`` again."""
        with self._lock:
            self._day = None
            self._sequence = 0


def last_persisted_sequence(prefix: str, day: date) -> int:
    """Highest sequence already stored for ``prefix`` on ``day`` (0 if none)."""
    pattern = f"{prefix}-{day:%Y%m%d}-%"
    last = db.session.execute(
        select(func.max(AccessRequest.protocol)).where(AccessRequest.protocol.like(pattern))
    ).scalar()
    if not last:
        return 0
    try:
        return parse_protocol(last)[2]
    except ValueError:
        logger.warning("Ignoring malformed stored protocol %s", last)
        return 0
