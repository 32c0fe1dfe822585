"""
Access Request Lifecycle Service

Orchestrates the access-request state machine:
  - create   → Catalog snapshot → RuleEngine → ACTIVE | DENIED | BusinessError
  - renew    → eligibility window → create pipeline with waiver → new request
  - cancel   → ACTIVE → CANCELLED
  - list / get / history / renewal chain (read side)

Consistency rules:
  - Every mutating call holds the requester's lock and runs in ONE database
    transaction. The footprint read, the decision and the write happen
    inside it; any exception rolls everything back (no partial state).
  - Footprint and target-row reads use SELECT ... FOR UPDATE where the
    database supports it, so multi-process deployments serialize too.
  - History rows are written in the same transaction as the state change.

Usage:
    from flask import current_app
    service = current_app.extensions["access_requests"]

    req = service.create(
        requester_id="u-1",
        department="FINANCE",
        module_ids=[3],
        justification="Need this to process month-end vendor payments",
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping

from sqlalchemy import func, or_, select

from app.core.exceptions import (
    BusinessError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.access_request import (
    ACCESS_REQUEST_STATUSES,
    ACCESS_REQUEST_TRANSITIONS,
    STATUS_ACTIVE,
    STATUS_DENIED,
    AccessRequest,
    ensure_utc,
)
from app.models.catalog import DEPARTMENT_CODES, Module
from app.models.history import (
    ACTION_APPROVED,
    ACTION_CANCELLED,
    ACTION_CREATED,
    ACTION_DENIED,
    ACTION_RENEWED,
    AccessHistory,
)
from app.services import history_service
from app.services.catalog_service import Catalog
from app.services.protocol_sequencer import ProtocolSequencer, last_persisted_sequence
from app.services.rule_engine import (
    DEFAULT_BLACKLIST,
    DEFAULT_MIN_QUALITY_LENGTH,
    Candidate,
    Footprint,
    FootprintEntry,
    HardReject,
    RuleEngine,
)
from app.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessSettings:
    """Engine tunables, normally read from the Flask config."""

    protocol_prefix: str = "SOL"
    validity_days: int = 180
    renewal_window_days: int = 30
    min_modules: int = 1
    max_modules: int = 3
    justification_min_length: int = 20
    justification_max_length: int = 500
    justification_min_quality_length: int = DEFAULT_MIN_QUALITY_LENGTH
    justification_blacklist: tuple[str, ...] = DEFAULT_BLACKLIST
    cancel_reason_min_length: int = 10
    cancel_reason_max_length: int = 200

    @classmethod
    def from_config(cls, config: Mapping) -> "AccessSettings":
        defaults = cls()
        return cls(
            protocol_prefix=config.get("ACCESS_PROTOCOL_PREFIX", defaults.protocol_prefix),
            validity_days=int(config.get("ACCESS_VALIDITY_DAYS", defaults.validity_days)),
            renewal_window_days=int(
                config.get("ACCESS_RENEWAL_WINDOW_DAYS", defaults.renewal_window_days)
            ),
            max_modules=int(config.get("ACCESS_MAX_MODULES_PER_REQUEST", defaults.max_modules)),
            justification_min_quality_length=int(
                config.get(
                    "ACCESS_JUSTIFICATION_MIN_QUALITY_LENGTH",
                    defaults.justification_min_quality_length,
                )
            ),
            justification_blacklist=tuple(
                config.get("ACCESS_JUSTIFICATION_BLACKLIST", defaults.justification_blacklist)
            ),
        )


class AccessRequestService:
    """Lifecycle manager for access requests (one instance per app)."""

    def __init__(
        self,
        settings: AccessSettings | None = None,
        *,
        catalog: Catalog | None = None,
        engine: RuleEngine | None = None,
        sequencer: ProtocolSequencer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or AccessSettings()
        self.catalog = catalog or Catalog()
        self.engine = engine or RuleEngine(
            blacklist=self.settings.justification_blacklist,
            min_quality_length=self.settings.justification_min_quality_length,
        )
        self._clock = clock or _utc_now
        self.sequencer = sequencer or ProtocolSequencer(
            prefix=self.settings.protocol_prefix,
            clock=self._clock,
            resume=last_persisted_sequence,
        )
        self._locks = KeyedLock()

    # ── Public API: writes ───────────────────────────────────────────────

    def create(
        self,
        requester_id: str,
        department: str,
        module_ids: Iterable[int],
        justification: str,
        urgent: bool = False,
    ) -> AccessRequest:
        """Decide and persist a new request.

        Returns the ACTIVE or DENIED record. A DENIED record is a normal
        result, not an error.

        Raises:
            ValidationError: malformed input (sizes, lengths, department).
            NotFoundError: unknown module id.
            BusinessError: hard rejection; nothing was persisted.
        """
        candidate = self._build_candidate(requester_id, department, module_ids, justification, urgent)

        with self._locks.hold(candidate.requester_id):
            minted = None
            try:
                req = self._decide_and_persist(candidate, now=self.now())
                minted = req.protocol
                db.session.commit()
            except Exception:
                db.session.rollback()
                self._release_protocol(minted)
                raise

        self._log_decision("created", req)
        return req

    def renew(self, request_id: int, requester_id: str) -> AccessRequest:
        """Create a follow-up request for the same modules.

        Only ACTIVE requests expiring within the renewal window are eligible.
        The original row is left untouched apart from a RENEWED history entry.

        Raises:
            NotFoundError, InvalidStateError, NotEligibleError, BusinessError
        """
        requester_id = self._require_requester(requester_id)

        with self._locks.hold(requester_id):
            minted = None
            try:
                original = self._get_owned(request_id, requester_id, for_update=True)
                self._assert_transition(original, "renew")
                now = self.now()

                successor = self._active_successor(original.id)
                if successor is not None:
                    raise InvalidStateError(
                        original.protocol, "renew", original.status,
                        f"already renewed by {successor.protocol}",
                    )
                self._assert_renewal_window(original, now)

                candidate = Candidate(
                    requester_id=requester_id,
                    department=original.department,
                    module_ids=tuple(sorted(original.module_ids)),
                    justification=original.justification,
                    urgent=original.urgent,
                )
                renewed = self._decide_and_persist(candidate, now=now, renewed_from=original)
                minted = renewed.protocol
                history_service.record(
                    original.id,
                    ACTION_RENEWED,
                    f"Renewal requested as {renewed.protocol} ({renewed.status}).",
                    actor=requester_id,
                    occurred_at=now,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                self._release_protocol(minted)
                raise

        self._log_decision("renewed", renewed, renewed_from=original.protocol)
        return renewed

    def cancel(self, request_id: int, requester_id: str, reason: str) -> AccessRequest:
        """Cancel an ACTIVE request. Not idempotent.

        Raises:
            NotFoundError, InvalidStateError, ValidationError
        """
        requester_id = self._require_requester(requester_id)

        with self._locks.hold(requester_id):
            try:
                req = self._get_owned(request_id, requester_id, for_update=True)
                self._assert_transition(req, "cancel")
                reason = self._validate_cancel_reason(reason)

                now = self.now()
                req.status = ACCESS_REQUEST_TRANSITIONS["cancel"]["to"]
                req.cancelled_at = now
                req.cancellation_reason = reason
                history_service.record(
                    req.id,
                    ACTION_CANCELLED,
                    f"Cancelled by requester: {reason}",
                    actor=requester_id,
                    occurred_at=now,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        self._log_decision("cancelled", req)
        return req

    # ── Public API: reads ────────────────────────────────────────────────

    def get_request(self, request_id: int, requester_id: str) -> AccessRequest:
        return self._get_owned(request_id, self._require_requester(requester_id))

    def get_history(self, request_id: int, requester_id: str) -> list[AccessHistory]:
        req = self._get_owned(request_id, self._require_requester(requester_id))
        return history_service.history_for(req.id)

    def list_requests(
        self,
        requester_id: str,
        *,
        status: str | None = None,
        urgent: bool | None = None,
        search: str | None = None,
        requested_from: datetime | None = None,
        requested_to: datetime | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> dict:
        """Requester's requests, most recent first, with optional filters.

        Returns:
            {"items": [AccessRequest], "total", "page", "per_page", "pages"}
        """
        requester_id = self._require_requester(requester_id)
        if status is not None and status not in ACCESS_REQUEST_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'",
                details={"status": f"must be one of {', '.join(ACCESS_REQUEST_STATUSES)}"},
            )
        if page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})
        if per_page < 1 or per_page > MAX_PER_PAGE:
            raise ValidationError(
                f"per_page must be between 1 and {MAX_PER_PAGE}",
                details={"per_page": per_page},
            )

        conditions = [AccessRequest.requester_id == requester_id]
        if status:
            conditions.append(AccessRequest.status == status)
        if urgent is not None:
            conditions.append(AccessRequest.urgent.is_(bool(urgent)))
        if search and search.strip():
            like = f"%{search.strip()}%"
            conditions.append(
                or_(
                    AccessRequest.protocol.ilike(like),
                    AccessRequest.modules.any(Module.name.ilike(like)),
                )
            )
        if requested_from is not None:
            conditions.append(AccessRequest.requested_at >= requested_from)
        if requested_to is not None:
            conditions.append(AccessRequest.requested_at <= requested_to)

        total = db.session.execute(
            select(func.count(AccessRequest.id)).where(*conditions)
        ).scalar() or 0
        items = db.session.execute(
            select(AccessRequest)
            .where(*conditions)
            .order_by(AccessRequest.requested_at.desc(), AccessRequest.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        ).scalars().all()

        return {
            "items": list(items),
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": (total + per_page - 1) // per_page,
        }

    def renewal_chain(self, request_id: int) -> list[AccessRequest]:
        """Follow ``renewed_from_id`` backward: [request, its predecessor, ...].

        Raises:
            NotFoundError: unknown request.
            RuntimeError: a cycle was found (data corruption).
        """
        chain: list[AccessRequest] = []
        seen: set[int] = set()
        current = db.session.get(AccessRequest, request_id)
        if current is None:
            raise NotFoundError(resource="AccessRequest", resource_id=request_id)
        while current is not None:
            if current.id in seen:
                raise RuntimeError(f"Renewal chain cycle detected at request {current.id}")
            seen.add(current.id)
            chain.append(current)
            if current.renewed_from_id is None:
                break
            current = db.session.get(AccessRequest, current.renewed_from_id)
        return chain

    def footprint(self, requester_id: str) -> Footprint:
        """Current effective footprint (read-only, no locking)."""
        return self._load_footprint(self._require_requester(requester_id), self.now())

    # ── Pipeline ─────────────────────────────────────────────────────────

    def _decide_and_persist(
        self,
        candidate: Candidate,
        *,
        now: datetime,
        renewed_from: AccessRequest | None = None,
    ) -> AccessRequest:
        footprint = self._load_footprint(candidate.requester_id, now, for_update=True)
        snapshot = self.catalog.snapshot(
            candidate.module_ids, footprint.module_ids, candidate.department,
        )
        waived = (renewed_from.id,) if renewed_from is not None else ()
        verdict = self.engine.evaluate(candidate, footprint, snapshot, waived_request_ids=waived)

        if isinstance(verdict, HardReject):
            logger.info(
                "Access request rejected: %s",
                verdict.rule,
                extra={"requester_id": candidate.requester_id, "event_type": "access.rejected"},
            )
            raise BusinessError(verdict.reason, code=verdict.rule)

        protocol = self.sequencer.next()
        try:
            req = AccessRequest(
                protocol=protocol,
                requester_id=candidate.requester_id,
                department=candidate.department,
                justification=candidate.justification,
                urgent=candidate.urgent,
                requested_at=now,
                renewed_from_id=renewed_from.id if renewed_from is not None else None,
            )
            req.modules = [db.session.get(Module, mid) for mid in candidate.module_ids]
            if verdict.approved:
                req.status = STATUS_ACTIVE
                req.approved_at = now
                req.expires_at = now + timedelta(days=self.settings.validity_days)
            else:
                req.status = STATUS_DENIED
                req.denial_reason = verdict.reason
            db.session.add(req)
            db.session.flush()

            module_names = ", ".join(snapshot.name_of(mid) for mid in candidate.module_ids)
            created_note = f"Request {protocol} created for: {module_names}."
            if renewed_from is not None:
                created_note += f" Renews {renewed_from.protocol}."
            history_service.record(
                req.id, ACTION_CREATED, created_note,
                actor=candidate.requester_id, occurred_at=now,
            )
            if verdict.approved:
                history_service.record(
                    req.id, ACTION_APPROVED,
                    f"Approved automatically; valid until {req.expires_at:%Y-%m-%d}.",
                    occurred_at=now,
                )
            else:
                history_service.record(req.id, ACTION_DENIED, verdict.reason, occurred_at=now)
        except Exception:
            self.sequencer.release(protocol)
            raise
        return req

    def _load_footprint(
        self, requester_id: str, now: datetime, *, for_update: bool = False,
    ) -> Footprint:
        """ACTIVE, unexpired requests not superseded by an ACTIVE renewal."""
        stmt = (
            select(AccessRequest)
            .where(
                AccessRequest.requester_id == requester_id,
                AccessRequest.status == STATUS_ACTIVE,
            )
            .order_by(AccessRequest.requested_at.asc(), AccessRequest.id.asc())
        )
        if for_update:
            stmt = stmt.with_for_update()
        rows = db.session.execute(stmt).scalars().all()

        superseded = {r.renewed_from_id for r in rows if r.renewed_from_id is not None}
        entries = tuple(
            FootprintEntry(request_id=r.id, protocol=r.protocol, module_ids=r.module_ids)
            for r in rows
            if r.id not in superseded and not r.is_expired(now)
        )
        return Footprint(entries)

    # ── Guards ───────────────────────────────────────────────────────────

    def _build_candidate(self, requester_id, department, module_ids, justification, urgent) -> Candidate:
        s = self.settings
        requester_id = self._require_requester(requester_id)
        errors: dict[str, str] = {}

        department = (department or "").strip().upper()
        if department not in DEPARTMENT_CODES:
            errors["department"] = f"must be one of {', '.join(DEPARTMENT_CODES)}"

        ids: list[int] = []
        try:
            ids = [int(m) for m in (module_ids or [])]
        except (TypeError, ValueError):
            errors["module_ids"] = "must be a list of integer ids"
        else:
            if not s.min_modules <= len(ids) <= s.max_modules:
                errors["module_ids"] = f"between {s.min_modules} and {s.max_modules} modules required"
            elif len(set(ids)) != len(ids):
                errors["module_ids"] = "duplicate module ids"

        text = (justification or "").strip()
        if not s.justification_min_length <= len(text) <= s.justification_max_length:
            errors["justification"] = (
                f"must be {s.justification_min_length}-{s.justification_max_length} characters"
            )

        if errors:
            raise ValidationError("Invalid access request", details=errors)

        return Candidate(
            requester_id=requester_id,
            department=department,
            module_ids=tuple(ids),
            justification=text,
            urgent=bool(urgent),
        )

    def _validate_cancel_reason(self, reason: str | None) -> str:
        s = self.settings
        text = (reason or "").strip()
        if not s.cancel_reason_min_length <= len(text) <= s.cancel_reason_max_length:
            raise ValidationError(
                "Invalid cancellation reason",
                details={
                    "reason": f"must be {s.cancel_reason_min_length}-"
                              f"{s.cancel_reason_max_length} characters",
                },
            )
        return text

    def _assert_renewal_window(self, req: AccessRequest, now: datetime) -> None:
        expires_at = ensure_utc(req.expires_at)
        if expires_at is None or expires_at <= now:
            raise NotEligibleError(
                f"Request {req.protocol} has already expired; submit a new request instead."
            )
        window = timedelta(days=self.settings.renewal_window_days)
        if expires_at - now > window:
            opens_at = expires_at - window
            raise NotEligibleError(
                f"Request {req.protocol} can be renewed from {opens_at:%Y-%m-%d} "
                f"({self.settings.renewal_window_days} days before expiry)."
            )

    @staticmethod
    def _assert_transition(req: AccessRequest, action: str) -> None:
        rule = ACCESS_REQUEST_TRANSITIONS[action]
        if req.status not in rule["from"]:
            raise InvalidStateError(req.protocol, action, req.status)

    @staticmethod
    def _require_requester(requester_id) -> str:
        value = str(requester_id or "").strip()
        if not value:
            raise ValidationError("requester_id is required", details={"requester_id": "required"})
        return value

    def _get_owned(self, request_id: int, requester_id: str, *, for_update: bool = False) -> AccessRequest:
        stmt = select(AccessRequest).where(AccessRequest.id == request_id)
        if for_update:
            stmt = stmt.with_for_update()
        req = db.session.execute(stmt).scalar_one_or_none()
        if req is None or req.requester_id != requester_id:
            raise NotFoundError(resource="AccessRequest", resource_id=request_id)
        return req

    def _active_successor(self, request_id: int) -> AccessRequest | None:
        return db.session.execute(
            select(AccessRequest)
            .where(
                AccessRequest.renewed_from_id == request_id,
                AccessRequest.status == STATUS_ACTIVE,
            )
            .limit(1)
        ).scalar_one_or_none()

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def _release_protocol(self, protocol: str | None) -> None:
        if protocol is not None:
            self.sequencer.release(protocol)

    def _log_decision(self, event: str, req: AccessRequest, **extra) -> None:
        logger.info(
            "Access request %s: %s status=%s",
            event, req.protocol, req.status,
            extra={
                "event_type": f"access.{event}",
                "request_id": req.id,
                "protocol": req.protocol,
                "requester_id": req.requester_id,
                **extra,
            },
        )


def build_access_service(config: Mapping, clock: Callable[[], datetime] | None = None) -> AccessRequestService:
    """Factory used by ``create_app``; one service (and one sequencer) per app."""
    return AccessRequestService(AccessSettings.from_config(config), clock=clock)
