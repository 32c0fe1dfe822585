"""
Access Rule Engine — pure decision pipeline.

Turns a candidate request plus the requester's current footprint into one
of two outcomes:

  HardReject(reason)       input invalid, nothing is persisted
  Decision(APPROVE|DENY)   a record is persisted with that outcome

Checks run top to bottom; the first failing check wins and later checks
are not evaluated:

  1. duplicate_request      HardReject  exact module set already ACTIVE
  2. existing_access        HardReject  any module already held
  3. justification_quality  HardReject  blacklisted phrase in short text
  4. module_activity        HardReject  module deactivated
  5. department             DENY        department not allowed for module
  6. mutual_exclusion       DENY        incompatible with held / co-requested module
  7. quota                  DENY        held + requested > department quota
  8.                        APPROVE

Checks 1 and 2 together reject any overlap with a held request; they differ
only in the rule code reported.

The engine performs no I/O. Everything it reads arrives in a
``CatalogSnapshot`` and a ``Footprint``; serializing the footprint read
with the eventual write is the lifecycle service's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Union

from app.models.catalog import UNRESTRICTED_DEPARTMENT
from app.services.catalog_service import CatalogSnapshot

OUTCOME_APPROVE = "APPROVE"
OUTCOME_DENY = "DENY"

DEFAULT_BLACKLIST = (
    "test",
    "aaa",
    "asdf",
    "qwerty",
    "xxx",
    "n/a",
    "no reason",
    "just because",
    "whatever",
    "because i want",
)
DEFAULT_MIN_QUALITY_LENGTH = 30


# ── Inputs ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Candidate:
    """A request as submitted, before any record exists."""

    requester_id: str
    department: str
    module_ids: tuple[int, ...]
    justification: str
    urgent: bool = False


@dataclass(frozen=True)
class FootprintEntry:
    """One ACTIVE request currently granting access."""

    request_id: int
    protocol: str
    module_ids: frozenset[int]


@dataclass(frozen=True)
class Footprint:
    """The requester's effective ACTIVE coverage."""

    entries: tuple[FootprintEntry, ...] = ()

    @property
    def module_ids(self) -> frozenset[int]:
        return frozenset(mid for e in self.entries for mid in e.module_ids)

    @property
    def module_count(self) -> int:
        return len(self.module_ids)

    def without(self, request_ids: Iterable[int]) -> "Footprint":
        excluded = set(request_ids)
        return Footprint(tuple(e for e in self.entries if e.request_id not in excluded))

    def holder_of(self, module_id: int) -> FootprintEntry | None:
        for entry in self.entries:
            if module_id in entry.module_ids:
                return entry
        return None


# ── Outcomes ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HardReject:
    """Request is invalid and must not be recorded."""

    reason: str
    rule: str


@dataclass(frozen=True)
class Decision:
    """Request is valid and is recorded with this outcome."""

    outcome: str
    reason: str
    rule: str | None = None
    details: dict = field(default_factory=dict, compare=False)

    @property
    def approved(self) -> bool:
        return self.outcome == OUTCOME_APPROVE


EvaluationOutcome = Union[HardReject, Decision]


def normalize_justification(text: str) -> str:
    return (text or "").strip().lower()


# ── Engine ───────────────────────────────────────────────────────────────────


class RuleEngine:
    """Ordered validator chain. Stateless apart from its configuration."""

    def __init__(
        self,
        blacklist: Iterable[str] = DEFAULT_BLACKLIST,
        min_quality_length: int = DEFAULT_MIN_QUALITY_LENGTH,
    ) -> None:
        self.blacklist = tuple(normalize_justification(p) for p in blacklist if p and p.strip())
        self.min_quality_length = min_quality_length
        self._checks = (
            self._check_duplicate_request,
            self._check_existing_access,
            self._check_justification_quality,
            self._check_module_activity,
            self._check_department,
            self._check_mutual_exclusion,
            self._check_quota,
        )

    def evaluate(
        self,
        candidate: Candidate,
        footprint: Footprint,
        snapshot: CatalogSnapshot,
        waived_request_ids: Iterable[int] = (),
    ) -> EvaluationOutcome:
        """Run the chain and return the first verdict, or APPROVE.

        ``waived_request_ids`` removes those footprint entries before any
        check runs; renewal uses it for the request being renewed.
        """
        effective = footprint.without(waived_request_ids)
        for check in self._checks:
            verdict = check(candidate, effective, snapshot)
            if verdict is not None:
                return verdict
        return Decision(
            outcome=OUTCOME_APPROVE,
            reason="All access rules satisfied.",
        )

    # ── Hard rejections ──────────────────────────────────────────────────

    def _check_duplicate_request(self, candidate, footprint, snapshot):
        requested = frozenset(candidate.module_ids)
        for entry in footprint.entries:
            if entry.module_ids == requested:
                return HardReject(
                    reason=(
                        f"An active request ({entry.protocol}) already covers "
                        f"exactly these modules."
                    ),
                    rule="DUPLICATE_REQUEST",
                )
        return None

    def _check_existing_access(self, candidate, footprint, snapshot):
        for module_id in candidate.module_ids:
            holder = footprint.holder_of(module_id)
            if holder is not None:
                return HardReject(
                    reason=(
                        f"You already have active access to '{snapshot.name_of(module_id)}' "
                        f"(protocol {holder.protocol})."
                    ),
                    rule="EXISTING_ACCESS",
                )
        return None

    def _check_justification_quality(self, candidate, footprint, snapshot):
        text = normalize_justification(candidate.justification)
        if len(text) >= self.min_quality_length:
            return None
        for phrase in self.blacklist:
            if phrase in text:
                return HardReject(
                    reason=(
                        "Justification is insufficient: please describe the business "
                        "need in more detail."
                    ),
                    rule="JUSTIFICATION_INSUFFICIENT",
                )
        return None

    def _check_module_activity(self, candidate, footprint, snapshot):
        for module_id in candidate.module_ids:
            module = snapshot.module(module_id)
            if not module.is_active:
                return HardReject(
                    reason=f"Module '{module.name}' is not active.",
                    rule="MODULE_INACTIVE",
                )
        return None

    # ── Decisions ────────────────────────────────────────────────────────

    def _check_department(self, candidate, footprint, snapshot):
        if candidate.department == UNRESTRICTED_DEPARTMENT:
            return None
        for module_id in candidate.module_ids:
            module = snapshot.module(module_id)
            if candidate.department not in module.allowed_departments:
                return Decision(
                    outcome=OUTCOME_DENY,
                    reason=(
                        f"Department {candidate.department} is not allowed to access "
                        f"module '{module.name}'."
                    ),
                    rule="DEPARTMENT_NOT_ALLOWED",
                    details={"module_id": module_id},
                )
        return None

    def _check_mutual_exclusion(self, candidate, footprint, snapshot):
        held = sorted(footprint.module_ids)
        for module_id in candidate.module_ids:
            for active_id in held:
                if snapshot.are_incompatible(module_id, active_id):
                    return Decision(
                        outcome=OUTCOME_DENY,
                        reason=(
                            f"Module '{snapshot.name_of(module_id)}' is incompatible with "
                            f"your active module '{snapshot.name_of(active_id)}'."
                        ),
                        rule="MUTUALLY_EXCLUSIVE",
                        details={"module_id": module_id, "conflicting_module_id": active_id},
                    )

        requested = candidate.module_ids
        for i, module_id in enumerate(requested):
            for other_id in requested[i + 1:]:
                if snapshot.are_incompatible(module_id, other_id):
                    return Decision(
                        outcome=OUTCOME_DENY,
                        reason=(
                            f"Modules '{snapshot.name_of(module_id)}' and "
                            f"'{snapshot.name_of(other_id)}' cannot be requested together."
                        ),
                        rule="MUTUALLY_EXCLUSIVE",
                        details={"module_id": module_id, "conflicting_module_id": other_id},
                    )
        return None

    def _check_quota(self, candidate, footprint, snapshot):
        held = footprint.module_count
        requested = len(candidate.module_ids)
        if held + requested > snapshot.quota:
            return Decision(
                outcome=OUTCOME_DENY,
                reason=(
                    f"Department {candidate.department} quota of {snapshot.quota} active "
                    f"modules would be exceeded ({held} active + {requested} requested)."
                ),
                rule="QUOTA_EXCEEDED",
                details={"held": held, "requested": requested, "quota": snapshot.quota},
            )
        return None
