"""
Tests: RuleEngine — ordered access-rule chain.

The engine is pure: every test builds a CatalogSnapshot and a Footprint by
hand, no database rows are involved.

Catalog used throughout:

    1  Financial Management   FINANCE, IT
    2  Inventory Control      OPERATIONS
    3  Financial Approver     FINANCE          <-> 4
    4  Financial Requester    FINANCE, OPERATIONS
    5  Employee Portal        all departments
    6  Legacy Ledger          FINANCE (inactive)
    7  Purchasing             FINANCE, OPERATIONS
"""

import pytest

from app.services.catalog_service import CatalogSnapshot, ModuleInfo
from app.services.rule_engine import (
    OUTCOME_APPROVE,
    OUTCOME_DENY,
    Candidate,
    Decision,
    Footprint,
    FootprintEntry,
    HardReject,
    RuleEngine,
)

ALL = frozenset({"IT", "FINANCE", "HR", "OPERATIONS", "OTHER"})

MODULES = {
    1: ModuleInfo(1, "Financial Management", True, frozenset({"FINANCE", "IT"})),
    2: ModuleInfo(2, "Inventory Control", True, frozenset({"OPERATIONS"})),
    3: ModuleInfo(3, "Financial Approver", True, frozenset({"FINANCE"})),
    4: ModuleInfo(4, "Financial Requester", True, frozenset({"FINANCE", "OPERATIONS"})),
    5: ModuleInfo(5, "Employee Portal", True, ALL),
    6: ModuleInfo(6, "Legacy Ledger", False, frozenset({"FINANCE"})),
    7: ModuleInfo(7, "Purchasing", True, frozenset({"FINANCE", "OPERATIONS"})),
}

GOOD_TEXT = "Need this to process month-end vendor payments"


def _snapshot(department="FINANCE", quota=5, extra=None):
    modules = dict(MODULES)
    modules.update(extra or {})
    return CatalogSnapshot(
        department=department,
        quota=quota,
        modules=modules,
        incompatible_pairs=frozenset({frozenset({3, 4})}),
    )


def _candidate(*module_ids, department="FINANCE", justification=GOOD_TEXT):
    return Candidate(
        requester_id="u-1",
        department=department,
        module_ids=tuple(module_ids),
        justification=justification,
    )


def _footprint(*entries):
    return Footprint(tuple(
        FootprintEntry(request_id=rid, protocol=f"SOL-20260101-{rid:04d}", module_ids=frozenset(ids))
        for rid, ids in entries
    ))


@pytest.fixture()
def engine():
    return RuleEngine()


# ── Approval ─────────────────────────────────────────────────────────────────


def test_clean_request_is_approved(engine):
    verdict = engine.evaluate(_candidate(1), Footprint(), _snapshot())

    assert isinstance(verdict, Decision)
    assert verdict.outcome == OUTCOME_APPROVE
    assert verdict.approved
    assert verdict.rule is None


# ── Hard rejections ──────────────────────────────────────────────────────────


def test_exact_same_module_set_is_duplicate(engine):
    verdict = engine.evaluate(_candidate(1, 5), _footprint((10, {1, 5})), _snapshot())

    assert isinstance(verdict, HardReject)
    assert verdict.rule == "DUPLICATE_REQUEST"
    assert "SOL-20260101-0010" in verdict.reason


def test_partial_overlap_is_existing_access(engine):
    verdict = engine.evaluate(_candidate(1, 7), _footprint((10, {1})), _snapshot())

    assert isinstance(verdict, HardReject)
    assert verdict.rule == "EXISTING_ACCESS"
    assert "'Financial Management'" in verdict.reason


def test_duplicate_check_runs_before_justification(engine):
    """The first failing check wins."""
    verdict = engine.evaluate(
        _candidate(1, justification="test test test"),
        _footprint((10, {1})),
        _snapshot(),
    )
    assert verdict.rule == "DUPLICATE_REQUEST"


def test_short_blacklisted_justification_is_rejected(engine):
    verdict = engine.evaluate(
        _candidate(1, justification="just a test request here"),
        Footprint(),
        _snapshot(),
    )
    assert isinstance(verdict, HardReject)
    assert verdict.rule == "JUSTIFICATION_INSUFFICIENT"


def test_blacklist_is_case_insensitive(engine):
    verdict = engine.evaluate(
        _candidate(1, justification="  WHATEVER, I need it now  "),
        Footprint(),
        _snapshot(),
    )
    assert verdict.rule == "JUSTIFICATION_INSUFFICIENT"


def test_long_justification_with_blacklisted_word_passes(engine):
    verdict = engine.evaluate(
        _candidate(1, justification="We need to test the month-end vendor payment batch run"),
        Footprint(),
        _snapshot(),
    )
    assert verdict.approved


def test_custom_blacklist_replaces_default():
    engine = RuleEngine(blacklist=["urgent pls"], min_quality_length=30)

    rejected = engine.evaluate(
        _candidate(1, justification="urgent pls, vendor run"), Footprint(), _snapshot(),
    )
    accepted = engine.evaluate(
        _candidate(1, justification="test of vendor payment run"), Footprint(), _snapshot(),
    )

    assert rejected.rule == "JUSTIFICATION_INSUFFICIENT"
    assert accepted.approved


def test_inactive_module_is_rejected_before_department(engine):
    verdict = engine.evaluate(
        _candidate(6, department="HR"), Footprint(), _snapshot(department="HR"),
    )
    assert isinstance(verdict, HardReject)
    assert verdict.rule == "MODULE_INACTIVE"
    assert "'Legacy Ledger'" in verdict.reason


# ── Denials ──────────────────────────────────────────────────────────────────


def test_department_not_allowed_names_module(engine):
    verdict = engine.evaluate(_candidate(2), Footprint(), _snapshot())

    assert isinstance(verdict, Decision)
    assert verdict.outcome == OUTCOME_DENY
    assert verdict.rule == "DEPARTMENT_NOT_ALLOWED"
    assert "Inventory Control" in verdict.reason
    assert verdict.details == {"module_id": 2}


def test_department_denial_names_first_offending_module(engine):
    verdict = engine.evaluate(_candidate(5, 2, 3), Footprint(), _snapshot())
    assert "Inventory Control" in verdict.reason


def test_it_department_may_request_any_module(engine):
    verdict = engine.evaluate(
        _candidate(2, 3, department="IT"), Footprint(), _snapshot(department="IT", quota=10),
    )
    assert verdict.approved


@pytest.mark.parametrize("held, requested, conflicting", [
    (3, 4, "Financial Approver"),
    (4, 3, "Financial Requester"),
])
def test_mutual_exclusion_is_symmetric(engine, held, requested, conflicting):
    verdict = engine.evaluate(_candidate(requested), _footprint((10, {held})), _snapshot())

    assert verdict.outcome == OUTCOME_DENY
    assert verdict.rule == "MUTUALLY_EXCLUSIVE"
    assert f"your active module '{conflicting}'" in verdict.reason


def test_incompatible_modules_requested_together_are_denied(engine):
    verdict = engine.evaluate(_candidate(3, 4), Footprint(), _snapshot())

    assert verdict.outcome == OUTCOME_DENY
    assert verdict.rule == "MUTUALLY_EXCLUSIVE"
    assert "cannot be requested together" in verdict.reason


def test_department_check_precedes_mutual_exclusion(engine):
    verdict = engine.evaluate(
        _candidate(3, department="OPERATIONS"),
        _footprint((10, {4})),
        _snapshot(department="OPERATIONS"),
    )
    assert verdict.rule == "DEPARTMENT_NOT_ALLOWED"


@pytest.mark.parametrize("held_count, requested, approved", [
    (0, 3, True),
    (2, 3, True),     # k + n == Q
    (3, 3, False),    # k + n == Q + 1
    (4, 1, True),
    (4, 2, False),
    (5, 1, False),
])
def test_quota_boundary(engine, held_count, requested, approved):
    held_ids = set(range(100, 100 + held_count))
    footprint = _footprint((10, held_ids)) if held_ids else Footprint()
    requested_ids = (1, 5, 7)[:requested]

    verdict = engine.evaluate(_candidate(*requested_ids), footprint, _snapshot(quota=5))

    assert verdict.approved is approved
    if not approved:
        assert verdict.rule == "QUOTA_EXCEEDED"
        assert verdict.details == {"held": held_count, "requested": requested, "quota": 5}


def test_quota_counts_distinct_modules_across_requests(engine):
    footprint = _footprint((10, {100, 101}), (11, {102, 103}))

    assert footprint.module_count == 4
    verdict = engine.evaluate(_candidate(1, 5), footprint, _snapshot(quota=5))
    assert verdict.rule == "QUOTA_EXCEEDED"
    assert "(4 active + 2 requested)" in verdict.reason


# ── Renewal waiver ───────────────────────────────────────────────────────────


def test_waived_request_is_excluded_from_all_checks(engine):
    footprint = _footprint((10, {1, 5}))

    plain = engine.evaluate(_candidate(1, 5), footprint, _snapshot())
    waived = engine.evaluate(_candidate(1, 5), footprint, _snapshot(), waived_request_ids=[10])

    assert plain.rule == "DUPLICATE_REQUEST"
    assert waived.approved


def test_waiver_does_not_hide_other_requests(engine):
    footprint = _footprint((10, {1}), (11, {5}))

    verdict = engine.evaluate(_candidate(1, 5), footprint, _snapshot(), waived_request_ids=[10])

    assert verdict.rule == "EXISTING_ACCESS"
    assert "'Employee Portal'" in verdict.reason


def test_waived_modules_do_not_count_against_quota(engine):
    footprint = _footprint((10, {1, 5, 7}), (11, {100, 101}))

    verdict = engine.evaluate(_candidate(1, 5, 7), footprint, _snapshot(quota=5), waived_request_ids=[10])

    assert verdict.approved


# ── Footprint helpers ────────────────────────────────────────────────────────


def test_footprint_holder_of_and_without():
    footprint = _footprint((10, {1}), (11, {5, 7}))

    assert footprint.holder_of(7).request_id == 11
    assert footprint.holder_of(2) is None
    assert footprint.without([11]).module_ids == frozenset({1})
