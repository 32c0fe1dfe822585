"""
Tests: Catalog — read-only lookups and seed data.

The incompatibility relation is stored once per unordered pair; lookups
must find it from either side.
"""

import pytest
from sqlalchemy import func, select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.catalog import Module, ModuleIncompatibility
from app.services.catalog_seed import MODULES, seed_catalog
from app.services.catalog_service import Catalog


@pytest.fixture()
def catalog():
    return Catalog()


def test_resolve_modules_keeps_caller_order(catalog, modules):
    ids = [modules["Purchasing"], modules["Employee Portal"]]

    resolved = catalog.resolve_modules(ids)

    assert [m.id for m in resolved] == ids
    assert resolved[0].name == "Purchasing"
    assert resolved[0].allowed_departments == frozenset({"FINANCE", "OPERATIONS"})


def test_resolve_modules_unknown_id(catalog, modules):
    with pytest.raises(NotFoundError) as exc:
        catalog.resolve_modules([modules["Purchasing"], 424242])
    assert exc.value.resource_id == 424242


def test_quota_for(catalog):
    assert catalog.quota_for("IT") == 10
    assert catalog.quota_for("FINANCE") == 5
    with pytest.raises(NotFoundError):
        catalog.quota_for("SALES")


@pytest.mark.parametrize("side", ["Financial Approver", "Financial Requester"])
def test_incompatible_pairs_found_from_either_side(catalog, modules, side):
    pairs = catalog.incompatible_pairs([modules[side]])

    assert pairs == frozenset({
        frozenset({modules["Financial Approver"], modules["Financial Requester"]}),
    })


def test_incompatible_with(catalog, modules):
    assert catalog.incompatible_with(modules["HR Employee"]) == [modules["HR Administrator"]]
    assert catalog.incompatible_with(modules["Purchasing"]) == []


def test_pair_normalizes_order_and_rejects_self():
    row = ModuleIncompatibility.pair(9, 3)
    assert (row.low_module_id, row.high_module_id) == (3, 9)
    with pytest.raises(ValueError):
        ModuleIncompatibility.pair(4, 4)


def test_snapshot_covers_requested_and_footprint(catalog, modules):
    approver = modules["Financial Approver"]
    requester = modules["Financial Requester"]

    snap = catalog.snapshot([requester], [approver], "FINANCE")

    assert snap.quota == 5
    assert snap.name_of(approver) == "Financial Approver"
    assert snap.are_incompatible(requester, approver)
    assert snap.are_incompatible(approver, requester)
    assert snap.name_of(999) == "module #999"


def test_snapshot_is_detached_from_later_changes(catalog, modules):
    mid = modules["Purchasing"]
    snap = catalog.snapshot([mid], [], "FINANCE")

    db.session.get(Module, mid).is_active = False
    db.session.flush()

    assert snap.module(mid).is_active is True


def test_list_modules_active_only(catalog, modules):
    db.session.get(Module, modules["Audit Trail"]).is_active = False
    db.session.flush()

    names_all = [m.name for m in catalog.list_modules()]
    names_active = [m.name for m in catalog.list_modules(active_only=True)]

    assert names_all == sorted(MODULES)
    assert "Audit Trail" not in names_active
    assert len(names_active) == len(MODULES) - 1


def test_list_departments(catalog):
    codes = [d.code for d in catalog.list_departments()]
    assert codes == ["FINANCE", "HR", "IT", "OPERATIONS", "OTHER"]


def test_seed_is_idempotent():
    summary = seed_catalog()

    assert summary == {"departments": 0, "modules": 0, "incompatibilities": 0}
    assert db.session.execute(select(func.count(Module.id))).scalar() == len(MODULES)
