"""
Catalog reference data — departments, modules and incompatibility pairs.

``seed_catalog()`` is idempotent: existing rows are updated in place and
missing ones created. It adds to the current session and flushes; the
caller commits.

Used by ``scripts/seed_catalog.py``, the ``flask seed-catalog`` command and
the test fixtures.
"""

import logging

from sqlalchemy import select

from app.models import db
from app.models.catalog import (
    DEFAULT_QUOTAS,
    DEPARTMENT_CODES,
    Department,
    Module,
    ModuleIncompatibility,
)

logger = logging.getLogger(__name__)

DEPARTMENT_NAMES = {
    "IT": "Information Technology",
    "FINANCE": "Finance",
    "HR": "Human Resources",
    "OPERATIONS": "Operations",
    "OTHER": "Other",
}

_ALL = DEPARTMENT_CODES

# name -> (description, allowed departments)
MODULES = {
    "Employee Portal": ("Self-service portal for all staff", _ALL),
    "Management Reports": ("Cross-department management dashboards", _ALL),
    "Financial Management": ("General ledger and payables", ("FINANCE", "IT")),
    "Financial Approver": ("Approve payment requests", ("FINANCE",)),
    "Financial Requester": ("Raise payment requests", ("FINANCE", "OPERATIONS")),
    "HR Administrator": ("Manage employee master data", ("HR",)),
    "HR Employee": ("Employee-side HR records", ("HR", "OPERATIONS", "FINANCE", "OTHER")),
    "Inventory Control": ("Stock levels and warehouse moves", ("OPERATIONS",)),
    "Purchasing": ("Purchase orders and vendor catalog", ("OPERATIONS", "FINANCE")),
    "Audit Trail": ("Read-only audit log viewer", ("FINANCE", "HR")),
}

# Each pair is symmetric; stored once.
INCOMPATIBLE_PAIRS = (
    ("Financial Approver", "Financial Requester"),
    ("HR Administrator", "HR Employee"),
)


def seed_departments() -> int:
    created = 0
    for code in DEPARTMENT_CODES:
        dept = db.session.get(Department, code)
        if dept is None:
            db.session.add(Department(
                code=code,
                name=DEPARTMENT_NAMES[code],
                module_quota=DEFAULT_QUOTAS[code],
            ))
            created += 1
        else:
            dept.name = DEPARTMENT_NAMES[code]
    db.session.flush()
    return created


def seed_modules() -> int:
    departments = {d.code: d for d in db.session.execute(select(Department)).scalars()}
    created = 0
    for name, (description, allowed) in MODULES.items():
        module = db.session.execute(
            select(Module).where(Module.name == name)
        ).scalar_one_or_none()
        if module is None:
            module = Module(name=name, is_active=True)
            db.session.add(module)
            created += 1
        module.description = description
        module.departments = [departments[code] for code in allowed]
    db.session.flush()
    return created


def seed_incompatibilities() -> int:
    ids = {
        m.name: m.id
        for m in db.session.execute(select(Module)).scalars()
    }
    created = 0
    for name_a, name_b in INCOMPATIBLE_PAIRS:
        row = ModuleIncompatibility.pair(ids[name_a], ids[name_b])
        if db.session.get(ModuleIncompatibility, (row.low_module_id, row.high_module_id)) is None:
            db.session.add(row)
            created += 1
    db.session.flush()
    return created


def seed_catalog() -> dict:
    """Seed everything; returns per-table created counts."""
    summary = {
        "departments": seed_departments(),
        "modules": seed_modules(),
        "incompatibilities": seed_incompatibilities(),
    }
    logger.info("Catalog seed complete: %s", summary)
    return summary
