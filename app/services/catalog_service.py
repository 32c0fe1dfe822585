"""
Catalog Service — read-only view of modules and departments.

The decision engine never touches ORM rows directly: everything a single
decision needs is loaded once into a ``CatalogSnapshot`` of frozen
dataclasses, so a module cannot change activity mid-evaluation.

Usage:
    from app.services.catalog_service import Catalog

    catalog = Catalog()
    modules = catalog.resolve_modules([1, 4])
    snapshot = catalog.snapshot(requested_ids=[1, 4], footprint_ids=[7], department="FINANCE")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import or_, select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.catalog import Department, Module, ModuleIncompatibility

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleInfo:
    """Immutable copy of a Module row."""

    id: int
    name: str
    is_active: bool
    allowed_departments: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_model(cls, module: Module) -> "ModuleInfo":
        return cls(
            id=module.id,
            name=module.name,
            is_active=bool(module.is_active),
            allowed_departments=module.department_codes,
        )


@dataclass(frozen=True)
class CatalogSnapshot:
    """Everything the rule engine reads from the catalog for one decision."""

    department: str
    quota: int
    modules: dict[int, ModuleInfo]
    incompatible_pairs: frozenset[frozenset[int]]

    def module(self, module_id: int) -> ModuleInfo:
        return self.modules[module_id]

    def name_of(self, module_id: int) -> str:
        info = self.modules.get(module_id)
        return info.name if info else f"module #{module_id}"

    def are_incompatible(self, module_a_id: int, module_b_id: int) -> bool:
        return frozenset((module_a_id, module_b_id)) in self.incompatible_pairs


class Catalog:
    """Side-effect-free lookups over the catalog tables."""

    def resolve_modules(self, module_ids: Iterable[int]) -> tuple[ModuleInfo, ...]:
        """Return modules in caller order; NotFoundError if any id is unknown."""
        ids = list(module_ids)
        if not ids:
            return ()
        rows = db.session.execute(
            select(Module).where(Module.id.in_(ids))
        ).scalars().all()
        by_id = {m.id: m for m in rows}
        for module_id in ids:
            if module_id not in by_id:
                raise NotFoundError(resource="Module", resource_id=module_id)
        return tuple(ModuleInfo.from_model(by_id[i]) for i in ids)

    @staticmethod
    def is_active(module: ModuleInfo) -> bool:
        return module.is_active

    def quota_for(self, department: str) -> int:
        dept = db.session.get(Department, department)
        if dept is None:
            raise NotFoundError(resource="Department", resource_id=department)
        return dept.module_quota

    def incompatible_pairs(self, module_ids: Iterable[int]) -> frozenset[frozenset[int]]:
        """All incompatibility pairs touching at least one of ``module_ids``.

        The relation is stored once per unordered pair, so both columns are
        searched.
        """
        ids = set(module_ids)
        if not ids:
            return frozenset()
        rows = db.session.execute(
            select(ModuleIncompatibility).where(
                or_(
                    ModuleIncompatibility.low_module_id.in_(ids),
                    ModuleIncompatibility.high_module_id.in_(ids),
                )
            )
        ).scalars().all()
        return frozenset(row.module_ids for row in rows)

    def snapshot(
        self,
        requested_ids: Iterable[int],
        footprint_ids: Iterable[int],
        department: str,
    ) -> CatalogSnapshot:
        """Load one consistent view for a decision.

        Requested modules must all exist; footprint modules are loaded for
        naming only (a footprint module deleted from the catalog keeps a
        placeholder name).
        """
        requested = self.resolve_modules(requested_ids)
        footprint = set(footprint_ids) - {m.id for m in requested}
        modules = {m.id: m for m in requested}
        if footprint:
            rows = db.session.execute(
                select(Module).where(Module.id.in_(footprint))
            ).scalars().all()
            modules.update({m.id: ModuleInfo.from_model(m) for m in rows})

        return CatalogSnapshot(
            department=department,
            quota=self.quota_for(department),
            modules=modules,
            incompatible_pairs=self.incompatible_pairs(modules.keys()),
        )

    # ── Listing (catalog endpoints) ──────────────────────────────────────

    def list_modules(self, active_only: bool = False) -> list[Module]:
        stmt = select(Module).order_by(Module.name)
        if active_only:
            stmt = stmt.where(Module.is_active.is_(True))
        return list(db.session.execute(stmt).scalars().all())

    def get_module(self, module_id: int) -> Module:
        module = db.session.get(Module, module_id)
        if module is None:
            raise NotFoundError(resource="Module", resource_id=module_id)
        return module

    def list_departments(self) -> list[Department]:
        return list(
            db.session.execute(select(Department).order_by(Department.code)).scalars().all()
        )

    def incompatible_with(self, module_id: int) -> list[int]:
        """Ids of modules incompatible with ``module_id``, in either direction."""
        pairs = self.incompatible_pairs([module_id])
        return sorted(other for pair in pairs for other in pair if other != module_id)
