"""
Module Access Request Service
Catalog domain models — reference data read by the decision engine.

Models:
    - Department: fixed department codes with their active-module quota.
    - Module: a requestable software module.
    - ModuleDepartment: which departments may request a module.
    - ModuleIncompatibility: symmetric "cannot hold both" relation.

The catalog is managed outside the engine; the engine only reads it.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

DEPARTMENT_CODES = ("IT", "FINANCE", "HR", "OPERATIONS", "OTHER")

# IT may request every module; its quota is also larger.
UNRESTRICTED_DEPARTMENT = "IT"

DEFAULT_QUOTAS = {
    "IT": 10,
    "FINANCE": 5,
    "HR": 5,
    "OPERATIONS": 5,
    "OTHER": 5,
}


class Department(db.Model):
    """Department reference row. ``code`` is one of DEPARTMENT_CODES."""

    __tablename__ = "departments"

    code = db.Column(db.String(20), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    module_quota = db.Column(
        db.Integer, nullable=False, default=5,
        comment="Max number of modules members may hold ACTIVE at once",
    )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "module_quota": self.module_quota,
        }

    def __repr__(self):
        return f"<Department {self.code} quota={self.module_quota}>"


module_departments = db.Table(
    "module_departments",
    db.Column(
        "module_id", db.Integer,
        db.ForeignKey("modules.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "department_code", db.String(20),
        db.ForeignKey("departments.code", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Module(db.Model):
    """A requestable software module."""

    __tablename__ = "modules"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    departments = db.relationship(
        "Department",
        secondary=module_departments,
        lazy="selectin",
        order_by="Department.code",
    )

    @property
    def department_codes(self) -> frozenset[str]:
        return frozenset(d.code for d in self.departments)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "allowed_departments": sorted(self.department_codes),
        }

    def __repr__(self):
        return f"<Module {self.id}: {self.name}>"


class ModuleIncompatibility(db.Model):
    """
    Unordered pair of modules that may not be held together.

    Stored once per pair with ``low_module_id < high_module_id``; use
    ``ModuleIncompatibility.pair(a, b)`` to build a row so the ordering is
    always normalized. Queries must look at both columns.
    """

    __tablename__ = "module_incompatibilities"
    __table_args__ = (
        db.CheckConstraint(
            "low_module_id < high_module_id",
            name="ck_module_incompat_ordered",
        ),
    )

    low_module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"),
        primary_key=True,
    )
    high_module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"),
        primary_key=True,
    )

    @classmethod
    def pair(cls, module_a_id: int, module_b_id: int) -> "ModuleIncompatibility":
        if module_a_id == module_b_id:
            raise ValueError("A module cannot be incompatible with itself")
        low, high = sorted((module_a_id, module_b_id))
        return cls(low_module_id=low, high_module_id=high)

    @property
    def module_ids(self) -> frozenset[int]:
        return frozenset((self.low_module_id, self.high_module_id))

    def __repr__(self):
        return f"<ModuleIncompatibility {self.low_module_id}<->{self.high_module_id}>"
