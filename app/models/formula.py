"""Formula ledger models: versions, customization overlay, change log."""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, Integer, Boolean, Text, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.db.database import Base


class Formula(Base):
    """
    One row per formula version.

    Rows are never rewritten after creation; only `name` and `archived_at`
    change in place. Customizations live in FormulaCustomization and are
    folded in at read time.
    """
    __tablename__ = "formulas"
    __table_args__ = (
        UniqueConstraint("user_id", "version", name="uq_formulas_user_version"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String, nullable=True)

    # JSON arrays of {ingredient, amount, unit, purpose?}
    bases = Column(JSON, nullable=False, default=list)
    additions = Column(JSON, nullable=False, default=list)
    base_total_mg = Column(Integer, nullable=False)

    user_created = Column(Boolean, default=False, nullable=False)
    rationale = Column(Text, nullable=True)
    warnings = Column(JSON, default=list)
    disclaimers = Column(JSON, default=list)
    notes = Column(Text, nullable=True)

    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="formulas")
    customizations = relationship(
        "FormulaCustomization",
        back_populates="formula",
        order_by="FormulaCustomization.id",
        cascade="all, delete-orphan",
    )
    version_changes = relationship(
        "FormulaVersionChange",
        back_populates="formula",
        order_by="FormulaVersionChange.created_at.desc()",
        cascade="all, delete-orphan",
    )

    @property
    def customization_mg(self) -> int:
        return sum(c.amount_mg for c in self.customizations)

    @property
    def total_mg(self) -> int:
        return self.base_total_mg + self.customization_mg

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def user_customizations(self) -> dict:
        overlay = {"added_bases": [], "added_individuals": []}
        for c in self.customizations:
            key = "added_bases" if c.kind == "base" else "added_individuals"
            overlay[key].append(c.to_dict())
        return overlay

    @property
    def ingredient_count(self) -> int:
        return len(self.bases or []) + len(self.additions or [])

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "version": self.version,
            "name": self.name,
            "bases": self.bases or [],
            "additions": self.additions or [],
            "user_customizations": self.user_customizations,
            "total_mg": self.total_mg,
            "user_created": self.user_created,
            "rationale": self.rationale,
            "warnings": self.warnings or [],
            "disclaimers": self.disclaimers or [],
            "notes": self.notes,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class FormulaCustomization(Base):
    """An ingredient appended on top of a version without a version bump."""
    __tablename__ = "formula_customizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    formula_id = Column(String, ForeignKey("formulas.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # "base" or "individual"
    ingredient = Column(String, nullable=False)
    amount_mg = Column(Integer, nullable=False)
    unit = Column(String, default="mg", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    formula = relationship("Formula", back_populates="customizations")

    def to_dict(self):
        return {
            "ingredient": self.ingredient,
            "amount": self.amount_mg,
            "unit": self.unit,
        }


class FormulaVersionChange(Base):
    """Audit trail entry explaining why a version exists."""
    __tablename__ = "formula_version_changes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    formula_id = Column(String, ForeignKey("formulas.id"), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    rationale = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    formula = relationship("Formula", back_populates="version_changes")

    def to_dict(self):
        return {
            "id": self.id,
            "formula_id": self.formula_id,
            "summary": self.summary,
            "rationale": self.rationale,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
