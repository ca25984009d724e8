"""
Formula Ledger

Per-user, version-numbered history of formula rows. Owns version
allocation and the ownership check every operation goes through.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Formula, FormulaCustomization
from app.engine.errors import NotFoundOrDenied, VersionConflict

logger = logging.getLogger(__name__)

MAX_VERSION_RETRIES = 3


class FormulaLedger:
    """Persistence for formula versions, overlays and change records."""

    def __init__(self, db: Session):
        self.db = db

    # --- Reads ---

    def get(self, formula_id: str) -> Optional[Formula]:
        return self.db.query(Formula).filter(Formula.id == formula_id).first()

    def load_owned(self, formula_id: str, user_id: str, for_update: bool = False) -> Formula:
        """
        Load a formula and authorize it for the user.

        Missing rows and rows owned by someone else raise the same error so
        callers cannot discover other users' formula ids.
        """
        query = self.db.query(Formula).filter(Formula.id == formula_id)
        if for_update:
            query = query.with_for_update()
        formula = query.first()
        if formula is None or formula.user_id != user_id:
            raise NotFoundOrDenied()
        return formula

    def current_max_version(self, user_id: str) -> int:
        """Highest version ever allocated to the user, archived rows included."""
        result = self.db.query(func.max(Formula.version)).filter(
            Formula.user_id == user_id
        ).scalar()
        return result or 0

    def current(self, user_id: str) -> Optional[Formula]:
        return self.db.query(Formula).filter(
            Formula.user_id == user_id,
            Formula.archived_at.is_(None)
        ).order_by(Formula.version.desc()).first()

    def history(self, user_id: str, include_archived: bool = True) -> List[Formula]:
        query = self.db.query(Formula).filter(Formula.user_id == user_id)
        if not include_archived:
            query = query.filter(Formula.archived_at.is_(None))
        return query.order_by(Formula.version.asc()).all()

    def archived(self, user_id: str) -> List[Formula]:
        return self.db.query(Formula).filter(
            Formula.user_id == user_id,
            Formula.archived_at.isnot(None)
        ).order_by(Formula.archived_at.desc()).all()

    # --- Writes ---

    def append(
        self,
        user_id: str,
        build: Callable[[int], Formula],
    ) -> Formula:
        """
        Allocate the next version for a user and persist the row built for it.

        `build(version)` returns a fresh, unsaved Formula (with any overlay or
        change-log children attached). The (user_id, version) unique
        constraint serializes concurrent writers: on a collision the
        transaction is rolled back and the max is re-read.
        """
        for attempt in range(1, MAX_VERSION_RETRIES + 1):
            version = self.current_max_version(user_id) + 1
            formula = build(version)
            self.db.add(formula)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    f"Version {version} already taken for user {user_id} "
                    f"(attempt {attempt}/{MAX_VERSION_RETRIES})"
                )
                continue
            self.db.refresh(formula)
            logger.info(f"Appended formula v{formula.version} for user {user_id} ({formula.total_mg}mg)")
            return formula

        raise VersionConflict(user_id)

    def add_customizations(self, formula: Formula, items: List[FormulaCustomization]) -> Formula:
        for item in items:
            formula.customizations.append(item)
        self.db.commit()
        self.db.refresh(formula)
        return formula

    def set_name(self, formula: Formula, name: str) -> Formula:
        formula.name = name
        self.db.commit()
        self.db.refresh(formula)
        return formula

    def set_archived(self, formula: Formula, archived: bool) -> Formula:
        formula.archived_at = datetime.utcnow() if archived else None
        self.db.commit()
        self.db.refresh(formula)
        return formula
