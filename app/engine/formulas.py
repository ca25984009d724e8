"""
Formula Engine

Creates, customizes, reverts, compares and archives personalized formulas.
Every path that stores a version goes through the dosage checks here, and
every path that touches an existing row goes through the ledger's
ownership check. All validation happens before the first write.
"""

import copy
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.engine import changelog
from app.engine.catalog import IngredientCatalog, get_catalog
from app.engine.diff import FormulaDiff, diff_formulas
from app.engine.dosage import (
    MAX_TOTAL_DOSAGE, resolve_and_sum, validate_new_formula, within_ceiling
)
from app.engine.errors import (
    DosageExceedsLimit, FormulaError, InvalidIngredient, InvalidName,
    LegacyDosageExceeded, NotFound, AlreadyArchived, NotArchived, UnresolvedIngredient
)
from app.engine.ledger import FormulaLedger
from app.models import Formula, FormulaCustomization, User
from app.services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100

CUSTOM_FORMULA_DISCLAIMERS = [
    "This formula was built manually without AI analysis.",
    "Consider discussing with AI for optimization and safety review.",
    "Always consult your healthcare provider before starting any new supplement regimen.",
]


def _clean_name(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    if not isinstance(name, str):
        raise InvalidName()
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidName(f"Name must be {MAX_NAME_LENGTH} characters or less")
    return name or None


class FormulaEngine:
    """Orchestrates the ledger, dosage checks, change log and notifications."""

    def __init__(
        self,
        db: Session,
        catalog: IngredientCatalog = None,
        notifier: NotificationService = None
    ):
        self.db = db
        self.ledger = FormulaLedger(db)
        self.catalog = catalog or get_catalog()
        self.notifier = notifier or notification_service

    def _notify(
        self,
        user_id: str,
        title: str,
        content: str,
        formula_id: str,
        icon: str = "beaker",
        priority: str = "low"
    ):
        """Best-effort: a failed notification never undoes the formula change."""
        try:
            self.notifier.emit(
                self.db, user_id, title, content,
                formula_id=formula_id, icon=icon, priority=priority
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create notification for user {user_id}: {e}")

    # --- Version-producing transitions ---

    def create_from_consultation(
        self,
        user_id: str,
        bases: List[Dict],
        additions: List[Dict],
        notes: Optional[str] = None,
        rationale: Optional[str] = None,
        warnings: Optional[List[str]] = None,
        disclaimers: Optional[List[str]] = None,
        change_rationale: Optional[str] = None,
    ) -> Formula:
        """
        Store the formula an AI consultation composed.

        Amounts chosen by the consultation are kept; ingredient legality and
        the dosage ceiling are re-checked regardless of where the set came from.
        """
        base_result = resolve_and_sum(bases, self.catalog, use_amounts=True)
        addition_result = resolve_and_sum(additions, self.catalog, use_amounts=True)

        unresolved = base_result.unresolved + addition_result.unresolved
        if unresolved:
            raise UnresolvedIngredient(unresolved)

        total = base_result.total_mg + addition_result.total_mg
        if not within_ceiling(total):
            raise DosageExceedsLimit(total, MAX_TOTAL_DOSAGE)

        resolved_bases = base_result.resolved
        resolved_additions = addition_result.resolved
        log_change = changelog.should_log("consultation", change_rationale)

        def build(version: int) -> Formula:
            formula = Formula(
                user_id=user_id,
                version=version,
                bases=resolved_bases,
                additions=resolved_additions,
                base_total_mg=total,
                user_created=False,
                rationale=rationale,
                warnings=list(warnings or []),
                disclaimers=list(disclaimers or []),
                notes=notes,
            )
            if log_change:
                summary = changelog.summarize(
                    self.ledger.current(user_id), resolved_bases, resolved_additions, total
                )
                formula.version_changes.append(changelog.entry(
                    summary, change_rationale or rationale or "Formula composed during consultation"
                ))
            return formula

        formula = self.ledger.append(user_id, build)

        self._notify(
            user_id,
            f"Formula V{formula.version} Ready",
            f"Your new personalized formula ({formula.total_mg}mg) is ready to review.",
            formula.id,
            priority="medium"
        )
        return formula

    def create_custom(
        self,
        user_id: str,
        bases: List[Dict],
        individuals: List[Dict],
        name: Optional[str] = None
    ) -> Formula:
        """Store a formula the user built from scratch."""
        total, resolved_bases, resolved_individuals = validate_new_formula(
            bases, individuals, self.catalog
        )
        clean_name = _clean_name(name)

        log_change = changelog.should_log("custom")

        def build(version: int) -> Formula:
            formula = Formula(
                user_id=user_id,
                version=version,
                name=clean_name,
                bases=resolved_bases,
                additions=resolved_individuals,
                base_total_mg=total,
                user_created=True,
                rationale="Custom formula built by user",
                warnings=[],
                disclaimers=list(CUSTOM_FORMULA_DISCLAIMERS),
                notes=None,
            )
            if log_change:
                summary = changelog.summarize(
                    self.ledger.current(user_id), resolved_bases, resolved_individuals, total
                )
                formula.version_changes.append(changelog.entry(summary, "Custom formula built by user"))
            return formula

        formula = self.ledger.append(user_id, build)

        self._notify(
            user_id,
            f"Custom Formula V{formula.version} Created",
            f"You've built a custom formula with {total}mg of ingredients. "
            f"Consider having AI review it for optimization.",
            formula.id,
            priority="medium"
        )
        return formula

    def revert(self, user_id: str, target_formula_id: str, reason: str) -> Formula:
        """
        Start a new version that copies an earlier one.

        The target is re-checked against the current ceiling: versions stored
        before the limit existed cannot be brought back.
        """
        target = self.ledger.load_owned(target_formula_id, user_id)

        if target.total_mg > MAX_TOTAL_DOSAGE:
            raise LegacyDosageExceeded(target.total_mg, MAX_TOTAL_DOSAGE, target.version)

        target_version = target.version
        bases = copy.deepcopy(target.bases or [])
        additions = copy.deepcopy(target.additions or [])
        base_total = target.base_total_mg
        overlay = [(c.kind, c.ingredient, c.amount_mg, c.unit) for c in target.customizations]

        log_change = changelog.should_log("revert", reason)

        def build(version: int) -> Formula:
            formula = Formula(
                user_id=user_id,
                version=version,
                bases=copy.deepcopy(bases),
                additions=copy.deepcopy(additions),
                base_total_mg=base_total,
                notes=f"Reverted to v{target_version}: {reason}",
            )
            for kind, ingredient, amount_mg, unit in overlay:
                formula.customizations.append(FormulaCustomization(
                    kind=kind, ingredient=ingredient, amount_mg=amount_mg, unit=unit
                ))
            if log_change:
                summary = changelog.summarize_revert(target, self.ledger.current(user_id))
                formula.version_changes.append(changelog.entry(summary, reason or summary))
            return formula

        formula = self.ledger.append(user_id, build)

        self._notify(
            user_id,
            f"Formula Reverted to V{target_version}",
            f"Your formula has been reverted. Reason: {reason}",
            formula.id
        )
        return formula

    # --- In-place changes ---

    def customize(
        self,
        formula_id: str,
        user_id: str,
        added_bases: List[Dict],
        added_individuals: List[Dict]
    ) -> Formula:
        """
        Append ingredients to a version without allocating a new one.

        Added ingredients are dosed at their catalog dose. The row is locked
        while the new total is checked so concurrent customizations cannot
        jointly pass the ceiling.
        """
        added_bases = added_bases or []
        added_individuals = added_individuals or []

        try:
            formula = self.ledger.load_owned(formula_id, user_id, for_update=True)
            for item in added_bases + added_individuals:
                if not self.catalog.is_valid_ingredient(item.get("ingredient")):
                    raise InvalidIngredient(item.get("ingredient"))

            base_result = resolve_and_sum(added_bases, self.catalog)
            individual_result = resolve_and_sum(added_individuals, self.catalog)
            incremental = base_result.total_mg + individual_result.total_mg
            current_total = formula.total_mg
            new_total = current_total + incremental

            if new_total > MAX_TOTAL_DOSAGE:
                raise DosageExceedsLimit(
                    new_total,
                    MAX_TOTAL_DOSAGE,
                    message=(
                        f"Adding these ingredients would exceed the maximum safe dosage of "
                        f"{MAX_TOTAL_DOSAGE}mg. Current formula: {current_total}mg, "
                        f"Adding: {incremental}mg, New total would be: {new_total}mg. "
                        f"Please remove some ingredients first or add fewer ingredients."
                    )
                )
        except FormulaError:
            self.db.rollback()
            raise

        items = [
            FormulaCustomization(kind="base", ingredient=i["ingredient"], amount_mg=i["amount"], unit="mg")
            for i in base_result.resolved
        ] + [
            FormulaCustomization(kind="individual", ingredient=i["ingredient"], amount_mg=i["amount"], unit="mg")
            for i in individual_result.resolved
        ]
        formula = self.ledger.add_customizations(formula, items)
        logger.info(
            f"Customized formula v{formula.version} for user {user_id}: "
            f"+{incremental}mg ({len(items)} ingredients)"
        )
        return formula

    def rename(self, formula_id: str, user_id: str, new_name: str) -> Formula:
        formula = self.ledger.load_owned(formula_id, user_id)
        if not isinstance(new_name, str) or not new_name.strip():
            raise InvalidName()
        clean_name = _clean_name(new_name)
        formula = self.ledger.set_name(formula, clean_name)
        logger.info(f"Renamed formula v{formula.version} for user {user_id}")
        return formula

    def archive(self, formula_id: str, user_id: str) -> Formula:
        formula = self.ledger.load_owned(formula_id, user_id)
        if formula.is_archived:
            raise AlreadyArchived()

        formula = self.ledger.set_archived(formula, True)
        logger.info(f"Archived formula v{formula.version} for user {user_id}")

        label = f'"{formula.name}"' if formula.name else f"(version {formula.version})"
        self._notify(
            user_id,
            f"Formula V{formula.version} Archived",
            f"Your formula {label} has been archived. You can restore it anytime "
            f"from the archived formulas section.",
            formula.id,
            icon="archive"
        )
        return formula

    def restore(self, formula_id: str, user_id: str) -> Formula:
        formula = self.ledger.load_owned(formula_id, user_id)
        if not formula.is_archived:
            raise NotArchived()

        formula = self.ledger.set_archived(formula, False)
        logger.info(f"Restored formula v{formula.version} for user {user_id}")

        label = f'"{formula.name}"' if formula.name else f"(version {formula.version})"
        self._notify(
            user_id,
            f"Formula V{formula.version} Restored",
            f"Your formula {label} has been restored and is now active again.",
            formula.id,
            icon="refresh"
        )
        return formula

    # --- Reads ---

    def compare(self, user_id: str, formula_id_a: str, formula_id_b: str) -> Tuple[Formula, Formula, FormulaDiff]:
        a = self.ledger.load_owned(formula_id_a, user_id)
        b = self.ledger.load_owned(formula_id_b, user_id)
        return a, b, diff_formulas(a, b)

    def get_current_formula(self, user_id: str) -> Formula:
        """Highest non-archived version."""
        formula = self.ledger.current(user_id)
        if formula is None:
            raise NotFound("Formula")
        return formula

    def get_history(self, user_id: str, include_archived: bool = True) -> List[Formula]:
        return self.ledger.history(user_id, include_archived=include_archived)

    def get_version(self, user_id: str, formula_id: str) -> Formula:
        return self.ledger.load_owned(formula_id, user_id)

    def list_archived(self, user_id: str) -> List[Formula]:
        return self.ledger.archived(user_id)

    def get_shared_formula(self, formula_id: str) -> Dict:
        """Public projection of a formula for share links."""
        formula = self.ledger.get(formula_id)
        if formula is None:
            raise NotFound("Formula")

        owner = self.db.query(User).filter(User.id == formula.user_id).first()
        return {
            "formula": {
                "id": formula.id,
                "version": formula.version,
                "name": formula.name,
                "created_at": formula.created_at.isoformat() if formula.created_at else None,
                "total_mg": formula.total_mg,
                "bases": formula.bases or [],
                "additions": formula.additions or [],
                "user_customizations": formula.user_customizations,
                "warnings": formula.warnings or [],
                "user_created": formula.user_created,
            },
            "user": {
                "name": owner.first_name if owner else "Formula User",
            }
        }
