"""
Dosage Calculator

Resolves ingredient entries against the catalog, sums their doses in whole
milligrams and checks totals against the global safety ceilings.
"""

from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field

from app.engine.catalog import IngredientCatalog
from app.engine.errors import (
    DosageExceedsLimit, DosageTooLow, EmptyFormula, InvalidIngredient, InvalidUnit,
    TooManyIngredients
)


# SECURITY: Immutable formula limits - CANNOT be changed by user requests or AI output
MAX_TOTAL_DOSAGE = 5500     # Maximum total daily dosage in mg
DOSAGE_TOLERANCE = 50       # Absorbs rounding from catalog lookups
MIN_TOTAL_DOSAGE = 100      # Minimum total for user-built formulas
MAX_INGREDIENT_COUNT = 50   # Maximum bases + additions in a from-scratch formula

# Multipliers to milligrams; every stored amount is in mg
UNIT_TO_MG = {
    "mg": 1,
    "g": 1000,
    "mcg": 0.001,
    "ug": 0.001,
    "µg": 0.001,
}


@dataclass
class DosageResult:
    total_mg: int
    unresolved: List[str] = field(default_factory=list)
    resolved: List[Dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unresolved


def resolve_and_sum(
    entries: Iterable[Dict],
    catalog: IngredientCatalog,
    use_amounts: bool = False
) -> DosageResult:
    """
    Sum catalog doses for a set of {ingredient, amount?, unit?} entries.

    Unknown ingredients are reported in `unresolved` and excluded from the
    sum; callers must treat a non-empty list as a validation failure.
    Resolved entries are always stored in whole milligrams.

    Args:
        entries: ingredient entries (dicts with at least "ingredient")
        catalog: the catalog resolver
        use_amounts: take a positive explicit "amount" (converted from its
            unit) instead of the canonical dose; AI-composed formulas carry
            their own amounts

    Raises:
        InvalidUnit: an explicit amount is given in a unit we cannot convert
    """
    total = 0
    unresolved = []
    resolved = []

    for entry in entries or []:
        name = entry.get("ingredient")
        dose = catalog.get_dose(name)
        if dose is None:
            unresolved.append(name if isinstance(name, str) else str(name))
            continue

        amount = dose
        if use_amounts:
            explicit = to_mg(entry.get("amount"), entry.get("unit"), name)
            if explicit is not None and explicit > 0:
                amount = explicit

        total += amount
        resolved.append({
            "ingredient": name,
            "amount": amount,
            "unit": "mg",
            **({"purpose": entry["purpose"]} if entry.get("purpose") else {}),
        })

    return DosageResult(total_mg=total, unresolved=unresolved, resolved=resolved)


def to_mg(value, unit: Optional[str], ingredient: str = None) -> Optional[int]:
    """Convert an amount in mg, g or mcg to whole milligrams."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None

    if unit is None or unit == "":
        key = "mg"
    elif isinstance(unit, str):
        key = unit.strip().lower()
    else:
        key = None
    if key not in UNIT_TO_MG:
        raise InvalidUnit(unit, ingredient)
    return int(round(amount * UNIT_TO_MG[key]))


def within_ceiling(total_mg: int) -> bool:
    """Stored-row invariant: total never above the ceiling plus tolerance."""
    return total_mg <= MAX_TOTAL_DOSAGE + DOSAGE_TOLERANCE


def validate_new_formula(
    bases: List[Dict],
    individuals: List[Dict],
    catalog: IngredientCatalog
) -> Tuple[int, List[Dict], List[Dict]]:
    """
    Validate a from-scratch formula. Checks run in order and stop at the
    first failure: empty, unknown ingredient, ingredient count, ceiling,
    floor.

    Returns:
        (total_mg, resolved_bases, resolved_individuals)
    """
    bases = bases or []
    individuals = individuals or []

    if not bases and not individuals:
        raise EmptyFormula()

    for item in bases + individuals:
        if not catalog.is_valid_ingredient(item.get("ingredient")):
            raise InvalidIngredient(item.get("ingredient"))

    count = len(bases) + len(individuals)
    if count > MAX_INGREDIENT_COUNT:
        raise TooManyIngredients(count, MAX_INGREDIENT_COUNT)

    base_result = resolve_and_sum(bases, catalog)
    individual_result = resolve_and_sum(individuals, catalog)
    total = base_result.total_mg + individual_result.total_mg

    if total > MAX_TOTAL_DOSAGE:
        raise DosageExceedsLimit(total, MAX_TOTAL_DOSAGE)

    if total < MIN_TOTAL_DOSAGE:
        raise DosageTooLow(total, MIN_TOTAL_DOSAGE)

    return total, base_result.resolved, individual_result.resolved
