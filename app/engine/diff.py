"""Structural comparison of two formula versions."""

from typing import Dict, List
from dataclasses import dataclass, field

from app.models import Formula


@dataclass
class IngredientDiff:
    added: List[Dict] = field(default_factory=list)
    removed: List[Dict] = field(default_factory=list)
    modified: List[Dict] = field(default_factory=list)


@dataclass
class FormulaDiff:
    total_mg_change: int
    bases: IngredientDiff
    additions: IngredientDiff

    def to_dict(self) -> dict:
        return {
            "total_mg_change": self.total_mg_change,
            "bases_added": self.bases.added,
            "bases_removed": self.bases.removed,
            "bases_modified": self.bases.modified,
            "additions_added": self.additions.added,
            "additions_removed": self.additions.removed,
            "additions_modified": self.additions.modified,
        }


def _by_name(items: List[Dict]) -> Dict[str, Dict]:
    """Fold repeated entries of one ingredient into a single entry with the summed amount."""
    merged = {}
    for item in items or []:
        name = item.get("ingredient")
        if name in merged:
            merged[name]["amount"] = (merged[name].get("amount") or 0) + (item.get("amount") or 0)
        else:
            merged[name] = dict(item)
    return merged


def diff_ingredients(before: List[Dict], after: List[Dict]) -> IngredientDiff:
    """Diff two ingredient lists by ingredient name; position is ignored."""
    before_by_name = _by_name(before)
    after_by_name = _by_name(after)

    result = IngredientDiff()
    for name, item in after_by_name.items():
        old = before_by_name.get(name)
        if old is None:
            result.added.append(item)
        elif old.get("amount") != item.get("amount"):
            result.modified.append({**item, "previous_amount": old.get("amount")})

    for name, item in before_by_name.items():
        if name not in after_by_name:
            result.removed.append(item)

    return result


def diff_formulas(a: Formula, b: Formula) -> FormulaDiff:
    """What changed going from version A to version B."""
    return FormulaDiff(
        total_mg_change=b.total_mg - a.total_mg,
        bases=diff_ingredients(a.bases, b.bases),
        additions=diff_ingredients(a.additions, b.additions),
    )
