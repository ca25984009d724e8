"""
Formula engine error taxonomy.

Every error carries a stable `code`, a human-readable message and the HTTP
status the API layer answers with.
"""

from typing import List


class FormulaError(Exception):
    code = "formula_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidIngredient(FormulaError):
    code = "invalid_ingredient"

    def __init__(self, name: str):
        self.ingredient = name
        super().__init__(f"Invalid ingredient: {name}. Only catalog ingredients are allowed.")


class UnresolvedIngredient(InvalidIngredient):
    code = "unresolved_ingredient"

    def __init__(self, names: List[str]):
        self.ingredients = list(names)
        FormulaError.__init__(
            self,
            f"Unrecognized ingredients: {', '.join(names)}. Only catalog ingredients are allowed."
        )
        self.ingredient = names[0] if names else None


class EmptyFormula(FormulaError):
    code = "empty_formula"

    def __init__(self):
        super().__init__("At least one ingredient is required to create a formula")


class TooManyIngredients(FormulaError):
    code = "too_many_ingredients"

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Formula has {count} ingredients; the maximum is {limit}.")


class DosageExceedsLimit(FormulaError):
    code = "dosage_exceeds_limit"

    def __init__(self, total_mg: int, limit: int, message: str = None):
        self.total_mg = total_mg
        self.limit = limit
        super().__init__(
            message
            or f"Total dosage of {total_mg}mg exceeds the maximum safe limit of {limit}mg. "
               f"Please remove some ingredients."
        )


class DosageTooLow(FormulaError):
    code = "dosage_too_low"

    def __init__(self, total_mg: int, minimum: int):
        self.total_mg = total_mg
        self.minimum = minimum
        super().__init__(
            f"Total dosage of {total_mg}mg is too low. "
            f"Please add more ingredients (minimum {minimum}mg recommended)."
        )


class LegacyDosageExceeded(FormulaError):
    code = "legacy_dosage_exceeded"
    status_code = 409

    def __init__(self, total_mg: int, limit: int, version: int):
        self.total_mg = total_mg
        self.limit = limit
        self.version = version
        super().__init__(
            f"Cannot revert to version {version} as it exceeds the maximum safe dosage of "
            f"{limit}mg (this version has {total_mg}mg). This formula was created before "
            f"dosage limits were enforced. Please create a new formula instead."
        )


class NotFoundOrDenied(FormulaError):
    code = "not_found_or_denied"
    status_code = 404

    def __init__(self):
        super().__init__("Formula not found or access denied")


class NotFound(FormulaError):
    code = "not_found"
    status_code = 404

    def __init__(self, what: str = "Formula"):
        super().__init__(f"{what} not found")


class AlreadyArchived(FormulaError):
    code = "already_archived"
    status_code = 409

    def __init__(self):
        super().__init__("Formula is already archived")


class NotArchived(FormulaError):
    code = "not_archived"
    status_code = 409

    def __init__(self):
        super().__init__("Formula is not archived")


class InvalidName(FormulaError):
    code = "invalid_name"

    def __init__(self, message: str = "Valid name is required"):
        super().__init__(message)


class InvalidUnit(FormulaError):
    code = "invalid_unit"

    def __init__(self, unit, ingredient: str):
        self.unit = unit
        self.ingredient = ingredient
        super().__init__(f"Unsupported unit '{unit}' for {ingredient}. Use mg, g or mcg.")


class InvalidReviewSchedule(FormulaError):
    code = "invalid_review_schedule"


class VersionConflict(FormulaError):
    code = "version_conflict"
    status_code = 409

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Could not allocate a new formula version, please retry")
