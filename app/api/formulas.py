"""
Formulas API - versioned formula history, customization, revert and review schedules.
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, validator
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_formula_engine
from app.db import get_db
from app.engine import review
from app.engine.formulas import FormulaEngine
from app.models import Formula, User

router = APIRouter()


# Pydantic Models
class IngredientEntry(BaseModel):
    ingredient: str
    amount: Optional[float] = None
    unit: Optional[str] = "mg"
    purpose: Optional[str] = None


class ConsultationCreate(BaseModel):
    bases: List[IngredientEntry] = []
    additions: List[IngredientEntry] = []
    notes: Optional[str] = None
    rationale: Optional[str] = None
    warnings: List[str] = []
    disclaimers: List[str] = []
    change_rationale: Optional[str] = None


class CustomFormulaCreate(BaseModel):
    name: Optional[str] = None
    bases: List[IngredientEntry] = []
    individuals: List[IngredientEntry] = []


class CustomizeRequest(BaseModel):
    added_bases: List[IngredientEntry] = []
    added_individuals: List[IngredientEntry] = []


class RevertRequest(BaseModel):
    formula_id: str
    reason: str

    @validator("reason")
    def validate_reason(cls, v):
        if not v or not v.strip():
            raise ValueError("A reason is required to revert")
        return v.strip()


class RenameRequest(BaseModel):
    name: str


class ReviewScheduleRequest(BaseModel):
    frequency: str
    days_before: int = 3
    email_reminders: Optional[bool] = None
    sms_reminders: Optional[bool] = None
    calendar_integration: Optional[str] = None


# Helper functions
def _entries(items: List[IngredientEntry]) -> List[Dict]:
    return [item.model_dump(exclude_none=True) for item in items]


def _formula_response(formula: Formula, include_changes: bool = False) -> Dict:
    data = formula.to_dict()
    changes = formula.version_changes
    data["latest_change"] = changes[0].to_dict() if changes else None
    if include_changes:
        data["version_changes"] = [c.to_dict() for c in changes]
    return data


def _history_entry(formula: Formula) -> Dict:
    changes = formula.version_changes
    return {
        "id": formula.id,
        "version": formula.version,
        "name": formula.name,
        "total_mg": formula.total_mg,
        "ingredient_count": formula.ingredient_count,
        "user_created": formula.user_created,
        "notes": formula.notes,
        "archived_at": formula.archived_at.isoformat() if formula.archived_at else None,
        "created_at": formula.created_at.isoformat() if formula.created_at else None,
        "latest_change": changes[0].to_dict() if changes else None,
    }


# Endpoints
@router.get("/shared/{formula_id}")
def get_shared_formula(formula_id: str, engine: FormulaEngine = Depends(get_formula_engine)):
    """Public read-only view for share links."""
    return engine.get_shared_formula(formula_id)


@router.get("/current")
def get_current_formula(
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    """Latest non-archived version."""
    return _formula_response(engine.get_current_formula(user.id))


@router.get("/history")
def get_history(
    include_archived: bool = Query(True),
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formulas = engine.get_history(user.id, include_archived=include_archived)
    return {
        "formulas": [_history_entry(f) for f in formulas],
        "count": len(formulas)
    }


@router.get("/archived")
def list_archived(
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formulas = engine.list_archived(user.id)
    return {
        "formulas": [_history_entry(f) for f in formulas],
        "count": len(formulas)
    }


@router.get("/versions/{formula_id}")
def get_version(
    formula_id: str,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    return _formula_response(engine.get_version(user.id, formula_id), include_changes=True)


@router.get("/compare/{formula_id_a}/{formula_id_b}")
def compare_formulas(
    formula_id_a: str,
    formula_id_b: str,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    """Structural diff between two versions (B relative to A)."""
    a, b, diff = engine.compare(user.id, formula_id_a, formula_id_b)
    return {
        "formula_a": {"id": a.id, "version": a.version, "total_mg": a.total_mg},
        "formula_b": {"id": b.id, "version": b.version, "total_mg": b.total_mg},
        "differences": diff.to_dict()
    }


@router.post("/consultation", status_code=201)
def create_from_consultation(
    request: ConsultationCreate,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    """Store a formula composed during an AI consultation."""
    formula = engine.create_from_consultation(
        user.id,
        bases=_entries(request.bases),
        additions=_entries(request.additions),
        notes=request.notes,
        rationale=request.rationale,
        warnings=request.warnings,
        disclaimers=request.disclaimers,
        change_rationale=request.change_rationale,
    )
    return _formula_response(formula)


@router.post("/custom", status_code=201)
def create_custom_formula(
    request: CustomFormulaCreate,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    """Build a formula from scratch out of catalog ingredients."""
    formula = engine.create_custom(
        user.id,
        bases=_entries(request.bases),
        individuals=_entries(request.individuals),
        name=request.name,
    )
    return _formula_response(formula)


@router.post("/revert", status_code=201)
def revert_formula(
    request: RevertRequest,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formula = engine.revert(user.id, request.formula_id, request.reason)
    return _formula_response(formula)


@router.patch("/{formula_id}/customize")
def customize_formula(
    formula_id: str,
    request: CustomizeRequest,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    """Add ingredients to an existing version at their catalog dose."""
    formula = engine.customize(
        formula_id,
        user.id,
        added_bases=_entries(request.added_bases),
        added_individuals=_entries(request.added_individuals),
    )
    return _formula_response(formula)


@router.patch("/{formula_id}/rename")
def rename_formula(
    formula_id: str,
    request: RenameRequest,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formula = engine.rename(formula_id, user.id, request.name)
    return {"id": formula.id, "version": formula.version, "name": formula.name}


@router.post("/{formula_id}/archive")
def archive_formula(
    formula_id: str,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formula = engine.archive(formula_id, user.id)
    return {
        "id": formula.id,
        "version": formula.version,
        "archived_at": formula.archived_at.isoformat()
    }


@router.post("/{formula_id}/restore")
def restore_formula(
    formula_id: str,
    user: User = Depends(get_current_user),
    engine: FormulaEngine = Depends(get_formula_engine)
):
    formula = engine.restore(formula_id, user.id)
    return {"id": formula.id, "version": formula.version, "archived_at": None}


# --- Review schedules ---

@router.get("/{formula_id}/review-schedule")
def get_review_schedule(
    formula_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    schedule = review.get_review_schedule(db, user.id, formula_id)
    return {"schedule": schedule.to_dict() if schedule else None}


@router.put("/{formula_id}/review-schedule")
def save_review_schedule(
    formula_id: str,
    request: ReviewScheduleRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    schedule = review.save_review_schedule(
        db,
        user.id,
        formula_id,
        frequency=request.frequency,
        days_before=request.days_before,
        email_reminders=request.email_reminders,
        sms_reminders=request.sms_reminders,
        calendar_integration=request.calendar_integration,
    )
    return {"schedule": schedule.to_dict()}


@router.delete("/{formula_id}/review-schedule")
def delete_review_schedule(
    formula_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    review.delete_review_schedule(db, user.id, formula_id)
    return {"message": "Review schedule deleted"}


@router.get("/{formula_id}/review-schedule/calendar")
def download_review_calendar(
    formula_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """iCalendar file for the formula's recurring review."""
    content, filename = review.generate_calendar_file(db, user.id, formula_id)
    return Response(
        content=content,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
