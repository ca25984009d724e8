import pytest

from app.config import Settings
from app.engine import changelog
from app.engine.dosage import DOSAGE_TOLERANCE, MAX_TOTAL_DOSAGE
from app.engine.errors import (
    AlreadyArchived, DosageExceedsLimit, DosageTooLow, EmptyFormula, InvalidIngredient,
    InvalidName, InvalidUnit, LegacyDosageExceeded, NotArchived, NotFound, NotFoundOrDenied,
    UnresolvedIngredient, VersionConflict
)
from app.engine.formulas import CUSTOM_FORMULA_DISCLAIMERS, FormulaEngine
from app.models import Formula, FormulaVersionChange, Notification
from app.tests.conftest import FailingNotifier, TEST_CATALOG


def _custom(engine, user, *names, individuals=(), name=None):
    return engine.create_custom(
        user.id,
        bases=[{"ingredient": n} for n in names],
        individuals=[{"ingredient": n} for n in individuals],
        name=name,
    )


def _legacy_formula(db, user, version, total_mg):
    formula = Formula(
        user_id=user.id,
        version=version,
        bases=[{"ingredient": "Big Base", "amount": total_mg, "unit": "mg"}],
        additions=[],
        base_total_mg=total_mg,
    )
    db.add(formula)
    db.commit()
    db.refresh(formula)
    return formula


# --- create_custom ---

def test_create_custom_single_base(formula_engine, user, notifier):
    formula = _custom(formula_engine, user, "Ingredient X", name="  Morning  ")

    assert formula.total_mg == 400
    assert formula.version == 1
    assert formula.user_created is True
    assert formula.name == "Morning"
    assert formula.disclaimers == CUSTOM_FORMULA_DISCLAIMERS
    assert notifier.events[0]["title"] == "Custom Formula V1 Created"


def test_create_custom_over_limit(formula_engine, user, db):
    with pytest.raises(DosageExceedsLimit) as exc:
        _custom(formula_engine, user, "Big Base", "Big Base")

    assert "6000" in exc.value.message
    assert "5500" in exc.value.message
    assert db.query(Formula).count() == 0


def test_create_custom_validation_order(formula_engine, user):
    with pytest.raises(EmptyFormula):
        _custom(formula_engine, user)
    with pytest.raises(InvalidIngredient):
        _custom(formula_engine, user, "Big Base", "Big Base", "Unknown")
    with pytest.raises(DosageTooLow):
        _custom(formula_engine, user, individuals=["Small Herb"])


def test_create_custom_does_not_log_change(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    assert formula.version_changes == []


# --- create_from_consultation ---

def test_consultation_keeps_amounts(formula_engine, user, notifier):
    formula = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Big Base", "amount": 2000}],
        additions=[{"ingredient": "Mid Herb", "amount": 250, "purpose": "sleep"}],
        notes="From consultation",
        warnings=["Take with food"],
    )

    assert formula.total_mg == 2250
    assert formula.user_created is False
    assert formula.additions[0]["purpose"] == "sleep"
    assert formula.warnings == ["Take with food"]
    assert formula.version_changes == []
    assert notifier.events[0]["title"] == "Formula V1 Ready"


def test_consultation_rejects_unresolved(formula_engine, user, db):
    with pytest.raises(UnresolvedIngredient) as exc:
        formula_engine.create_from_consultation(
            user.id,
            bases=[{"ingredient": "Big Base"}],
            additions=[{"ingredient": "Mystery"}, {"ingredient": "Other"}],
        )
    assert exc.value.ingredients == ["Mystery", "Other"]
    assert db.query(Formula).count() == 0


def test_consultation_allows_tolerance_only(formula_engine, user):
    ok = formula_engine.create_from_consultation(
        user.id, bases=[{"ingredient": "Big Base", "amount": MAX_TOTAL_DOSAGE + DOSAGE_TOLERANCE}], additions=[]
    )
    assert ok.total_mg == MAX_TOTAL_DOSAGE + DOSAGE_TOLERANCE

    with pytest.raises(DosageExceedsLimit):
        formula_engine.create_from_consultation(
            user.id, bases=[{"ingredient": "Big Base", "amount": MAX_TOTAL_DOSAGE + DOSAGE_TOLERANCE + 1}], additions=[]
        )


def test_consultation_logs_with_explicit_rationale(formula_engine, user):
    _custom(formula_engine, user, "Ingredient X")
    formula = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Ingredient X"}, {"ingredient": "Big Base"}],
        additions=[],
        change_rationale="Added adrenal support after new labs",
    )

    assert len(formula.version_changes) == 1
    change = formula.version_changes[0]
    assert change.rationale == "Added adrenal support after new labs"
    assert "bases +1" in change.summary
    assert "+3000mg vs v1" in change.summary


def test_uniform_logging_setting(formula_engine, user, monkeypatch):
    monkeypatch.setattr(changelog, "get_settings", lambda: Settings(log_all_version_changes=True))

    formula = _custom(formula_engine, user, "Ingredient X")

    assert len(formula.version_changes) == 1
    assert formula.version_changes[0].summary.startswith("Initial formula")


# --- versions ---

def test_history_versions_strictly_increase(formula_engine, user):
    first = _custom(formula_engine, user, "Ingredient X")
    _custom(formula_engine, user, "Big Base")
    formula_engine.revert(user.id, first.id, "Back to basics")
    formula_engine.archive(first.id, user.id)

    versions = [f.version for f in formula_engine.get_history(user.id)]
    assert versions == [1, 2, 3]


def test_versions_are_per_user(formula_engine, user, other_user):
    _custom(formula_engine, user, "Ingredient X")
    _custom(formula_engine, user, "Ingredient X")
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    assert theirs.version == 1


def test_version_collision_is_retried(formula_engine, user, monkeypatch):
    _custom(formula_engine, user, "Ingredient X")
    real = formula_engine.ledger.current_max_version
    calls = []

    def stale_then_real(user_id):
        calls.append(user_id)
        return 0 if len(calls) == 1 else real(user_id)

    monkeypatch.setattr(formula_engine.ledger, "current_max_version", stale_then_real)
    formula = _custom(formula_engine, user, "Big Base")

    assert formula.version == 2
    assert len(calls) == 2


def test_version_conflict_after_retries(formula_engine, user, monkeypatch, db):
    _custom(formula_engine, user, "Ingredient X")
    monkeypatch.setattr(formula_engine.ledger, "current_max_version", lambda user_id: 0)

    with pytest.raises(VersionConflict):
        _custom(formula_engine, user, "Big Base")
    assert db.query(Formula).filter(Formula.user_id == user.id).count() == 1


# --- customize ---

def test_customize_overlay_without_new_version(formula_engine, user, db):
    formula = _custom(formula_engine, user, "Ingredient X")

    updated = formula_engine.customize(
        formula.id, user.id,
        added_bases=[{"ingredient": "Mid Herb", "amount": 9999}],
        added_individuals=[{"ingredient": "Small Herb"}],
    )

    assert updated.version == 1
    assert updated.base_total_mg == 400
    assert updated.total_mg == 950
    assert updated.user_customizations == {
        "added_bases": [{"ingredient": "Mid Herb", "amount": 500, "unit": "mg"}],
        "added_individuals": [{"ingredient": "Small Herb", "amount": 50, "unit": "mg"}],
    }
    assert db.query(Formula).count() == 1


def test_customize_rejected_over_limit(formula_engine, user, db):
    _custom(formula_engine, user, "Ingredient X")
    _custom(formula_engine, user, "Ingredient X")
    v3 = _custom(formula_engine, user, "Heavy Base")
    assert v3.total_mg == 4950

    with pytest.raises(DosageExceedsLimit) as exc:
        formula_engine.customize(v3.id, user.id, [], [{"ingredient": "Add 700"}])

    assert "5650" in exc.value.message
    db.expire_all()
    assert formula_engine.get_version(user.id, v3.id).total_mg == 4950


def test_customize_has_no_tolerance(formula_engine, user):
    formula = _custom(formula_engine, user, "Heavy Base")
    formula = formula_engine.customize(formula.id, user.id, [], [{"ingredient": "Small Herb"}])
    assert formula.total_mg == 5000

    with pytest.raises(DosageExceedsLimit):
        formula_engine.customize(formula.id, user.id, [], [{"ingredient": "Add 550"}])


def test_customize_rejects_unknown_ingredient(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    with pytest.raises(InvalidIngredient):
        formula_engine.customize(formula.id, user.id, [{"ingredient": "Nope"}], [])


# --- revert ---

def test_revert_clones_target(formula_engine, user, notifier):
    v1 = _custom(formula_engine, user, "Big Base", individuals=["Mid Herb", "Mid Herb", "Mid Herb"])
    assert v1.total_mg == 4500
    _custom(formula_engine, user, "Ingredient X")
    _custom(formula_engine, user, "Heavy Base")

    v4 = formula_engine.revert(user.id, v1.id, "Felt better on v1")

    assert v4.version == 4
    assert v4.total_mg == 4500
    assert v4.bases == v1.bases
    assert v4.additions == v1.additions
    assert "Reverted to v1" in v4.notes
    assert len(v4.version_changes) == 1
    assert v4.version_changes[0].summary.startswith("Reverted to version 1")
    assert v4.version_changes[0].rationale == "Felt better on v1"
    assert notifier.events[-1]["title"] == "Formula Reverted to V1"


def test_revert_carries_customizations(formula_engine, user):
    v1 = _custom(formula_engine, user, "Ingredient X")
    formula_engine.customize(v1.id, user.id, [], [{"ingredient": "Mid Herb"}])

    v2 = formula_engine.revert(user.id, v1.id, "Undo")

    assert v2.total_mg == 900
    assert v2.user_customizations["added_individuals"][0]["ingredient"] == "Mid Herb"


def test_revert_legacy_dosage_fails(formula_engine, user, db):
    legacy = _legacy_formula(db, user, 1, 6000)

    with pytest.raises(LegacyDosageExceeded) as exc:
        formula_engine.revert(user.id, legacy.id, "Old times")

    assert exc.value.version == 1
    assert db.query(Formula).count() == 1


def test_revert_is_ownership_checked(formula_engine, user, other_user):
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    with pytest.raises(NotFoundOrDenied):
        formula_engine.revert(user.id, theirs.id, "mine now")


# --- compare ---

def test_compare_by_ingredient_name(formula_engine, user):
    a = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Ingredient X"}, {"ingredient": "Big Base", "amount": 1000}],
        additions=[{"ingredient": "Mid Herb"}],
    )
    b = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Big Base", "amount": 1500}, {"ingredient": "Heavy Base", "amount": 100}],
        additions=[{"ingredient": "Mid Herb"}],
    )

    _, _, diff = formula_engine.compare(user.id, a.id, b.id)
    result = diff.to_dict()

    assert [i["ingredient"] for i in result["bases_added"]] == ["Heavy Base"]
    assert [i["ingredient"] for i in result["bases_removed"]] == ["Ingredient X"]
    assert result["bases_modified"][0]["previous_amount"] == 1000
    assert result["additions_added"] == result["additions_removed"] == result["additions_modified"] == []
    assert result["total_mg_change"] == b.total_mg - a.total_mg


def test_compare_is_antisymmetric(formula_engine, user):
    a = _custom(formula_engine, user, "Ingredient X")
    b = _custom(formula_engine, user, "Big Base")

    forward = formula_engine.compare(user.id, a.id, b.id)[2]
    backward = formula_engine.compare(user.id, b.id, a.id)[2]
    assert forward.total_mg_change == -backward.total_mg_change == 2600


def test_compare_requires_ownership_of_both(formula_engine, user, other_user):
    mine = _custom(formula_engine, user, "Ingredient X")
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    with pytest.raises(NotFoundOrDenied):
        formula_engine.compare(user.id, mine.id, theirs.id)


# --- rename ---

def test_rename_blank_fails(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    with pytest.raises(InvalidName):
        formula_engine.rename(formula.id, user.id, "   ")


def test_rename_trims_and_limits(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    assert formula_engine.rename(formula.id, user.id, "  Evening Stack ").name == "Evening Stack"
    with pytest.raises(InvalidName):
        formula_engine.rename(formula.id, user.id, "x" * 101)


def test_rename_other_users_formula_denied(formula_engine, user, other_user):
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    with pytest.raises(NotFoundOrDenied):
        formula_engine.rename(theirs.id, user.id, "   ")


# --- archive / restore / current ---

def test_archive_twice_always_fails(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    formula_engine.archive(formula.id, user.id)
    for _ in range(3):
        with pytest.raises(AlreadyArchived):
            formula_engine.archive(formula.id, user.id)


def test_restore_requires_archived(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X")
    with pytest.raises(NotArchived):
        formula_engine.restore(formula.id, user.id)

    formula_engine.archive(formula.id, user.id)
    restored = formula_engine.restore(formula.id, user.id)
    assert restored.archived_at is None


def test_current_skips_archived(formula_engine, user):
    v1 = _custom(formula_engine, user, "Ingredient X")
    v2 = _custom(formula_engine, user, "Big Base")

    assert formula_engine.get_current_formula(user.id).id == v2.id
    formula_engine.archive(v2.id, user.id)
    assert formula_engine.get_current_formula(user.id).id == v1.id
    assert [f.id for f in formula_engine.list_archived(user.id)] == [v2.id]

    formula_engine.archive(v1.id, user.id)
    with pytest.raises(NotFound):
        formula_engine.get_current_formula(user.id)
    assert len(formula_engine.get_history(user.id)) == 2
    assert formula_engine.get_history(user.id, include_archived=False) == []


def test_current_without_formulas(formula_engine, user):
    with pytest.raises(NotFound):
        formula_engine.get_current_formula(user.id)


def test_get_version_denies_other_users(formula_engine, user, other_user):
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    with pytest.raises(NotFoundOrDenied):
        formula_engine.get_version(user.id, theirs.id)
    with pytest.raises(NotFoundOrDenied):
        formula_engine.archive(theirs.id, user.id)


# --- notifications and sharing ---

def test_notification_failure_does_not_undo_change(db, user):
    engine = FormulaEngine(db, catalog=TEST_CATALOG, notifier=FailingNotifier())

    formula = _custom(engine, user, "Ingredient X")
    engine.archive(formula.id, user.id)

    db.expire_all()
    stored = db.query(Formula).filter(Formula.id == formula.id).first()
    assert stored is not None
    assert stored.archived_at is not None


def test_default_notifier_persists_notifications(db, user):
    engine = FormulaEngine(db, catalog=TEST_CATALOG)
    formula = _custom(engine, user, "Ingredient X")

    notification = db.query(Notification).filter(Notification.user_id == user.id).one()
    assert notification.type == "formula_update"
    assert notification.formula_id == formula.id
    assert notification.extra["action_url"].endswith("/dashboard/formula")


def test_shared_formula_hides_owner(formula_engine, user):
    formula = _custom(formula_engine, user, "Ingredient X", name="Daily")

    shared = formula_engine.get_shared_formula(formula.id)

    assert shared["user"] == {"name": "Jordan"}
    assert "user_id" not in shared["formula"]
    assert shared["formula"]["total_mg"] == 400

    with pytest.raises(NotFound):
        formula_engine.get_shared_formula("missing")


def test_every_returned_formula_within_ceiling(formula_engine, user, db):
    _custom(formula_engine, user, "Heavy Base")
    formula_engine.create_from_consultation(user.id, [{"ingredient": "Big Base", "amount": 5550}], [])
    for formula in formula_engine.get_history(user.id):
        assert formula.total_mg <= MAX_TOTAL_DOSAGE + DOSAGE_TOLERANCE
    assert db.query(FormulaVersionChange).count() == 0


# --- units ---

def test_consultation_converts_grams(formula_engine, user):
    formula = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Big Base", "amount": 2.5, "unit": "g"}],
        additions=[{"ingredient": "Mid Herb", "amount": 250000, "unit": "mcg"}],
    )

    assert formula.total_mg == 2750
    assert formula.bases[0]["amount"] == 2500
    assert formula.bases[0]["unit"] == "mg"
    assert formula.additions[0]["amount"] == 250


def test_consultation_grams_count_against_ceiling(formula_engine, user, db):
    with pytest.raises(DosageExceedsLimit):
        formula_engine.create_from_consultation(
            user.id, bases=[{"ingredient": "Big Base", "amount": 6, "unit": "g"}], additions=[]
        )
    assert db.query(Formula).count() == 0


def test_consultation_rejects_unknown_unit(formula_engine, user, db):
    with pytest.raises(InvalidUnit) as exc:
        formula_engine.create_from_consultation(
            user.id, bases=[{"ingredient": "Big Base", "amount": 1, "unit": "tsp"}], additions=[]
        )
    assert exc.value.status_code == 400
    assert db.query(Formula).count() == 0


def test_custom_stores_catalog_dose_in_mg(formula_engine, user):
    formula = formula_engine.create_custom(
        user.id, bases=[{"ingredient": "Ingredient X", "amount": 1, "unit": "g"}], individuals=[]
    )
    assert formula.bases == [{"ingredient": "Ingredient X", "amount": 400, "unit": "mg"}]


# --- repeated ingredients ---

def test_compare_counts_repeated_ingredients(formula_engine, user):
    a = _custom(formula_engine, user, "Ingredient X", individuals=["Mid Herb", "Mid Herb"])
    b = _custom(formula_engine, user, "Ingredient X", individuals=["Mid Herb"])

    _, _, diff = formula_engine.compare(user.id, a.id, b.id)
    result = diff.to_dict()

    assert result["total_mg_change"] == -500
    assert result["additions_added"] == []
    assert result["additions_removed"] == []
    assert [(i["ingredient"], i["amount"], i["previous_amount"]) for i in result["additions_modified"]] == [
        ("Mid Herb", 500, 1000)
    ]


# --- transaction handling ---

def test_customize_denied_releases_transaction(formula_engine, user, other_user, db, monkeypatch):
    theirs = _custom(formula_engine, other_user, "Ingredient X")
    real_rollback = db.rollback
    rollbacks = []

    def recording_rollback():
        rollbacks.append(True)
        real_rollback()

    monkeypatch.setattr(db, "rollback", recording_rollback)

    with pytest.raises(NotFoundOrDenied):
        formula_engine.customize(theirs.id, user.id, [{"ingredient": "Mid Herb"}], [])

    assert rollbacks
    assert not db.in_transaction()


def test_change_summary_uses_version_it_follows(formula_engine, user, db, monkeypatch):
    _custom(formula_engine, user, "Ingredient X")
    real = formula_engine.ledger.current_max_version
    calls = []

    def stale_then_real(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            # Another writer lands v2 between the read and the insert
            _legacy_formula(db, user, 2, 3000)
            return 1
        return real(user_id)

    monkeypatch.setattr(formula_engine.ledger, "current_max_version", stale_then_real)
    formula = formula_engine.create_from_consultation(
        user.id,
        bases=[{"ingredient": "Big Base"}],
        additions=[{"ingredient": "Mid Herb", "amount": 100}],
        change_rationale="Follow-up consultation",
    )

    assert formula.version == 3
    assert len(formula.version_changes) == 1
    assert "+100mg vs v2" in formula.version_changes[0].summary
