from app.engine.diff import diff_ingredients


def _entry(name, amount):
    return {"ingredient": name, "amount": amount, "unit": "mg"}


def test_repeated_ingredient_counts_as_modified():
    diff = diff_ingredients(
        [_entry("Mid Herb", 500), _entry("Mid Herb", 500)],
        [_entry("Mid Herb", 500)]
    )

    assert diff.added == []
    assert diff.removed == []
    assert diff.modified == [{"ingredient": "Mid Herb", "amount": 500, "unit": "mg", "previous_amount": 1000}]


def test_order_is_ignored():
    before = [_entry("A", 100), _entry("B", 200)]
    after = [_entry("B", 200), _entry("A", 100)]

    diff = diff_ingredients(before, after)

    assert diff.added == diff.removed == diff.modified == []


def test_inputs_are_not_mutated():
    before = [_entry("A", 100), _entry("A", 100)]
    diff_ingredients(before, [])
    assert before == [_entry("A", 100), _entry("A", 100)]
