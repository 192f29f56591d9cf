from bloodwork.services.consolidation import consolidate, passes_plausibility, score_row
from bloodwork.services.layout_parsers import make_row


def test_plausibility_rejects_short_names():
    assert not passes_plausibility(make_row("Ab", "14.2", "g/dL"))
    assert not passes_plausibility(make_row("R2", "14.2"))


def test_plausibility_rejects_test_name_in_unit_slot():
    assert not passes_plausibility(make_row("Hemoglobin", "14.2", "MCV"))
    assert not passes_plausibility(make_row("Hemoglobin", "14.2", "NEU %"))


def test_plausibility_checks_expected_units():
    assert passes_plausibility(make_row("Hemoglobin", "14.2", "g/dL"))
    assert not passes_plausibility(make_row("Hemoglobin", "14.2", "fL"))
    assert passes_plausibility(make_row("Platelet Count", "250", "x10^3/uL"))
    assert not passes_plausibility(make_row("Platelet Count", "250", "%"))


def test_unknown_test_has_no_unit_constraint():
    assert passes_plausibility(make_row("Serum Ferritin", "80", "ng/mL"))
    assert passes_plausibility(make_row("Serum Ferritin", "80", "U/L"))


def test_score_weights():
    full = make_row("Hemoglobin", "14.2", "g/dL", "12-17", "Normal")
    bare = make_row("Hemoglobin", "14.2")
    assert score_row(full) == 8
    assert score_row(bare) == 3


def test_consolidate_keeps_best_row_per_test():
    rows = [
        make_row("Hemoglobin", "14.2"),
        make_row("Hb", "14.2", "g/dL", "12-17"),
        make_row("Glucose", "126", "mg/dL"),
        make_row("Glucose", "126", "mg/dL"),
    ]
    out = consolidate(rows)
    assert [r["test"] for r in out] == ["Hemoglobin", "Glucose"]
    assert out[0]["unit"] == "g/dL"
    assert out[0]["reference_range"] == "12-17"


def test_consolidate_tie_keeps_first():
    first = make_row("Glucose", "126", "mg/dL")
    second = make_row("Glucose", "99", "mg/dL")
    assert consolidate([first, second]) == [first]
