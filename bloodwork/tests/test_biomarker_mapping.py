from bloodwork.services.biomarker_mapping import (
    canonicalize_test_name,
    infer_core_key,
    resolve_core_biomarkers,
)


def test_canonicalize_exact_and_affix_aliases():
    assert canonicalize_test_name("Hemoglobin") == "Hemoglobin"
    assert canonicalize_test_name("HGB") == "Hemoglobin"
    assert canonicalize_test_name("Hemoglobin (Hb)") == "Hemoglobin"
    assert canonicalize_test_name("Haematocrit") == "PCV"
    assert canonicalize_test_name("Platelet Count") == "Platelet Count"


def test_canonicalize_prefers_longest_alias():
    assert canonicalize_test_name("MCHC") == "Mean Corpuscular Hemoglobin Concentration (MCHC)"
    assert canonicalize_test_name("MCH") == "Mean Corpuscular Hemoglobin (MCH)"
    assert canonicalize_test_name("HbA1c") == "HbA1c"


def test_short_alias_does_not_match_inside_other_words():
    # "hb" is only allowed as an exact match
    assert canonicalize_test_name("HBsAg") == "HBsAg"


def test_unknown_name_passes_through_cleaned():
    assert canonicalize_test_name("  Serum   Ferritin: ") == "Serum Ferritin"


def test_infer_core_key_longest_alias_wins():
    assert infer_core_key("HDL Cholesterol") == "hdl"
    assert infer_core_key("LDL Cholesterol") == "ldl"
    assert infer_core_key("Total Cholesterol") == "totalChol"
    assert infer_core_key("Fasting Blood Glucose") == "glucose"
    assert infer_core_key("HbA1c") == "a1c"
    assert infer_core_key("Triglycerides") == "triglycerides"


def test_infer_core_key_suppression():
    assert infer_core_key("VLDL Cholesterol") is None
    assert infer_core_key("Non HDL Cholesterol") is None
    assert infer_core_key("Hemoglobin") is None


def test_resolve_core_biomarkers_keeps_existing_values():
    merged = resolve_core_biomarkers(
        {"ldl": 100.0},
        [
            {"name": "LDL Cholesterol", "value": 140},
            {"name": "HDL Cholesterol", "value": 55},
            {"name": "Hemoglobin", "value": 14.2},
            {"name": "Glucose", "mappedKey": "glucose", "value": 92},
        ],
    )
    assert merged == {"ldl": 100.0, "hdl": 55.0, "glucose": 92.0}
