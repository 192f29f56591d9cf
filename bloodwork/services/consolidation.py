"""Merge overlapping candidate rows into one row per test."""
from __future__ import annotations

import re
from typing import Dict, List, Sequence, Tuple

from bloodwork.services.biomarker_mapping import TEST_ALIASES
from bloodwork.services.layout_parsers import CandidateRow
from bloodwork.services.token_classifiers import normalize_token

_COUNT_UNITS = [
    r"^10\^\d+/(l|ul|µl|μl|mm3|cumm|mcl)$",
    r"^/(cumm|ul|µl|μl|mm3|mcl)$",
    r"^(cells|lakh|thousand)/(cumm|ul|µl|μl|mm3|mcl)$",
]

EXPECTED_UNIT_PATTERNS: Dict[str, List[str]] = {
    "Hemoglobin": [r"^g/dl$", r"^g/l$", r"^mmol/l$"],
    "PCV": [r"^%$", r"^l/l$"],
    "Mean Corpuscular Volume (MCV)": [r"^fl$"],
    "Mean Corpuscular Hemoglobin (MCH)": [r"^pg$"],
    "Mean Corpuscular Hemoglobin Concentration (MCHC)": [r"^g/dl$", r"^%$", r"^g/l$"],
    "RDW": [r"^%$", r"^fl$"],
    "Red Blood Cell Count": [r"^10\^\d+/(l|ul|µl|μl|mm3|cumm|mcl)$", r"^million/(cumm|ul|µl|μl|mm3|mcl)$"],
    "Total WBC Count": _COUNT_UNITS,
    "Platelet Count": _COUNT_UNITS,
    "Neutrophils % (NEU%)": [r"^%$"],
    "Lymphocytes % (LYM%)": [r"^%$"],
    "Eosinophils % (EOS%)": [r"^%$"],
    "Monocytes % (MON%)": [r"^%$"],
    "Basophils % (BAS%)": [r"^%$"],
    "HbA1c": [r"^%$", r"^mmol/mol$"],
    "ESR": [r"^mm/hr?$"],
}

_PERCENT_ABBREVIATION = re.compile(r"^[a-z]{2,}\s*%$", re.IGNORECASE)
_NAME_TOKENS = {normalize_token(entry["canonical"]) for entry in TEST_ALIASES} | {
    normalize_token(alias) for entry in TEST_ALIASES for alias in entry["aliases"]
}


def _unit_looks_like_test_name(unit: str) -> bool:
    if not unit or unit == "%":
        return False
    if _PERCENT_ABBREVIATION.match(unit):
        return True
    return normalize_token(unit) in _NAME_TOKENS


def passes_plausibility(row: CandidateRow) -> bool:
    """False for rows that look like column drift or stray header fragments."""
    test = row.get("test") or ""
    unit = (row.get("unit") or "").strip()
    if len(re.findall(r"[A-Za-z]", test)) < 3:
        return False
    if _unit_looks_like_test_name(unit):
        return False
    patterns = EXPECTED_UNIT_PATTERNS.get(test)
    if patterns and unit:
        lowered = unit.lower()
        if not any(re.match(pattern, lowered) for pattern in patterns):
            return False
    return True


def score_row(row: CandidateRow) -> int:
    score = 0
    if row.get("unit"):
        score += 2
    if row.get("reference_range"):
        score += 2
    if row.get("status"):
        score += 1
    if passes_plausibility(row):
        score += 3
    return score


def _dedupe_key(row: CandidateRow) -> Tuple[str, str, str, str]:
    return (
        normalize_token(row.get("test", "")),
        (row.get("result") or "").strip(),
        (row.get("unit") or "").lower(),
        (row.get("reference_range") or "").replace(" ", ""),
    )


def consolidate(rows: Sequence[CandidateRow]) -> List[CandidateRow]:
    """Keep the best-scoring row per test, preserving first-seen order.

    Ties go to the row seen first, so callers control precedence by the
    order in which they pass candidates in.
    """
    seen = set()
    unique: List[CandidateRow] = []
    for row in rows:
        key = _dedupe_key(row)
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)

    best: Dict[str, Tuple[int, CandidateRow]] = {}
    order: List[str] = []
    for row in unique:
        test_key = normalize_token(row.get("test", ""))
        if not test_key:
            continue
        score = score_row(row)
        current = best.get(test_key)
        if current is None:
            order.append(test_key)
            best[test_key] = (score, row)
        elif score > current[0]:
            best[test_key] = (score, row)
    return [best[key][1] for key in order]


__all__ = ["EXPECTED_UNIT_PATTERNS", "consolidate", "passes_plausibility", "score_row"]
