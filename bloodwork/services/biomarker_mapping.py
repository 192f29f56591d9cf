"""Test-name canonicalization and core biomarker key mapping."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from bloodwork.services.token_classifiers import normalize_token

# Minimum alias length allowed to match as a prefix/suffix of a longer name.
# Shorter aliases ("hb", "k") only match a name that is exactly the alias.
MIN_AFFIX_ALIAS_LENGTH = 3

# Canonical display name -> aliases. More specific entries come first so a
# tie on alias length keeps the narrower test.
TEST_ALIASES: List[Dict[str, Any]] = [
    {
        "canonical": "HbA1c",
        "aliases": ["hba1c", "hb a1c", "hemoglobin a1c", "haemoglobin a1c", "glycated hemoglobin",
                    "glycosylated hemoglobin", "a1c"],
    },
    {
        "canonical": "Mean Corpuscular Hemoglobin Concentration (MCHC)",
        "aliases": ["mchc", "mean corpuscular hemoglobin concentration", "mean corpuscular haemoglobin concentration"],
    },
    {
        "canonical": "Mean Corpuscular Hemoglobin (MCH)",
        "aliases": ["mch", "mean corpuscular hemoglobin", "mean corpuscular haemoglobin"],
    },
    {"canonical": "Mean Corpuscular Volume (MCV)", "aliases": ["mcv", "mean corpuscular volume"]},
    {"canonical": "Hemoglobin", "aliases": ["hemoglobin", "haemoglobin", "hgb", "hb"]},
    {
        "canonical": "Red Blood Cell Count",
        "aliases": ["rbc", "rbc count", "red blood cell count", "red blood cells", "total rbc count", "erythrocytes"],
    },
    {"canonical": "PCV", "aliases": ["pcv", "hematocrit", "haematocrit", "hct", "packed cell volume"]},
    {"canonical": "RDW", "aliases": ["rdw", "rdw-cv", "rdw cv", "rdw-sd", "rdw sd", "red cell distribution width"]},
    {
        "canonical": "Total WBC Count",
        "aliases": ["wbc", "wbc count", "total wbc count", "white blood cell count", "total leucocyte count",
                    "total leukocyte count", "tlc"],
    },
    {"canonical": "Neutrophils % (NEU%)", "aliases": ["neutrophils", "neutrophil", "neu%"]},
    {"canonical": "Lymphocytes % (LYM%)", "aliases": ["lymphocytes", "lymphocyte", "lym%"]},
    {"canonical": "Eosinophils % (EOS%)", "aliases": ["eosinophils", "eosinophil", "eos%"]},
    {"canonical": "Monocytes % (MON%)", "aliases": ["monocytes", "monocyte", "mon%"]},
    {"canonical": "Basophils % (BAS%)", "aliases": ["basophils", "basophil", "bas%"]},
    {"canonical": "Platelet Count", "aliases": ["platelet", "platelets", "platelet count", "plt"]},
    {"canonical": "ESR", "aliases": ["esr", "erythrocyte sedimentation rate"]},
    {"canonical": "TSH", "aliases": ["tsh", "thyroid stimulating hormone"]},
]

# Core key -> aliases and tokens that veto the key when present in the name.
CORE_BIOMARKER_DEFS: Dict[str, Dict[str, List[str]]] = {
    "totalChol": {
        "aliases": [
            "total cholesterol",
            "total chol",
            "cholesterol total",
            "cholesterol, total",
            "total serum cholesterol",
            "cholesterol",
        ],
        "suppress_if_contains": ["hdl", "ldl", "vldl"],
    },
    "ldl": {
        "aliases": [
            "ldl cholesterol",
            "ldl-c",
            "ldl",
            "low density lipoprotein",
            "low-density lipoprotein",
            "ldl calc",
            "calculated ldl",
        ],
        "suppress_if_contains": ["vldl"],
    },
    "hdl": {
        "aliases": ["hdl cholesterol", "hdl-c", "hdl", "high density lipoprotein", "high-density lipoprotein"],
        "suppress_if_contains": ["non hdl", "ratio"],
    },
    "triglycerides": {
        "aliases": ["triglycerides", "triglyceride", "tg", "trigs"],
    },
    "glucose": {
        "aliases": ["fasting glucose", "blood glucose", "glucose"],
    },
    "a1c": {
        "aliases": [
            "hemoglobin a1c",
            "haemoglobin a1c",
            "glycated hemoglobin",
            "glycosylated hemoglobin",
            "hba1c",
            "hb a1c",
            "a1c",
            "a1 c",
        ],
    },
}


def normalize_for_match(value: str) -> str:
    text = (value or "").lower().replace("%", " % ")
    text = re.sub(r"[^\da-z.%]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def clean_test_name(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip().rstrip(";:,").strip()


def canonicalize_test_name(raw_name: str, table: Optional[Sequence[Mapping[str, Any]]] = None) -> str:
    """Map a free-text test name onto its canonical display name.

    An alias matches when it equals the name's compact token, or (for aliases
    of three or more characters) when the token starts or ends with it.
    The longest matching alias wins. Unknown names come back cleaned.
    """
    entries = TEST_ALIASES if table is None else table
    token = normalize_token(raw_name)
    if not token:
        return clean_test_name(raw_name)

    best_name: Optional[str] = None
    best_len = 0
    for entry in entries:
        for alias in entry["aliases"]:
            alias_token = normalize_token(alias)
            if not alias_token:
                continue
            if alias_token == token:
                return entry["canonical"]
            if len(alias_token) < MIN_AFFIX_ALIAS_LENGTH:
                continue
            if (token.startswith(alias_token) or token.endswith(alias_token)) and len(alias_token) > best_len:
                best_name = entry["canonical"]
                best_len = len(alias_token)
    return best_name or clean_test_name(raw_name)


def infer_core_key(name: str, definitions: Optional[Mapping[str, Mapping[str, Iterable[str]]]] = None) -> Optional[str]:
    """Return the core biomarker key for ``name`` or None.

    Aliases match on whole-word boundaries and the longest alias wins, so
    "HDL Cholesterol" resolves to ``hdl`` even though "cholesterol" is also
    an alias of ``totalChol``.
    """
    defs = CORE_BIOMARKER_DEFS if definitions is None else definitions
    normalized = normalize_for_match(name)
    if not normalized:
        return None
    padded = f" {normalized} "

    best_key: Optional[str] = None
    best_len = 0
    for key, definition in defs.items():
        suppress = [normalize_for_match(t) for t in definition.get("suppress_if_contains", [])]
        if any(token and f" {token} " in padded for token in suppress):
            continue
        for alias in definition.get("aliases", []):
            alias_norm = normalize_for_match(alias)
            if not alias_norm or f" {alias_norm} " not in padded:
                continue
            if len(alias_norm) > best_len:
                best_key = key
                best_len = len(alias_norm)
    return best_key


def resolve_core_biomarkers(biomarkers: Mapping[str, Any], additional: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Fill missing core values from mapped extra rows; existing values win."""
    merged: Dict[str, float] = {
        key: value for key, value in (biomarkers or {}).items() if isinstance(value, (int, float))
    }
    for item in additional or []:
        key = item.get("mapped_key") or item.get("mappedKey") or infer_core_key(item.get("name") or "")
        if not key or key in merged:
            continue
        value = item.get("value")
        if isinstance(value, (int, float)):
            merged[key] = float(value)
    return merged


__all__ = [
    "CORE_BIOMARKER_DEFS",
    "TEST_ALIASES",
    "canonicalize_test_name",
    "clean_test_name",
    "infer_core_key",
    "normalize_for_match",
    "resolve_core_biomarkers",
]
