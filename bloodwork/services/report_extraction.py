"""Deterministic biomarker extraction from report text."""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Optional

from bloodwork.schemas.extraction import ExtractedBiomarkerRow, ExtractionResult
from bloodwork.services.biomarker_mapping import infer_core_key
from bloodwork.services.consolidation import consolidate, passes_plausibility
from bloodwork.services.layout_parsers import (
    PRIMARY_PARSERS,
    CandidateRow,
    parse_delimited_rows,
    parse_sequential_rows,
)
from bloodwork.services.token_classifiers import NUM, normalize_token, split_lines

logger = logging.getLogger("bloodwork")

# Fewer plausible rows than this from the primary parsers engages the
# positional fallback.
FALLBACK_ROW_THRESHOLD = 8

EMPTY_TEXT_WARNING = "No readable text was extracted from this file."
NO_ROWS_WARNING = "No biomarker rows were parsed from this file."

_BETWEEN = re.compile(r"^(" + NUM + r")-(" + NUM + r")$")
_UP_TO = re.compile(r"^upto(" + NUM + r")$", re.IGNORECASE)
_COMPARATOR = re.compile(r"^(<=|<|>=|>|≤|≥)(" + NUM + r")$")
_COMPARATOR_KINDS = {"<=": "lte", "≤": "lte", "<": "lt", ">=": "gte", "≥": "gte", ">": "gt"}
_KNOWN_STATUSES = {"Normal", "Low", "High", "Abnormal", "Borderline"}


def parse_reference_range(reference_range: Optional[str]) -> Optional[Dict[str, Any]]:
    if not reference_range:
        return None
    body = re.sub(r"\s+", "", reference_range.replace("–", "-").replace("—", "-")).strip("()[]")
    between = _BETWEEN.match(body)
    if between:
        return {"kind": "between", "lo": float(between.group(1)), "hi": float(between.group(2))}
    up_to = _UP_TO.match(body)
    if up_to:
        return {"kind": "between", "lo": -math.inf, "hi": float(up_to.group(1))}
    comparator = _COMPARATOR.match(body)
    if comparator:
        op, value = comparator.groups()
        return {"kind": _COMPARATOR_KINDS[op], "v": float(value)}
    return None


def derive_status(value: float, reference_range: Optional[str]) -> Optional[str]:
    """Classify ``value`` against a printed range; None when the range is unreadable."""
    reference = parse_reference_range(reference_range)
    if reference is None:
        return None
    kind = reference["kind"]
    if kind == "lte":
        return "High" if value > reference["v"] else "Normal"
    if kind == "lt":
        return "High" if value >= reference["v"] else "Normal"
    if kind == "gte":
        return "Low" if value < reference["v"] else "Normal"
    if kind == "gt":
        return "Low" if value <= reference["v"] else "Normal"
    if value < reference["lo"]:
        return "Low"
    if value > reference["hi"]:
        return "High"
    return "Normal"


def _to_biomarker(row: CandidateRow) -> Optional[ExtractedBiomarkerRow]:
    try:
        value = float(row.get("result", ""))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    reference_range = row.get("reference_range") or None
    status = row.get("status") if row.get("status") in _KNOWN_STATUSES else None
    return ExtractedBiomarkerRow(
        name=row["test"],
        value=value,
        mapped_key=infer_core_key(row["test"]),
        unit=row.get("unit") or None,
        reference_range=reference_range,
        status=status or derive_status(value, reference_range),
    )


def _collect_primary(lines: List[str], raw_lines: List[str]) -> List[CandidateRow]:
    candidates: List[CandidateRow] = []
    for parser in PRIMARY_PARSERS:
        candidates.extend(parser(lines))
    candidates.extend(parse_delimited_rows(raw_lines))
    return candidates


def extract_biomarkers_from_text(
    raw_text: Optional[str],
    fallback_threshold: int = FALLBACK_ROW_THRESHOLD,
) -> ExtractionResult:
    """Run every layout parser over the text and return one row per test.

    Never raises for malformed input; problems are reported in ``warnings``.
    """
    text = raw_text or ""
    if not text.strip():
        return ExtractionResult(all_biomarkers=[], warnings=[EMPTY_TEXT_WARNING])

    lines = split_lines(text)
    raw_lines = [line for line in re.split(r"[\r\n]+", text) if line.strip()]
    warnings: List[str] = []

    candidates = _collect_primary(lines, raw_lines)
    plausible = [row for row in candidates if passes_plausibility(row)]
    primary = consolidate(plausible)

    used_fallback = False
    if len(primary) < fallback_threshold:
        fallback = [row for row in parse_sequential_rows(lines) if passes_plausibility(row)]
        if fallback:
            used_fallback = True
            primary = consolidate(primary + fallback)

    kept = {normalize_token(row["test"]) for row in primary}
    skipped: List[str] = []
    for row in candidates:
        key = normalize_token(row.get("test", ""))
        if key and key not in kept and not passes_plausibility(row):
            kept.add(key)
            skipped.append(row["test"])
    for name in skipped:
        warnings.append(f'Skipped "{name}" because it looked implausible for that test.')

    biomarkers: List[ExtractedBiomarkerRow] = []
    for row in primary:
        item = _to_biomarker(row)
        if item is None:
            warnings.append(f'Skipped "{row["test"]}" because value was not numeric.')
            continue
        biomarkers.append(item)

    if not biomarkers:
        warnings.append(NO_ROWS_WARNING)

    logger.info(
        {
            "function": "extract_biomarkers_from_text",
            "lines": len(lines),
            "candidates": len(candidates),
            "rows": len(biomarkers),
            "fallback": used_fallback,
        }
    )
    return ExtractionResult(all_biomarkers=biomarkers, warnings=warnings)


__all__ = [
    "EMPTY_TEXT_WARNING",
    "FALLBACK_ROW_THRESHOLD",
    "NO_ROWS_WARNING",
    "derive_status",
    "extract_biomarkers_from_text",
    "parse_reference_range",
]
