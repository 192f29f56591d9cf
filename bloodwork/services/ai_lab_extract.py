"""AI-assisted lab row extraction with a deterministic fallback."""
from __future__ import annotations

import json
import logging
import math
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from bloodwork.schemas.extraction import ExtractedBiomarkerRow, ExtractionResult
from bloodwork.services import gemini
from bloodwork.services.biomarker_mapping import canonicalize_test_name, infer_core_key
from bloodwork.services.report_extraction import derive_status, extract_biomarkers_from_text
from bloodwork.services.token_classifiers import normalize_range, normalize_token, normalize_unit

logger = logging.getLogger("bloodwork")

MAX_OCR_CHARS = 35000
MIN_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5

NO_VALID_ROWS_WARNING = "AI parser returned no valid lab rows after validation."
FALLBACK_WARNING = "AI extraction was unavailable; used the rule-based parser instead."

PLAUSIBLE_BOUNDS: Dict[str, Tuple[float, float]] = {
    "Hemoglobin": (2, 25),
    "Red Blood Cell Count": (0.5, 12),
    "PCV": (5, 80),
    "Mean Corpuscular Volume (MCV)": (30, 140),
    "Mean Corpuscular Hemoglobin (MCH)": (10, 60),
    "Mean Corpuscular Hemoglobin Concentration (MCHC)": (10, 60),
    "RDW": (5, 40),
    "Total WBC Count": (100, 200000),
    "Neutrophils % (NEU%)": (0, 100),
    "Lymphocytes % (LYM%)": (0, 100),
    "Eosinophils % (EOS%)": (0, 100),
    "Monocytes % (MON%)": (0, 100),
    "Basophils % (BAS%)": (0, 100),
    "Platelet Count": (1000, 5000000),
}

METADATA_NAME_PATTERNS = [
    re.compile(r"^(lab\s*no|patient\s*name|ref\.?\s*by|sample\s*(type|id)|e-?mail)\b", re.IGNORECASE),
    re.compile(r"^(sex|gender|age|date|sample|doctor|phone|mobile)\s*([:\-/]|\d|$)", re.IGNORECASE),
    re.compile(r"^(mr|mrs|ms|dr)\.?\s+", re.IGNORECASE),
    re.compile(r"^[:\-]\s*[a-z]", re.IGNORECASE),
]

PROMPT_TEMPLATE = """You extract structured lab test rows from OCR text.

Return JSON only in this format:
{{
  "rows": [
    {{
      "test": "string",
      "value": 0,
      "unit": "string or null",
      "referenceRange": "string or null",
      "panel": "string or null",
      "confidence": 0.0,
      "sourceText": "exact short snippet from OCR"
    }}
  ]
}}

Rules:
- Include only actual lab analyte rows.
- Exclude demographics and metadata such as name, age, sex, date, doctor, lab no.
- Do not infer missing values; use null.
- Keep confidence between 0 and 1.
- Preserve values exactly as seen.

OCR text:
{text}"""


def ai_extraction_enabled() -> bool:
    flag = (os.getenv("AI_EXTRACTION_ENABLED", "true") or "true").strip().lower()
    return flag not in {"0", "false", "off", "no"}


def build_prompt(text: str) -> str:
    return PROMPT_TEMPLATE.format(text=(text or "")[:MAX_OCR_CHARS])


def clean_json_response(value: str) -> str:
    cleaned = re.sub(r"^```(?:json)?\s*", "", (value or "").strip(), flags=re.IGNORECASE)
    return re.sub(r"```\s*$", "", cleaned).strip()


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _parse_value(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        digits = re.sub(r"[^\d.\-]", "", value)
        try:
            number = float(digits)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _optional_text(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


def parse_llm_rows(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a model payload (``{"rows": [...]}`` or a bare list) into row dicts."""
    rows = payload if isinstance(payload, list) else payload.get("rows") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        return []
    parsed: List[Dict[str, Any]] = []
    for item in rows:
        if not isinstance(item, dict):
            continue
        test = item.get("test").strip() if isinstance(item.get("test"), str) else ""
        if not test:
            continue
        parsed.append(
            {
                "test": test,
                "value": _parse_value(item.get("value")),
                "unit": _optional_text(item.get("unit")),
                "reference_range": _optional_text(item.get("referenceRange")),
                "panel": _optional_text(item.get("panel")),
                "confidence": _clamp_confidence(item.get("confidence")),
                "source_text": _optional_text(item.get("sourceText")),
            }
        )
    return parsed


def is_metadata_like_name(value: str) -> bool:
    compact = re.sub(r"\s+", " ", value or "").strip()
    if not compact:
        return True
    return any(pattern.search(compact) for pattern in METADATA_NAME_PATTERNS)


def validate_rows(rows: List[Dict[str, Any]]) -> ExtractionResult:
    warnings: List[str] = []
    by_test: Dict[str, Tuple[ExtractedBiomarkerRow, float]] = {}

    for row in rows:
        test = row["test"]
        if is_metadata_like_name(test):
            warnings.append(f'Skipped metadata-like row "{test}".')
            continue
        value = row.get("value")
        if value is None:
            warnings.append(f'Skipped "{test}" because value was not numeric.')
            continue
        confidence = _clamp_confidence(row.get("confidence"))
        if confidence < MIN_CONFIDENCE:
            warnings.append(f'Skipped low-confidence row "{test}".')
            continue

        name = canonicalize_test_name(test)
        if not re.search(r"[A-Za-z]", name):
            warnings.append(f'Skipped row "{test}" because it has no test name.')
            continue
        bounds = PLAUSIBLE_BOUNDS.get(name)
        if bounds and not bounds[0] <= value <= bounds[1]:
            warnings.append(f'Skipped "{name}" because value {value:g} looked implausible.')
            continue

        reference_range = normalize_range(row.get("reference_range") or "") or None
        extracted = ExtractedBiomarkerRow(
            name=name,
            value=round(value, 4),
            mapped_key=infer_core_key(name),
            unit=normalize_unit(row.get("unit") or "") or None,
            reference_range=reference_range,
            status=derive_status(value, reference_range),
        )
        key = normalize_token(name)
        existing = by_test.get(key)
        if existing is None or confidence > existing[1]:
            by_test[key] = (extracted, confidence)

    biomarkers = [item for item, _ in by_test.values()]
    if not biomarkers:
        warnings.append(NO_VALID_ROWS_WARNING)
    return ExtractionResult(all_biomarkers=biomarkers, warnings=warnings)


async def extract_with_ai(text: str) -> ExtractionResult:
    """Ask Gemini for rows and validate them. Raises GeminiError on failure."""
    raw, model = await gemini.generate_json(build_prompt(text))
    try:
        payload = json.loads(clean_json_response(raw))
    except json.JSONDecodeError as exc:
        raise gemini.GeminiError(f"Model {model} returned invalid JSON") from exc

    result = validate_rows(parse_llm_rows(payload))
    warnings = [f"AI extraction used Gemini model: {model}."]
    if len(text) > MAX_OCR_CHARS:
        warnings.append(f"Report text was truncated to {MAX_OCR_CHARS} characters for AI extraction.")
    return ExtractionResult(all_biomarkers=result.all_biomarkers, warnings=warnings + result.warnings)


async def extract_report_text(text: str, use_ai: bool = True) -> Tuple[ExtractionResult, str]:
    """Return ``(result, source)`` where source is ``"ai"`` or ``"rules"``.

    AI failures and empty AI output fall back to the rule-based parser.
    """
    if not use_ai or not ai_extraction_enabled() or not gemini.is_configured() or not (text or "").strip():
        return extract_biomarkers_from_text(text), "rules"

    try:
        result = await extract_with_ai(text)
    except (gemini.GeminiError, httpx.HTTPError) as exc:
        logger.warning({"function": "extract_report_text", "stage": "ai_failed", "error": str(exc)[:200]})
        fallback = extract_biomarkers_from_text(text)
        return ExtractionResult(
            all_biomarkers=fallback.all_biomarkers,
            warnings=[FALLBACK_WARNING] + fallback.warnings,
        ), "rules"

    if result.all_biomarkers:
        logger.info({"function": "extract_report_text", "source": "ai", "rows": len(result.all_biomarkers)})
        return result, "ai"

    fallback = extract_biomarkers_from_text(text)
    logger.info({"function": "extract_report_text", "source": "rules", "rows": len(fallback.all_biomarkers)})
    return ExtractionResult(
        all_biomarkers=fallback.all_biomarkers,
        warnings=result.warnings + [FALLBACK_WARNING] + fallback.warnings,
    ), "rules"


__all__ = [
    "PLAUSIBLE_BOUNDS",
    "build_prompt",
    "clean_json_response",
    "extract_report_text",
    "extract_with_ai",
    "is_metadata_like_name",
    "parse_llm_rows",
    "validate_rows",
]
