"""Line classifiers for free-text lab reports.

Every predicate takes one line of text and answers a single question about it.
None of them look at neighbouring lines; callers that need to break ties
(a bare number could be a result or a stray count) use ``classify_line``,
which applies a fixed precedence order.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import List

MAX_TEST_NAME_LENGTH = 140

NUM = r"[-+]?\d+(?:\.\d+)?"

RANGE_ONLY_PATTERN = re.compile(r"^\s*" + NUM + r"\s*[-–—]\s*" + NUM + r"\s*$")
UP_TO_RANGE_PATTERN = re.compile(r"^\s*up\s*to\s*" + NUM + r"\s*$", re.IGNORECASE)
RESULT_ONLY_PATTERN = re.compile(r"^\s*" + NUM + r"\s*$")
STATUS_ONLY_PATTERN = re.compile(r"^\s*(normal|low|high|abnormal|borderline)\s*$", re.IGNORECASE)

SCIENTIFIC_UNIT_PATTERN = re.compile(
    r"^x?\s*10\s*[\^*]\s*\d+\s*/\s*(l|ul|µl|μl|mm3|cumm|mcl)$",
    re.IGNORECASE,
)

KNOWN_UNITS = (
    "mg/dL",
    "mg/L",
    "g/dL",
    "g/L",
    "U/L",
    "IU/L",
    "mU/L",
    "mIU/L",
    "mmol/L",
    "umol/L",
    "µmol/L",
    "mEq/L",
    "ng/dL",
    "ng/mL",
    "pg/mL",
    "ug/dL",
    "µg/dL",
    "uIU/mL",
    "µIU/mL",
    "μIU/mL",
    "mm/hr",
    "mm/h",
    "fL",
    "pg",
    "mL/min",
    "mL/min/1.73m2",
    "mL/min/1.73m²",
    "mL/min/1.73 m2",
    "mL/min/1.73 m²",
    "million/cumm",
    "million/uL",
    "/cumm",
    "/uL",
    "/µL",
    "/mm3",
    "cells/cumm",
    "lakh/cumm",
)
_KNOWN_UNITS_LOWER = {unit.lower() for unit in KNOWN_UNITS}

PANEL_HEADERS = {
    "hematology",
    "haematology",
    "biochemistry",
    "clinicalbiochemistry",
    "liverfunction",
    "liverfunctiontest",
    "liverfunctiontests",
    "kidneyfunction",
    "kidneyfunctiontest",
    "renalfunction",
    "renalfunctiontest",
    "electrolytes",
    "serumelectrolytes",
    "thyroidfunction",
    "thyroidprofile",
    "completebloodcount",
    "completebloodcountcbc",
    "cbc",
    "differentialcount",
    "differentialleucocytecount",
    "lipidprofile",
    "lipidpanel",
    "diabetesprofile",
}

TABLE_HEADER_TOKENS = {
    "test",
    "tests",
    "testname",
    "testdescription",
    "investigation",
    "parameter",
    "unit",
    "units",
    "result",
    "results",
    "value",
    "reference",
    "referencerange",
    "referenceinterval",
    "normalrange",
    "normalreferencerange",
    "normalvalues",
    "biologicalreferencerange",
    "biologicalreferenceinterval",
    "status",
    "resultstatus",
    "flag",
}

_TABLE_HEADER_FRAGMENTS = ("referencerange", "normalrange", "resultstatus", "testname")

METADATA_LINE_PATTERNS = [
    re.compile(
        r"^(patient\s*(name|id)|e-?mail|lab\s*(no|id)|uhid|mrn|sample\s*(type|id|collected|received)|"
        r"ref\.?\s*by|referred\s*by|verified\s*by|approved\s*by|reviewed\s*by|digitally\s*signed|"
        r"report\s*status|blood\s*test\s*results|processing\s*details|end\s*of\s*report)\b",
        re.IGNORECASE,
    ),
    # Single words that also open analyte names ("Sex Hormone Binding Globulin")
    # only count as labels when followed by a separator, a digit or nothing.
    re.compile(
        r"^(patient|name|age|sex|gender|phone|mobile|contact|address|sample|specimen|collected|"
        r"received|reported|registered|date|time|referring|consultant|doctor|signature|"
        r"pathologist|technologist)\s*([:\-/]|\d|$)",
        re.IGNORECASE,
    ),
    re.compile(r"^page\s*\d+(\s*(of|/)\s*\d+)?$", re.IGNORECASE),
    re.compile(r"^(mr|mrs|ms|miss|dr|prof)\.?\s+\S", re.IGNORECASE),
    re.compile(r"(?<![\w.+-])[\w.+-]+@[\w-]+\.[\w.]+"),
    re.compile(r"^[:\-]\s*[a-z]", re.IGNORECASE),
]

_VALUE_WITH_UNIT = re.compile(r"^\s*" + NUM + r"\s*(?P<tail>.+)$")


class TokenKind(str, Enum):
    TEST_NAME = "test_name"
    UNIT = "unit"
    REFERENCE_RANGE = "reference_range"
    RESULT = "result"
    STATUS = "status"
    PANEL_HEADER = "panel_header"
    TABLE_HEADER = "table_header"
    METADATA = "metadata"
    UNKNOWN = "unknown"


def normalize_line(line: str) -> str:
    return re.sub(r"\s+", " ", line or "").strip()


def normalize_token(value: str) -> str:
    """Lowercase alphanumeric form used for vocabulary lookups."""
    return re.sub(r"[^a-z0-9]+", "", (value or "").lower())


def split_lines(raw_text: str) -> List[str]:
    lines = []
    for part in re.split(r"[\r\n]+", raw_text or ""):
        line = normalize_line(part)
        if line:
            lines.append(line)
    return lines


def normalize_unit(value: str) -> str:
    text = re.sub(r"\s+", "", value or "")
    text = re.sub(r"(?i)x10\^", "10^", text)
    text = re.sub(r"(?i)x?10\*(\d+)", r"10^\1", text)
    text = re.sub(r"(?i)ul$", "uL", text)
    return text


def normalize_range(value: str) -> str:
    text = (value or "").replace("–", "-").replace("—", "-")
    return re.sub(r"\s+", " ", text).strip()


def normalize_status(value: str) -> str:
    lower = (value or "").strip().lower()
    if lower in ("h", "hi"):
        return "High"
    if lower in ("l", "lo"):
        return "Low"
    return lower.capitalize()


def is_unit(line: str) -> bool:
    text = (line or "").strip()
    if not text:
        return False
    if text == "%":
        return True
    if SCIENTIFIC_UNIT_PATTERN.match(text):
        return True
    return text.lower() in _KNOWN_UNITS_LOWER


def is_reference_range(line: str) -> bool:
    return bool(RANGE_ONLY_PATTERN.match(line or "") or UP_TO_RANGE_PATTERN.match(line or ""))


def is_result_value(line: str) -> bool:
    return bool(RESULT_ONLY_PATTERN.match(line or ""))


def is_status(line: str) -> bool:
    return bool(STATUS_ONLY_PATTERN.match(line or ""))


def is_panel_header(line: str) -> bool:
    return normalize_token(line) in PANEL_HEADERS


def is_table_header_line(line: str) -> bool:
    token = normalize_token(line)
    if not token:
        return False
    if token in TABLE_HEADER_TOKENS:
        return True
    return any(fragment in token for fragment in _TABLE_HEADER_FRAGMENTS)


def is_metadata_line(line: str) -> bool:
    text = normalize_line(line)
    if not text:
        return False
    return any(pattern.search(text) for pattern in METADATA_LINE_PATTERNS)


def _is_value_with_unit(line: str) -> bool:
    # "14.2 g/dL" carries letters but is a measurement, not a name
    match = _VALUE_WITH_UNIT.match(line)
    return bool(match and is_unit(match.group("tail")))


def is_likely_test_name(line: str) -> bool:
    text = normalize_line(line)
    if not text or len(text) > MAX_TEST_NAME_LENGTH:
        return False
    if not re.search(r"[A-Za-z]", text):
        return False
    if (
        is_reference_range(text)
        or is_unit(text)
        or is_status(text)
        or is_result_value(text)
        or is_panel_header(text)
        or is_table_header_line(text)
        or is_metadata_line(text)
        or _is_value_with_unit(text)
    ):
        return False
    return True


def classify_line(line: str) -> TokenKind:
    text = normalize_line(line)
    if not text:
        return TokenKind.UNKNOWN
    if is_metadata_line(text):
        return TokenKind.METADATA
    if is_table_header_line(text):
        return TokenKind.TABLE_HEADER
    if is_panel_header(text):
        return TokenKind.PANEL_HEADER
    if is_status(text):
        return TokenKind.STATUS
    if is_reference_range(text):
        return TokenKind.REFERENCE_RANGE
    if is_unit(text):
        return TokenKind.UNIT
    if is_result_value(text):
        return TokenKind.RESULT
    if is_likely_test_name(text):
        return TokenKind.TEST_NAME
    return TokenKind.UNKNOWN


__all__ = [
    "TokenKind",
    "classify_line",
    "is_likely_test_name",
    "is_metadata_line",
    "is_panel_header",
    "is_reference_range",
    "is_result_value",
    "is_status",
    "is_table_header_line",
    "is_unit",
    "normalize_line",
    "normalize_range",
    "normalize_status",
    "normalize_token",
    "normalize_unit",
    "split_lines",
]
