"""Layout strategies that turn report lines into candidate rows.

Each parser encodes one guess about how the document is laid out and knows
nothing about the others. They all run on every document; overlapping output
is expected and resolved later by ``consolidation.consolidate``.

A candidate row is a plain dict with string values for the keys
``panel``, ``test``, ``result``, ``unit``, ``reference_range`` and ``status``.
"""
from __future__ import annotations

import csv
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bloodwork.services.biomarker_mapping import canonicalize_test_name
from bloodwork.services.token_classifiers import (
    MAX_TEST_NAME_LENGTH,
    NUM,
    is_likely_test_name,
    is_metadata_line,
    is_panel_header,
    is_reference_range,
    is_result_value,
    is_status,
    is_table_header_line,
    is_unit,
    normalize_line,
    normalize_range,
    normalize_status,
    normalize_token,
    normalize_unit,
)

CandidateRow = Dict[str, str]

INLINE_LOOKAHEAD = 4

# Longest line the single-line pattern is tried on: a name plus value, unit,
# range and flag. Longer lines are prose or OCR noise.
MAX_SINGLE_LINE_LENGTH = MAX_TEST_NAME_LENGTH + 120

_PREDICATES: Dict[str, Callable[[str], bool]] = {
    "unit": is_unit,
    "reference_range": is_reference_range,
    "result": is_result_value,
}

# Field order of the three-line cluster that follows a test name.
INLINE_ORDERS: Tuple[Tuple[str, str, str], ...] = (
    ("unit", "reference_range", "result"),
    ("result", "reference_range", "unit"),
)

COLUMN_NAME_HEADERS = {"testname", "testdescription", "investigation"}
COLUMN_RANGE_HEADERS = {
    "normalrange",
    "referencerange",
    "normalreferencerange",
    "biologicalreferencerange",
    "biologicalreferenceinterval",
    "referenceinterval",
    "normalvalues",
}
COLUMN_UNIT_HEADERS = {"unit", "units"}

BLOCK_TERMINATOR = re.compile(
    r"^(digitally\s*signed|end\s*of\s*report|verified\s*by|authori[sz]ed\s*by|signature|pathologist|"
    r"interpretation|comments?\b|note\s*:)",
    re.IGNORECASE,
)

SECTION_END = re.compile(
    r"^(digitally\s*signed|signature|verified\s*by|dr\.?\s|doctor|pathologist|consultant|end\s*of\s*report)",
    re.IGNORECASE,
)

SINGLE_LINE_ROW = re.compile(
    r"^(?P<name>.*?[A-Za-z)%\]].*?)\s*[:=]?\s+"
    r"(?P<value>" + NUM + r")"
    r"(?:\s*(?P<flag>[HL*])(?=\s|$))?"
    r"(?P<rest>(?:\s.*)?)$"
)
_RANGE_IN_TEXT = re.compile(
    r"(?P<range>" + NUM + r"\s*[-–—]\s*" + NUM + r"|up\s*to\s*" + NUM + r")",
    re.IGNORECASE,
)
_STATUS_IN_TEXT = re.compile(r"\b(normal|low|high|abnormal|borderline)\b", re.IGNORECASE)
_TRAILING_FLAG = re.compile(r"(?:^|\s)(?P<flag>[HL])$")
_VALUE_CELL = re.compile(r"^\s*(?P<value>" + NUM + r")\s*(?P<flag>[HL*])?\s*$")
# "1,50,000" is a grouped number, not three comma-separated cells.
_GROUPED_DIGITS = re.compile(r"(?:^|\s)\d{1,3}(?:,\d{2,3})+(?=\s|$)")

_HEADER_FIELDS = (
    ("test", ("test", "tests", "testname", "testdescription", "investigation", "parameter", "analyte")),
    ("result", ("result", "results", "value", "observedvalue")),
    ("unit", ("unit", "units")),
    ("status", ("status", "flag", "resultstatus")),
    ("reference_range", ("range", "interval", "reference", "normal")),
)


def make_row(
    test: str,
    result: str,
    unit: str = "",
    reference_range: str = "",
    status: str = "",
    panel: str = "",
) -> CandidateRow:
    return {
        "panel": panel,
        "test": canonicalize_test_name(test),
        "result": (result or "").strip(),
        "unit": normalize_unit(unit),
        "reference_range": normalize_range(reference_range),
        "status": normalize_status(status),
    }


# ---------------- Inline sequence ----------------


def _match_inline_cluster(window: Sequence[str]) -> Optional[Tuple[Dict[str, str], int]]:
    if len(window) < 3:
        return None
    for order in INLINE_ORDERS:
        if all(_PREDICATES[field](window[pos]) for pos, field in enumerate(order)):
            fields = {field: window[pos] for pos, field in enumerate(order)}
            consumed = 3
            if len(window) > 3 and is_status(window[3]):
                fields["status"] = window[3]
                consumed = 4
            return fields, consumed
    return None


def parse_inline_rows(lines: Sequence[str]) -> List[CandidateRow]:
    """Test name followed by a unit/range/result cluster in a fixed order.

    A name with no cluster in the lookahead window is dropped, never retried.
    """
    rows: List[CandidateRow] = []
    panel = ""
    index = 0
    while index < len(lines):
        line = lines[index]
        if is_panel_header(line):
            panel = line
            index += 1
            continue
        if not is_likely_test_name(line):
            index += 1
            continue
        matched = _match_inline_cluster(lines[index + 1 : index + 1 + INLINE_LOOKAHEAD])
        if matched is None:
            index += 1
            continue
        fields, consumed = matched
        rows.append(
            make_row(
                line,
                fields["result"],
                unit=fields["unit"],
                reference_range=fields["reference_range"],
                status=fields.get("status", ""),
                panel=panel,
            )
        )
        index += consumed + 1
    return rows


# ---------------- Columnar block ----------------


def _find_header(lines: Sequence[str], tokens: set, start: int = 0) -> Optional[int]:
    for index in range(start, len(lines)):
        if normalize_token(lines[index]) in tokens:
            return index
    return None


def _collect(lines: Sequence[str], start: int, predicate: Callable[[str], bool]) -> List[str]:
    values: List[str] = []
    for line in lines[start:]:
        if not predicate(line):
            break
        values.append(line)
    return values


def parse_columnar_rows(lines: Sequence[str]) -> List[CandidateRow]:
    """Names, results, ranges and units printed as separate vertical columns.

    Requires the test-name, range and unit headers plus at least one numeric
    result after the name block; otherwise returns nothing.
    """
    name_idx = _find_header(lines, COLUMN_NAME_HEADERS)
    if name_idx is None:
        return []
    range_idx = _find_header(lines, COLUMN_RANGE_HEADERS, name_idx + 1)
    unit_idx = _find_header(lines, COLUMN_UNIT_HEADERS, name_idx + 1)
    if range_idx is None or unit_idx is None:
        return []

    names = _collect(lines, name_idx + 1, is_likely_test_name)
    if not names:
        return []
    names_end = name_idx + 1 + len(names)

    result_idx = next((i for i in range(names_end, len(lines)) if is_result_value(lines[i])), None)
    if result_idx is None:
        return []
    results = _collect(lines, result_idx, is_result_value)
    ranges = _collect(lines, range_idx + 1, is_reference_range)
    units = _collect(lines, unit_idx + 1, is_unit)

    panel = next((lines[i] for i in range(name_idx - 1, -1, -1) if is_panel_header(lines[i])), "")
    rows: List[CandidateRow] = []
    for position, name in enumerate(names):
        if position >= len(results):
            break
        rows.append(
            make_row(
                name,
                results[position],
                unit=units[position] if position < len(units) else "",
                reference_range=ranges[position] if position < len(ranges) else "",
                panel=panel,
            )
        )
    return rows


# ---------------- Generic multi-column blocks ----------------


def _new_block() -> Dict[str, List[str]]:
    return {"tests": [], "units": [], "ranges": [], "results": [], "statuses": []}


def _flush_block(block: Dict[str, List[str]], panel: str) -> List[CandidateRow]:
    rows: List[CandidateRow] = []
    for position, test in enumerate(block["tests"]):
        if position >= len(block["results"]):
            break

        def field(bucket: str) -> str:
            values = block[bucket]
            return values[position] if position < len(values) else ""

        rows.append(
            make_row(
                test,
                block["results"][position],
                unit=field("units"),
                reference_range=field("ranges"),
                status=field("statuses"),
                panel=panel,
            )
        )
    return rows


def parse_block_rows(lines: Sequence[str]) -> List[CandidateRow]:
    """Bucket every line of a table section by kind and zip the buckets.

    A block flushes when a new test arrives after the block already has a
    result per test, when a test name repeats, or on a terminating marker.
    """
    rows: List[CandidateRow] = []
    block = _new_block()
    panel = ""
    in_table = False
    seen_tests: set = set()

    for line in lines:
        if is_table_header_line(line):
            in_table = True
            continue
        if not in_table:
            if is_panel_header(line):
                panel = line
            continue
        if BLOCK_TERMINATOR.match(line):
            rows.extend(_flush_block(block, panel))
            block = _new_block()
            seen_tests = set()
            in_table = False
            continue
        if is_panel_header(line):
            rows.extend(_flush_block(block, panel))
            block = _new_block()
            seen_tests = set()
            panel = line
            continue
        if is_metadata_line(line):
            continue

        if is_status(line):
            block["statuses"].append(line)
        elif is_reference_range(line):
            block["ranges"].append(line)
        elif is_unit(line):
            block["units"].append(line)
        elif is_result_value(line):
            block["results"].append(line)
        elif is_likely_test_name(line):
            tests = block["tests"]
            key = normalize_token(line)
            complete = bool(tests) and len(block["results"]) >= len(tests)
            if key in seen_tests or complete:
                rows.extend(_flush_block(block, panel))
                block = _new_block()
                seen_tests = set()
            block["tests"].append(line)
            seen_tests.add(key)

    rows.extend(_flush_block(block, panel))
    return rows


# ---------------- Single-line rows ----------------


def parse_single_line_rows(lines: Sequence[str]) -> List[CandidateRow]:
    """Rows printed on one line, e.g. ``Glucose: 126 mg/dL (70-110) H``."""
    rows: List[CandidateRow] = []
    panel = ""
    for line in lines:
        if is_panel_header(line):
            panel = line
            continue
        if len(line) > MAX_SINGLE_LINE_LENGTH:
            continue
        if is_metadata_line(line) or is_table_header_line(line):
            continue
        match = SINGLE_LINE_ROW.match(line)
        if not match:
            continue
        name = match.group("name").strip()
        if not is_likely_test_name(name) or _RANGE_IN_TEXT.search(name):
            continue
        rest = match.group("rest").strip()

        unit = ""
        first = rest.split(" ", 1)[0] if rest else ""
        if first and is_unit(first):
            unit = first
        range_match = _RANGE_IN_TEXT.search(rest)
        reference_range = range_match.group("range") if range_match else ""
        if not unit and not reference_range:
            continue

        status = ""
        flag = match.group("flag")
        if flag in ("H", "L"):
            status = flag
        else:
            status_match = _STATUS_IN_TEXT.search(rest)
            trailing = _TRAILING_FLAG.search(rest)
            if status_match:
                status = status_match.group(1)
            elif trailing:
                status = trailing.group("flag")
        rows.append(make_row(name, match.group("value"), unit, reference_range, status, panel))
    return rows


# ---------------- Delimited exports (CSV/TSV/pipes) ----------------


def _read_csv_line(raw_line: str, delimiter: str) -> List[str]:
    # csv refuses fields over its size limit; such a line is not a table row
    try:
        return next(csv.reader([raw_line], delimiter=delimiter))
    except csv.Error:
        return []


def _split_cells(raw_line: str) -> List[str]:
    if "\t" in raw_line:
        cells = raw_line.split("\t")
    elif "|" in raw_line:
        cells = raw_line.strip().strip("|").split("|")
    elif ";" in raw_line:
        cells = _read_csv_line(raw_line, ";")
    elif "," in raw_line and not _GROUPED_DIGITS.search(raw_line):
        cells = _read_csv_line(raw_line, ",")
    else:
        return []
    return [normalize_line(cell) for cell in cells]


def _header_columns(cells: Sequence[str]) -> Optional[Dict[str, int]]:
    filled = [cell for cell in cells if cell]
    if len(filled) < 2 or not all(is_table_header_line(cell) for cell in filled):
        return None
    columns: Dict[str, int] = {}
    for position, cell in enumerate(cells):
        token = normalize_token(cell)
        for field, keys in _HEADER_FIELDS:
            if field in columns:
                continue
            if token in keys or (field == "reference_range" and any(k in token for k in keys)):
                columns[field] = position
                break
    return columns if "test" in columns and "result" in columns else None


def _typed_cells(cells: Sequence[str]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for cell in cells:
        if not cell:
            continue
        if "test" not in fields:
            if is_likely_test_name(cell):
                fields["test"] = cell
            continue
        if "result" not in fields and _VALUE_CELL.match(cell):
            fields["result"] = cell
        elif "unit" not in fields and is_unit(cell):
            fields["unit"] = cell
        elif "reference_range" not in fields and is_reference_range(cell):
            fields["reference_range"] = cell
        elif "status" not in fields and is_status(cell):
            fields["status"] = cell
    return fields


def parse_delimited_rows(raw_lines: Sequence[str]) -> List[CandidateRow]:
    """Spreadsheet-style exports; takes raw lines so tab separators survive."""
    rows: List[CandidateRow] = []
    columns: Optional[Dict[str, int]] = None
    panel = ""
    for raw_line in raw_lines:
        cells = _split_cells(raw_line)
        filled = [cell for cell in cells if cell]
        if len(filled) == 1 and is_panel_header(filled[0]):
            panel = filled[0]
            continue
        if len(filled) < 2:
            continue
        header = _header_columns(cells)
        if header is not None:
            columns = header
            continue
        if is_metadata_line(filled[0]):
            continue

        if columns is not None:
            fields = {field: cells[pos] for field, pos in columns.items() if pos < len(cells) and cells[pos]}
        elif len(filled) >= 3:
            fields = _typed_cells(cells)
        else:
            continue

        value_match = _VALUE_CELL.match(fields.get("result", ""))
        test = fields.get("test", "")
        if not value_match or not is_likely_test_name(test):
            continue
        status = fields.get("status") or value_match.group("flag") or ""
        if status == "*":
            status = ""
        rows.append(
            make_row(
                test,
                value_match.group("value"),
                unit=fields.get("unit", ""),
                reference_range=fields.get("reference_range", ""),
                status=status,
                panel=panel,
            )
        )
    return rows


# ---------------- Sequential / positional fallback ----------------


def _section_bounds(lines: Sequence[str]) -> Tuple[int, int]:
    start = next(
        (i for i, line in enumerate(lines) if is_panel_header(line) or is_table_header_line(line)),
        0,
    )
    end = next((i for i in range(start + 1, len(lines)) if SECTION_END.match(lines[i])), len(lines))
    return start, end


def _next_at_or_after(indices: List[int], cursor: int, position: int) -> Tuple[Optional[int], int]:
    while cursor < len(indices) and indices[cursor] < position:
        cursor += 1
    if cursor >= len(indices):
        return None, cursor
    return indices[cursor], cursor + 1


def parse_sequential_rows(lines: Sequence[str]) -> List[CandidateRow]:
    """Positional last resort: pair each test with the next unused result,
    range and unit that appear after it inside the report body."""
    start, end = _section_bounds(lines)
    span = range(start, end)
    tests = [i for i in span if is_likely_test_name(lines[i])]
    results = [i for i in span if is_result_value(lines[i])]
    ranges = [i for i in span if is_reference_range(lines[i])]
    units = [i for i in span if is_unit(lines[i])]

    rows: List[CandidateRow] = []
    result_cursor = range_cursor = unit_cursor = 0
    for test_idx in tests:
        result_idx, result_cursor = _next_at_or_after(results, result_cursor, test_idx)
        if result_idx is None:
            break
        range_idx, next_range_cursor = _next_at_or_after(ranges, range_cursor, test_idx)
        unit_idx, next_unit_cursor = _next_at_or_after(units, unit_cursor, test_idx)
        reference_range = ""
        unit = ""
        if range_idx is not None:
            reference_range = lines[range_idx]
            range_cursor = next_range_cursor
        if unit_idx is not None:
            unit = lines[unit_idx]
            unit_cursor = next_unit_cursor
        rows.append(make_row(lines[test_idx], lines[result_idx], unit, reference_range))
    return rows


PRIMARY_PARSERS = (
    parse_inline_rows,
    parse_columnar_rows,
    parse_block_rows,
    parse_single_line_rows,
)


__all__ = [
    "CandidateRow",
    "PRIMARY_PARSERS",
    "make_row",
    "parse_block_rows",
    "parse_columnar_rows",
    "parse_delimited_rows",
    "parse_inline_rows",
    "parse_sequential_rows",
    "parse_single_line_rows",
]
