"""
Schema detection for delimited and fixed-width BOM text.

Detection runs in three steps:
1. Choose a tabulation scheme: explicit fixed columns, explicit delimiter,
   detected tab/semicolon, or comma vs. fixed-width when neither is present
2. Split every line into cells
3. Locate the header row as the row the column mapper scores highest

The functions here are pure: they never raise on odd input, they only
return lower-confidence results.
"""

import csv
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .models import ImportOptions

# Lines inspected when choosing a delimiter
DELIMITER_SAMPLE_LINES = 5

# Fixed-width boundary inference limits
FIXED_WIDTH_SAMPLE_LINES = 80
FIXED_WIDTH_MIN_LINES = 3
FIXED_WIDTH_MIN_LINE_LENGTH = 8
FIXED_WIDTH_CANDIDATE_SCORE = 0.42
FIXED_WIDTH_MIN_GAP = 2
MIN_FIXED_WIDTH_MARKERS = 2

# Score function used to rank candidate header rows (number of mapped fields)
HeaderScorer = Callable[[List[str]], int]


@dataclass
class FixedWidthDetection:
    """Inferred column boundaries and the mean score of the raw candidates."""
    markers: List[int] = field(default_factory=list)
    confidence: float = 0.0

    def is_trusted(self, min_confidence: float) -> bool:
        """Whether fixed-width mode should win over the comma fallback."""
        return len(self.markers) >= MIN_FIXED_WIDTH_MARKERS and self.confidence >= min_confidence


@dataclass
class TabulatedSource:
    """Cell matrix of a source plus the scheme used to split it."""
    rows: List[List[str]]
    delimiter: Optional[str] = None
    fixed_columns: Optional[List[int]] = None


def _is_space(ch: str) -> bool:
    return ch == " " or ch == "\t"


def _char_at(line: str, index: int) -> str:
    if index < 0 or index >= len(line):
        return " "
    return line[index]


def _sample_lines(lines: Sequence[str], limit: int) -> List[str]:
    return [line for line in lines if line.strip()][:limit]


def detect_delimiter(lines: Sequence[str]) -> str:
    """
    Detect the field delimiter from the first non-blank lines.

    Tab wins over semicolon, semicolon wins over comma. Comma is never
    checked first because semicolon exports use comma as decimal separator.

    Args:
        lines: Source lines (blank lines are ignored)

    Returns:
        '\\t', ';' or ',' (the fallback)
    """
    sample = _sample_lines(lines, DELIMITER_SAMPLE_LINES)
    if any("\t" in line for line in sample):
        return "\t"
    if any(";" in line for line in sample):
        return ";"
    return ","


def detect_fixed_width_markers(lines: Sequence[str]) -> FixedWidthDetection:
    """
    Infer column boundaries of a fixed-width table.

    For each character position i the score is the smallest of three
    fractions over the sampled lines: char i-1 non-space, char i space,
    char i+1 non-space. Positions scoring at least 0.42 are candidates;
    neighbouring candidates collapse to their rounded midpoint.

    Args:
        lines: Source lines (blank lines are ignored, up to 80 are sampled)

    Returns:
        FixedWidthDetection; markers are empty and confidence is 0 when
        fewer than two boundaries are found
    """
    source = _sample_lines(lines, FIXED_WIDTH_SAMPLE_LINES)
    if len(source) < FIXED_WIDTH_MIN_LINES:
        return FixedWidthDetection()

    max_len = max(len(line) for line in source)
    if max_len < FIXED_WIDTH_MIN_LINE_LENGTH:
        return FixedWidthDetection()

    line_count = len(source)
    candidates: List[Tuple[int, float]] = []
    for i in range(1, max_len - 1):
        left_non_space = 0
        at_space = 0
        right_non_space = 0
        for line in source:
            if not _is_space(_char_at(line, i - 1)):
                left_non_space += 1
            if _is_space(_char_at(line, i)):
                at_space += 1
            if not _is_space(_char_at(line, i + 1)):
                right_non_space += 1
        score = min(left_non_space, at_space, right_non_space) / line_count
        if score >= FIXED_WIDTH_CANDIDATE_SCORE:
            candidates.append((i, score))

    if not candidates:
        return FixedWidthDetection()

    # Neighbouring positions belong to the same visual gap
    clustered: List[int] = []
    cluster_start = cluster_end = candidates[0][0]
    for pos, _ in candidates[1:]:
        if pos <= cluster_end + 1:
            cluster_end = pos
            continue
        clustered.append(int((cluster_start + cluster_end) / 2 + 0.5))
        cluster_start = cluster_end = pos
    clustered.append(int((cluster_start + cluster_end) / 2 + 0.5))

    markers: List[int] = []
    for pos in clustered:
        if pos < FIXED_WIDTH_MIN_GAP:
            continue
        if markers and pos - markers[-1] < FIXED_WIDTH_MIN_GAP:
            continue
        markers.append(pos)

    if len(markers) < MIN_FIXED_WIDTH_MARKERS:
        return FixedWidthDetection()

    avg_score = sum(score for _, score in candidates) / len(candidates)
    return FixedWidthDetection(markers=markers, confidence=min(1.0, max(0.0, avg_score)))


def split_fixed_width_line(line: str, markers: Sequence[int]) -> List[str]:
    """Cut a line at the given boundaries and trim each cell."""
    cuts = sorted({int(m) for m in markers if int(m) > 0})
    if not cuts:
        return [line.strip()]

    cells = []
    start = 0
    for end in cuts:
        cells.append(line[start:end].strip())
        start = end
    cells.append(line[start:].strip())
    return cells


def split_delimited(lines: Sequence[str], delimiter: str) -> List[List[str]]:
    """Split lines into trimmed cells, honouring quoted fields.

    Each line is read on its own, so an unbalanced quote only affects its
    own row.
    """
    rows = []
    for line in lines:
        row = next(csv.reader([line], delimiter=delimiter), [])
        if row:
            rows.append([cell.strip() for cell in row])
    return rows


def _trim(items: List, skip_rows: int, skip_bottom_rows: int, is_blank: Callable) -> List:
    end = len(items)
    while end > 0 and is_blank(items[end - 1]):
        end -= 1
    items = items[skip_rows:end]
    if skip_bottom_rows:
        items = items[:max(0, len(items) - skip_bottom_rows)]
    return [item for item in items if not is_blank(item)]


def select_lines(lines: Sequence[str], skip_rows: int = 0, skip_bottom_rows: int = 0) -> List[str]:
    """
    Drop caller-excluded leading/trailing lines and all blank lines.

    Trailing blank lines are ignored before skip_bottom_rows is applied, so
    a final newline does not eat a footer skip.
    """
    return _trim(list(lines), skip_rows, skip_bottom_rows, lambda line: not line.strip())


def select_rows(rows: Sequence[Sequence[str]], skip_rows: int = 0, skip_bottom_rows: int = 0) -> List[List[str]]:
    """Row-matrix counterpart of select_lines (used for spreadsheets)."""
    return _trim(
        [list(row) for row in rows],
        skip_rows,
        skip_bottom_rows,
        lambda row: all(not str(cell).strip() for cell in row),
    )


def locate_header_row(
    rows: Sequence[Sequence[str]],
    score: HeaderScorer,
    scan_limit: int = 30
) -> Tuple[int, int]:
    """
    Find the header among the first `scan_limit` rows.

    Args:
        rows: Tabulated rows
        score: Number of semantic fields a candidate header maps
        scan_limit: Maximum rows to inspect

    Returns:
        (row index, score) of the best row; ties keep the earliest row.
        (0, 0) for an empty table.
    """
    best_index = 0
    best_score = 0
    for index, row in enumerate(rows[:scan_limit]):
        row_score = score(list(row))
        if row_score > best_score:
            best_index = index
            best_score = row_score
    return best_index, best_score


def tabulate_lines(
    lines: Sequence[str],
    options: ImportOptions,
    score: HeaderScorer,
    min_fixed_width_confidence: float = 0.45,
    scan_limit: int = 30
) -> TabulatedSource:
    """
    Split already-selected lines into a cell matrix.

    Explicit fixed columns or delimiter in `options` bypass detection. With
    no tab or semicolon present, fixed-width mode is used when its detection
    is trusted and either no line contains a comma or the fixed-width split
    yields a better header than the comma split.

    Args:
        lines: Lines after skip-row selection
        options: Import options of the file
        score: Header scorer (mapped-field count)
        min_fixed_width_confidence: Confidence threshold for fixed-width mode
        scan_limit: Rows scanned when comparing header candidates

    Returns:
        TabulatedSource with the chosen scheme recorded
    """
    if options.fixed_columns:
        markers = sorted(set(options.fixed_columns))
        return TabulatedSource(
            rows=[split_fixed_width_line(line, markers) for line in lines],
            fixed_columns=markers,
        )

    if options.delimiter:
        return TabulatedSource(rows=split_delimited(lines, options.delimiter), delimiter=options.delimiter)

    delimiter = detect_delimiter(lines)
    if delimiter != ",":
        return TabulatedSource(rows=split_delimited(lines, delimiter), delimiter=delimiter)

    comma_rows = split_delimited(lines, ",")
    detection = detect_fixed_width_markers(lines)
    if not detection.is_trusted(min_fixed_width_confidence):
        return TabulatedSource(rows=comma_rows, delimiter=",")

    fixed_rows = [split_fixed_width_line(line, detection.markers) for line in lines]
    sample = _sample_lines(lines, FIXED_WIDTH_SAMPLE_LINES)
    if not any("," in line for line in sample):
        return TabulatedSource(rows=fixed_rows, fixed_columns=detection.markers)

    _, fixed_score = locate_header_row(fixed_rows, score, scan_limit)
    _, comma_score = locate_header_row(comma_rows, score, scan_limit)
    if fixed_score > comma_score:
        return TabulatedSource(rows=fixed_rows, fixed_columns=detection.markers)
    return TabulatedSource(rows=comma_rows, delimiter=",")
