"""
Row builder: turns tabulated data rows into ComponentLine records.

Per row:
- Blank rows and report footers ("Total", "Summe", ...) are skipped
- Cells are coerced (line type, booleans, quantity, DNP detection)
- Rows repeating an earlier row's references only contribute an alternate
  manufacturer to that earlier line
- Allow-listed unmapped columns are kept in `extra`
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from .models import ColumnMapping, ComponentLine, Manufacturer
from .schema import BomField, LineType, SUMMARY_MARKERS, TRUE_VALUES

logger = logging.getLogger(__name__)

_DNP_MARKERS = ("DNP", "DO NOT POPULATE")


def parse_line_type(raw: str) -> LineType:
    """
    Parse a line type cell.

    Exact (case-insensitive) enum names win; otherwise SMD/SMT -> SMD,
    THT/THD/"through" -> THT, "mount"/"mech" -> Mounting, else Other.
    """
    upper = (raw or "").strip().upper()
    for line_type in LineType:
        if upper == line_type.value.upper():
            return line_type
    if re.match(r'^SM[DT]$', upper):
        return LineType.SMD
    if re.match(r'^TH[TD]$', upper) or "THROUGH" in upper:
        return LineType.THT
    if "MOUNT" in upper or "MECH" in upper:
        return LineType.MOUNTING
    return LineType.OTHER


def parse_bool(raw: str) -> bool:
    """'yes', 'true', '1', 'y' (any case) are true; anything else is false."""
    return (raw or "").strip().lower() in TRUE_VALUES


def parse_quantity(raw: str) -> int:
    """Strip all non-digits and parse; unparseable values become 0."""
    digits = re.sub(r'[^\d]', '', raw or "")
    if not digits:
        return 0
    return int(digits)


def is_dnp_row(row: Sequence[str], mapping: ColumnMapping) -> bool:
    """Do-not-populate: comment mentions DNP / DO NOT POPULATE, or a cell is exactly DNP."""
    comment = mapping.cell(list(row), BomField.COMMENT).upper()
    if any(marker in comment for marker in _DNP_MARKERS):
        return True
    return any(str(cell).strip().upper() == "DNP" for cell in row)


def is_summary_row(row: Sequence[str], references: str) -> bool:
    """Footer rows: no references and some cell reading total/sum/summe/gesamt."""
    if references:
        return False
    return any(str(cell).strip().lower() in SUMMARY_MARKERS for cell in row)


def _is_blank(row: Sequence[str]) -> bool:
    return all(not str(cell).strip() for cell in row)


def _extra_column_indices(
    headers: Optional[Sequence[str]],
    mapping: ColumnMapping,
    extra_columns: Optional[Sequence[str]]
) -> Dict[str, int]:
    if not headers or not extra_columns:
        return {}
    wanted = {name.strip() for name in extra_columns if name and name.strip()}
    taken = mapping.mapped_indices()
    indices: Dict[str, int] = {}
    for index, header in enumerate(headers):
        name = str(header).strip()
        if name in wanted and index not in taken and name not in indices:
            indices[name] = index
    return indices


def build_records(
    rows: Sequence[Sequence[str]],
    mapping: ColumnMapping,
    headers: Optional[Sequence[str]] = None,
    extra_columns: Optional[Sequence[str]] = None,
    debug: bool = False
) -> List[ComponentLine]:
    """
    Build component lines from data rows and a column mapping.

    This is also the manual-mapping entry point: it bypasses schema
    detection and column mapping entirely.

    Args:
        rows: Data rows (header excluded)
        mapping: Accepted column mapping
        headers: Header row, needed to resolve `extra_columns`
        extra_columns: Header names of unmapped columns to keep in `extra`
        debug: Log skipped and consolidated rows

    Returns:
        List of ComponentLine, in source order
    """
    lines: List[ComponentLine] = []
    lines_by_refs: Dict[str, ComponentLine] = {}
    extra_indices = _extra_column_indices(headers, mapping, extra_columns)

    for row_number, raw_row in enumerate(rows):
        row = ["" if cell is None else str(cell) for cell in raw_row]
        if _is_blank(row):
            continue

        references = mapping.cell(row, BomField.REFERENCES)
        if is_summary_row(row, references):
            if debug:
                logger.info(f"Row {row_number}: skipped summary row {row}")
            continue

        mfr_name = mapping.cell(row, BomField.MANUFACTURER)
        mfr_part = mapping.cell(row, BomField.MANUFACTURER_PART)
        manufacturer = Manufacturer(mfr_name, mfr_part) if (mfr_name or mfr_part) else None

        # Exports repeat a designator row once per alternate manufacturer
        existing = lines_by_refs.get(references) if references else None
        if existing is not None:
            if manufacturer is not None and existing.add_manufacturer(manufacturer) and debug:
                logger.info(
                    f"Row {row_number}: added alternate manufacturer "
                    f"{mfr_name} {mfr_part} to '{references}'"
                )
            continue

        line = ComponentLine(
            description=mapping.cell(row, BomField.DESCRIPTION),
            line_type=parse_line_type(mapping.cell(row, BomField.TYPE)),
            customer_provided=parse_bool(mapping.cell(row, BomField.CUSTOMER_PROVIDED)),
            customer_item_no=mapping.cell(row, BomField.CUSTOMER_ITEM_NO),
            quantity=parse_quantity(mapping.cell(row, BomField.QUANTITY)),
            package=mapping.cell(row, BomField.PACKAGE),
            references=references,
            comment=mapping.cell(row, BomField.COMMENT),
            do_not_populate=is_dnp_row(row, mapping),
            manufacturers=[manufacturer] if manufacturer else [],
        )

        if extra_indices:
            extra = {
                name: (row[index].strip() if index < len(row) else "")
                for name, index in extra_indices.items()
            }
            if any(extra.values()):
                line.extra = extra

        lines.append(line)
        if references:
            lines_by_refs[references] = line

    return lines
