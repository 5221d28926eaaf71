from typing import List, Dict, Any, Optional, Pattern, Sequence, Tuple
import re
from .models import ColumnMapping
from .schema import BomField, COLUMN_PATTERNS, MIN_MAPPED_FIELDS, FIELD_SCHEMAS, STANDARD_FIELDS


class ColumnMapper:
    """Maps header cells of a BOM table to semantic fields.

    Header text is normalized (lowercase, alphanumerics only) and tested
    against an ordered (field, pattern) table. Each field is claimed by at
    most one column, the first that matches.
    """

    def __init__(self, patterns: Optional[Sequence[Tuple[BomField, Pattern[str]]]] = None,
                 min_mapped_fields: int = MIN_MAPPED_FIELDS):
        """Initialize the mapper.

        Args:
            patterns: Ordered (field, compiled pattern) table (default: COLUMN_PATTERNS)
            min_mapped_fields: Fields that must match before a mapping is trusted (default: 2)
        """
        self.patterns = list(patterns) if patterns is not None else list(COLUMN_PATTERNS)
        self.min_mapped_fields = min_mapped_fields

    @staticmethod
    def normalize_header(header: Any) -> str:
        """Lowercase a header and strip everything but letters and digits."""
        if header is None:
            return ""
        return re.sub(r'[^a-z0-9]', '', str(header).lower())

    def guess_columns(self, headers: Sequence[Any]) -> ColumnMapping:
        """Match every header against the pattern table, regardless of confidence.

        Args:
            headers: Header row cells

        Returns:
            ColumnMapping with one column per matched field (may be empty)
        """
        columns: Dict[BomField, int] = {}
        for index, header in enumerate(headers):
            normalized = self.normalize_header(header)
            if not normalized:
                continue
            for bom_field, pattern in self.patterns:
                if bom_field not in columns and pattern.match(normalized):
                    columns[bom_field] = index
                    break
        return ColumnMapping(columns=columns)

    def count_matches(self, headers: Sequence[Any]) -> int:
        """Number of semantic fields a candidate header row maps."""
        return len(self.guess_columns(headers))

    def map_columns(self, headers: Sequence[Any]) -> Optional[ColumnMapping]:
        """Auto-map header cells to semantic fields.

        Args:
            headers: Header row cells

        Returns:
            ColumnMapping, or None if fewer than `min_mapped_fields` fields
            matched (the host should ask for a manual mapping)
        """
        mapping = self.guess_columns(headers)
        if len(mapping) < self.min_mapped_fields:
            return None
        return mapping

    def unmapped_headers(self, headers: Sequence[Any], mapping: ColumnMapping) -> List[str]:
        """Headers not claimed by the mapping (candidates for `extra`)."""
        taken = mapping.mapped_indices()
        return [
            str(header).strip() for index, header in enumerate(headers)
            if index not in taken and header is not None and str(header).strip()
        ]

    def get_mapping_report(self, headers: Sequence[Any]) -> Dict[str, Any]:
        """Generate a report of how header cells map to semantic fields.

        Args:
            headers: Header row cells

        Returns:
            Dictionary with mapped fields (field -> header/index/label),
            unmapped headers, the match count and whether the mapping is trusted
        """
        mapping = self.guess_columns(headers)

        mapped = {}
        for bom_field in STANDARD_FIELDS:
            index = mapping.index_of(bom_field)
            if index is None:
                continue
            mapped[bom_field.value] = {
                "header": str(headers[index]),
                "index": index,
                "label": FIELD_SCHEMAS[bom_field]["label"],
            }

        return {
            "mapped": mapped,
            "unmapped": self.unmapped_headers(headers, mapping),
            "matched_count": len(mapping),
            "trusted": len(mapping) >= self.min_mapped_fields,
            "standard_fields": [f.value for f in STANDARD_FIELDS],
        }
