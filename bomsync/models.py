"""
Core data model for BOM import and synchronization.

ComponentLine is the canonical record shared by every stage:
- The row builder creates lines from parsed source rows
- The host creates lines through manual edits
- The reconciliation engine merges and prunes lines across re-imports

Import options and parse results are plain dataclasses so the host can
persist them (to_dict / from_dict) without knowing their internals.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from .schema import BomField, LineType, SmdClassification


def normalize_value(value: Any) -> str:
    """Lowercase and trim a value for identity comparisons."""
    if value is None:
        return ""
    return str(value).strip().lower()


def new_line_id() -> str:
    """Generate an opaque, stable line identifier."""
    return str(uuid4())


@dataclass
class Manufacturer:
    """A manufacturer + part number entry of a component line."""
    manufacturer: str = ""
    manufacturer_part: str = ""

    def normalized_pair(self) -> Tuple[str, str]:
        """Identity of this entry: the lowercased, trimmed (manufacturer, part) pair."""
        return normalize_value(self.manufacturer), normalize_value(self.manufacturer_part)

    def to_dict(self) -> Dict[str, str]:
        return {
            "manufacturer": self.manufacturer,
            "manufacturer_part": self.manufacturer_part,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manufacturer":
        return cls(
            manufacturer=str(data.get("manufacturer") or ""),
            manufacturer_part=str(data.get("manufacturer_part") or ""),
        )


@dataclass
class ComponentLine:
    """
    A single normalized BOM line.

    `id` is assigned once at creation and never reassigned. `pin_count` and
    `smd_classification` are user-assigned: parsing never produces them and
    merging never touches them. Unsetting either one is a None write.
    """
    id: str = field(default_factory=new_line_id)
    description: str = ""
    line_type: LineType = LineType.OTHER
    customer_provided: bool = False
    customer_item_no: str = ""
    quantity: int = 0
    package: str = ""
    references: str = ""  # comma-joined designators, e.g. "R1, R2, R3"
    comment: str = ""
    do_not_populate: bool = False
    manufacturers: List[Manufacturer] = field(default_factory=list)
    extra: Optional[Dict[str, str]] = None
    pin_count: Optional[int] = None
    smd_classification: Optional[SmdClassification] = None

    def __post_init__(self):
        if self.quantity is None or self.quantity < 0:
            self.quantity = 0

    def has_manufacturer(self, candidate: Manufacturer) -> bool:
        """Check whether an entry with the same normalized pair is already listed."""
        pair = candidate.normalized_pair()
        return any(m.normalized_pair() == pair for m in self.manufacturers)

    def add_manufacturer(self, candidate: Manufacturer) -> bool:
        """Append a manufacturer unless it is a duplicate.

        Returns:
            True if the entry was appended, False if it was already present
        """
        if self.has_manufacturer(candidate):
            return False
        self.manufacturers.append(candidate)
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for JSON persistence."""
        return {
            "id": self.id,
            "description": self.description,
            "line_type": self.line_type.value,
            "customer_provided": self.customer_provided,
            "customer_item_no": self.customer_item_no,
            "quantity": self.quantity,
            "package": self.package,
            "references": self.references,
            "comment": self.comment,
            "do_not_populate": self.do_not_populate,
            "manufacturers": [m.to_dict() for m in self.manufacturers],
            "extra": dict(self.extra) if self.extra is not None else None,
            "pin_count": self.pin_count,
            "smd_classification": self.smd_classification.value if self.smd_classification else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentLine":
        """Rebuild a line from its persisted dictionary form."""
        smd = data.get("smd_classification")
        extra = data.get("extra")
        line = cls(
            id=str(data.get("id") or new_line_id()),
            description=str(data.get("description") or ""),
            line_type=LineType(data.get("line_type") or LineType.OTHER.value),
            customer_provided=bool(data.get("customer_provided", False)),
            customer_item_no=str(data.get("customer_item_no") or ""),
            quantity=int(data.get("quantity") or 0),
            package=str(data.get("package") or ""),
            references=str(data.get("references") or ""),
            comment=str(data.get("comment") or ""),
            do_not_populate=bool(data.get("do_not_populate", False)),
            extra={str(k): str(v) for k, v in extra.items()} if extra else None,
            pin_count=data.get("pin_count"),
            smd_classification=SmdClassification(smd) if smd else None,
        )
        for entry in data.get("manufacturers") or []:
            line.add_manufacturer(Manufacturer.from_dict(entry))
        return line


@dataclass
class ColumnMapping:
    """
    Column index for each semantic field of a source table.

    A field appears at most once; columns that are not mapped are candidates
    for `extra` retention.
    """
    columns: Dict[BomField, int] = field(default_factory=dict)

    def index_of(self, bom_field: BomField) -> Optional[int]:
        return self.columns.get(bom_field)

    def cell(self, row: List[str], bom_field: BomField) -> str:
        """Get the trimmed cell value of a field, or '' if unmapped / out of range."""
        index = self.columns.get(bom_field)
        if index is None or index >= len(row):
            return ""
        value = row[index]
        return str(value).strip() if value is not None else ""

    def mapped_indices(self) -> set:
        return set(self.columns.values())

    def __contains__(self, bom_field: BomField) -> bool:
        return bom_field in self.columns

    def __len__(self) -> int:
        return len(self.columns)

    def to_dict(self) -> Dict[str, int]:
        return {f.value: idx for f, idx in self.columns.items()}

    @classmethod
    def from_dict(cls, data: Dict[Any, Any]) -> "ColumnMapping":
        """Build a mapping from {field name or BomField: column index}.

        Raises:
            ValueError: If a field name is unknown or an index is negative
        """
        columns: Dict[BomField, int] = {}
        for key, index in data.items():
            bom_field = key if isinstance(key, BomField) else BomField(str(key))
            if index is None:
                continue
            index = int(index)
            if index < 0:
                raise ValueError(f"Column index for {bom_field.value} must be >= 0, got {index}")
            columns[bom_field] = index
        return cls(columns=columns)


@dataclass
class ImportOptions:
    """
    Per-file import options.

    mapping, fixed_columns and delimiter each bypass the matching detection
    step. extra_columns is an allow-list of header names kept in `extra`.
    """
    skip_rows: int = 0
    skip_bottom_rows: int = 0
    mapping: Optional[ColumnMapping] = None
    fixed_columns: Optional[List[int]] = None
    delimiter: Optional[str] = None
    extra_columns: Optional[List[str]] = None

    def __post_init__(self):
        if self.skip_rows < 0 or self.skip_bottom_rows < 0:
            raise ValueError(
                f"skip_rows and skip_bottom_rows must be >= 0 "
                f"(got {self.skip_rows}, {self.skip_bottom_rows})"
            )
        if self.delimiter is not None and len(self.delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {self.delimiter!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skip_rows": self.skip_rows,
            "skip_bottom_rows": self.skip_bottom_rows,
            "mapping": self.mapping.to_dict() if self.mapping is not None else None,
            "fixed_columns": list(self.fixed_columns) if self.fixed_columns is not None else None,
            "delimiter": self.delimiter,
            "extra_columns": list(self.extra_columns) if self.extra_columns is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ImportOptions":
        if not data:
            return cls()
        mapping = data.get("mapping")
        return cls(
            skip_rows=int(data.get("skip_rows") or 0),
            skip_bottom_rows=int(data.get("skip_bottom_rows") or 0),
            mapping=ColumnMapping.from_dict(mapping) if mapping else None,
            fixed_columns=[int(v) for v in data["fixed_columns"]] if data.get("fixed_columns") else None,
            delimiter=data.get("delimiter"),
            extra_columns=list(data["extra_columns"]) if data.get("extra_columns") else None,
        )

    def serialize(self) -> str:
        """Stable string form, used in source signatures."""
        return json.dumps(self.to_dict(), sort_keys=True)


@dataclass
class ParseResult:
    """
    Output of schema detection, column mapping and row building for one file.

    mapping is None when auto-detection did not reach the confidence
    threshold; lines is only set when a mapping is available.
    """
    headers: List[str]
    rows: List[List[str]]
    mapping: Optional[ColumnMapping] = None
    lines: Optional[List[ComponentLine]] = None
    file_name: str = ""
    delimiter: Optional[str] = None
    fixed_columns: Optional[List[int]] = None
    header_row_index: Optional[int] = None

    @property
    def needs_mapping(self) -> bool:
        """True when the host has to ask a human for a column mapping."""
        return self.mapping is None and bool(self.headers) and bool(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "headers": list(self.headers),
            "rows": [list(r) for r in self.rows],
            "mapping": self.mapping.to_dict() if self.mapping is not None else None,
            "lines": [l.to_dict() for l in self.lines] if self.lines is not None else None,
            "delimiter": self.delimiter,
            "fixed_columns": self.fixed_columns,
            "header_row_index": self.header_row_index,
        }


@dataclass
class SourceCacheEntry:
    """Memoized parse of one source file, keyed by its signature."""
    signature: str
    result: ParseResult
