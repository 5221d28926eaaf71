"""BOM schema definitions: canonical fields, line types and header patterns."""

import re
from enum import Enum
from typing import Dict, List, Any, Pattern, Tuple


class LineType(Enum):
    """Mounting category of a component line."""
    SMD = "SMD"
    THT = "THT"
    MOUNTING = "Mounting"
    OTHER = "Other"


class SmdClassification(Enum):
    """SMD placement classification (user-assigned, never parsed)."""
    FAST = "Fast"
    SLOW = "Slow"
    FINEPITCH = "Finepitch"
    BGA = "BGA"


class BomField(Enum):
    """Semantic fields a source column can be mapped to."""
    DESCRIPTION = "description"
    TYPE = "type"
    CUSTOMER_PROVIDED = "customer_provided"
    CUSTOMER_ITEM_NO = "customer_item_no"
    QUANTITY = "quantity"
    PACKAGE = "package"
    REFERENCES = "references"
    COMMENT = "comment"
    MANUFACTURER = "manufacturer"
    MANUFACTURER_PART = "manufacturer_part"


# Standard field order (also the order of the pattern table below)
STANDARD_FIELDS: List[BomField] = [
    BomField.DESCRIPTION,
    BomField.TYPE,
    BomField.CUSTOMER_PROVIDED,
    BomField.CUSTOMER_ITEM_NO,
    BomField.QUANTITY,
    BomField.PACKAGE,
    BomField.REFERENCES,
    BomField.COMMENT,
    BomField.MANUFACTURER,
    BomField.MANUFACTURER_PART,
]

# Ordered (field, pattern) table for header matching.
# Patterns are tested against normalized header text (lowercase, alphanumerics only).
COLUMN_PATTERNS: List[Tuple[BomField, Pattern[str]]] = [
    (BomField.DESCRIPTION, re.compile(
        r"^(description|desc|component|comp|partdescription|partdesc)$")),
    (BomField.TYPE, re.compile(
        r"^(type|componenttype|comptype|mounttype|mountingtype|category)$")),
    (BomField.CUSTOMER_PROVIDED, re.compile(
        r"^(customerprovided|custprovided|customer|customersupplied|custsupplied)$")),
    (BomField.CUSTOMER_ITEM_NO, re.compile(
        r"^(customeritemno|custitemno|customeritem|customerpartnumber|customerpartno|custpartno|custpn)$")),
    (BomField.QUANTITY, re.compile(
        r"^(quantity|qty|count|amount|pcs|pieces|number)$")),
    (BomField.PACKAGE, re.compile(
        r"^(package|footprint|pkg|fp|land|landpattern|case|casecode)$")),
    (BomField.REFERENCES, re.compile(
        r"^(references|refdes|ref|referencedesignators|refs|designators|designator|parts)$")),
    (BomField.COMMENT, re.compile(
        r"^(comment|comments|note|notes|remark|remarks)$")),
    (BomField.MANUFACTURER, re.compile(
        r"^(manufacturer|mfr|mfg|make|vendor|brand)$")),
    (BomField.MANUFACTURER_PART, re.compile(
        r"^(manufacturerpart|mpn|mfpn|manufacturerpartnumber|mfrpart|mfgpart|mfrpn|mfgpn|partno|partnumber)$")),
]

# Minimum number of matched fields before an auto-detected mapping is trusted
MIN_MAPPED_FIELDS = 2

# Cell values that mark report footer rows ("Total", "Summe", ...)
SUMMARY_MARKERS = {"total", "sum", "summe", "gesamt"}

# Truthy spellings for boolean columns
TRUE_VALUES = {"yes", "true", "1", "y"}

# Canonical field schemas, used for reports and manual mapping prompts
CANONICAL_FIELDS: List[Dict[str, Any]] = [
    {
        "id": BomField.DESCRIPTION,
        "label": "Description",
        "examples": ["Resistor 10k 1%", "MCU ARM Cortex-M4", "Header 2x5"],
        "description": "Human-readable description of the component."
    },
    {
        "id": BomField.TYPE,
        "label": "Type",
        "examples": ["SMD", "THT", "Mounting", "Other"],
        "description": "Mounting category. Fuzzy spellings (SMT, THD, through hole, mechanical) are accepted."
    },
    {
        "id": BomField.CUSTOMER_PROVIDED,
        "label": "Customer Provided",
        "examples": ["yes", "no", "1", "0"],
        "description": "Whether the customer supplies the part (yes/true/1/y)."
    },
    {
        "id": BomField.CUSTOMER_ITEM_NO,
        "label": "Customer Item No.",
        "examples": ["100-2034", "CUST-0042"],
        "description": "The customer's own item number for the part."
    },
    {
        "id": BomField.QUANTITY,
        "label": "Quantity",
        "examples": ["1", "4", "12 pcs"],
        "description": "Pieces per board. Non-digit characters are stripped; unparseable values become 0."
    },
    {
        "id": BomField.PACKAGE,
        "label": "Package",
        "examples": ["0603", "SOIC-8", "QFN-32"],
        "description": "Package or footprint name."
    },
    {
        "id": BomField.REFERENCES,
        "label": "References",
        "examples": ["R1", "C1, C2, C4", "U3"],
        "description": "Comma-joined reference designators. Rows repeating the same references are merged."
    },
    {
        "id": BomField.COMMENT,
        "label": "Comment",
        "examples": ["DNP", "Alternative allowed"],
        "description": "Free-form comment. 'DNP' or 'DO NOT POPULATE' marks the line as not populated."
    },
    {
        "id": BomField.MANUFACTURER,
        "label": "Manufacturer",
        "examples": ["Yageo", "Vishay", "Texas Instruments"],
        "description": "Manufacturer name for the part."
    },
    {
        "id": BomField.MANUFACTURER_PART,
        "label": "Manufacturer Part",
        "examples": ["RC0603FR-0710KL", "CRCW060310K0FKEA"],
        "description": "Manufacturer part number (MPN)."
    },
]

# Lookup by field for easy access
FIELD_SCHEMAS: Dict[BomField, Dict[str, Any]] = {
    field["id"]: field for field in CANONICAL_FIELDS
}

__all__ = [
    "LineType",
    "SmdClassification",
    "BomField",
    "STANDARD_FIELDS",
    "COLUMN_PATTERNS",
    "MIN_MAPPED_FIELDS",
    "SUMMARY_MARKERS",
    "TRUE_VALUES",
    "CANONICAL_FIELDS",
    "FIELD_SCHEMAS",
]
