"""Re-import reconciliation: line keys, parse cache, merge engine."""

from .keys import (
    merge_key,
    match_key,
    normalize_references,
    manufacturer_signature,
    dedupe_lines,
    LineIndex,
)

from .cache import (
    compute_signature,
    SignatureCache,
)

from .reconcile import (
    # Pure reconciliation
    reconcile,
    merge_into_working_set,
    merge_line_fields,
    collect_parsed_lines,
    # Enums
    SyncPhase,
    ReconcileAction,
    # Data classes
    ReconcileResult,
)

from .engine import (
    BomSyncEngine,
    SourceFile,
    ParseEventResult,
)

__all__ = [
    # Identity keys
    "merge_key",
    "match_key",
    "normalize_references",
    "manufacturer_signature",
    "dedupe_lines",
    "LineIndex",
    # Parse cache
    "compute_signature",
    "SignatureCache",
    # Reconciliation
    "reconcile",
    "merge_into_working_set",
    "merge_line_fields",
    "collect_parsed_lines",
    "SyncPhase",
    "ReconcileAction",
    "ReconcileResult",
    # Engine
    "BomSyncEngine",
    "SourceFile",
    "ParseEventResult",
]
