from .parser import BomParser, apply_manual_mapping
from .column_mapper import ColumnMapper
from .config import SyncSettings, configure_logging
from .errors import BomSyncError, DecodeError
from .models import ComponentLine, Manufacturer, ColumnMapping, ImportOptions, ParseResult
from .schema import BomField, LineType, SmdClassification, COLUMN_PATTERNS
from .sync import BomSyncEngine, SourceFile, ParseEventResult, SyncPhase, reconcile

__all__ = [
    "BomParser", "apply_manual_mapping", "ColumnMapper", "SyncSettings", "configure_logging",
    "BomSyncError", "DecodeError", "ComponentLine", "Manufacturer", "ColumnMapping",
    "ImportOptions", "ParseResult", "BomField", "LineType", "SmdClassification",
    "COLUMN_PATTERNS", "BomSyncEngine", "SourceFile", "ParseEventResult", "SyncPhase", "reconcile",
]
