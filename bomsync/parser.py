import logging
from typing import List, Dict, Any, Optional, Sequence, Union

from .adapters.csv_adapter import CsvAdapter
from .adapters.excel_adapter import ExcelAdapter
from .column_mapper import ColumnMapper
from .config import SyncSettings
from .detector import locate_header_row
from .models import ColumnMapping, ComponentLine, ImportOptions, ParseResult
from .row_builder import build_records

logger = logging.getLogger(__name__)


class BomParser:
    """Parser for BOM source files: schema detection, column mapping and row building."""

    def __init__(self, settings: Optional[SyncSettings] = None,
                 column_mapper: Optional[ColumnMapper] = None,
                 register_defaults: bool = True,
                 debug: bool = False):
        """Initialize the BOM parser.

        Args:
            settings: Detection limits (default: SyncSettings())
            column_mapper: Header mapper (default: ColumnMapper())
            register_defaults: Register the spreadsheet and text adapters (default: True)
            debug: Log skipped and consolidated rows
        """
        self.settings = settings or SyncSettings()
        self.column_mapper = column_mapper or ColumnMapper()
        self.debug = debug
        self.adapters = []
        if register_defaults:
            self.register_adapter(ExcelAdapter())
            self.register_adapter(CsvAdapter(self.column_mapper, self.settings))

    def register_adapter(self, adapter):
        """Register a file adapter for parsing.

        Args:
            adapter: Adapter instance with can_handle() and read() methods.
                     read(file_name, content, options) must return a TabulatedSource.
        """
        self.adapters.append(adapter)

    def _find_adapter(self, file_name: str):
        for adapter in self.adapters:
            if adapter.can_handle(file_name):
                return adapter
        raise ValueError(f"No adapter found for {file_name}")

    def parse_source(self, file_name: str, content: Union[str, bytes],
                     options: Optional[ImportOptions] = None) -> ParseResult:
        """Parse one BOM source into headers, rows, mapping and lines.

        Args:
            file_name: Source file name (its suffix selects the adapter)
            content: Text or raw bytes
            options: Import options (default: ImportOptions())

        The header row is located by keyword score even when options carry
        an explicit mapping, so a preamble row matching one keyword wins over
        a header matching none. Use skip_rows to pin such headers.

        Returns:
            ParseResult. mapping is None (and lines is None) when the header
            could not be mapped with enough confidence.

        Raises:
            DecodeError: If the content cannot be decoded
            ValueError: If no adapter handles the file
        """
        options = options or ImportOptions()
        adapter = self._find_adapter(file_name)
        table = adapter.read(file_name, content, options)

        if not table.rows:
            return ParseResult(headers=[], rows=[], file_name=file_name,
                               delimiter=table.delimiter, fixed_columns=table.fixed_columns)

        header_index, score = locate_header_row(
            table.rows, self.column_mapper.count_matches, self.settings.header_scan_limit
        )
        headers = table.rows[header_index]
        rows = table.rows[header_index + 1:]

        if options.mapping is not None:
            mapping = options.mapping
        else:
            mapping = self.column_mapper.map_columns(headers)

        lines = None
        if mapping is not None:
            lines = build_records(rows, mapping, headers, options.extra_columns, self.debug)
        else:
            logger.warning(
                f"{file_name}: header row {header_index} maps only {score} field(s); "
                f"manual column mapping required"
            )

        return ParseResult(
            headers=headers,
            rows=rows,
            mapping=mapping,
            lines=lines,
            file_name=file_name,
            delimiter=table.delimiter,
            fixed_columns=table.fixed_columns,
            header_row_index=header_index,
        )

    def build_records(self, rows: Sequence[Sequence[str]], mapping: ColumnMapping,
                      headers: Optional[Sequence[str]] = None,
                      extra_columns: Optional[Sequence[str]] = None) -> List[ComponentLine]:
        """Build lines from rows with an explicit mapping (manual-mapping path)."""
        return build_records(rows, mapping, headers, extra_columns, self.debug)

    def get_mapping_report(self, file_name: str, content: Union[str, bytes],
                           options: Optional[ImportOptions] = None) -> Dict[str, Any]:
        """Get a report of how the located header row maps to semantic fields.

        Args:
            file_name: Source file name
            content: Text or raw bytes
            options: Import options

        Returns:
            Mapping report (see ColumnMapper.get_mapping_report) plus the
            header row index and the splitting scheme
        """
        result = self.parse_source(file_name, content, options)
        report = self.column_mapper.get_mapping_report(result.headers)
        report["header_row_index"] = result.header_row_index
        report["delimiter"] = result.delimiter
        report["fixed_columns"] = result.fixed_columns
        return report


def apply_manual_mapping(pending: ParseResult, mapping: ColumnMapping,
                         extra_columns: Optional[Sequence[str]] = None) -> List[ComponentLine]:
    """Build lines for a parse result whose schema could not be detected.

    Args:
        pending: ParseResult with mapping None
        mapping: Column mapping collected from a human
        extra_columns: Header names of unmapped columns to keep in `extra`

    Returns:
        Lines built from the pending rows
    """
    return build_records(pending.rows, mapping, pending.headers, extra_columns)
