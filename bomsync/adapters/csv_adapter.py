import chardet
from pathlib import Path
from typing import List, Optional, Union

from ..column_mapper import ColumnMapper
from ..config import SyncSettings
from ..detector import TabulatedSource, select_lines, tabulate_lines
from ..errors import DecodeError
from ..models import ImportOptions

SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


class CsvAdapter:
    """Text adapter for delimited and fixed-width BOM exports.

    Handles:
    - Multiple encodings (UTF-8, UTF-8-BOM, Windows-1252, ISO-8859-1, etc.)
    - Different delimiters (tab, semicolon, comma) and fixed-width columns
    - Preamble / footer lines excluded through skip_rows / skip_bottom_rows
    """

    FALLBACK_ENCODINGS = ['latin-1', 'cp1252', 'iso-8859-1']

    def __init__(self, column_mapper: Optional[ColumnMapper] = None,
                 settings: Optional[SyncSettings] = None):
        self.column_mapper = column_mapper or ColumnMapper()
        self.settings = settings or SyncSettings()

    def can_handle(self, file_name: str) -> bool:
        """Any file that is not a spreadsheet is treated as text."""
        return Path(file_name).suffix.lower() not in SPREADSHEET_SUFFIXES

    def _detect_encoding(self, raw_data: bytes) -> str:
        """Detect byte encoding using chardet with fallback."""
        # Check for BOM first
        if raw_data.startswith(b'\xef\xbb\xbf'):
            return 'utf-8-sig'

        result = chardet.detect(raw_data[:10000])
        encoding = result.get('encoding') or 'utf-8'

        encoding_lower = encoding.lower()
        if 'utf-8' in encoding_lower or 'utf8' in encoding_lower:
            return 'utf-8'
        return encoding

    def decode(self, file_name: str, content: Union[str, bytes]) -> str:
        """Decode source content to text.

        Raises:
            DecodeError: If no candidate encoding can decode the bytes
        """
        if isinstance(content, str):
            return content.lstrip('\ufeff')

        encoding = self._detect_encoding(content)
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            for fallback_encoding in self.FALLBACK_ENCODINGS:
                try:
                    return content.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue
            raise DecodeError(file_name, str(e))

    def read_lines(self, file_name: str, content: Union[str, bytes]) -> List[str]:
        return self.decode(file_name, content).splitlines()

    def read(self, file_name: str, content: Union[str, bytes],
             options: Optional[ImportOptions] = None) -> TabulatedSource:
        """Read text content into a cell matrix.

        Args:
            file_name: Source file name (used for messages)
            content: Text or raw bytes
            options: Import options (skip rows, delimiter / fixed columns overrides)

        Returns:
            TabulatedSource with rows and the splitting scheme used
        """
        options = options or ImportOptions()
        lines = select_lines(
            self.read_lines(file_name, content),
            options.skip_rows,
            options.skip_bottom_rows,
        )
        if not lines:
            return TabulatedSource(rows=[])

        return tabulate_lines(
            lines,
            options,
            self.column_mapper.count_matches,
            min_fixed_width_confidence=self.settings.fixed_width_min_confidence,
            scan_limit=self.settings.header_scan_limit,
        )
