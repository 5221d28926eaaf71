import io
import openpyxl
from pathlib import Path

from ..detector import TabulatedSource, select_rows
from ..errors import DecodeError
from ..models import ImportOptions


def _cell_text(value):
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class ExcelAdapter:
    """Spreadsheet adapter: first (active) sheet as a string matrix."""

    def can_handle(self, file_name):
        return Path(file_name).suffix.lower() in [".xlsx", ".xlsm", ".xls"]

    def read(self, file_name, content, options=None):
        options = options or ImportOptions()
        if isinstance(content, str):
            content = content.encode("utf-8")

        try:
            wb = openpyxl.load_workbook(io.BytesIO(content), data_only=True, read_only=True)
        except Exception as e:
            raise DecodeError(file_name, f"not a readable spreadsheet ({e})") from e

        try:
            ws = wb.active
            if ws is None:
                return TabulatedSource(rows=[])
            rows = [
                [_cell_text(value) for value in row]
                for row in ws.iter_rows(values_only=True)
            ]
        finally:
            wb.close()

        return TabulatedSource(rows=select_rows(rows, options.skip_rows, options.skip_bottom_rows))
