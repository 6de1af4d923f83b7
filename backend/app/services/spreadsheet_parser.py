"""
Spreadsheet parser for point-of-sale exports.

Parses .csv, .xlsx, and .xls uploads into a header row plus string data rows.
Column meaning is decided later by the column mapping engine; this module
only reads cells.

Public API:
  parse_upload(file_content, filename) -> ParsedSheet
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ParseError(Exception):
    """Raised when a file cannot be parsed."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ParsedSheet:
    """Result of parse_upload()."""
    headers: list[str]                    # header row, de-duplicated
    rows: list[list[str]]                 # data rows, one string per header
    sample_rows: list[list[str]] = field(default_factory=list)  # first 5 data rows
    sheet_name: str = "Sheet1"
    total_rows: int = 0                   # rows in file including header

    @property
    def data_rows(self) -> int:
        return len(self.rows)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_EXTENSIONS = {".xlsx", ".xls", ".csv"}

# utf-8-sig also reads plain utf-8; Korean POS exports are often cp949.
CSV_ENCODINGS = ["utf-8-sig", "cp949", "latin-1"]

# A data row whose first non-empty cell is exactly one of these, and that
# leaves at least one cell blank, ends the data.
SUMMARY_KEYWORDS = frozenset({"합계", "총계", "소계", "grand total", "subtotal", "totals", "total"})

SAMPLE_SIZE = 5


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _get_extension(filename: str) -> str:
    """Return lower-case file extension including the dot."""
    dot = filename.rfind(".")
    if dot == -1:
        return ""
    return filename[dot:].lower()


def _cell_to_str(value) -> str:
    """Convert a cell value to its string form; datetimes use YYYY-MM-DD HH:MM:SS."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _row_is_all_empty(row_cells: list) -> bool:
    """Return True if all cells in the row are None or empty string."""
    return all(
        cell is None or str(cell).strip() == ""
        for cell in row_cells
    )


def _is_summary_row(row_cells: list[str]) -> bool:
    """
    Return True if this row looks like a TOTAL/합계 summary row.

    The label must be the whole cell, so a menu named "Total Combo" or
    "합계세트" is a sale.  Summary rows leave the timestamp or menu cells
    blank; a fully populated row is always data.
    """
    if all(cell.strip() for cell in row_cells):
        return False
    for cell in row_cells:
        s = cell.strip().lower()
        if not s:
            continue
        return s in SUMMARY_KEYWORDS
    return False


def _looks_like_metadata_row(row: list) -> bool:
    """
    Return True if this row looks like a label:value line above the table
    (e.g. "매장명:", "Exported at: 2025-01-03").
    """
    non_empty = [cell for cell in row if cell is not None and str(cell).strip() != ""]
    if not non_empty or len(non_empty) > 2:
        return False
    first = str(non_empty[0]).strip()
    if first.endswith(":"):
        return True
    if ":" in first and len(non_empty) == 1:
        return True
    return False


def _detect_header_row(raw_rows: list[list]) -> int:
    """
    Index of the header row: the first row, within the first 20, that has at
    least two non-empty cells and is not a label:value metadata line.
    Falls back to the first non-empty row, then 0.
    """
    first_non_empty: Optional[int] = None
    for i, row in enumerate(raw_rows[:20]):
        if _row_is_all_empty(row):
            continue
        if first_non_empty is None:
            first_non_empty = i
        if _looks_like_metadata_row(row):
            continue
        populated = sum(1 for c in row if c is not None and str(c).strip() != "")
        if populated >= 2:
            return i
    return first_non_empty if first_non_empty is not None else 0


def _dedupe_headers(header_row: list) -> list[str]:
    """Stringify headers, name blanks Column_N, and suffix repeats (_1, _2, ...)."""
    names: list[str] = []
    seen: dict[str, int] = {}
    for idx, cell in enumerate(header_row):
        name = _cell_to_str(cell) or f"Column_{idx + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        names.append(name)
    return names


# ---------------------------------------------------------------------------
# CSV parsing
# ---------------------------------------------------------------------------

def _parse_csv_bytes(file_content: bytes) -> tuple[list[list], str]:
    """
    Parse CSV bytes with encoding fallback.
    Returns (list_of_rows, encoding_used).
    """
    for encoding in CSV_ENCODINGS:
        try:
            text = file_content.decode(encoding)
        except UnicodeDecodeError:
            continue
        try:
            rows = [row for row in csv.reader(io.StringIO(text))]
        except csv.Error as e:
            raise ParseError(f"Could not parse CSV file: {e}", "parse_failed")
        return rows, encoding

    raise ParseError(
        "CSV file could not be decoded with any supported encoding",
        "parse_failed",
    )


# ---------------------------------------------------------------------------
# xlsx parsing
# ---------------------------------------------------------------------------

def _parse_xlsx_bytes(file_content: bytes) -> tuple[list[list[list]], list[str]]:
    """
    Parse xlsx bytes.
    Returns (list_of_sheets_as_row_lists, sheet_names).
    """
    import openpyxl

    try:
        wb = openpyxl.load_workbook(
            io.BytesIO(file_content),
            data_only=True,
            read_only=True,
        )
    except Exception as e:
        raise ParseError(f"Could not parse xlsx file: {e}", "parse_failed")

    sheet_names = wb.sheetnames
    sheets = []
    for ws in wb.worksheets:
        sheets.append([list(row) for row in ws.iter_rows(values_only=True)])
    wb.close()

    return sheets, sheet_names


# ---------------------------------------------------------------------------
# xls parsing
# ---------------------------------------------------------------------------

def _parse_xls_bytes(file_content: bytes) -> tuple[list[list[list]], list[str]]:
    """
    Parse xls bytes using xlrd.
    Returns (list_of_sheets_as_row_lists, sheet_names).
    """
    import xlrd

    try:
        wb = xlrd.open_workbook(file_contents=file_content)
    except Exception as e:
        raise ParseError(f"Could not parse xls file: {e}", "parse_failed")

    sheet_names = wb.sheet_names()
    sheets = []
    for ws in wb.sheets():
        sheet_rows = []
        for row_idx in range(ws.nrows):
            row = []
            for col_idx in range(ws.ncols):
                cell = ws.cell(row_idx, col_idx)
                if cell.ctype == xlrd.XL_CELL_EMPTY:
                    row.append(None)
                elif cell.ctype == xlrd.XL_CELL_NUMBER:
                    v = cell.value
                    row.append(int(v) if v == int(v) else v)
                elif cell.ctype == xlrd.XL_CELL_DATE:
                    row.append(xlrd.xldate.xldate_as_datetime(cell.value, wb.datemode))
                else:
                    row.append(cell.value)
            sheet_rows.append(row)
        sheets.append(sheet_rows)

    return sheets, sheet_names


# ---------------------------------------------------------------------------
# Core parse_upload
# ---------------------------------------------------------------------------

def parse_upload(file_content: bytes, filename: str) -> ParsedSheet:
    """
    Parse an uploaded sales export and return its header row and data rows.

    Blank rows are skipped, everything from the first summary row (합계, Total)
    onward is dropped, and every data row is padded or truncated to the header
    width.  Cell values are strings; nothing is interpreted yet.

    Args:
        file_content: Raw bytes of the uploaded file.
        filename: Original filename (used to determine file type).

    Raises:
        ParseError: If the file type is unsupported, the file cannot be
                    read, or it has no header row.
    """
    ext = _get_extension(filename)

    if ext not in SUPPORTED_EXTENSIONS:
        raise ParseError(
            f"Unsupported file type '{ext}'. Upload a .csv, .xlsx, or .xls file.",
            "unsupported_file_type",
        )

    if ext in (".xlsx", ".xls"):
        if ext == ".xlsx":
            sheets, sheet_names = _parse_xlsx_bytes(file_content)
        else:
            sheets, sheet_names = _parse_xls_bytes(file_content)
        if not sheets:
            raise ParseError("Workbook has no sheets", "parse_failed")
        # Use first sheet; fall back to second if first is nearly empty
        active_sheet_idx = 0
        if len(sheets) > 1 and len(sheets[0]) < 2:
            active_sheet_idx = 1
        raw_rows = sheets[active_sheet_idx]
        sheet_name = sheet_names[active_sheet_idx]
    else:
        raw_rows, encoding = _parse_csv_bytes(file_content)
        logger.debug("parse_upload: decoded %s as %s", filename, encoding)
        sheet_name = "Sheet1"

    if not raw_rows or all(_row_is_all_empty(r) for r in raw_rows):
        raise ParseError("File is empty", "parse_failed")

    header_idx = _detect_header_row(raw_rows)
    headers = _dedupe_headers(raw_rows[header_idx])
    n_cols = len(headers)

    rows: list[list[str]] = []
    for raw in raw_rows[header_idx + 1:]:
        if _row_is_all_empty(raw):
            continue
        cells = [_cell_to_str(c) for c in (list(raw) + [None] * n_cols)[:n_cols]]
        if _is_summary_row(cells):
            break
        rows.append(cells)

    return ParsedSheet(
        headers=headers,
        rows=rows,
        sample_rows=rows[:SAMPLE_SIZE],
        sheet_name=sheet_name,
        total_rows=len(raw_rows),
    )
