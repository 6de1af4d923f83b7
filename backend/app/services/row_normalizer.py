"""
Row normalizer: raw spreadsheet rows + confirmed mapping -> CanonicalSalesRow.
"""

import logging
import re
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from app.models.sales import CanonicalSalesRow, ColumnMapping

logger = logging.getLogger(__name__)

ERROR_MISSING_SOLD_AT = "missing sale timestamp"
ERROR_MISSING_MENU_NAME = "missing menu name"
ERROR_INVALID_QUANTITY = "invalid quantity"

RawRow = Union[Sequence[str], dict]

# Plain decimal notation only; exponents and oversized integer parts are absent.
_NUMBER_RE = re.compile(r"^[+-]?\d{1,18}(\.\d*)?$")


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Parse an integer cell, returning None when the cell is empty or not numeric.

    Thousands separators are accepted and fractional values are truncated
    toward zero, matching how POS exports print amounts.

    Examples:
        "3"      -> 3
        "16,000" -> 16000
        "2.0"    -> 2
        ""       -> None
        "abc"    -> None
        "1e5"    -> None
    """
    if value is None:
        return None
    s = str(value).strip().replace(",", "")
    if not _NUMBER_RE.match(s):
        return None
    return int(Decimal(s))


def _cell(row: RawRow, headers: list[str], column: Optional[str]) -> str:
    """Trimmed cell value for *column*, or "" when unmapped or missing."""
    if not column:
        return ""
    if isinstance(row, dict):
        value = row.get(column)
    else:
        try:
            idx = headers.index(column)
        except ValueError:
            return ""
        value = row[idx] if idx < len(row) else None
    if value is None:
        return ""
    return str(value).strip()


def normalize_row(
    row: RawRow,
    headers: list[str],
    mapping: ColumnMapping,
    existing_menu_names: "set[str] | frozenset[str]",
) -> CanonicalSalesRow:
    """
    Convert one raw row into a CanonicalSalesRow.

    Validation runs in order and the first failure becomes the row's error:
    empty timestamp, empty menu name, quantity not a positive integer.
    ``price`` and ``total_sales`` stay None (not 0) when absent or unparseable
    so the committer can tell "not provided" from "provided as zero".
    """
    sold_at = _cell(row, headers, mapping.date_column)
    menu_name = _cell(row, headers, mapping.menu_name_column)
    quantity = parse_int(_cell(row, headers, mapping.quantity_column))
    price = parse_int(_cell(row, headers, mapping.price_column))
    total = parse_int(_cell(row, headers, mapping.total_column))
    transaction_id = _cell(row, headers, mapping.transaction_id_column) or None

    error: Optional[str] = None
    if not sold_at:
        error = ERROR_MISSING_SOLD_AT
    elif not menu_name:
        error = ERROR_MISSING_MENU_NAME
    elif quantity is None or quantity <= 0:
        error = ERROR_INVALID_QUANTITY

    return CanonicalSalesRow(
        sold_at=sold_at,
        menu_name=menu_name,
        sales_count=quantity if quantity is not None else 0,
        price=price,
        total_sales=total,
        transaction_id=transaction_id,
        is_valid=error is None,
        is_new_menu=bool(menu_name) and menu_name not in existing_menu_names,
        error=error,
    )


def normalize_rows(
    rows: Iterable[RawRow],
    headers: list[str],
    mapping: ColumnMapping,
    existing_menu_names: Iterable[str],
) -> list[CanonicalSalesRow]:
    """
    Normalize a batch of rows.

    ``existing_menu_names`` is snapshotted once before the first row, so every
    row in the batch is flagged against the same catalog state.
    """
    snapshot = frozenset(existing_menu_names)
    result = [normalize_row(row, headers, mapping, snapshot) for row in rows]

    invalid = sum(1 for r in result if not r.is_valid)
    if invalid:
        logger.info("normalize_rows: %d of %d rows failed validation", invalid, len(result))
    return result


def valid_rows(rows: Iterable[CanonicalSalesRow]) -> list[CanonicalSalesRow]:
    """Rows eligible for duplicate detection and commit."""
    return [r for r in rows if r.is_valid and r.sold_at and r.menu_name]
