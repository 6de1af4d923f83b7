"""
Duplicate detection for sales uploads.

``existing_record_keys`` builds the snapshot shared by the dry run and the
committer; ``check_duplicates`` is the dry run itself.  Neither writes.
"""

import logging
import re
from datetime import date
from typing import Iterable, Optional, Protocol

from app.models.sales import CanonicalSalesRow, DuplicateReport, ExistingRecord, Menu
from app.services.timestamps import date_part, record_key

logger = logging.getLogger(__name__)


class SalesStore(Protocol):
    def query_range(self, branch_id: str, start_date: str, end_date: str) -> list[ExistingRecord]: ...


class MenuLookup(Protocol):
    def find_many_by_names(self, branch_id: str, names: Iterable[str]) -> dict[str, Menu]: ...


_DATE_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")


def _parse_date(text: str) -> Optional[date]:
    m = _DATE_RE.match(text)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def batch_date_range(rows: Iterable[CanonicalSalesRow]) -> Optional[tuple[str, str]]:
    """
    (min_date, max_date) over the rows' sold_at dates, or None if no row has one.

    When every date parses, bounds are compared as dates and returned as
    YYYY-MM-DD, so unpadded exports like ``2025-1-9`` still give an ordered
    range.  Otherwise the raw date strings are compared as text.
    """
    dates = {d for d in (date_part(r.sold_at) for r in rows) if d}
    if not dates:
        return None
    parsed = [_parse_date(d) for d in dates]
    if all(parsed):
        return min(parsed).isoformat(), max(parsed).isoformat()
    ordered = sorted(dates)
    return ordered[0], ordered[-1]


def existing_record_keys(
    sales_store: SalesStore,
    branch_id: str,
    rows: list[CanonicalSalesRow],
) -> set[str]:
    """
    Keys of stored records that share the batch's date range.

    A single ranged query covers the whole batch; call this once per batch.
    """
    date_range = batch_date_range(rows)
    if date_range is None:
        return set()
    min_date, max_date = date_range
    records = sales_store.query_range(branch_id, min_date, max_date)
    return {record_key(r.sold_at, r.menu_id) for r in records}


def check_duplicates(
    rows: list[CanonicalSalesRow],
    branch_id: str,
    sales_store: SalesStore,
    menu_store: MenuLookup,
) -> DuplicateReport:
    """
    Report how many valid rows already exist, without touching storage.

    Rows naming a menu that does not exist yet cannot collide and count as
    new.  No menu is created here.
    """
    valid = [r for r in rows if r.is_valid]
    total = len(valid)
    if total == 0:
        return DuplicateReport()

    if batch_date_range(valid) is None:
        return DuplicateReport(total=total, duplicates=0, new_records=total)

    keys = existing_record_keys(sales_store, branch_id, valid)
    menus = menu_store.find_many_by_names(branch_id, (r.menu_name.strip() for r in valid))

    duplicates = 0
    for row in valid:
        menu = menus.get(row.menu_name.strip())
        if menu is not None and record_key(row.sold_at, menu.menu_id) in keys:
            duplicates += 1

    logger.debug("check_duplicates: branch %s total=%d duplicates=%d", branch_id, total, duplicates)
    return DuplicateReport(total=total, duplicates=duplicates, new_records=total - duplicates)
