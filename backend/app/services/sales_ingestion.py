"""
Sales ingestion committer.

Persists validated upload rows with an idempotent upsert keyed by
(sold_at, menu_id, branch_id), creating referenced menus on first sight.
Rows are processed in document order, one at a time; a failing row is
recorded and skipped, never aborting the batch.
"""

import logging
from typing import Optional, Protocol

from app.models.sales import CanonicalSalesRow, ExistingRecord, SalesRecord, UploadResult
from app.services.duplicate_detector import existing_record_keys
from app.services.menu_resolver import MenuResolver, MenuStore
from app.services.row_normalizer import valid_rows
from app.services.timestamps import record_key

logger = logging.getLogger(__name__)


class SalesStore(Protocol):
    def query_range(self, branch_id: str, start_date: str, end_date: str) -> list[ExistingRecord]: ...
    def upsert(self, record: SalesRecord) -> None: ...


def effective_price(row_price: Optional[int], menu_price: Optional[int]) -> Optional[int]:
    """Row price when provided, else the menu's stored price."""
    return row_price if row_price is not None else menu_price


def effective_total(row_total: Optional[int], price: Optional[int], quantity: int) -> int:
    """Row total when provided, else price * quantity, else 0."""
    if row_total is not None:
        return row_total
    if price is not None:
        return price * quantity
    return 0


def upload_sales(
    rows: list[CanonicalSalesRow],
    branch_id: str,
    sales_store: SalesStore,
    menu_store: MenuStore,
) -> UploadResult:
    """
    Commit valid rows for a branch and report what happened.

    Insert vs update is decided from a snapshot of existing keys taken once,
    before the first write, so re-uploading identical data reports every row
    as updated and changes no row counts.

    Args:
        rows: Output of the row normalizer; invalid rows are skipped.
        branch_id: Branch the sales belong to.
        sales_store: Storage for sales records (query_range, upsert).
        menu_store: Storage for menus (find_by_name, create, next_sequential_id).

    Returns:
        UploadResult with success == (no errors).
    """
    valid = valid_rows(rows)
    if not valid:
        return UploadResult(success=True)

    errors: list[str] = []
    inserted = 0
    updated = 0
    resolver = MenuResolver(menu_store, branch_id)

    try:
        existing_keys = existing_record_keys(sales_store, branch_id, valid)
    except Exception as e:
        logger.error(f"upload_sales: could not load existing sales for branch {branch_id}: {e}")
        return UploadResult(
            success=False,
            errors=[f"Could not load existing sales records: {e}"],
        )

    for row in valid:
        menu_name = row.menu_name.strip()

        try:
            menu, _ = resolver.resolve(menu_name, row.price)
        except Exception as e:
            message = f"Menu '{menu_name}' ({row.sold_at}): could not resolve menu: {e}"
            logger.warning(message)
            errors.append(message)
            continue

        price = effective_price(row.price, menu.price)
        is_update = record_key(row.sold_at, menu.menu_id) in existing_keys

        record = SalesRecord(
            menu_id=menu.menu_id,
            branch_id=branch_id,
            sold_at=row.sold_at,
            sales_count=row.sales_count,
            price=price or 0,
            total_sales=effective_total(row.total_sales, price, row.sales_count),
            transaction_id=row.transaction_id or None,
        )

        try:
            sales_store.upsert(record)
        except Exception as e:
            message = f"Menu '{menu_name}' ({row.sold_at}): failed to save sale: {e}"
            logger.warning(message)
            errors.append(message)
            continue

        if is_update:
            updated += 1
        else:
            inserted += 1

    menus_created = len(resolver.created)
    logger.info(
        "upload_sales: branch %s inserted=%d updated=%d menus_created=%d errors=%d",
        branch_id, inserted, updated, menus_created, len(errors),
    )

    return UploadResult(
        success=not errors,
        inserted=inserted,
        updated=updated,
        menus_created=menus_created,
        errors=errors,
    )
