"""
Supabase-backed storage collaborators for sales ingestion.

Each store wraps one table and is constructed with an injectable client so
services and tests can swap it out.  Defaults to the admin client.

  SupabaseMenuStore     -> menus
  SupabaseSalesStore    -> menu_sales
  SupabaseMappingStore  -> csv_mappings
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from app.db import supabase_admin
from app.models.sales import ColumnMapping, ExistingRecord, Menu, MenuSale, SalesRecord

logger = logging.getLogger(__name__)

# PostgREST caps responses at 1000 rows by default; page through larger reads.
_PAGE_SIZE = 1000

_MENU_ID_RE = re.compile(r"^M(\d+)$")

SALES_CONFLICT_KEY = "sold_at,menu_id,branch_id"
DEFAULT_MAPPING_NAME = "default"


class StoreError(Exception):
    """Raised when the storage layer returns no data where a row was expected."""
    def __init__(self, message: str, error_code: str = "store_error"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def _select_all(build_query: Callable[[], Any]) -> list[dict]:
    """Run a select in pages of _PAGE_SIZE rows and return every row."""
    rows: list[dict] = []
    offset = 0
    while True:
        result = build_query().range(offset, offset + _PAGE_SIZE - 1).execute()
        page = result.data or []
        rows.extend(page)
        if len(page) < _PAGE_SIZE:
            return rows
        offset += _PAGE_SIZE


def format_menu_id(number: int) -> str:
    """M + sequence zero-padded to at least three digits: 1 -> M001, 1000 -> M1000."""
    return f"M{number:03d}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Menus
# ---------------------------------------------------------------------------

class SupabaseMenuStore:
    """Menu catalog. A menu is identified by (branch_id, menu_name) for lookups."""

    table = "menus"

    def __init__(self, client=None):
        self._client = client if client is not None else supabase_admin
        # Highest sequence number minted so far; None until the first scan.
        self._highest_id: Optional[int] = None

    def find_by_name(self, branch_id: str, name: str) -> Optional[Menu]:
        result = (
            self._client.table(self.table)
            .select("menu_id, menu_name, price, branch_id")
            .eq("branch_id", branch_id)
            .eq("menu_name", name)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return _menu_from_row(result.data[0])

    def find_many_by_names(self, branch_id: str, names: Iterable[str]) -> dict[str, Menu]:
        """Read-only name -> Menu lookup for menus that already exist."""
        names = list(dict.fromkeys(names))
        if not names:
            return {}
        result = (
            self._client.table(self.table)
            .select("menu_id, menu_name, price, branch_id")
            .eq("branch_id", branch_id)
            .in_("menu_name", names)
            .execute()
        )
        return {row["menu_name"]: _menu_from_row(row) for row in (result.data or [])}

    def list_names(self, branch_id: str) -> list[str]:
        rows = _select_all(
            lambda: self._client.table(self.table)
            .select("menu_name")
            .eq("branch_id", branch_id)
            .order("menu_name")
        )
        return [row["menu_name"] for row in rows if row.get("menu_name")]

    def create(self, branch_id: str, name: str, price: int, menu_id: str) -> Menu:
        try:
            result = (
                self._client.table(self.table)
                .insert({
                    "menu_id": menu_id,
                    "menu_name": name,
                    "price": price,
                    "branch_id": branch_id,
                })
                .execute()
            )
        except Exception:
            # The minted id may already be taken; rescan on the next mint.
            self._highest_id = None
            raise
        if not result.data:
            self._highest_id = None
            raise StoreError(f"Failed to create menu '{name}'", "menu_create_failed")
        return _menu_from_row(result.data[0])

    def get_price(self, menu_id: str) -> int:
        """Stored price of a menu, 0 when the menu is unknown or has no price."""
        result = (
            self._client.table(self.table)
            .select("price")
            .eq("menu_id", menu_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return 0
        return int(result.data[0].get("price") or 0)

    def next_sequential_id(self) -> str:
        """
        Mint the next menu id from the highest existing ``M<digits>`` id.

        Ids are global across branches.  The maximum is taken numerically so
        ``M1000`` follows ``M999`` even though ``"M999" > "M1000"`` as text.
        The table is scanned once per store; later calls count up from the
        last minted id until an insert fails.
        """
        if self._highest_id is None:
            self._highest_id = self._scan_highest_id()
        self._highest_id += 1
        return format_menu_id(self._highest_id)

    def _scan_highest_id(self) -> int:
        rows = _select_all(
            lambda: self._client.table(self.table)
            .select("menu_id")
            .like("menu_id", "M%")
            .order("menu_id", desc=True)
        )
        highest = 0
        for row in rows:
            m = _MENU_ID_RE.match(row.get("menu_id") or "")
            if m:
                highest = max(highest, int(m.group(1)))
        return highest


def _menu_from_row(row: dict) -> Menu:
    return Menu(
        menu_id=row["menu_id"],
        menu_name=row["menu_name"],
        price=int(row.get("price") or 0),
        branch_id=row.get("branch_id") or "",
    )


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

class SupabaseSalesStore:
    """Sales records keyed by (sold_at, menu_id, branch_id)."""

    table = "menu_sales"

    def __init__(self, client=None):
        self._client = client if client is not None else supabase_admin

    def query_range(self, branch_id: str, start_date: str, end_date: str) -> list[ExistingRecord]:
        """Records whose sold_at falls within [start_date 00:00:00, end_date 23:59:59]."""
        rows = _select_all(
            lambda: self._client.table(self.table)
            .select("sold_at, menu_id")
            .eq("branch_id", branch_id)
            .gte("sold_at", f"{start_date} 00:00:00")
            .lte("sold_at", f"{end_date} 23:59:59")
        )
        return [ExistingRecord(sold_at=str(r["sold_at"]), menu_id=r["menu_id"]) for r in rows]

    def upsert(self, record: SalesRecord) -> None:
        """Insert or overwrite the record sharing its (sold_at, menu_id, branch_id)."""
        payload = record.model_dump()
        payload["updated_at"] = _now_iso()
        self._client.table(self.table).upsert(
            payload,
            on_conflict=SALES_CONFLICT_KEY,
            ignore_duplicates=False,
        ).execute()

    def history(
        self,
        branch_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[MenuSale]:
        """Sales for a branch joined with menu names, newest first."""
        def build():
            query = (
                self._client.table(self.table)
                .select("*, menus(menu_name)")
                .eq("branch_id", branch_id)
            )
            if start_date:
                query = query.gte("sold_at", f"{start_date} 00:00:00")
            if end_date:
                query = query.lte("sold_at", f"{end_date} 23:59:59")
            return query.order("sold_at", desc=True)

        sales: list[MenuSale] = []
        for row in _select_all(build):
            menu = row.pop("menus", None) or {}
            if isinstance(menu, list):
                menu = menu[0] if menu else {}
            row["menu_name"] = menu.get("menu_name")
            sales.append(MenuSale(**row))
        return sales

    def available_months(self, branch_id: str) -> list[str]:
        """Distinct YYYY-MM months that have sales, newest first."""
        rows = _select_all(
            lambda: self._client.table(self.table)
            .select("sold_at")
            .eq("branch_id", branch_id)
            .order("sold_at", desc=True)
        )
        months = {str(r["sold_at"])[:7] for r in rows if r.get("sold_at")}
        return sorted(months, reverse=True)

    def delete(self, branch_id: str, sale_id: int) -> bool:
        """Delete one sales record; returns False when no row matched."""
        result = (
            self._client.table(self.table)
            .delete()
            .eq("id", sale_id)
            .eq("branch_id", branch_id)
            .execute()
        )
        return bool(result.data)


# ---------------------------------------------------------------------------
# Column mappings
# ---------------------------------------------------------------------------

class SupabaseMappingStore:
    """Per-branch confirmed column mapping (one 'default' mapping per branch)."""

    table = "csv_mappings"

    def __init__(self, client=None, mapping_name: str = DEFAULT_MAPPING_NAME):
        self._client = client if client is not None else supabase_admin
        self._mapping_name = mapping_name

    def get(self, branch_id: str) -> Optional[ColumnMapping]:
        result = (
            self._client.table(self.table)
            .select("*")
            .eq("branch_id", branch_id)
            .eq("mapping_name", self._mapping_name)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        row = result.data[0]
        return ColumnMapping(**{k: row.get(k) for k in ColumnMapping.model_fields})

    def save(self, branch_id: str, mapping: ColumnMapping) -> None:
        self._client.table(self.table).upsert(
            {
                "branch_id": branch_id,
                "mapping_name": self._mapping_name,
                **mapping.model_dump(),
                "updated_at": _now_iso(),
            },
            on_conflict="branch_id,mapping_name",
        ).execute()
