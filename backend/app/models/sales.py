"""
Pydantic models for point-of-sale uploads, menus, and sales records.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


# Mapping field name -> human label, in the order shown to users.
# The first three are required before a mapping can be confirmed.
MAPPING_FIELDS = [
    ("date_column", "Sale timestamp"),
    ("menu_name_column", "Menu name"),
    ("quantity_column", "Quantity"),
    ("price_column", "Unit price"),
    ("total_column", "Total"),
    ("transaction_id_column", "Transaction ID"),
]

REQUIRED_MAPPING_FIELDS = ("date_column", "menu_name_column", "quantity_column")


class ColumnMapping(BaseModel):
    """
    Which spreadsheet column holds which sales field.

    Columns are identified by header name, not position, so a saved mapping
    survives column reordering but not renaming.
    """
    date_column: Optional[str] = None
    menu_name_column: Optional[str] = None
    quantity_column: Optional[str] = None
    price_column: Optional[str] = None
    total_column: Optional[str] = None
    transaction_id_column: Optional[str] = None

    def populated(self) -> dict[str, str]:
        """Return only the fields that name a column."""
        return {k: v for k, v in self.model_dump().items() if v}


class CanonicalSalesRow(BaseModel):
    """One spreadsheet row after mapping and validation. Never persisted as-is."""
    sold_at: str
    menu_name: str
    sales_count: int = 0
    price: Optional[int] = None
    total_sales: Optional[int] = None
    transaction_id: Optional[str] = None
    is_valid: bool = True
    is_new_menu: bool = False
    error: Optional[str] = None


class Menu(BaseModel):
    """Catalog entry. menu_id is M + zero-padded sequence (M001, M002, ...)."""
    menu_id: str
    menu_name: str
    price: int = 0
    branch_id: str


class ExistingRecord(BaseModel):
    """The part of a stored sales record needed for duplicate detection."""
    sold_at: str
    menu_id: str


class SalesRecord(BaseModel):
    """Row written to menu_sales; (sold_at, menu_id, branch_id) is the conflict key."""
    menu_id: str
    branch_id: str
    sold_at: str
    sales_count: int
    price: int
    total_sales: int
    transaction_id: Optional[str] = None


class MenuSale(SalesRecord):
    """Stored sales record as returned by history queries."""
    id: int
    menu_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        from_attributes = True


class DuplicateReport(BaseModel):
    """Dry-run summary: how many incoming rows already exist."""
    total: int = 0
    duplicates: int = 0
    new_records: int = 0


class UploadResult(BaseModel):
    """Outcome of committing a batch of sales rows."""
    success: bool
    inserted: int = 0
    updated: int = 0
    menus_created: int = 0
    errors: List[str] = Field(default_factory=list)
