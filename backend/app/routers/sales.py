"""
Sales history API endpoints.
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import get_current_user, verify_branch_access
from app.models.sales import MenuSale
from app.routers.sales_upload import get_menu_store, get_sales_store
from app.services.stores import SupabaseMenuStore, SupabaseSalesStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _validate_date(value: Optional[str], name: str) -> Optional[str]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={"detail": f"Invalid {name} date. Use YYYY-MM-DD.", "error_code": "invalid_date"},
        )


@router.get("/history/{branch_id}", response_model=List[MenuSale])
async def get_sales_history(
    branch_id: str,
    start: Optional[str] = Query(None, description="First day (YYYY-MM-DD), inclusive"),
    end: Optional[str] = Query(None, description="Last day (YYYY-MM-DD), inclusive"),
    user_id: str = Depends(get_current_user),
    sales_store: SupabaseSalesStore = Depends(get_sales_store),
):
    """Sales records for the branch, newest first, optionally within a date range."""
    await verify_branch_access(branch_id, user_id)

    start_date = _validate_date(start, "start")
    end_date = _validate_date(end, "end")
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=400,
            detail={"detail": "end must be on or after start.", "error_code": "end_before_start"},
        )

    return sales_store.history(branch_id, start_date, end_date)


@router.get("/months/{branch_id}")
async def get_available_months(
    branch_id: str,
    user_id: str = Depends(get_current_user),
    sales_store: SupabaseSalesStore = Depends(get_sales_store),
) -> dict:
    """Months (YYYY-MM) that have at least one sale, newest first."""
    await verify_branch_access(branch_id, user_id)
    return {"months": sales_store.available_months(branch_id)}


@router.get("/menus/{branch_id}")
async def get_menu_names(
    branch_id: str,
    user_id: str = Depends(get_current_user),
    menu_store: SupabaseMenuStore = Depends(get_menu_store),
) -> dict:
    """Names of the branch's existing menus."""
    await verify_branch_access(branch_id, user_id)
    return {"menu_names": menu_store.list_names(branch_id)}


@router.delete("/{branch_id}/{sale_id}")
async def delete_sale(
    branch_id: str,
    sale_id: int,
    user_id: str = Depends(get_current_user),
    sales_store: SupabaseSalesStore = Depends(get_sales_store),
):
    """Delete one sales record belonging to the branch."""
    await verify_branch_access(branch_id, user_id)

    if not sales_store.delete(branch_id, sale_id):
        raise HTTPException(status_code=404, detail="Sales record not found")

    logger.info(f"Deleted sale {sale_id} from branch {branch_id}")
    return {"message": "Sales record deleted", "id": sale_id}
