"""
Sales upload router.

Endpoints:
  POST /upload/{branch_id}                   parse file, return headers + suggested mapping
  POST /upload/{branch_id}/preview           apply a mapping, return canonical rows
  POST /upload/{branch_id}/check-duplicates  dry run: how many rows already exist
  POST /upload/{branch_id}/confirm           commit rows, optionally save the mapping
  GET  /upload/mapping/{branch_id}           saved column mapping for the branch
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from app.auth import get_current_user, verify_branch_access
from app.models.sales import (
    CanonicalSalesRow,
    ColumnMapping,
    DuplicateReport,
    UploadResult,
)
from app.services.column_mapping import (
    MappingError,
    is_mapping_complete,
    suggest_mapping,
    validate_mapping,
)
from app.services.duplicate_detector import check_duplicates
from app.services.row_normalizer import normalize_rows
from app.services.sales_ingestion import upload_sales
from app.services.spreadsheet_parser import ParseError, ParsedSheet, parse_upload
from app.services.stores import SupabaseMappingStore, SupabaseMenuStore, SupabaseSalesStore

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# In-memory upload store with TTL (15 minutes)
# ---------------------------------------------------------------------------

_UPLOAD_TTL_SECONDS = 15 * 60  # 15 minutes
_MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10 MB


@dataclass
class _UploadEntry:
    """A parsed file waiting for its mapping to be confirmed."""
    parsed: ParsedSheet
    branch_id: str
    user_id: str
    filename: str
    created_at: datetime


# Module-level dict: upload_id -> _UploadEntry
_upload_store: dict[str, _UploadEntry] = {}


def _is_expired(entry: _UploadEntry, now: datetime) -> bool:
    return (now - entry.created_at).total_seconds() > _UPLOAD_TTL_SECONDS


def _purge_expired_uploads() -> None:
    """Drop every upload whose TTL has passed."""
    now = datetime.now(timezone.utc)
    for upload_id in [k for k, entry in _upload_store.items() if _is_expired(entry, now)]:
        del _upload_store[upload_id]


def _store_upload(parsed: ParsedSheet, branch_id: str, user_id: str, filename: str) -> str:
    """Store a parsed sheet in memory and return the upload_id."""
    _purge_expired_uploads()
    upload_id = str(uuid.uuid4())
    _upload_store[upload_id] = _UploadEntry(
        parsed=parsed,
        branch_id=branch_id,
        user_id=user_id,
        filename=filename,
        created_at=datetime.now(timezone.utc),
    )
    return upload_id


def _get_upload(upload_id: str) -> Optional[_UploadEntry]:
    """Retrieve an upload entry, returning None if expired or missing."""
    entry = _upload_store.get(upload_id)
    if entry is None:
        return None

    if _is_expired(entry, datetime.now(timezone.utc)):
        del _upload_store[upload_id]
        return None

    return entry


def _error(status_code: int, message: str, error_code: str) -> HTTPException:
    """Build an HTTPException with a structured detail payload."""
    return HTTPException(
        status_code=status_code,
        detail={"detail": message, "error_code": error_code},
    )


# ---------------------------------------------------------------------------
# Store dependencies
# ---------------------------------------------------------------------------

def get_menu_store() -> SupabaseMenuStore:
    return SupabaseMenuStore()


def get_sales_store() -> SupabaseSalesStore:
    return SupabaseSalesStore()


def get_mapping_store() -> SupabaseMappingStore:
    return SupabaseMappingStore()


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class MappingRequest(BaseModel):
    upload_id: str
    column_mapping: ColumnMapping


class UploadConfirmRequest(MappingRequest):
    save_mapping: bool = True


class PreviewResponse(BaseModel):
    rows: list[CanonicalSalesRow]
    total_rows: int
    valid_rows: int
    invalid_rows: int
    new_menu_rows: int


class UploadConfirmResponse(UploadResult):
    invalid_rows: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _entry_for(upload_id: str, branch_id: str, user_id: str) -> _UploadEntry:
    """Fetch the upload entry, enforcing TTL and ownership."""
    entry = _get_upload(upload_id)
    if entry is None:
        raise _error(
            400,
            "Upload session expired or not found. Please re-upload the file.",
            "upload_expired",
        )
    if entry.user_id != user_id or entry.branch_id != branch_id:
        raise HTTPException(status_code=403, detail="You are not authorized to access this upload")
    return entry


def _canonical_rows(
    entry: _UploadEntry,
    mapping: ColumnMapping,
    branch_id: str,
    menu_store: SupabaseMenuStore,
) -> list[CanonicalSalesRow]:
    """Validate the mapping, then normalize every row of the upload."""
    try:
        validate_mapping(mapping, entry.parsed.headers)
    except MappingError as e:
        raise _error(400, e.message, e.error_code)

    existing_names = menu_store.list_names(branch_id)
    return normalize_rows(entry.parsed.rows, entry.parsed.headers, mapping, existing_names)


def _load_saved_mapping(mapping_store: SupabaseMappingStore, branch_id: str) -> Optional[ColumnMapping]:
    """Saved mapping for the branch, or None if missing or unreadable."""
    try:
        return mapping_store.get(branch_id)
    except Exception as e:
        logger.warning(f"Could not load saved mapping for branch {branch_id}: {e}")
        return None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/upload/{branch_id}")
async def upload_file(
    branch_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user),
    mapping_store: SupabaseMappingStore = Depends(get_mapping_store),
) -> dict:
    """
    Parse an uploaded sales export and suggest a column mapping.

    Does NOT write anything. Call /preview, /check-duplicates and /confirm
    with the returned upload_id.
    """
    await verify_branch_access(branch_id, user_id)

    if hasattr(file, "size") and file.size is not None:
        if file.size > _MAX_FILE_SIZE_BYTES:
            raise _error(400, "File exceeds 10 MB limit.", "file_too_large")

    file_content = await file.read()

    # Double-check size after reading (in case .size was not set)
    if len(file_content) > _MAX_FILE_SIZE_BYTES:
        raise _error(400, "File exceeds 10 MB limit.", "file_too_large")

    filename = file.filename or "upload.csv"

    try:
        parsed = parse_upload(file_content, filename)
    except ParseError as e:
        raise _error(400, e.message, e.error_code)

    if not parsed.rows:
        raise _error(400, "The file has no data rows.", "no_data_rows")

    saved_mapping = _load_saved_mapping(mapping_store, branch_id)
    suggested, mapping_source = suggest_mapping(
        parsed.headers,
        saved_mapping=saved_mapping,
        return_source=True,
    )

    upload_id = _store_upload(parsed, branch_id, user_id, filename)

    return {
        "upload_id": upload_id,
        "filename": filename,
        "sheet_name": parsed.sheet_name,
        "total_rows": parsed.total_rows,
        "data_rows": parsed.data_rows,
        "headers": parsed.headers,
        "sample_rows": parsed.sample_rows,
        "suggested_mapping": suggested.model_dump(),
        "mapping_source": mapping_source,
        "mapping_complete": is_mapping_complete(suggested, parsed.headers),
    }


@router.post("/upload/{branch_id}/preview")
async def preview_upload(
    branch_id: str,
    body: MappingRequest,
    user_id: str = Depends(get_current_user),
    menu_store: SupabaseMenuStore = Depends(get_menu_store),
) -> PreviewResponse:
    """Apply a mapping and return canonical rows with validity and new-menu flags."""
    await verify_branch_access(branch_id, user_id)
    entry = _entry_for(body.upload_id, branch_id, user_id)

    rows = _canonical_rows(entry, body.column_mapping, branch_id, menu_store)
    valid_count = sum(1 for r in rows if r.is_valid)

    return PreviewResponse(
        rows=rows,
        total_rows=len(rows),
        valid_rows=valid_count,
        invalid_rows=len(rows) - valid_count,
        new_menu_rows=sum(1 for r in rows if r.is_valid and r.is_new_menu),
    )


@router.post("/upload/{branch_id}/check-duplicates")
async def check_upload_duplicates(
    branch_id: str,
    body: MappingRequest,
    user_id: str = Depends(get_current_user),
    menu_store: SupabaseMenuStore = Depends(get_menu_store),
    sales_store: SupabaseSalesStore = Depends(get_sales_store),
) -> DuplicateReport:
    """
    Report how many valid rows would overwrite existing sales.

    Read-only: creates no menus and writes no sales.
    """
    await verify_branch_access(branch_id, user_id)
    entry = _entry_for(body.upload_id, branch_id, user_id)

    rows = _canonical_rows(entry, body.column_mapping, branch_id, menu_store)
    try:
        return check_duplicates(rows, branch_id, sales_store, menu_store)
    except Exception as e:
        logger.error(f"Duplicate check failed for branch {branch_id}: {e}")
        raise _error(502, f"Duplicate check failed: {e}", "duplicate_check_failed")


@router.post("/upload/{branch_id}/confirm")
async def confirm_upload(
    branch_id: str,
    body: UploadConfirmRequest,
    user_id: str = Depends(get_current_user),
    menu_store: SupabaseMenuStore = Depends(get_menu_store),
    sales_store: SupabaseSalesStore = Depends(get_sales_store),
    mapping_store: SupabaseMappingStore = Depends(get_mapping_store),
) -> UploadConfirmResponse:
    """
    Commit the upload: save the mapping (optional), create missing menus,
    and upsert every valid row.  Invalid rows are skipped and counted.
    """
    await verify_branch_access(branch_id, user_id)
    entry = _entry_for(body.upload_id, branch_id, user_id)

    rows = _canonical_rows(entry, body.column_mapping, branch_id, menu_store)

    if body.save_mapping:
        try:
            mapping_store.save(branch_id, body.column_mapping)
        except Exception as e:
            logger.warning(f"Could not save column mapping for branch {branch_id}: {e}")

    result = upload_sales(rows, branch_id, sales_store, menu_store)

    # The parsed file is consumed once committed.
    _upload_store.pop(body.upload_id, None)

    return UploadConfirmResponse(
        **result.model_dump(),
        invalid_rows=sum(1 for r in rows if not r.is_valid),
    )


@router.get("/upload/mapping/{branch_id}")
async def get_saved_mapping(
    branch_id: str,
    user_id: str = Depends(get_current_user),
    mapping_store: SupabaseMappingStore = Depends(get_mapping_store),
) -> dict:
    """
    Return the saved column mapping for this branch, or null if none exists.
    Always returns 200.
    """
    await verify_branch_access(branch_id, user_id)

    saved = _load_saved_mapping(mapping_store, branch_id)
    return {
        "branch_id": branch_id,
        "column_mapping": saved.model_dump() if saved else None,
    }
