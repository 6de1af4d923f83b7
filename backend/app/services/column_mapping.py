"""
Column mapping engine for point-of-sale exports.

Infers which spreadsheet header holds which sales field, merges a mapping
previously confirmed for the branch, and gates confirmation on the three
required fields.

Public API:
  auto_detect_mapping(headers)                  -> ColumnMapping
  suggest_mapping(headers, saved_mapping)       -> ColumnMapping
  is_mapping_complete(mapping, headers)         -> bool
  validate_mapping(mapping, headers)            -> None (raises MappingError)
"""

import logging
import re
from typing import Optional

from app.models.sales import MAPPING_FIELDS, REQUIRED_MAPPING_FIELDS, ColumnMapping

logger = logging.getLogger(__name__)


class MappingError(Exception):
    """Raised when a column mapping cannot be confirmed."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


# Keyword rules, evaluated in order for every header.  A header is claimed by
# the first rule whose keywords it contains (case-insensitive, whitespace
# removed).  The claim is dropped when the rule's field is already assigned or
# the header also contains one of the rule's exclusion keywords.
# Add categories or keywords here; the detection loop does not change.
FIELD_KEYWORDS: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    ("date_column", ("일시", "날짜", "일자", "date", "sold", "time"), ()),
    ("menu_name_column", ("메뉴", "menu", "상품", "품목", "product", "item"), ("id",)),
    ("quantity_column", ("수량", "qty", "quantity", "count"), ()),
    ("price_column", ("단가", "price", "가격"), ("총",)),
    ("total_column", ("총액", "total", "합계", "amount"), ()),
    ("transaction_id_column", ("거래", "주문", "transaction", "order", "receipt", "영수증"), ()),
]

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_header(header: str) -> str:
    return _WHITESPACE_RE.sub("", header or "").lower()


def _match_rule(normalized: str) -> Optional[tuple[str, tuple[str, ...]]]:
    """Return (field, exclusions) of the first rule whose keywords appear in the header."""
    for field_name, keywords, exclusions in FIELD_KEYWORDS:
        if any(kw in normalized for kw in keywords):
            return field_name, exclusions
    return None


def auto_detect_mapping(headers: list[str]) -> ColumnMapping:
    """
    Guess a mapping from header names alone.

    First match wins per field: once a field has a header, later headers
    matching the same field are left unassigned.
    """
    assigned: dict[str, str] = {}

    for header in headers:
        normalized = _normalize_header(header)
        match = _match_rule(normalized)
        if match is None:
            continue
        field_name, exclusions = match
        if field_name in assigned:
            continue
        if any(ex in normalized for ex in exclusions):
            continue
        assigned[field_name] = header

    return ColumnMapping(**assigned)


def suggest_mapping(
    headers: list[str],
    saved_mapping: Optional[ColumnMapping],
    return_source: bool = False,
) -> "ColumnMapping | tuple[ColumnMapping, str]":
    """
    Build the mapping to show for a freshly uploaded file.

    Fields from the branch's saved mapping are kept only when the saved column
    name exists verbatim in the current headers; every other field comes from
    auto-detection.

    Args:
        headers: Header row of the uploaded file.
        saved_mapping: Mapping previously confirmed for this branch, or None.
        return_source: When True, return (mapping, source) where source is
                       "saved" if any saved field was reused, "suggested" if
                       auto-detection found anything, else "none".
    """
    detected = auto_detect_mapping(headers)
    merged = detected.model_dump()

    reused_saved = False
    if saved_mapping is not None:
        header_set = set(headers)
        for field_name, column in saved_mapping.populated().items():
            if column in header_set:
                merged[field_name] = column
                reused_saved = True

    mapping = ColumnMapping(**merged)

    if not return_source:
        return mapping

    if reused_saved:
        source = "saved"
    elif mapping.populated():
        source = "suggested"
    else:
        source = "none"
    return mapping, source


def is_mapping_complete(mapping: ColumnMapping, headers: list[str]) -> bool:
    """True when every required field names a header present in the file."""
    header_set = set(headers)
    return all(
        getattr(mapping, field_name) and getattr(mapping, field_name) in header_set
        for field_name in REQUIRED_MAPPING_FIELDS
    )


def validate_mapping(mapping: ColumnMapping, headers: list[str]) -> None:
    """
    Reject a mapping before any row is parsed.

    Raises:
        MappingError: "mapping_incomplete" when a required field is unset,
                      "unknown_column" when any set field names a header the
                      file does not have.
    """
    labels = dict(MAPPING_FIELDS)

    missing = [
        labels[field_name]
        for field_name in REQUIRED_MAPPING_FIELDS
        if not getattr(mapping, field_name)
    ]
    if missing:
        raise MappingError(
            f"Map a column to {', '.join(missing)} before confirming.",
            "mapping_incomplete",
        )

    header_set = set(headers)
    for field_name, column in mapping.populated().items():
        if column not in header_set:
            raise MappingError(
                f"Column '{column}' mapped to {labels[field_name]} is not in the uploaded file.",
                "unknown_column",
            )
