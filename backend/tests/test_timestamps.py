"""
Timestamp normalizer unit tests.
"""

import pytest

from app.services.timestamps import date_part, normalize_timestamp, record_key


class TestNormalizeTimestamp:
    """normalize_timestamp() turns storage timestamps into 'YYYY-MM-DD HH:MM:SS'."""

    def test_iso_with_millis_and_offset(self):
        assert normalize_timestamp("2025-01-02T14:30:25.000+00:00") == "2025-01-02 14:30:25"

    def test_iso_with_trailing_z(self):
        assert normalize_timestamp("2025-01-02T14:30:25Z") == "2025-01-02 14:30:25"

    def test_iso_with_millis_and_z(self):
        assert normalize_timestamp("2025-01-02T14:30:25.123Z") == "2025-01-02 14:30:25"

    def test_negative_offset_is_stripped(self):
        assert normalize_timestamp("2025-01-02T14:30:25-05:00") == "2025-01-02 14:30:25"

    def test_offset_without_millis(self):
        assert normalize_timestamp("2025-01-02 14:30:25+09:00") == "2025-01-02 14:30:25"

    def test_canonical_input_is_unchanged(self):
        assert normalize_timestamp("2025-01-02 14:30:25") == "2025-01-02 14:30:25"

    def test_normalizing_twice_is_a_no_op(self):
        once = normalize_timestamp("2025-01-02T14:30:25.000+00:00")
        assert normalize_timestamp(once) == once

    def test_surrounding_whitespace_is_trimmed(self):
        assert normalize_timestamp("  2025-01-02 14:30:25  ") == "2025-01-02 14:30:25"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_become_empty_string(self, value):
        assert normalize_timestamp(value) == ""


class TestRecordKey:
    """record_key() makes stored and uploaded timestamps comparable."""

    def test_stored_and_uploaded_forms_produce_same_key(self):
        stored = record_key("2025-01-02T14:30:25.000+00:00", "M001")
        uploaded = record_key("2025-01-02 14:30:25", "M001")
        assert stored == uploaded == "2025-01-02 14:30:25_M001"

    def test_different_menus_produce_different_keys(self):
        assert record_key("2025-01-02 14:30:25", "M001") != record_key("2025-01-02 14:30:25", "M002")


class TestDatePart:

    def test_date_of_canonical_timestamp(self):
        assert date_part("2025-01-02 14:30:25") == "2025-01-02"

    def test_date_of_iso_timestamp(self):
        assert date_part("2025-01-02T14:30:25Z") == "2025-01-02"

    def test_date_only_value(self):
        assert date_part("2025-01-02") == "2025-01-02"
