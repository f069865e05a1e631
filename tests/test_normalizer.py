"""
Pure unit tests for app/services/normalizer.py.

No database required; normalization is a pure lookup.
"""
import pytest

from app import models
from app.services.normalizer import normalize_status


class TestNormalizeStrings:
    @pytest.mark.parametrize("raw", ["COMPLETE", "Completed", "success", " SUCCESSFUL "])
    def test_completed_vocabulary(self, raw):
        assert normalize_status(raw) == models.COMPLETED

    @pytest.mark.parametrize("raw", ["FAILED", "error"])
    def test_failed_vocabulary(self, raw):
        assert normalize_status(raw) == models.FAILED

    @pytest.mark.parametrize("raw", ["CANCELLED", "canceled", "REVERSED"])
    def test_cancelled_vocabulary(self, raw):
        assert normalize_status(raw) == models.CANCELLED

    def test_pending(self):
        assert normalize_status("PENDING") == models.PENDING

    @pytest.mark.parametrize("raw", ["PROCESSING", "submitted"])
    def test_in_flight_maps_to_submitted(self, raw):
        assert normalize_status(raw) == models.SUBMITTED

    def test_local_statuses_round_trip(self):
        for status in models.STATUSES:
            assert normalize_status(status) == status


class TestNormalizeStatusCodes:
    def test_completed_code(self):
        assert normalize_status(1) == models.COMPLETED

    def test_failed_code(self):
        assert normalize_status(2) == models.FAILED

    def test_reversed_code(self):
        assert normalize_status(3) == models.CANCELLED

    def test_numeric_string_code(self):
        assert normalize_status("1") == models.COMPLETED

    def test_invalid_code_left_unmapped(self):
        """status_code 0 is reported while an order still awaits payment."""
        assert normalize_status(0) is None


class TestUnrecognised:
    @pytest.mark.parametrize("raw", [None, "", "INVALID", "EXPLODED", 42, True])
    def test_returns_none(self, raw):
        assert normalize_status(raw) is None
