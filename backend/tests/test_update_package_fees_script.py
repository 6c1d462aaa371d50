"""
Tests for scripts/update_package_fees.py, the daily fee update job.
"""

import importlib.util
import os
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

# Mock environment variables before importing app modules
os.environ['SUPABASE_URL'] = 'https://test.supabase.co'
os.environ['SUPABASE_KEY'] = 'test-anon-key'
os.environ['SUPABASE_SERVICE_KEY'] = 'test-service-key'

from app.models.fee import RecalculationFailure, RecalculationResult

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "update_package_fees.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("update_package_fees", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _result(errors=0):
    failures = [RecalculationFailure(fee_id=f"fee-{i}", error="boom") for i in range(errors)]
    return RecalculationResult(updated=2, skipped=1, errors=errors, total=3 + errors, failures=failures)


class TestUpdatePackageFeesScript:
    def test_success_exits_zero(self, script):
        with patch('app.services.fee_store.recalculate_pending_fees', return_value=_result()) as mock_recalc:
            assert script.main([]) == 0

        as_of, tz = mock_recalc.call_args[0]
        assert as_of.tzinfo is not None
        assert tz == "America/New_York"
        assert mock_recalc.call_args[1] == {"user_id": None, "dry_run": False}

    def test_options_passed_through(self, script):
        with patch('app.services.fee_store.recalculate_pending_fees', return_value=_result()) as mock_recalc:
            code = script.main([
                "--user-id", "user-123",
                "--as-of", "2025-12-10T02:00:00-05:00",
                "--dry-run",
            ])

        assert code == 0
        as_of, _ = mock_recalc.call_args[0]
        assert as_of == datetime(2025, 12, 10, 7, 0, tzinfo=timezone.utc)
        assert mock_recalc.call_args[1] == {"user_id": "user-123", "dry_run": True}

    def test_per_fee_errors_exit_one(self, script):
        with patch('app.services.fee_store.recalculate_pending_fees', return_value=_result(errors=2)):
            assert script.main([]) == 1

    def test_failed_run_exits_one(self, script):
        with patch('app.services.fee_store.recalculate_pending_fees', side_effect=Exception("db down")):
            assert script.main([]) == 1

    def test_bad_as_of_exits_two(self, script):
        with patch('app.services.fee_store.recalculate_pending_fees') as mock_recalc:
            assert script.main(["--as-of", "tomorrow"]) == 2
            mock_recalc.assert_not_called()
