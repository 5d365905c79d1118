"""Tests for the periodic cleanup job."""

from unittest.mock import MagicMock

from capgate import scheduler


def test_cleanup_job_sweeps_storage_and_buckets(monkeypatch):
    cap = MagicMock()
    cap.cleanup.return_value = True
    cap.sweep_rate_limits.return_value = 2
    monkeypatch.setattr(scheduler, "get_cap_service", lambda: cap)

    scheduler.cleanup_job()

    cap.cleanup.assert_called_once_with()
    cap.sweep_rate_limits.assert_called_once_with()


def test_cleanup_job_survives_storage_failure(monkeypatch, caplog):
    cap = MagicMock()
    cap.cleanup.return_value = False
    cap.sweep_rate_limits.return_value = 0
    monkeypatch.setattr(scheduler, "get_cap_service", lambda: cap)

    scheduler.cleanup_job()

    cap.sweep_rate_limits.assert_called_once_with()
    assert "storage sweep reported failure" in caplog.text
