"""Tests for the birthdays CLI."""

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from birthdays.cli import app

runner = CliRunner()


class TestTimezoneCheck:
    """Tests for `birthdays timezone-check`."""

    def test_prints_utc_instant(self):
        result = runner.invoke(app, ["timezone-check", "Pacific/Kiritimati", "2025-01-01"])

        assert result.exit_code == 0
        assert "2024-12-31 19:00:00 UTC" in result.output

    def test_invalid_timezone(self):
        result = runner.invoke(app, ["timezone-check", "Mars/Olympus", "2025-01-01"])

        assert result.exit_code == 1

    def test_invalid_date(self):
        result = runner.invoke(app, ["timezone-check", "UTC", "2025-02-30"])

        assert result.exit_code == 2


class TestJobCommands:
    """Tests for `birthdays scan` and `birthdays dispatch`."""

    def test_scan_passes_date(self):
        with patch("birthdays.jobs.scan.main", new_callable=AsyncMock) as main:
            result = runner.invoke(app, ["scan", "--date", "2025-01-01"])

        assert result.exit_code == 0
        [call] = main.await_args_list
        assert str(call.kwargs["scan_date"]) == "2025-01-01"

    def test_dispatch_passes_concurrency(self):
        with patch("birthdays.jobs.dispatch.main", new_callable=AsyncMock) as main:
            result = runner.invoke(app, ["dispatch", "--concurrency", "4"])

        assert result.exit_code == 0
        main.assert_awaited_once_with(concurrency=4)
