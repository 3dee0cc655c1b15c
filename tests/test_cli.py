"""Tests for CLI commands and helper functions."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from click.testing import CliRunner

from mail_relay.cli import main, read_recipients
from mail_relay.client import RelayClientError

STATS = {
    "ok": True,
    "stats": {
        "total_sent": 3,
        "total_failed": 1,
        "total_webapps": 2,
        "available_apps": 1,
        "rate_limited_apps": 1,
        "daily_limit": 1400,
        "last_reset": "2025-03-10T00:00:00",
        "webapp_details": [
            {"webapp": 1, "usage": 1400, "limit": 1400, "percentage": "100.0%", "remaining": 0, "is_limited": True},
            {"webapp": 2, "usage": 3, "limit": 1400, "percentage": "0.2%", "remaining": 1397, "is_limited": False},
        ],
    },
}


@pytest.fixture
def relay():
    with patch("mail_relay.cli.RelayClient") as client_cls:
        instance = MagicMock()
        instance.url = "http://localhost:3000"
        client_cls.return_value = instance
        yield instance


class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_read_recipients_skips_blanks_and_comments(self, tmp_path):
        path = tmp_path / "list.txt"
        path.write_text("# header\na@example.com\n\n  b@example.com  \n")
        assert read_recipients(path) == ["a@example.com", "b@example.com"]


class TestCommands:
    """Tests for client-side commands."""

    def test_stats_table(self, relay):
        relay.stats.return_value = STATS
        result = CliRunner().invoke(main, ["stats"])
        assert result.exit_code == 0
        assert "WebApp Usage" in result.output
        assert "1397" in result.output

    def test_stats_json(self, relay):
        relay.stats.return_value = STATS
        result = CliRunner().invoke(main, ["--json", "stats"])
        assert result.exit_code == 0
        assert '"total_webapps": 2' in result.output

    def test_send(self, relay):
        relay.send.return_value = {
            "ok": True,
            "data": {"to": "dest@example.com", "webapp_used": 2, "webapp_usage": 4, "webapp_limit": 1400},
        }
        result = CliRunner().invoke(main, ["send", "dest@example.com", "-s", "Hi"])
        assert result.exit_code == 0
        assert "Sent to dest@example.com via WebApp #2 (4/1400)" in result.output
        relay.send.assert_called_once_with("dest@example.com", subject="Hi", from_name=None)

    def test_send_error_exits(self, relay):
        relay.send.side_effect = RelayClientError(429, {"ok": False, "error": "All WebApps are at capacity"})
        result = CliRunner().invoke(main, ["send", "dest@example.com"])
        assert result.exit_code == 1

    def test_unreachable_server_exits(self, relay):
        relay.reset.side_effect = requests.ConnectionError("refused")
        result = CliRunner().invoke(main, ["reset"])
        assert result.exit_code == 1

    def test_bulk(self, relay, tmp_path):
        path = tmp_path / "list.txt"
        path.write_text("a@example.com\nb@example.com\n")
        relay.bulk.return_value = {
            "ok": True,
            "summary": {"total": 2, "sent": 1, "failed": 1, "undistributed": 0, "success_rate": "50.0%"},
            "distribution": [{"webapp": 1, "emails_assigned": 2, "current_usage": 1, "limit": 1400}],
            "results": [
                {"email": "a@example.com", "status": "sent", "webapp": 1},
                {"email": "b@example.com", "status": "failed", "webapp": 1, "error": "HTTP 500"},
            ],
        }
        result = CliRunner().invoke(main, ["bulk", str(path), "--subject", "News"])
        assert result.exit_code == 0
        assert "b@example.com" in result.output
        relay.bulk.assert_called_once_with(["a@example.com", "b@example.com"], subject="News", from_name=None)

    def test_bulk_empty_file(self, relay, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("# nothing\n")
        result = CliRunner().invoke(main, ["bulk", str(path)])
        assert result.exit_code == 1
        relay.bulk.assert_not_called()

    def test_reset_and_refresh(self, relay):
        relay.reset.return_value = {"ok": True, "message": "Rate limits and usage counters manually reset"}
        relay.refresh.return_value = {"ok": True, "urls_loaded": 5}
        runner = CliRunner()

        reset = runner.invoke(main, ["reset"])
        refresh = runner.invoke(main, ["refresh"])

        assert "manually reset" in reset.output
        assert "Loaded 5 WebApp URLs" in refresh.output

    def test_serve_runs_uvicorn(self, tmp_path, monkeypatch):
        config = tmp_path / "config.ini"
        config.write_text("[server]\nport = 8123\n")
        monkeypatch.setenv("MR_CONFIG", str(config))
        with patch("uvicorn.run") as run:
            result = CliRunner().invoke(main, ["serve", "--config", str(config)])
        assert result.exit_code == 0
        run.assert_called_once()
        assert run.call_args.kwargs["port"] == 8123
        assert run.call_args.args[0] == "mail_relay.server:app"
