"""CLI tests against a throwaway SQLite file."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from notify_service.cli.main import cli


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    from notify_service.core.settings import clear_all_caches

    monkeypatch.setenv("DB_ENABLED", "false")
    monkeypatch.setenv("DB_SQLITE_FALLBACK_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("RATELIMIT_BACKEND", "database")
    clear_all_caches()

    runner = CliRunner()
    result = runner.invoke(cli, ["db", "init"])
    assert result.exit_code == 0, result.output
    return runner


@pytest.mark.unit
class TestCli:
    """Test suite for the operator CLI."""

    def test_db_init(self, runner):
        result = runner.invoke(cli, ["db", "init"])

        assert result.exit_code == 0
        assert "Database ready" in result.output

    def test_queue_stats_on_empty_database(self, runner):
        result = runner.invoke(cli, ["queue", "stats", "--tenant", "acme"])

        assert result.exit_code == 0
        assert "pending: 0" in result.output
        assert "dead: 0" in result.output

    def test_requeue_rejects_malformed_id(self, runner):
        result = runner.invoke(cli, ["queue", "requeue", "not-a-uuid", "--tenant", "acme"])

        assert result.exit_code == 1
        assert "Invalid entry ID format" in result.output

    def test_webhooks_list_empty(self, runner):
        result = runner.invoke(cli, ["webhooks", "list"])

        assert result.exit_code == 0
        assert "No webhooks found" in result.output

    def test_analytics_fold(self, runner):
        result = runner.invoke(cli, ["analytics", "fold"])
        assert result.exit_code == 0
