# SPDX-License-Identifier: MIT
"""Tests for the command-line interface."""

from datetime import datetime, timezone

import pytest
from click.testing import CliRunner
from rich.console import Console
from shapely.geometry import MultiPolygon, box

from georesolver import main
from georesolver.extraction import CountryRecord
from georesolver.lock import LockNotAcquiredError
from georesolver.orchestrator import RunReport
from georesolver.upsert import PhaseStats


@pytest.fixture
def runner(mocker):
    # wide console so table cells are not wrapped
    mocker.patch.object(main, "console", Console(width=250))
    return CliRunner()


@pytest.fixture
def store(mocker, memory_store):
    """The CLI's database store replaced by the in-memory one."""
    mocker.patch("georesolver.main.open_store", return_value=memory_store)
    return memory_store


@pytest.fixture
def orchestrator(mocker):
    return mocker.patch("georesolver.main.IngestionOrchestrator")


def make_report(success=True):
    started = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stats = PhaseStats(phase="countries", success=success, status="loaded" if success else "failed",
                       features_seen=3, processed=2)
    stats.record_skip("missing name")
    return RunReport(
        success=success,
        phases={"countries": stats},
        errors=[] if success else ["countries: boom"],
        started_at=started,
        completed_at=started,
    )


class TestUpdate:
    def test_success(self, runner, store, orchestrator):
        orchestrator.return_value.run.return_value = make_report()

        result = runner.invoke(main.cli, ["update"])

        assert result.exit_code == main.EXIT_OK
        assert "Update complete" in result.output
        assert orchestrator.call_args.args[0] is store
        assert orchestrator.call_args.kwargs == {"skip_fetch": False, "truncate": None}

    def test_failure(self, runner, store, orchestrator):
        orchestrator.return_value.run.return_value = make_report(success=False)

        result = runner.invoke(main.cli, ["update", "--skip-fetch", "--no-truncate"])

        assert result.exit_code == main.EXIT_FAILED
        assert "countries: boom" in result.output
        assert orchestrator.call_args.kwargs == {"skip_fetch": True, "truncate": False}

    def test_locked(self, runner, store, orchestrator):
        orchestrator.return_value.run.side_effect = LockNotAcquiredError("georesolver_data_update")

        result = runner.invoke(main.cli, ["update"])

        assert result.exit_code == main.EXIT_LOCKED
        assert "nothing was changed" in result.output

    def test_dry_run_uses_memory_store(self, runner, mocker, orchestrator):
        open_store = mocker.patch("georesolver.main.open_store")
        orchestrator.return_value.run.return_value = make_report()

        result = runner.invoke(main.cli, ["update", "--dry-run"])

        assert result.exit_code == main.EXIT_OK
        open_store.assert_not_called()
        assert isinstance(orchestrator.call_args.args[0], main.MemoryStore)


class TestReadCommands:
    def test_status(self, runner, store):
        store.set_watermark(datetime(2024, 3, 1, tzinfo=timezone.utc))
        result = runner.invoke(main.cli, ["status"])
        assert result.exit_code == 0
        assert "2024-03-01" in result.output
        assert "countries" in result.output

    def test_lookup(self, runner, store):
        with store.transaction():
            store.upsert_country(CountryRecord("FR", "FRA", "France", MultiPolygon([box(0, 40, 10, 50)])))

        result = runner.invoke(main.cli, ["lookup", "45", "5"])

        assert result.exit_code == 0
        assert "France" in result.output

    def test_lookup_outside(self, runner, store):
        result = runner.invoke(main.cli, ["lookup", "--", "-45", "5"])
        assert result.exit_code == 0
        assert "No country contains this point" in result.output

    def test_lookup_invalid(self, runner, store):
        result = runner.invoke(main.cli, ["lookup", "95", "5"])
        assert result.exit_code == main.EXIT_FAILED

    def test_list_sources(self, runner):
        result = runner.invoke(main.cli, ["list-sources"])
        assert result.exit_code == 0
        for dataset in ("countries", "regions", "cities", "timezones"):
            assert dataset in result.output
