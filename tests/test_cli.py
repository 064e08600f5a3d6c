"""Tests for the operational CLI."""

import json

import pytest
from typer.testing import CliRunner

from hivestore.cli.config import CLIConfig
from hivestore.main import app
from hivestore.storage.sqlite import open_coordinator
from hivestore.config import StoreConfig

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_cli_mode():
    CLIConfig.reset()
    yield
    CLIConfig.reset()


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.delenv("HIVESTORE_HUMAN_MODE", raising=False)
    return tmp_path / "cli.db"


def _json(result):
    return json.loads(result.stdout.strip().splitlines()[-1])


class TestCLI:

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "hivestore v" in result.stdout

    def test_init_then_health(self, db):
        result = runner.invoke(app, ["init", "--db", str(db)])
        assert result.exit_code == 0
        assert _json(result)["schema_version"] == "1.1.0"

        result = runner.invoke(app, ["health", "--db", str(db)])
        assert result.exit_code == 0
        report = _json(result)
        assert report["healthy"] is True
        assert report["tables"]["swarms"] == 0

    def test_init_with_broken_schema(self, db, tmp_path):
        schema = tmp_path / "broken.sql"
        schema.write_text("CREATE TABLE (;")
        result = runner.invoke(app, ["init", "--db", str(db), "--schema", str(schema)])
        assert result.exit_code == 1
        assert _json(result)["code"] == "SCHEMA_INIT_FAILED"

    def test_swarms_listing(self, db):
        coord = open_coordinator(config=StoreConfig(db_path=str(db)))
        swarm = coord.create_swarm("cli-swarm", topology="star")
        coord.set_active_swarm(swarm.id)
        coord.close()

        result = runner.invoke(app, ["swarms", "--db", str(db)])
        assert result.exit_code == 0
        rows = _json(result)
        assert rows[0]["name"] == "cli-swarm"
        assert rows[0]["is_active"] is True

    def test_swarms_human_table(self, db):
        coord = open_coordinator(config=StoreConfig(db_path=str(db)))
        coord.create_swarm("readable")
        coord.close()

        result = runner.invoke(app, ["--human", "swarms", "--db", str(db)])
        assert result.exit_code == 0
        assert not result.stdout.lstrip().startswith("[")

    def test_memory_stats_and_sweep(self, db):
        coord = open_coordinator(config=StoreConfig(db_path=str(db)))
        for i in range(4):
            coord.store_memory(f"k{i}", "value", namespace="ns")
        coord.close()

        stats = _json(runner.invoke(app, ["memory-stats", "--db", str(db)]))
        assert stats["totals"]["total_entries"] == 4
        assert stats["namespaces"][0]["namespace"] == "ns"

        result = runner.invoke(app, ["sweep", "--db", str(db), "--capacity", "1"])
        assert result.exit_code == 0
        assert _json(result)["trimmed"] == {"ns": 3}

    def test_analytics(self, db):
        runner.invoke(app, ["init", "--db", str(db)])
        result = runner.invoke(app, ["analytics", "--db", str(db)])
        assert result.exit_code == 0
        data = _json(result)
        assert data["schema_version"] == "1.1.0"
        assert data["tables"]["swarms"] == 0

    def test_config_output(self, monkeypatch):
        monkeypatch.setenv("HIVESTORE_DB_PATH", ":memory:")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert _json(result)["db_path"] == ":memory:"

    def test_invalid_config_reported(self, monkeypatch):
        monkeypatch.setenv("HIVESTORE_SYNCHRONOUS", "SOMETIMES")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 1
        assert _json(result)["code"] == "INVALID_CONFIG"
