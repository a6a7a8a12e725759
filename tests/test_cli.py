"""Tests for the cg command line."""

import json

import pytest
from typer.testing import CliRunner

from content_gates import cli
from content_gates.llm import FixtureProvider
from content_gates.storage import FileResultStore
from content_gates.workflow import HttpStageClient

from conftest import make_bundle

runner = CliRunner()


@pytest.fixture
def results_dir(tmp_path):
    return tmp_path / "out"


class TestList:
    def test_empty(self, results_dir):
        result = runner.invoke(cli.app, ["list", "-o", str(results_dir)])
        assert result.exit_code == 0
        assert "No results found" in result.output

    def test_shows_ids(self, results_dir):
        FileResultStore(results_dir).save(make_bundle("crm-guide-a1b2c3"))
        result = runner.invoke(cli.app, ["list", "-o", str(results_dir)])

        assert result.exit_code == 0
        assert "crm-guide-a1b2c3" in result.output

    def test_limit(self, results_dir):
        store = FileResultStore(results_dir)
        store.save(make_bundle("old-aaaaaa", "2024-01-01T00:00:00Z"))
        store.save(make_bundle("new-bbbbbb", "2024-02-01T00:00:00Z"))
        result = runner.invoke(cli.app, ["list", "-o", str(results_dir), "-n", "1"])

        assert "new-bbbbbb" in result.output
        assert "old-aaaaaa" not in result.output


class TestShow:
    @pytest.fixture(autouse=True)
    def _bundle(self, results_dir):
        FileResultStore(results_dir).save(make_bundle("crm-guide-a1b2c3"))

    def test_human_readable(self, results_dir):
        result = runner.invoke(cli.app, ["show", "crm-guide-a1b2c3", "-o", str(results_dir)])
        assert result.exit_code == 0
        assert "Keyword: crm" in result.output
        assert "How we compared CRM tools" in result.output

    def test_json(self, results_dir):
        result = runner.invoke(cli.app, ["show", "crm-guide-a1b2c3", "-o", str(results_dir), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["id"] == "crm-guide-a1b2c3"

    def test_missing(self, results_dir):
        result = runner.invoke(cli.app, ["show", "nope-000000", "-o", str(results_dir)])
        assert result.exit_code == 1
        assert "Result not found" in result.output

    def test_record_with_index_out_of_range(self, results_dir):
        path = results_dir / "crm-guide-a1b2c3.json"
        record = json.loads(path.read_text(encoding="utf-8"))
        record["selected_template_index"] = 7
        path.write_text(json.dumps(record), encoding="utf-8")

        result = runner.invoke(cli.app, ["show", "crm-guide-a1b2c3", "-o", str(results_dir)])
        assert result.exit_code == 1
        assert "Result not found" in result.output


class TestRun:
    @pytest.fixture
    def server(self, make_client, monkeypatch):
        test_client = make_client(FixtureProvider())
        monkeypatch.setattr(
            cli, "HttpStageClient", lambda base_url, api_key: HttpStageClient(client=test_client)
        )

    def test_walks_to_publish(self, server, store):
        result = runner.invoke(cli.app, ["run", "best crm software"], input="0\n0\np\n")

        assert result.exit_code == 0, result.output
        assert "Published:" in result.output
        assert len(store.list()) == 1

    def test_quit_at_gate_a(self, server, store):
        result = runner.invoke(cli.app, ["run", "best crm software"], input="q\n")
        assert result.exit_code == 0
        assert store.list() == []

    def test_invalid_business_type(self):
        result = runner.invoke(cli.app, ["run", "crm", "-t", "space_travel"])
        assert result.exit_code == 1
        assert "Invalid input" in result.output

    def test_missing_profile(self, tmp_path):
        result = runner.invoke(cli.app, ["run", "crm", "--profile", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1
        assert "Profile file not found" in result.output
