"""
Tests for the Typer CLI.

The embedding provider is replaced with the bag-of-words fake so the commands
run end to end against a temporary FileStore without network access.
"""

import re

import orjson
import pytest
from loguru import logger
from typer.testing import CliRunner

from hybrid_recall.main import app

from conftest import FakeEmbedder


runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setattr("hybrid_recall.service.OpenAIEmbedder", lambda config: FakeEmbedder())

    notes = tmp_path / "notes"
    notes.mkdir()
    (notes / "budget.md").write_text(
        "# Budget\n\nThe quarterly budget review covers marketing spend and hiring plans.",
        encoding="utf-8",
    )
    (notes / "garden.txt").write_text(
        "Tomatoes and basil grow well in the sunny corner of the garden.",
        encoding="utf-8",
    )

    config = tmp_path / "config.yaml"
    config.write_text(
        f"storage:\n  path: {tmp_path / 'store.json'}\n"
        "logging:\n  level: ERROR\n  file: null\n",
        encoding="utf-8",
    )
    yield {"notes": notes, "config": str(config)}
    # setup_logger points loguru at the runner's captured stderr
    logger.remove()


def invoke(*args):
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return result


class TestCommands:
    """Test import-notes, status, rebuild and search."""

    def test_import_then_status(self, cli_env):
        result = invoke("import-notes", str(cli_env["notes"]), "-c", cli_env["config"])
        assert "Imported 2 note(s)" in result.output

        status = invoke("status", "-c", cli_env["config"])
        assert re.search(r"Notes\s+:\s+2", status.output)
        assert re.search(r"Chunks\s+:\s+0", status.output)

    def test_status_persists_lexical_index_it_builds(self, cli_env, tmp_path):
        invoke("import-notes", str(cli_env["notes"]), "-c", cli_env["config"])
        store_path = tmp_path / "store.json"
        data = orjson.loads(store_path.read_bytes())
        data.pop("bm25_index_consolidated_v1", None)
        data.pop("bm25_index_unconsolidated_v1", None)
        store_path.write_bytes(orjson.dumps(data))

        status = invoke("status", "-c", cli_env["config"])

        assert re.search(r"Lexical docs\s+:\s+2 \(consolidated\)", status.output)
        assert "bm25_index_consolidated_v1" in orjson.loads(store_path.read_bytes())

    def test_rebuild_then_search_json(self, cli_env):
        invoke("import-notes", str(cli_env["notes"]), "-c", cli_env["config"])

        rebuilt = invoke("rebuild", "-c", cli_env["config"])
        assert "Full rebuild" in rebuilt.output

        result = invoke("search", "quarterly budget", "--json", "--bm25-weight", "1.0", "-c", cli_env["config"])
        hits = orjson.loads(result.stdout)

        assert hits[0]["parent_id"] == "note_budget"
        assert hits[0]["parent_title"] == "budget"
        assert all(h["parent_id"] != "note_garden" for h in hits)

    def test_import_with_index(self, cli_env):
        invoke("import-notes", str(cli_env["notes"]), "--index", "-c", cli_env["config"])

        status = invoke("status", "-c", cli_env["config"])
        assert re.search(r"Embeddings\s+:\s+2", status.output)

    def test_empty_folder_fails(self, cli_env, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()

        result = runner.invoke(app, ["import-notes", str(empty), "-c", cli_env["config"]])

        assert result.exit_code == 1
        assert "No note files found" in result.output
