"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from hybrid_recall.config import ChunkingConfig, ProviderConfig, RagConfig, RetrievalConfig, load_config
from hybrid_recall.exceptions import ConfigurationMissingError


class TestLoadConfig:
    """Test load_config YAML overlay."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")

        assert config == RagConfig()
        assert config.chunking.max_chunk_chars == 2000
        assert config.retrieval.bm25_weight == 0.5

    def test_yaml_overlays_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "chunking:\n  max_chunk_chars: 800\n"
            "retrieval:\n  bm25_weight: 0.25\n"
            "storage:\n  path: /tmp/store.json\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.chunking.max_chunk_chars == 800
        assert config.chunking.min_chunk_chars == 150
        assert config.retrieval.bm25_weight == 0.25
        assert config.storage.path == "/tmp/store.json"

    def test_empty_file_returns_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == RagConfig()

    def test_shipped_config_loads(self):
        shipped = Path(__file__).parent.parent / "config" / "config.yaml"
        config = load_config(shipped)

        assert config.embedding.model == "text-embedding-3-small"
        assert config.completion.model is None


class TestValidation:
    """Test pydantic validation of the config tree."""

    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError):
            ChunkingConfig(min_chunk_chars=500, max_chunk_chars=100)

    def test_overlap_must_fit_inside_max(self):
        with pytest.raises(ValidationError):
            ChunkingConfig(max_chunk_chars=100, overlap_chars=100)

    def test_bm25_weight_bounds(self):
        with pytest.raises(ValidationError):
            RetrievalConfig(bm25_weight=1.5)

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("RECALL_TEST_KEY", "sk-test")
        assert ProviderConfig(api_key_env="RECALL_TEST_KEY").api_key() == "sk-test"

    def test_api_key_required(self, monkeypatch):
        monkeypatch.delenv("RECALL_TEST_KEY", raising=False)
        with pytest.raises(ConfigurationMissingError):
            ProviderConfig(api_key_env="RECALL_TEST_KEY").api_key()

    def test_api_key_optional_for_local_servers(self, monkeypatch):
        monkeypatch.delenv("RECALL_TEST_KEY", raising=False)
        config = ProviderConfig(api_key_env="RECALL_TEST_KEY", require_api_key=False)
        assert config.api_key() == "no-key"
