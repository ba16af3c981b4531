"""Tests for configuration handling and embedder selection."""

import math
from pathlib import Path

from codeskel import config, config_manager
from codeskel.embeddings import HashEmbeddingModel, get_embedder


class TestConfigManager:
    """TOML-backed sections with defaults."""

    def test_defaults_without_file(self, _isolated_home: Path):
        assert not config_manager.config_file().exists()
        assert config_manager.load_llm_config()["provider"] == "none"
        assert config.inclusion_filter() == "**/*.py"
        assert ".venv/" in config.exclusion_filter()
        assert config.embedding_model() == "hash"

    def test_sections_are_preserved(self):
        config_manager.save_llm_config("openai", model="gpt-4o-mini", api_key="sk-test")
        config_manager.save_indexer_config(inclusion_filter="src/**/*.py")
        config_manager.save_embedding_config("minilm")

        llm = config_manager.load_llm_config()
        assert llm["provider"] == "openai"
        assert llm["api_key"] == "sk-test"
        assert llm["endpoint"] == "https://api.openai.com/v1/chat/completions"
        assert config.inclusion_filter() == "src/**/*.py"
        assert config.embedding_model() == "minilm"

    def test_exclusion_filter_accepts_multiline_string(self):
        config_manager.save_indexer_config(exclusion_filter="build/\n\ndist/\n")

        assert config.exclusion_filter() == ["build/", "dist/"]

    def test_unreadable_file_yields_defaults(self):
        path = config_manager.config_file()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("[llm\nprovider = ", encoding="utf-8")

        assert config_manager.load_full_config() == {}
        assert config_manager.load_llm_config()["provider"] == "none"


class TestIndexDir:
    def test_index_dir_is_per_workspace(self, workspace: Path, _isolated_home: Path):
        other = workspace / "nested"
        other.mkdir()

        first = config.index_dir_for(workspace)

        assert first.parent == _isolated_home / "indexes"
        assert first.name.startswith("workspace-")
        assert first == config.index_dir_for(workspace)
        assert first != config.index_dir_for(other)


class TestEmbeddings:
    def test_hash_embedder_is_default(self):
        embedder = get_embedder()

        assert isinstance(embedder, HashEmbeddingModel)
        assert embedder.dim == config.DEFAULT_EMBEDDING_DIM

    def test_unknown_model_falls_back(self):
        assert isinstance(get_embedder("does-not-exist"), HashEmbeddingModel)

    def test_hash_vectors_are_normalized_and_stable(self):
        model = HashEmbeddingModel()

        first = model.embed_text("def parse_config(path)")
        again = model.embed_documents(["def parse_config(path)"])[0]

        assert first == again
        assert math.isclose(math.sqrt(sum(v * v for v in first)), 1.0, rel_tol=1e-9)
