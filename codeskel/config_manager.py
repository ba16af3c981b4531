"""Configuration manager for codeskel using a TOML file.

Sections:

- ``[llm]``       provider, model, endpoint, api_key used by the skeleton generator
- ``[embeddings]`` embedding model key for the vector store
- ``[indexer]``   inclusion / exclusion filters
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import toml

logger = logging.getLogger(__name__)


def _base_dir() -> Path:
    return Path(os.environ.get("CODESKEL_HOME", str(Path.home() / ".codeskel"))).expanduser()


def config_file() -> Path:
    return _base_dir() / "config.toml"


# Default configurations for each provider
DEFAULT_LLM_CONFIGS: Dict[str, Dict[str, Any]] = {
    "none": {
        "provider": "none",
        "model": "",
    },
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/generate",
    },
    "openai": {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "api_key": "",
        "endpoint": "https://api.openai.com/v1/chat/completions",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-haiku-latest",
        "api_key": "",
    },
    "groq": {
        "provider": "groq",
        "model": "llama-3.3-70b-versatile",
        "api_key": "",
    },
}

DEFAULT_INDEXER_CONFIG: Dict[str, Any] = {
    "inclusion_filter": "**/*.py",
    "exclusion_filter": [
        ".git/", ".venv/", "venv/", "__pycache__/", "node_modules/",
        "build/", "dist/", ".tox/", ".mypy_cache/", ".pytest_cache/",
    ],
}

DEFAULT_EMBEDDING_CONFIG: Dict[str, Any] = {"model": "hash"}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections); ``{}`` if missing or unreadable."""
    path = config_file()
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    path = config_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", path, exc)
        return False


def load_llm_config() -> Dict[str, Any]:
    """``[llm]`` section merged over the selected provider's defaults."""
    section = load_full_config().get("llm", {})
    provider = section.get("provider", "none")
    merged = get_provider_config(provider)
    merged.update(section)
    return merged


def save_llm_config(provider: str, model: str = "", api_key: str = "", endpoint: str = "") -> bool:
    """Save LLM configuration. Preserves the other sections of the file."""
    config = load_full_config()
    section: Dict[str, Any] = {"provider": provider}
    if model:
        section["model"] = model
    if api_key:
        section["api_key"] = api_key
    if endpoint:
        section["endpoint"] = endpoint
    config["llm"] = section
    return _save_full_config(config)


def load_indexer_config() -> Dict[str, Any]:
    merged = dict(DEFAULT_INDEXER_CONFIG)
    merged.update(load_full_config().get("indexer", {}))
    return merged


def save_indexer_config(**values: Any) -> bool:
    """Update keys of the ``[indexer]`` section (``inclusion_filter``, ``exclusion_filter``)."""
    config = load_full_config()
    section = config.get("indexer", {})
    section.update({k: v for k, v in values.items() if v is not None})
    config["indexer"] = section
    return _save_full_config(config)


def load_embedding_config() -> Dict[str, Any]:
    merged = dict(DEFAULT_EMBEDDING_CONFIG)
    merged.update(load_full_config().get("embeddings", {}))
    return merged


def save_embedding_config(model_key: str) -> bool:
    config = load_full_config()
    config["embeddings"] = {"model": model_key}
    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    return DEFAULT_LLM_CONFIGS.get(provider, DEFAULT_LLM_CONFIGS["none"]).copy()
