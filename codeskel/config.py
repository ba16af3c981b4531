"""Configuration paths and defaults for codeskel."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List

from .config_manager import (
    _base_dir,
    load_embedding_config,
    load_indexer_config,
    load_llm_config,
)

SUPPORTED_EXTENSIONS = {".py", ".pyi"}
DEFAULT_EMBEDDING_DIM = 256


def base_dir() -> Path:
    """``$CODESKEL_HOME`` or ``~/.codeskel``."""
    return _base_dir()


def index_dir_for(workspace: Path) -> Path:
    """Per-workspace index directory: ``<base>/indexes/<name>-<hash>``."""
    resolved = Path(workspace).resolve()
    suffix = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:10]
    return base_dir() / "indexes" / f"{resolved.name or 'root'}-{suffix}"


def inclusion_filter() -> str:
    return load_indexer_config()["inclusion_filter"]


def exclusion_filter() -> List[str]:
    value = load_indexer_config()["exclusion_filter"]
    if isinstance(value, str):
        return [line for line in value.splitlines() if line.strip()]
    return list(value)


def llm_settings() -> dict:
    return load_llm_config()


def embedding_model() -> str:
    return load_embedding_config()["model"]


def ensure_base_dirs() -> None:
    (base_dir() / "indexes").mkdir(parents=True, exist_ok=True)
