"""Embedding models for skeleton documents.

========== ====================================== ====== =========================
Key        HuggingFace Model                      Dim    Notes
========== ====================================== ====== =========================
jina-code  jinaai/jina-embeddings-v2-base-code     768   Code-aware
minilm     sentence-transformers/all-MiniLM-L6-v2  384   Tiny and fast
hash       (none)                                  256   No ML, keyword-level only
========== ====================================== ====== =========================

Transformer models are optional (``pip install codeskel[embeddings]``);
``hash`` needs no download and is the default.
"""

from __future__ import annotations

import logging
import math
import re
from hashlib import blake2b
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DEFAULT_EMBEDDING_DIM, base_dir, embedding_model

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "jina-code": {
        "hf_id": "jinaai/jina-embeddings-v2-base-code",
        "dim": 768,
        "max_tokens": 8192,
        "trust_remote_code": True,
    },
    "minilm": {
        "hf_id": "sentence-transformers/all-MiniLM-L6-v2",
        "dim": 384,
        "max_tokens": 256,
        "trust_remote_code": False,
    },
    "hash": {
        "hf_id": None,
        "dim": DEFAULT_EMBEDDING_DIM,
        "max_tokens": None,
        "trust_remote_code": False,
    },
}

DEFAULT_MODEL = "hash"


class TransformerEmbedder:
    """Mean-pooled HuggingFace encoder; weights load lazily on first use."""

    def __init__(self, model_key: str, cache_dir: Optional[Path] = None, device: str = "cpu") -> None:
        spec = EMBEDDING_MODELS.get(model_key)
        if spec is None or spec["hf_id"] is None:
            raise ValueError(f"'{model_key}' has no transformer backend")
        self.model_key = model_key
        self.hf_id: str = spec["hf_id"]
        self.dim: int = spec["dim"]
        self.max_length: int = spec["max_tokens"]
        self.trust_remote_code: bool = spec["trust_remote_code"]
        self.cache_dir = cache_dir or (base_dir() / "models")
        self.device = device
        self._model: Any = None
        self._tokenizer: Any = None

    def _load_model(self) -> None:
        if self._model is not None:
            return
        from transformers import AutoModel, AutoTokenizer

        logger.info("Loading embedding model '%s' (%s)", self.model_key, self.hf_id)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._tokenizer = AutoTokenizer.from_pretrained(
            self.hf_id, cache_dir=str(self.cache_dir), trust_remote_code=self.trust_remote_code,
        )
        self._model = AutoModel.from_pretrained(
            self.hf_id, cache_dir=str(self.cache_dir), trust_remote_code=self.trust_remote_code,
        )
        self._model.eval()
        self._model.to(self.device)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        import torch
        import torch.nn.functional as F

        self._load_model()
        batch = self._tokenizer(
            texts,
            max_length=self.max_length,
            padding=True,
            truncation=True,
            return_tensors="pt",
        )
        batch = {k: v.to(self.device) for k, v in batch.items()}
        with torch.no_grad():
            hidden = self._model(**batch).last_hidden_state
        mask = batch["attention_mask"].unsqueeze(-1).expand(hidden.size()).float()
        pooled = (hidden * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)
        return F.normalize(pooled, p=2, dim=1).cpu().tolist()

    def embed_text(self, text: str) -> List[float]:
        return self._encode([text])[0]

    def embed_documents(self, texts: List[str], batch_size: int = 16) -> List[List[float]]:
        vectors: List[List[float]] = []
        for i in range(0, len(texts), batch_size):
            vectors.extend(self._encode(texts[i: i + batch_size]))
        return vectors


class HashEmbeddingModel:
    """Deterministic token-hashing embedder with no ML dependencies."""

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            vec[idx] += 1.0 if (digest[4] & 1) == 0 else -1.0
        return _l2_normalize(vec)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


Embedder = Union[TransformerEmbedder, HashEmbeddingModel]


def get_embedder(model_key: Optional[str] = None, device: str = "cpu") -> Embedder:
    """Explicit key, else ``[embeddings].model`` from config, else ``hash``.

    Falls back to hash embeddings when torch/transformers are missing.
    """
    key = model_key or embedding_model() or DEFAULT_MODEL
    spec = EMBEDDING_MODELS.get(key)
    if spec is None:
        logger.warning("Unknown embedding model '%s', falling back to hash.", key)
        return HashEmbeddingModel()
    if spec["hf_id"] is None:
        return HashEmbeddingModel(spec["dim"])
    try:
        import torch  # noqa: F401
        import transformers  # noqa: F401
    except ImportError:
        logger.warning(
            "Embedding model '%s' requires torch + transformers; using hash embeddings. "
            "Install with: pip install codeskel[embeddings]",
            key,
        )
        return HashEmbeddingModel()
    return TransformerEmbedder(key, device=device)


def _l2_normalize(vec: List[float]) -> List[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]
