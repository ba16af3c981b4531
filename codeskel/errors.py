"""Exceptions raised by the indexing pipeline."""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for indexing failures."""


class ParseError(IndexerError):
    """A document could not be parsed; the indexer skips it."""

    def __init__(self, uri: str, reason: str) -> None:
        super().__init__(f"Failed to parse {uri}: {reason}")
        self.uri = uri
        self.reason = reason


class GenerationError(IndexerError):
    """Skeleton generation failed for a node."""

    def __init__(self, node_id: str, reason: str) -> None:
        super().__init__(f"Skeleton generation failed for {node_id}: {reason}")
        self.node_id = node_id
        self.reason = reason


class PersistenceError(IndexerError):
    """The vector store could not commit a batch."""
