"""Persistence boundary: skeleton documents in LanceDB, graph snapshot in JSON.

Layout under the per-workspace index directory::

    <index_dir>/lancedb/     LanceDB tables, one per embedding model
    <index_dir>/graph.json   import/export edges + symbol table (relative ids)

Schema per LanceDB row:

============== ============ =====================================
Column         Type         Description
============== ============ =====================================
id             utf8         Node id (absolute document URI + position)
vector         float32[dim] Embedding of the skeleton
document       utf8         Skeleton text
file_path      utf8         Workspace-relative file path
start_range    utf8         ``line-character`` of the node start
end_range      utf8         ``line-character`` of the node end
parent_node_id utf8         Parent node id or empty string
related_nodes  utf8         JSON list of related file paths
============== ============ =====================================
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import lancedb
import pandas as pd
import pyarrow.compute as pc

from .documents import split_node_id
from .embeddings import Embedder
from .errors import PersistenceError
from .models import FileEntry, IndexDocument, SerializedEdges

logger = logging.getLogger(__name__)

GRAPH_FILE = "graph.json"


@dataclass
class GraphSnapshot:
    symbol_table: Dict[str, FileEntry] = field(default_factory=dict)
    relative_imports: SerializedEdges = field(default_factory=list)
    relative_exports: SerializedEdges = field(default_factory=list)


class Store(ABC):
    """Capability interface of the vector store collaborator."""

    @abstractmethod
    async def save(
        self,
        documents: List[IndexDocument],
        relative_imports: SerializedEdges,
        relative_exports: SerializedEdges,
        symbol_table: Mapping[str, FileEntry],
        incremental: bool = True,
    ) -> None:
        """Commit documents together with the edge maps and symbol table.

        ``incremental=False`` (full build) also prunes documents whose file
        is absent from ``symbol_table``.
        """

    @abstractmethod
    async def delete_documents(self, ids: List[str]) -> None:
        ...

    @abstractmethod
    async def find_documents_by_path(self, paths: List[str]) -> List[IndexDocument]:
        ...

    @abstractmethod
    async def load_graph(self) -> Optional[GraphSnapshot]:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


def _sql_list(values: Iterable[str]) -> str:
    return ", ".join("'" + v.replace("'", "''") + "'" for v in values)


def _relative_row_id(doc_id: str, file_path: str) -> str:
    """Symbol-table form of a stored row id: ``file_path`` plus the position fragment."""
    _, fragment = split_node_id(doc_id)
    return f"{file_path}#{fragment}" if fragment else file_path


class LanceVectorStore(Store):
    """LanceDB-backed store; blocking LanceDB calls run in worker threads."""

    def __init__(self, index_dir: Path, embedder: Embedder) -> None:
        self.index_dir = Path(index_dir)
        self.embedder = embedder
        self._lance_dir = self.index_dir / "lancedb"
        self._lance_dir.mkdir(parents=True, exist_ok=True)
        self._graph_path = self.index_dir / GRAPH_FILE

        # Each embedding model gets its own table to avoid dimension conflicts
        self._table_name = f"skeletons_{getattr(embedder, 'model_key', 'hash')}".replace("-", "_")
        self._db: Any = lancedb.connect(str(self._lance_dir))
        self._table: Optional[Any] = None
        try:
            self._table = self._db.open_table(self._table_name)
        except Exception:
            self._table = None

    # ------------------------------------------------------------------
    # Store interface
    # ------------------------------------------------------------------

    async def save(
        self,
        documents: List[IndexDocument],
        relative_imports: SerializedEdges,
        relative_exports: SerializedEdges,
        symbol_table: Mapping[str, FileEntry],
        incremental: bool = True,
    ) -> None:
        try:
            await asyncio.to_thread(
                self._save_sync, documents, relative_imports, relative_exports,
                dict(symbol_table), incremental,
            )
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to save {len(documents)} documents: {exc}") from exc

    async def delete_documents(self, ids: List[str]) -> None:
        await asyncio.to_thread(self._delete_ids, ids)

    async def find_documents_by_path(self, paths: List[str]) -> List[IndexDocument]:
        return await asyncio.to_thread(self._find_by_path, paths)

    async def load_graph(self) -> Optional[GraphSnapshot]:
        return await asyncio.to_thread(self._read_graph)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)

    def count(self) -> int:
        if self._table is None:
            return 0
        return self._table.count_rows()

    # ------------------------------------------------------------------
    # Search (manual inspection)
    # ------------------------------------------------------------------

    def search(self, query: str, top_k: int = 5) -> List[Dict[str, Any]]:
        if self._table is None:
            return []
        vector = self.embedder.embed_text(query)
        rows = (
            self._table
            .search(vector)
            .distance_type("cosine")
            .limit(top_k)
            .to_list()
        )
        return [
            {
                "id": row["id"],
                "file_path": row["file_path"],
                "start_range": row["start_range"],
                "score": round(max(0.0, 1.0 - row.get("_distance", 0.0)), 5),
                "document": row["document"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _save_sync(
        self,
        documents: List[IndexDocument],
        relative_imports: SerializedEdges,
        relative_exports: SerializedEdges,
        symbol_table: Dict[str, FileEntry],
        incremental: bool,
    ) -> None:
        if documents:
            self._upsert(documents)
        if not incremental:
            self._prune_orphans(symbol_table)
        self._write_graph(GraphSnapshot(symbol_table, relative_imports, relative_exports))
        logger.info(
            "Saved %d documents (%s) to %s",
            len(documents), "incremental" if incremental else "full", self.index_dir,
        )

    def _upsert(self, documents: List[IndexDocument]) -> None:
        vectors = self.embedder.embed_documents([doc.content for doc in documents])
        rows = [
            {
                "id": doc.id,
                "vector": vector,
                "document": doc.content,
                "file_path": doc.metadata.get("filePath", ""),
                "start_range": doc.metadata.get("startRange", ""),
                "end_range": doc.metadata.get("endRange", ""),
                "parent_node_id": doc.metadata.get("parentNodeId") or "",
                "related_nodes": json.dumps(doc.metadata.get("relatedNodes", [])),
            }
            for doc, vector in zip(documents, vectors)
        ]
        if self._table is None:
            self._table = self._db.create_table(self._table_name, data=rows, mode="overwrite")
            return
        self._table.delete(f"id IN ({_sql_list(doc.id for doc in documents)})")
        self._table.add(rows)

    def _prune_orphans(self, symbol_table: Dict[str, FileEntry]) -> None:
        """Drop rows of files no longer indexed and rows whose node left its file."""
        if self._table is None:
            return
        rows = self._table.to_arrow().select(["id", "file_path"])
        stored = pc.unique(rows["file_path"]).to_pylist()
        orphans = sorted(set(stored) - set(symbol_table))
        if orphans:
            logger.info("Pruning documents of %d files no longer indexed", len(orphans))
            self._table.delete(f"file_path IN ({_sql_list(orphans)})")

        stale = [
            doc_id
            for doc_id, path in zip(rows["id"].to_pylist(), rows["file_path"].to_pylist())
            if path in symbol_table and _relative_row_id(doc_id, path) not in symbol_table[path].node_ids
        ]
        if stale:
            logger.info("Pruning %d documents of definitions that moved or were removed", len(stale))
            self._delete_ids(stale)

    def _delete_ids(self, ids: List[str]) -> None:
        if not ids or self._table is None:
            return
        self._table.delete(f"id IN ({_sql_list(ids)})")

    def _find_by_path(self, paths: List[str]) -> List[IndexDocument]:
        if not paths or self._table is None:
            return []
        df: pd.DataFrame = self._table.to_pandas()
        matches = df[df["file_path"].isin(paths)]
        return [
            IndexDocument(
                id=row["id"],
                content=row["document"],
                metadata={
                    "filePath": row["file_path"],
                    "startRange": row["start_range"],
                    "endRange": row["end_range"],
                    "parentNodeId": row["parent_node_id"] or None,
                    "relatedNodes": json.loads(row["related_nodes"] or "[]"),
                },
            )
            for _, row in matches.iterrows()
        ]

    def _write_graph(self, snapshot: GraphSnapshot) -> None:
        payload = {
            "imports": snapshot.relative_imports,
            "exports": snapshot.relative_exports,
            "symbolTable": {
                path: entry.to_dict() for path, entry in sorted(snapshot.symbol_table.items())
            },
        }
        tmp = self._graph_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self._graph_path)

    def _read_graph(self) -> Optional[GraphSnapshot]:
        if not self._graph_path.exists():
            return None
        try:
            payload = json.loads(self._graph_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable graph snapshot %s: %s", self._graph_path, exc)
            return None
        return GraphSnapshot(
            symbol_table={
                path: FileEntry.from_dict(entry)
                for path, entry in payload.get("symbolTable", {}).items()
            },
            relative_imports=payload.get("imports", []),
            relative_exports=payload.get("exports", []),
        )

    def _clear_sync(self) -> None:
        try:
            self._db.drop_table(self._table_name)
        except Exception as exc:
            logger.debug("drop_table(%s): %s", self._table_name, exc)
        self._table = None
        if self._graph_path.exists():
            self._graph_path.unlink()
