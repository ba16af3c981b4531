"""In-memory code graph: per-file symbol table plus import/export edge maps.

The symbol table is keyed by workspace-relative file path and stores
workspace-relative node ids (the persisted, relocatable form). Edge maps and
the node registry are keyed by absolute node ids as produced by the parser.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .documents import absolute_node_id
from .models import CodeGraphNode, EdgeMap, FileEntry

logger = logging.getLogger(__name__)


class CodeGraph:
    """Symbol table and adjacency maps owned by a single :class:`Indexer`."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = Path(workspace)
        self._symbol_table: Dict[str, FileEntry] = {}
        self._import_edges: EdgeMap = {}
        self._export_edges: EdgeMap = {}
        self._nodes: Dict[str, CodeGraphNode] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_file_entry(self, relative_path: str) -> Optional[FileEntry]:
        with self._lock:
            entry = self._symbol_table.get(relative_path)
            return entry.copy() if entry is not None else None

    def get_files(self) -> List[str]:
        with self._lock:
            return sorted(self._symbol_table)

    def get_node(self, node_id: str) -> Optional[CodeGraphNode]:
        return self._nodes.get(node_id)

    def get_import_edge(self, node_id: str) -> Optional[Set[str]]:
        with self._lock:
            edges = self._import_edges.get(node_id)
            return set(edges) if edges is not None else None

    def get_export_edge(self, node_id: str) -> Optional[Set[str]]:
        with self._lock:
            edges = self._export_edges.get(node_id)
            return set(edges) if edges is not None else None

    def get_import_edges(self) -> EdgeMap:
        with self._lock:
            return {k: set(v) for k, v in self._import_edges.items()}

    def get_export_edges(self) -> EdgeMap:
        with self._lock:
            return {k: set(v) for k, v in self._export_edges.items()}

    def get_symbol_table(self) -> Dict[str, FileEntry]:
        with self._lock:
            return {path: entry.copy() for path, entry in self._symbol_table.items()}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_file_with_edges(
        self,
        relative_path: str,
        entry: FileEntry,
        import_edges: Mapping[str, Iterable[str]],
        export_edges: Mapping[str, Iterable[str]],
        nodes: Optional[Iterable[CodeGraphNode]] = None,
    ) -> None:
        """Replace a file's entry and, wholesale, the edges of its previous nodes.

        Edges keyed by the previous entry's node ids are dropped before the
        new maps are written, so edges never accumulate across re-parses.
        Edges the parser reports under another file's node id (a foreign
        module exporting to this file) are merged into that key instead,
        after this file's previous ids are removed from it.
        """
        with self._lock:
            previous = self._symbol_table.get(relative_path)
            previous_ids: Set[str] = set()
            if previous is not None:
                previous_ids = {absolute_node_id(i, self.workspace) for i in previous.node_ids}
                self._drop_node_ids(previous.node_ids)
            local_ids = {absolute_node_id(i, self.workspace) for i in entry.node_ids}

            self._symbol_table[relative_path] = FileEntry(
                node_ids=set(entry.node_ids), sha=entry.sha,
            )
            self._write_edges(self._import_edges, import_edges, local_ids, previous_ids)
            self._write_edges(self._export_edges, export_edges, local_ids, previous_ids)
            for node in nodes or ():
                self._nodes[node.id] = node

        logger.debug(
            "Graph updated for %s: %d nodes, %d import keys, %d export keys",
            relative_path, len(entry.node_ids), len(import_edges), len(export_edges),
        )

    def remove_file(self, relative_path: str) -> Optional[FileEntry]:
        """Drop a file's entry and every edge keyed by, or pointing at, its former node ids."""
        with self._lock:
            previous = self._symbol_table.pop(relative_path, None)
            if previous is None:
                return None
            self._drop_node_ids(previous.node_ids)
            removed = {absolute_node_id(i, self.workspace) for i in previous.node_ids}
            for edges in (self._import_edges, self._export_edges):
                for node_id in list(edges):
                    edges[node_id] -= removed
                    if not edges[node_id]:
                        del edges[node_id]
        logger.debug("Removed %s from graph (%d nodes)", relative_path, len(previous.node_ids))
        return previous

    def restore(
        self,
        symbol_table: Mapping[str, FileEntry],
        relative_imports: Iterable[Iterable],
        relative_exports: Iterable[Iterable],
    ) -> None:
        """Rebuild the graph from a workspace-relative snapshot written by the store."""
        with self._lock:
            self._symbol_table = {path: entry.copy() for path, entry in symbol_table.items()}
            self._import_edges = self._absolute_edges(relative_imports)
            self._export_edges = self._absolute_edges(relative_exports)
            self._nodes.clear()
        logger.info("Restored code graph with %d files", len(self._symbol_table))

    def clear(self) -> None:
        with self._lock:
            self._symbol_table.clear()
            self._import_edges.clear()
            self._export_edges.clear()
            self._nodes.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drop_node_ids(self, relative_ids: Iterable[str]) -> None:
        for rel_id in relative_ids:
            node_id = absolute_node_id(rel_id, self.workspace)
            self._import_edges.pop(node_id, None)
            self._export_edges.pop(node_id, None)
            self._nodes.pop(node_id, None)

    @staticmethod
    def _write_edges(
        target: EdgeMap,
        edges: Mapping[str, Iterable[str]],
        local_ids: Set[str],
        previous_ids: Set[str],
    ) -> None:
        for node_id, targets in edges.items():
            if node_id in local_ids or node_id not in target:
                target[node_id] = set(targets)
                continue
            merged = target[node_id] - previous_ids
            merged.update(targets)
            target[node_id] = merged

    def _absolute_edges(self, pairs: Iterable[Iterable]) -> EdgeMap:
        edges: EdgeMap = {}
        for key, values in pairs:
            edges[absolute_node_id(key, self.workspace)] = {
                absolute_node_id(v, self.workspace) for v in values
            }
        return edges
