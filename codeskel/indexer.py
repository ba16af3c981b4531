"""Incremental indexer: change detection, blast radius, skeletons, commit.

For each document URI in a batch the indexer walks a frontier of related
documents. A document whose content digest matches its symbol-table entry
(or a digest already computed in this pass) is not re-parsed. Files that a
parsed document references and whose digest is stale are added to the
frontier when they match the inclusion filter. Collected nodes are
skeletonized bottom-up, assembled into documents and committed to the
store with the current edge maps and symbol table.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from .documents import (
    TextDocument,
    absolute_node_id,
    content_digest,
    get_text_document,
    node_id_to_file_path,
    relative_node_id,
    relative_path,
    uri_to_path,
)
from .errors import ParseError, PersistenceError
from .generator import Generator
from .graph import CodeGraph
from .models import (
    CodeGraphNode,
    EdgeMap,
    FileEntry,
    IndexDocument,
    IndexerResult,
    SerializedEdges,
    SkeletonizedCodeGraphNode,
)
from .parser import CodeParser
from .skeletonizer import Skeletonizer
from .vector_store import Store
from .workspace import InclusionFilter, collect_workspace_documents

logger = logging.getLogger(__name__)

FileCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class _FileState:
    entry: Optional[FileEntry]
    relative_path: str
    sha: str
    document: TextDocument


class Indexer:
    """Owns the code graph for one workspace and keeps its index current."""

    def __init__(
        self,
        workspace: Path,
        code_parser: CodeParser,
        code_graph: CodeGraph,
        generator: Generator,
        vector_store: Store,
        inclusion_filter: str,
        on_file_processing: Optional[FileCallback] = None,
        on_file_removed: Optional[FileCallback] = None,
        exclusion_filter: Optional[Iterable[str]] = None,
    ) -> None:
        self.workspace = Path(workspace).resolve()
        self.code_parser = code_parser
        self.code_graph = code_graph
        self.generator = generator
        self.vector_store = vector_store
        self.skeletonizer = Skeletonizer(code_graph, code_parser, generator)
        self._filter = InclusionFilter(self.workspace, inclusion_filter, exclusion_filter)
        self._on_file_processing = on_file_processing
        self._on_file_removed = on_file_removed
        self._syncing = False
        self._pending_callbacks: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # State / configuration
    # ------------------------------------------------------------------

    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def inclusion_filter(self) -> str:
        return self._filter.pattern

    def set_inclusion_filter(self, pattern: str, exclusion: Optional[Iterable[str]] = None) -> None:
        self._filter.set_pattern(pattern, exclusion)

    def clear_cache(self) -> None:
        """Invalidate the inclusion-filter match cache."""
        self._filter.clear_cache()

    def should_include_file(self, relative_file_path: str) -> bool:
        return self._filter.matches(relative_file_path)

    async def load(self) -> bool:
        """Restore the code graph from the store's last snapshot, if any."""
        snapshot = await self.vector_store.load_graph()
        if snapshot is None:
            return False
        self.code_graph.restore(
            snapshot.symbol_table, snapshot.relative_imports, snapshot.relative_exports,
        )
        return True

    # ------------------------------------------------------------------
    # Full build / explicit removal
    # ------------------------------------------------------------------

    async def build_index(self) -> List[str]:
        """Process every workspace file matching the filters as a full build."""
        self.clear_cache()
        uris = collect_workspace_documents(
            self.workspace, self._filter.pattern, self._filter.exclusion,
        )
        logger.info("Full build: %d documents match '%s'", len(uris), self._filter.pattern)
        await self.process_documents(uris, full_build=True)
        return uris

    async def delete_file(self, relative_file_path: str) -> None:
        """Remove one file from the graph and the store, then persist the graph."""
        previous = self.code_graph.remove_file(relative_file_path)
        docs = await self.vector_store.find_documents_by_path([relative_file_path])
        ids = [doc.id for doc in docs]
        if ids:
            await self.vector_store.delete_documents(ids)
        logger.info(
            "Deleted %s from index (%d documents, %s graph entry)",
            relative_file_path, len(ids), "with" if previous else "no",
        )
        await self.vector_store.save(
            [],
            self._relative_edges(self.code_graph.get_import_edges()),
            self._relative_edges(self.code_graph.get_export_edges()),
            self.code_graph.get_symbol_table(),
        )

    # ------------------------------------------------------------------
    # Indexing pass
    # ------------------------------------------------------------------

    async def process_documents(self, document_uris: List[str], full_build: bool = False) -> None:
        if not document_uris:
            logger.info("Skipping indexing: no documents for %s", self.workspace)
            self._syncing = False
            return

        self._syncing = True
        try:
            file_hashes: Dict[str, str] = {}
            visited: Set[str] = set()
            logger.info("Processing %d documents", len(document_uris))

            for document_uri in document_uris:
                try:
                    await self._process_document(document_uri, file_hashes, visited, full_build)
                except PersistenceError:
                    raise
                except Exception:
                    logger.exception("Error processing document queue for %s", document_uri)
        finally:
            await self._settle_callbacks()
            self._syncing = False

    async def _process_document(
        self,
        document_uri: str,
        file_hashes: Dict[str, str],
        visited: Set[str],
        full_build: bool,
    ) -> None:
        if document_uri in visited:
            return

        file_path = uri_to_path(document_uri)
        if not file_path.exists():
            await self._remove_document(file_path)
            return

        logger.debug("Adding document to graph: %s", document_uri)
        frontier: Dict[str, None] = {document_uri: None}
        nodes_to_process: Dict[str, CodeGraphNode] = {}
        processed: Set[str] = set()

        # the frontier grows while it is walked; dict preserves insertion order
        while True:
            pending = [uri for uri in frontier if uri not in processed]
            if not pending:
                break
            current = pending[0]
            processed.add(current)
            if current in visited:
                continue
            visited.add(current)
            await self._visit(current, frontier, nodes_to_process, file_hashes)

        if not nodes_to_process:
            return

        skeleton_nodes = await self.skeletonizer.skeletonize(list(nodes_to_process.values()))
        if not skeleton_nodes:
            return

        result = self.embed_code_graph(skeleton_nodes)
        await self.vector_store.save(
            result.code_docs,
            result.relative_imports,
            result.relative_exports,
            self.code_graph.get_symbol_table(),
            not full_build,
        )
        logger.info("Graph saved: %d documents", len(result.code_docs))

    async def _visit(
        self,
        current: str,
        frontier: Dict[str, None],
        nodes_to_process: Dict[str, CodeGraphNode],
        file_hashes: Dict[str, str],
    ) -> None:
        state = await self._file_state(current)
        if state is None:
            logger.debug("Document vanished during pass: %s", current)
            return
        if self._is_current(state, file_hashes):
            logger.debug("File already indexed: %s", current)
            return

        self._notify_processing(state.relative_path)

        try:
            parsed = await asyncio.to_thread(
                self.code_parser.create_nodes_from_document, state.document,
            )
        except ParseError as exc:
            logger.warning("%s", exc)
            return
        if not parsed.nodes:
            logger.debug("No indexable nodes in %s", current)
            return

        foreign_uris = sorted({
            node.location.uri for node in parsed.nodes.values() if node.location.uri != current
        })
        foreign_states = await asyncio.gather(*(self._file_state(uri) for uri in foreign_uris))
        for uri, foreign in zip(foreign_uris, foreign_states):
            if foreign is None:
                logger.debug("Referenced file no longer exists: %s", uri)
                continue
            if not self.should_include_file(foreign.relative_path):
                logger.debug("Skipping %s - doesn't match inclusion pattern", foreign.relative_path)
                continue
            if self._is_current(foreign, file_hashes):
                continue
            frontier.setdefault(uri, None)

        node_ids_for_file: Set[str] = set()
        for node in parsed.nodes.values():
            if node.location.uri == current:
                nodes_to_process[node.id] = node
                node_ids_for_file.add(relative_node_id(node.id, self.workspace))

        if state.entry is not None:
            # ids embed the start position, so shifted or removed definitions leave stale rows
            stale_ids = sorted(state.entry.node_ids - node_ids_for_file)
            if stale_ids:
                logger.debug("Deleting %d stale documents of %s", len(stale_ids), state.relative_path)
                await self.vector_store.delete_documents(
                    [absolute_node_id(rel_id, self.workspace) for rel_id in stale_ids]
                )

        file_hashes[state.relative_path] = state.sha
        self.code_graph.update_file_with_edges(
            state.relative_path,
            FileEntry(node_ids=node_ids_for_file, sha=state.sha),
            parsed.import_edges,
            parsed.export_edges,
            nodes=parsed.nodes.values(),
        )

    async def _file_state(self, uri: str) -> Optional[_FileState]:
        document = await get_text_document(uri)
        if document is None:
            return None
        rel = relative_path(self.workspace, uri_to_path(uri))
        return _FileState(
            entry=self.code_graph.get_file_entry(rel),
            relative_path=rel,
            sha=content_digest(document.get_text()),
            document=document,
        )

    @staticmethod
    def _is_current(state: _FileState, file_hashes: Dict[str, str]) -> bool:
        return state.entry is not None and (
            state.entry.sha == state.sha or file_hashes.get(state.relative_path) == state.sha
        )

    async def _remove_document(self, file_path: Path) -> None:
        rel = relative_path(self.workspace, file_path)
        related_docs = await self.vector_store.find_documents_by_path([rel])
        if related_docs:
            await self.vector_store.delete_documents([doc.id for doc in related_docs])
        logger.info("Removing document from graph: %s", rel)
        self.code_graph.remove_file(rel)
        if self._on_file_removed is not None:
            result = self._on_file_removed(str(file_path))
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------
    # Document assembly
    # ------------------------------------------------------------------

    def embed_code_graph(self, skeleton_nodes: List[SkeletonizedCodeGraphNode]) -> IndexerResult:
        code_docs: List[IndexDocument] = []
        for node in skeleton_nodes:
            node_range = node.location.range
            related = sorted(self.code_graph.get_import_edge(node.id) or ())
            code_docs.append(IndexDocument(
                id=node.id,
                content=node.skeleton,
                metadata={
                    "filePath": node_id_to_file_path(node.id, self.workspace),
                    "startRange": node_range.start.as_range_key(),
                    "endRange": node_range.end.as_range_key(),
                    "relatedNodes": [node_id_to_file_path(r, self.workspace) for r in related],
                    "parentNodeId": node.parent_node_id,
                },
            ))
        return IndexerResult(
            code_docs=code_docs,
            relative_imports=self._relative_edges(self.code_graph.get_import_edges()),
            relative_exports=self._relative_edges(self.code_graph.get_export_edges()),
        )

    def _relative_edges(self, edges: EdgeMap) -> SerializedEdges:
        return [
            [
                relative_node_id(key, self.workspace),
                sorted(relative_node_id(v, self.workspace) for v in values),
            ]
            for key, values in sorted(edges.items())
        ]

    # ------------------------------------------------------------------
    # Progress callbacks
    # ------------------------------------------------------------------

    def _notify_processing(self, relative_file_path: str) -> None:
        if self._on_file_processing is None:
            return
        try:
            result: Any = self._on_file_processing(relative_file_path)
        except Exception:
            logger.exception("on_file_processing callback failed for %s", relative_file_path)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending_callbacks.add(task)
            task.add_done_callback(self._pending_callbacks.discard)

    async def _settle_callbacks(self) -> None:
        if not self._pending_callbacks:
            return
        results = await asyncio.gather(*list(self._pending_callbacks), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Progress callback failed: %s", result)
