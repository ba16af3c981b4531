"""Bottom-up skeleton composition over one file's nodes.

Children are skeletonized before their parent, concurrently among
siblings; the parent's code block then has each child's span replaced by
the child's skeleton before it is handed to the generator.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .documents import TextDocument, get_text_document, uri_to_path
from .generator import Generator
from .graph import CodeGraph
from .models import CodeGraphNode, SkeletonizedCodeGraphNode
from .parser import CodeParser

logger = logging.getLogger(__name__)


class Skeletonizer:
    def __init__(self, code_graph: CodeGraph, parser: CodeParser, generator: Generator) -> None:
        self.code_graph = code_graph
        self.parser = parser
        self.generator = generator

    async def skeletonize(self, nodes: Sequence[CodeGraphNode]) -> List[SkeletonizedCodeGraphNode]:
        """Return one skeleton per node, every child listed before its parent.

        A node whose parent is not part of ``nodes`` is treated as a root.
        """
        node_ids = {n.id for n in nodes}
        children: Dict[str, List[CodeGraphNode]] = {}
        roots: List[CodeGraphNode] = []
        for node in nodes:
            if node.parent_node_id and node.parent_node_id in node_ids:
                children.setdefault(node.parent_node_id, []).append(node)
            else:
                roots.append(node)

        run = _SkeletonRun(self, children)
        for root in roots:
            await run.process(root)
        return run.completed


class _SkeletonRun:
    """State of one :meth:`Skeletonizer.skeletonize` call."""

    def __init__(self, owner: Skeletonizer, children: Dict[str, List[CodeGraphNode]]) -> None:
        self.owner = owner
        self.children = children
        self.completed: List[SkeletonizedCodeGraphNode] = []
        self.document_cache: Dict[str, TextDocument] = {}
        self._doc_locks: Dict[str, asyncio.Lock] = {}

    async def process(self, node: CodeGraphNode) -> None:
        child_nodes = self.children.get(node.id, [])
        if child_nodes:
            tasks = [asyncio.ensure_future(self.process(c)) for c in child_nodes]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                # a failed subtree fails the parent; stop and collect its siblings
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        skeleton = await self._skeletonize_node(node, child_nodes)
        if skeleton is not None:
            self.completed.append(skeleton)

    async def _document(self, uri: str) -> Optional[TextDocument]:
        cached = self.document_cache.get(uri)
        if cached is not None:
            return cached
        lock = self._doc_locks.setdefault(uri, asyncio.Lock())
        async with lock:
            cached = self.document_cache.get(uri)
            if cached is None:
                cached = await get_text_document(uri)
                if cached is not None:
                    self.document_cache[uri] = cached
        return cached

    async def _skeletonize_node(
        self,
        node: CodeGraphNode,
        child_nodes: List[CodeGraphNode],
    ) -> Optional[SkeletonizedCodeGraphNode]:
        graph = self.owner.code_graph
        document = await self._document(node.location.uri)
        if document is None:
            logger.warning("Skipping %s: document is no longer readable", node.id)
            return None

        code_block = document.get_text(node.location.range)
        if child_nodes:
            code_block = self.owner.parser.merge_code_node_summaries_into_parent(
                node.location,
                code_block,
                [c.id for c in child_nodes],
                self.completed,
            )

        related_nodes = [
            related
            for related in (graph.get_node(e) for e in sorted(graph.get_import_edge(node.id) or ()))
            if related is not None
        ]

        return await self.owner.generator.skeletonize_code_graph_node(
            str(uri_to_path(node.location.uri)),
            node,
            code_block,
            self.document_cache,
            related_nodes,
        )
