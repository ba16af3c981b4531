"""Pytest configuration and fixtures for codeskel tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Mapping, Optional, Sequence, Set

import pytest

from codeskel.documents import TextDocument, path_to_uri, split_node_id, uri_to_path
from codeskel.errors import GenerationError, PersistenceError
from codeskel.generator import Generator as SkeletonGenerator
from codeskel.graph import CodeGraph
from codeskel.indexer import Indexer
from codeskel.models import (
    CodeGraphNode,
    FileEntry,
    IndexDocument,
    ParseResult,
    SerializedEdges,
    SkeletonizedCodeGraphNode,
)
from codeskel.parser import ASTCodeParser
from codeskel.vector_store import GraphSnapshot, Store


@pytest.fixture(autouse=True)
def _isolated_home(monkeypatch, tmp_path_factory):
    """Point CODESKEL_HOME at a throwaway directory so tests never touch ~/.codeskel."""
    home = tmp_path_factory.mktemp("codeskel_home")
    monkeypatch.setenv("CODESKEL_HOME", str(home))
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def workspace(temp_dir: Path) -> Path:
    ws = temp_dir / "workspace"
    ws.mkdir()
    return ws.resolve()


def write_file(workspace: Path, rel: str, text: str) -> str:
    """Write ``text`` to ``workspace/rel`` and return the document URI."""
    path = workspace / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path_to_uri(path)


# ------------------------------------------------------------------
# Test doubles
# ------------------------------------------------------------------

def _still_indexed(doc_id: str, file_path: str, symbol_table: Mapping[str, FileEntry]) -> bool:
    entry = symbol_table.get(file_path)
    if entry is None:
        return False
    _, fragment = split_node_id(doc_id)
    return (f"{file_path}#{fragment}" if fragment else file_path) in entry.node_ids


class FakeStore(Store):
    """In-memory store recording every call the indexer makes."""

    def __init__(self, fail_on_save: bool = False):
        self.documents: Dict[str, IndexDocument] = {}
        self.saves: List[dict] = []
        self.deleted: List[List[str]] = []
        self.snapshot: Optional[GraphSnapshot] = None
        self.fail_on_save = fail_on_save

    async def save(
        self,
        documents: List[IndexDocument],
        relative_imports: SerializedEdges,
        relative_exports: SerializedEdges,
        symbol_table: Mapping[str, FileEntry],
        incremental: bool = True,
    ) -> None:
        if self.fail_on_save:
            raise PersistenceError("disk full")
        self.saves.append({
            "documents": list(documents),
            "imports": relative_imports,
            "exports": relative_exports,
            "symbol_table": {k: v.copy() for k, v in symbol_table.items()},
            "incremental": incremental,
        })
        for doc in documents:
            self.documents[doc.id] = doc
        if not incremental:
            for doc_id in [d for d, doc in self.documents.items()
                           if not _still_indexed(d, doc.metadata["filePath"], symbol_table)]:
                del self.documents[doc_id]
        self.snapshot = GraphSnapshot(
            {k: v.copy() for k, v in symbol_table.items()}, relative_imports, relative_exports,
        )

    async def delete_documents(self, ids: List[str]) -> None:
        self.deleted.append(list(ids))
        for doc_id in ids:
            self.documents.pop(doc_id, None)

    async def find_documents_by_path(self, paths: List[str]) -> List[IndexDocument]:
        return [doc for doc in self.documents.values() if doc.metadata["filePath"] in paths]

    async def load_graph(self) -> Optional[GraphSnapshot]:
        return self.snapshot

    async def clear(self) -> None:
        self.documents.clear()
        self.snapshot = None

    def count(self) -> int:
        return len(self.documents)

    def saved_ids(self, index: int = -1) -> Set[str]:
        return {doc.id for doc in self.saves[index]["documents"]}


class RecordingParser(ASTCodeParser):
    """``ast`` parser that records parsed URIs and can be told to fail on some files."""

    def __init__(self, workspace: Path, fail_on: Sequence[str] = ()):
        super().__init__(workspace)
        self.parsed: List[str] = []
        self.fail_on = set(fail_on)

    def create_nodes_from_document(self, document: TextDocument) -> ParseResult:
        self.parsed.append(document.uri)
        if uri_to_path(document.uri).name in self.fail_on:
            raise RuntimeError(f"parser exploded on {document.uri}")
        return super().create_nodes_from_document(document)

    def parsed_names(self) -> List[str]:
        return [uri_to_path(uri).name for uri in self.parsed]


class RecordingGenerator(SkeletonGenerator):
    """Returns ``<kind name>`` skeletons and records what it was asked to condense."""

    def __init__(self, fail_on: Sequence[str] = ()):
        self.calls: List[dict] = []
        self.fail_on = set(fail_on)

    async def skeletonize_code_graph_node(
        self,
        file_path: str,
        node: CodeGraphNode,
        code_block: str,
        document_cache: Dict[str, TextDocument],
        related_nodes: Sequence[CodeGraphNode],
    ) -> SkeletonizedCodeGraphNode:
        if node.name in self.fail_on:
            raise GenerationError(node.id, "model unavailable")
        self.calls.append({
            "id": node.id,
            "name": node.name,
            "file_path": file_path,
            "code_block": code_block,
            "related": [n.id for n in related_nodes],
        })
        return SkeletonizedCodeGraphNode.from_node(node, f"<{node.kind} {node.name}>")

    def order(self) -> List[str]:
        return [call["name"] for call in self.calls]


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_indexer(workspace: Path, fake_store: FakeStore) -> Callable[..., Indexer]:
    """Factory building an Indexer over the temp workspace with recording doubles."""

    def _make(
        parser: Optional[RecordingParser] = None,
        generator: Optional[RecordingGenerator] = None,
        store: Optional[Store] = None,
        inclusion_filter: str = "**/*.py",
        **kwargs,
    ) -> Indexer:
        return Indexer(
            workspace,
            parser or RecordingParser(workspace),
            CodeGraph(workspace),
            generator or RecordingGenerator(),
            store or fake_store,
            inclusion_filter,
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for parser and skeleton tests."""
    return '''"""Sample module for testing."""

def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def multiply(self, a: int, b: int) -> int:
        result = 0
        for _ in range(b):
            result = self.add(result, a)
        return result
'''
