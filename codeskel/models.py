"""Core data models shared by the parser, skeletonizer, indexer and store."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set

# node id -> ids it imports from / exports to
EdgeMap = Dict[str, Set[str]]


@dataclass(frozen=True)
class Position:
    line: int
    character: int

    def as_range_key(self) -> str:
        return f"{self.line}-{self.character}"


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position


@dataclass(frozen=True)
class Location:
    uri: str
    range: Range


@dataclass(frozen=True)
class CodeGraphNode:
    """One syntactic unit (module, class, function) of a source file."""

    id: str
    location: Location
    parent_node_id: Optional[str] = None
    kind: str = "module"
    name: str = ""


@dataclass(frozen=True)
class SkeletonizedCodeGraphNode(CodeGraphNode):
    skeleton: str = ""

    @classmethod
    def from_node(cls, node: CodeGraphNode, skeleton: str) -> "SkeletonizedCodeGraphNode":
        return cls(
            id=node.id,
            location=node.location,
            parent_node_id=node.parent_node_id,
            kind=node.kind,
            name=node.name,
            skeleton=skeleton,
        )


@dataclass
class FileEntry:
    """Symbol-table record: the node ids produced by content with digest ``sha``."""

    node_ids: Set[str] = field(default_factory=set)
    sha: str = ""

    def copy(self) -> "FileEntry":
        return replace(self, node_ids=set(self.node_ids))

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeIds": sorted(self.node_ids), "sha": self.sha}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FileEntry":
        return cls(node_ids=set(payload.get("nodeIds", [])), sha=payload.get("sha", ""))


@dataclass
class ParseResult:
    nodes: Dict[str, CodeGraphNode] = field(default_factory=dict)
    import_edges: EdgeMap = field(default_factory=dict)
    export_edges: EdgeMap = field(default_factory=dict)


@dataclass
class IndexDocument:
    """Persistable unit handed to the vector store."""

    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


# Edge maps projected to workspace-relative ids, as lists for serialization
SerializedEdges = List[List[Any]]


@dataclass
class IndexerResult:
    code_docs: List[IndexDocument]
    relative_imports: SerializedEdges
    relative_exports: SerializedEdges
