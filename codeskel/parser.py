"""Code parsers turning a text document into code-graph nodes and edges.

The primary backend uses Tree-sitter (error tolerant); the built-in ``ast``
module is used when the grammar is not installed. Both produce:

- one module node spanning the whole file, identified by the bare document URI;
- class / function nodes whose ``parent_node_id`` is the enclosing node;
- for every import that resolves to a file inside the workspace, a foreign
  module node for that file plus an import edge (this module -> foreign
  module) and an export edge (foreign module -> this module).
"""

from __future__ import annotations

import ast
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .documents import (
    TextDocument,
    make_node_id,
    path_to_uri,
    read_text_document,
    uri_to_path,
)
from .errors import ParseError
from .models import (
    CodeGraphNode,
    Location,
    ParseResult,
    Position,
    Range,
    SkeletonizedCodeGraphNode,
)

logger = logging.getLogger(__name__)

PYTHON_EXTENSIONS = {".py", ".pyi"}


@dataclass
class _Definition:
    kind: str
    name: str
    range: Range
    parent: Optional[Range] = None


@dataclass
class _ImportRef:
    module: str
    level: int = 0
    names: List[str] = field(default_factory=list)


# ===================================================================
# Abstract Parser Interface
# ===================================================================

class CodeParser(ABC):
    """Capability interface every language backend implements."""

    @abstractmethod
    def create_nodes_from_document(self, document: TextDocument) -> ParseResult:
        """Return the nodes a document defines and the edges it participates in.

        Documents without indexable content yield an empty result. Malformed
        input may raise :class:`~codeskel.errors.ParseError`.
        """
        ...

    @abstractmethod
    def supports(self, document: TextDocument) -> bool:
        ...

    def merge_code_node_summaries_into_parent(
        self,
        location: Location,
        raw_text: str,
        child_ids: Sequence[str],
        completed: Sequence[SkeletonizedCodeGraphNode],
    ) -> str:
        """Replace each child's span inside ``raw_text`` with its skeleton.

        Child ranges are absolute document positions; they are rebased onto
        the parent's start position. Children without a completed skeleton
        keep their raw text.
        """
        wanted = set(child_ids)
        by_id = {n.id: n for n in completed if n.id in wanted}
        if not by_id:
            return raw_text

        parent_doc = TextDocument(location.uri, raw_text)
        origin = location.range.start
        spans = []
        for child in by_id.values():
            start = parent_doc.offset_at(_rebase(child.location.range.start, origin))
            end = parent_doc.offset_at(_rebase(child.location.range.end, origin))
            spans.append((start, end, child.skeleton))

        merged = raw_text
        last_start = len(raw_text) + 1
        for start, end, skeleton in sorted(spans, key=lambda s: s[0], reverse=True):
            if end > last_start:
                # overlaps a span already replaced
                continue
            merged = merged[:start] + skeleton + merged[end:]
            last_start = start
        return merged


def _rebase(position: Position, origin: Position) -> Position:
    line = position.line - origin.line
    character = position.character
    if line == 0:
        character -= origin.character
    return Position(max(line, 0), max(character, 0))


# ===================================================================
# Shared Python logic
# ===================================================================

class _PythonParserBase(CodeParser):
    """Node/edge assembly shared by the Tree-sitter and ``ast`` backends."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = Path(workspace).resolve()

    def supports(self, document: TextDocument) -> bool:
        return uri_to_path(document.uri).suffix in PYTHON_EXTENSIONS

    @abstractmethod
    def _extract(self, document: TextDocument) -> tuple[List[_Definition], List[_ImportRef]]:
        ...

    def create_nodes_from_document(self, document: TextDocument) -> ParseResult:
        if not self.supports(document) or not document.get_text().strip():
            return ParseResult()

        definitions, imports = self._extract(document)

        module_range = document.full_range()
        module_id = document.uri
        file_path = uri_to_path(document.uri)
        nodes: Dict[str, CodeGraphNode] = {
            module_id: CodeGraphNode(
                id=module_id,
                location=Location(document.uri, module_range),
                parent_node_id=None,
                kind="module",
                name=file_path.stem,
            )
        }
        for definition in definitions:
            node_id = make_node_id(document.uri, definition.range)
            parent_id = (
                make_node_id(document.uri, definition.parent)
                if definition.parent is not None else module_id
            )
            nodes[node_id] = CodeGraphNode(
                id=node_id,
                location=Location(document.uri, definition.range),
                parent_node_id=parent_id,
                kind=definition.kind,
                name=definition.name,
            )

        result = ParseResult(nodes=nodes)
        for target in self._resolve_imports(file_path, imports):
            foreign = _foreign_module_node(target)
            if foreign is None or foreign.id == module_id:
                continue
            nodes.setdefault(foreign.id, foreign)
            result.import_edges.setdefault(module_id, set()).add(foreign.id)
            result.export_edges.setdefault(foreign.id, set()).add(module_id)
        return result

    # ------------------------------------------------------------------
    # Import resolution
    # ------------------------------------------------------------------

    def _resolve_imports(self, file_path: Path, imports: Iterable[_ImportRef]) -> List[Path]:
        resolved: List[Path] = []
        seen: Set[Path] = set()
        for ref in imports:
            for candidate in self._candidates(file_path, ref):
                if candidate in seen:
                    continue
                seen.add(candidate)
                resolved.append(candidate)
        return resolved

    def _candidates(self, file_path: Path, ref: _ImportRef) -> List[Path]:
        if ref.level > 0:
            base = file_path.parent
            for _ in range(ref.level - 1):
                base = base.parent
            roots = [base]
        else:
            roots = [self.workspace, self.workspace / "src"]

        found: List[Path] = []
        for root in roots:
            module_base = root.joinpath(*ref.module.split(".")) if ref.module else root
            module_file = _module_file(module_base)
            if module_file is not None:
                found.append(module_file)
            # ``from pkg import submodule``
            for name in ref.names:
                sub = _module_file(module_base / name)
                if sub is not None:
                    found.append(sub)
            if found:
                break
        return [p for p in found if _is_within(p, self.workspace)]


def _module_file(base: Path) -> Optional[Path]:
    for candidate in (base.with_name(base.name + ".py"), base / "__init__.py"):
        if base.name and candidate.is_file():
            return candidate.resolve()
    return None


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def _foreign_module_node(path: Path) -> Optional[CodeGraphNode]:
    uri = path_to_uri(path)
    document = read_text_document(uri)
    if document is None:
        return None
    node_range = document.full_range()
    return CodeGraphNode(
        id=uri,
        location=Location(uri, node_range),
        parent_node_id=None,
        kind="module",
        name=path.stem,
    )


# ===================================================================
# Tree-sitter Parser (Primary)
# ===================================================================

class TreeSitterCodeParser(_PythonParserBase):
    """Error-tolerant Python parser built on Tree-sitter."""

    def __init__(self, workspace: Path) -> None:
        super().__init__(workspace)
        self._parser: Any = None
        self._init_parser()

    def _init_parser(self) -> None:
        try:
            import tree_sitter_python  # type: ignore[import-untyped]
            from tree_sitter import Language, Parser as TSParser  # type: ignore[import-untyped]
        except ImportError:
            logger.info(
                "tree-sitter grammar not installed; "
                "install with: pip install tree-sitter tree-sitter-python"
            )
            return
        try:
            self._parser = TSParser(Language(tree_sitter_python.language()))
        except Exception as exc:
            logger.warning("Could not load tree-sitter grammar for python: %s", exc)
            self._parser = None

    @property
    def available(self) -> bool:
        return self._parser is not None

    def _extract(self, document: TextDocument) -> tuple[List[_Definition], List[_ImportRef]]:
        if self._parser is None:
            raise ParseError(document.uri, "tree-sitter parser unavailable")
        tree = self._parser.parse(document.get_text().encode("utf-8"))
        definitions: List[_Definition] = []
        self._walk(document, tree.root_node, None, definitions)
        refs: List[_ImportRef] = []
        self._imports(tree.root_node, refs)
        return definitions, refs

    def _walk(
        self,
        document: TextDocument,
        ts_node: Any,
        parent: Optional[Range],
        out: List[_Definition],
    ) -> None:
        for child in ts_node.children:
            actual = child
            if child.type == "decorated_definition":
                inner = child.child_by_field_name("definition")
                if inner is None:
                    continue
                actual = inner

            if actual.type not in ("function_definition", "class_definition"):
                continue
            name_node = actual.child_by_field_name("name")
            if name_node is None:
                continue

            # points are (row, byte column)
            node_range = Range(
                document.position_from_utf8(*child.start_point),
                document.position_from_utf8(*child.end_point),
            )
            out.append(_Definition(
                kind="class" if actual.type == "class_definition" else "function",
                name=name_node.text.decode("utf-8"),
                range=node_range,
                parent=parent,
            ))
            body = actual.child_by_field_name("body")
            if body is not None:
                self._walk(document, body, node_range, out)

    @classmethod
    def _imports(cls, ts_node: Any, refs: List[_ImportRef]) -> None:
        for child in ts_node.children:
            if child.type == "import_statement":
                for sub in child.children:
                    if sub.type == "dotted_name":
                        refs.append(_ImportRef(sub.text.decode("utf-8")))
                    elif sub.type == "aliased_import":
                        name_n = sub.child_by_field_name("name")
                        if name_n is not None:
                            refs.append(_ImportRef(name_n.text.decode("utf-8")))

            elif child.type == "import_from_statement":
                mod_node = child.child_by_field_name("module_name")
                if mod_node is None:
                    continue
                module, level = "", 0
                if mod_node.type == "relative_import":
                    for sub in mod_node.children:
                        if sub.type == "import_prefix":
                            level = sub.text.decode("utf-8").count(".")
                        elif sub.type == "dotted_name":
                            module = sub.text.decode("utf-8")
                else:
                    module = mod_node.text.decode("utf-8")

                names: List[str] = []
                for name_node in child.children_by_field_name("name"):
                    if name_node.type == "aliased_import":
                        name_node = name_node.child_by_field_name("name")
                    if name_node is not None:
                        names.append(name_node.text.decode("utf-8"))
                refs.append(_ImportRef(module, level, names))

            elif child.child_count:
                # if TYPE_CHECKING / try blocks and function bodies
                cls._imports(child, refs)


# ===================================================================
# AST Fallback Parser (when tree-sitter is not installed)
# ===================================================================

class ASTCodeParser(_PythonParserBase):
    """Pure-Python fallback using the built-in ``ast`` module."""

    def _extract(self, document: TextDocument) -> tuple[List[_Definition], List[_ImportRef]]:
        try:
            tree = ast.parse(document.get_text())
        except SyntaxError as exc:
            raise ParseError(document.uri, f"line {exc.lineno}: {exc.msg}") from exc

        definitions: List[_Definition] = []
        _collect_definitions(tree.body, None, definitions, document)

        # imports under if/try blocks and inside functions count too
        refs: List[_ImportRef] = []
        for stmt in ast.walk(tree):
            if isinstance(stmt, ast.Import):
                refs.extend(_ImportRef(alias.name) for alias in stmt.names)
            elif isinstance(stmt, ast.ImportFrom):
                refs.append(_ImportRef(
                    stmt.module or "", stmt.level, [a.name for a in stmt.names],
                ))
        return definitions, refs


def _collect_definitions(
    body: Iterable[ast.stmt],
    parent: Optional[Range],
    out: List[_Definition],
    document: TextDocument,
) -> None:
    for stmt in body:
        if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            continue
        first = stmt.decorator_list[0] if stmt.decorator_list else stmt
        # decorators start one character after "@"
        start_col = first.col_offset - 1 if stmt.decorator_list else first.col_offset
        node_range = Range(
            document.position_from_utf8(first.lineno - 1, max(start_col, 0)),
            document.position_from_utf8((stmt.end_lineno or stmt.lineno) - 1, stmt.end_col_offset or 0),
        )
        out.append(_Definition(
            kind="class" if isinstance(stmt, ast.ClassDef) else "function",
            name=stmt.name,
            range=node_range,
            parent=parent,
        ))
        _collect_definitions(stmt.body, node_range, out, document)


# ===================================================================
# Backend selection
# ===================================================================

class PythonCodeParser(CodeParser):
    """Selects :class:`TreeSitterCodeParser` when available, else the ``ast`` fallback."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = Path(workspace)
        ts = TreeSitterCodeParser(workspace)
        if ts.available:
            self._delegate: _PythonParserBase = ts
            logger.info("Using Tree-sitter parser")
        else:
            self._delegate = ASTCodeParser(workspace)
            logger.info("Using AST fallback parser")

    @property
    def backend(self) -> str:
        return type(self._delegate).__name__

    def supports(self, document: TextDocument) -> bool:
        return self._delegate.supports(document)

    def create_nodes_from_document(self, document: TextDocument) -> ParseResult:
        return self._delegate.create_nodes_from_document(document)
