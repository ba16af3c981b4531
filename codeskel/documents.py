"""Text documents, content digests, and document/node identifier helpers.

Documents are addressed by ``file://`` URIs. Node ids append the start
position of the node to its document URI (``file:///ws/a.py#3:0``), and are
projected to workspace-relative form (``a.py#3:0``) for persistence. Module
nodes use the bare document URI.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from .models import Position, Range

logger = logging.getLogger(__name__)

FILE_SCHEME = "file://"


def content_digest(text: str) -> str:
    """SHA-256 hex digest of a document's text; the only staleness signal."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ------------------------------------------------------------------
# URIs and ids
# ------------------------------------------------------------------

def path_to_uri(path: Path | str) -> str:
    return Path(path).resolve().as_uri()


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme and parsed.scheme != "file":
        raise ValueError(f"Unsupported document URI: {uri}")
    if not parsed.scheme:
        return Path(uri)
    return Path(url2pathname(unquote(parsed.path)))


def relative_path(workspace: Path | str, path: Path | str) -> str:
    """Workspace-relative POSIX path (``..`` segments allowed for outside files)."""
    return Path(os.path.relpath(Path(path), Path(workspace))).as_posix()


def make_node_id(uri: str, node_range: Range) -> str:
    return f"{uri}#{node_range.start.line}:{node_range.start.character}"


def split_node_id(node_id: str) -> Tuple[str, str]:
    """Split a node id into ``(document part, position fragment)``."""
    base, _, fragment = node_id.rpartition("#")
    if not base:
        return node_id, ""
    return base, fragment


def relative_node_id(node_id: str, workspace: Path | str) -> str:
    """Project an absolute node id to its workspace-relative form.

    Ids that are not ``file://`` URIs are returned unchanged.
    """
    if not node_id.startswith(FILE_SCHEME):
        return node_id
    uri, fragment = split_node_id(node_id)
    rel = relative_path(workspace, uri_to_path(uri))
    return f"{rel}#{fragment}" if fragment else rel


def absolute_node_id(rel_id: str, workspace: Path | str) -> str:
    """Inverse of :func:`relative_node_id`."""
    if rel_id.startswith(FILE_SCHEME):
        return rel_id
    rel, fragment = split_node_id(rel_id)
    uri = path_to_uri(Path(workspace) / rel)
    return f"{uri}#{fragment}" if fragment else uri


def node_id_to_file_path(node_id: str, workspace: Path | str) -> str:
    """Workspace-relative file path of the document a node id belongs to."""
    uri, _ = split_node_id(node_id)
    if not uri.startswith(FILE_SCHEME):
        return uri
    return relative_path(workspace, uri_to_path(uri))


# ------------------------------------------------------------------
# Text documents
# ------------------------------------------------------------------

class TextDocument:
    """Immutable snapshot of a file's text with position-based slicing."""

    def __init__(self, uri: str, text: str) -> None:
        self.uri = uri
        self._text = text
        self._line_offsets = _compute_line_offsets(text)

    @property
    def line_count(self) -> int:
        return len(self._line_offsets)

    def get_text(self, text_range: Optional[Range] = None) -> str:
        if text_range is None:
            return self._text
        start = self.offset_at(text_range.start)
        end = self.offset_at(text_range.end)
        return self._text[start:end]

    def offset_at(self, position: Position) -> int:
        if position.line >= len(self._line_offsets):
            return len(self._text)
        if position.line < 0:
            return 0
        line_start = self._line_offsets[position.line]
        if position.line + 1 < len(self._line_offsets):
            line_end = self._line_offsets[position.line + 1]
        else:
            line_end = len(self._text)
        return max(line_start, min(line_start + position.character, line_end))

    def position_from_utf8(self, line: int, byte_column: int) -> Position:
        """Position for a UTF-8 byte column, as ``ast`` and Tree-sitter report them."""
        if byte_column <= 0 or not 0 <= line < len(self._line_offsets):
            return Position(line, max(byte_column, 0))
        start = self._line_offsets[line]
        line_text = self._text[start:self.offset_at(Position(line + 1, 0))]
        prefix = line_text.encode("utf-8")[:byte_column].decode("utf-8", errors="ignore")
        return Position(line, len(prefix))

    def end_position(self) -> Position:
        last = len(self._line_offsets) - 1
        return Position(last, len(self._text) - self._line_offsets[last])

    def full_range(self) -> Range:
        return Range(Position(0, 0), self.end_position())


def _compute_line_offsets(text: str) -> List[int]:
    offsets = [0]
    for idx, ch in enumerate(text):
        if ch == "\n":
            offsets.append(idx + 1)
    return offsets


def read_text_document(uri: str) -> Optional[TextDocument]:
    """Read a document from disk, or ``None`` when it is missing/unreadable."""
    path = uri_to_path(uri)
    try:
        text = path.read_text(encoding="utf-8", errors="ignore")
    except (FileNotFoundError, IsADirectoryError):
        return None
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None
    return TextDocument(uri, text)


async def get_text_document(uri: str) -> Optional[TextDocument]:
    return await asyncio.to_thread(read_text_document, uri)
