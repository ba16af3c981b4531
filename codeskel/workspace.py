"""Workspace file selection: inclusion globs, exclusion patterns, match cache."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Set

import pathspec

from .documents import path_to_uri

logger = logging.getLogger(__name__)

_BRACE_RE = re.compile(r"\{([^{}]*)\}")


def expand_braces(pattern: str) -> List[str]:
    """Expand ``{a,b}`` alternatives: ``**/*.{py,pyi}`` -> ``**/*.py``, ``**/*.pyi``."""
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end():]
    expanded: List[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def _exclusion_spec(lines: Optional[Iterable[str]]) -> Optional[pathspec.PathSpec]:
    patterns = [line for line in (lines or []) if line.strip() and not line.startswith("#")]
    if not patterns:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def match_workspace_files(
    workspace: Path,
    inclusion_filter: str,
    exclusion_filter: Optional[Iterable[str]] = None,
) -> Set[str]:
    """Workspace-relative POSIX paths of files matching the filters."""
    root = Path(workspace)
    spec = _exclusion_spec(exclusion_filter)
    matched: Set[str] = set()
    for pattern in expand_braces(inclusion_filter):
        for path in root.glob(pattern):
            if not path.is_file():
                continue
            rel = path.relative_to(root).as_posix()
            if spec is not None and spec.match_file(rel):
                continue
            matched.add(rel)
    return matched


class InclusionFilter:
    """Glob-based file filter with a match cache computed once per pattern.

    The cache must be invalidated with :meth:`clear_cache` whenever the
    pattern or the workspace file set changes.
    """

    def __init__(
        self,
        workspace: Path,
        pattern: str,
        exclusion: Optional[Iterable[str]] = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.pattern = pattern
        self.exclusion = list(exclusion or [])
        self._matched: Optional[Set[str]] = None

    def matches(self, relative_path: str) -> bool:
        if self._matched is None:
            self._matched = match_workspace_files(self.workspace, self.pattern, self.exclusion)
            logger.debug(
                "Inclusion filter '%s' matched %d files", self.pattern, len(self._matched),
            )
        return relative_path in self._matched

    def clear_cache(self) -> None:
        self._matched = None

    def set_pattern(self, pattern: str, exclusion: Optional[Iterable[str]] = None) -> None:
        self.pattern = pattern
        if exclusion is not None:
            self.exclusion = list(exclusion)
        self.clear_cache()


def collect_workspace_documents(
    workspace: Path,
    inclusion_filter: str,
    exclusion_filter: Optional[Iterable[str]] = None,
) -> List[str]:
    """Document URIs of every file a full build should process, sorted by path."""
    root = Path(workspace)
    return [
        path_to_uri(root / rel)
        for rel in sorted(match_workspace_files(root, inclusion_filter, exclusion_filter))
    ]
