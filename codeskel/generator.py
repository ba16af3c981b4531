"""Skeleton generators: condense a node's code block into embeddable text."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from .config import llm_settings
from .documents import TextDocument
from .errors import GenerationError
from .llm import LocalLLM
from .models import CodeGraphNode, SkeletonizedCodeGraphNode

logger = logging.getLogger(__name__)

_MAX_OUTLINE_LINES = 200
_DOCSTRING_START = re.compile(r'^\s*[rRbBuU]?("""|\'\'\'|"|\')')


class Generator(ABC):
    """Produces the skeleton text for one code-graph node."""

    @abstractmethod
    async def skeletonize_code_graph_node(
        self,
        file_path: str,
        node: CodeGraphNode,
        code_block: str,
        document_cache: Dict[str, TextDocument],
        related_nodes: Sequence[CodeGraphNode],
    ) -> SkeletonizedCodeGraphNode:
        ...


# ===================================================================
# LLM-backed generator
# ===================================================================

SKELETON_PROMPT = """You are condensing source code into a searchable skeleton.

File: {file_path}
Symbol: {kind} {name}
{related}
Rewrite the code below as a skeleton: keep signatures, class and function
names, parameters, return types and a one-line description of what each
part does. Drop implementation details. Nested sections that are already
condensed must be kept as they are. Reply with the skeleton only.

```
{code}
```
"""


class LLMGenerator(Generator):
    """Asks a language model for the skeleton; blocking calls run in a worker thread."""

    def __init__(self, llm: LocalLLM, max_tokens: int = 1024) -> None:
        self.llm = llm
        self.max_tokens = max_tokens

    def build_prompt(
        self,
        file_path: str,
        node: CodeGraphNode,
        code_block: str,
        related_nodes: Sequence[CodeGraphNode],
    ) -> str:
        related = ""
        if related_nodes:
            lines = [
                f"- {n.kind} {n.name} ({n.location.uri})" for n in related_nodes
            ]
            related = "Depends on:\n" + "\n".join(lines) + "\n"
        return SKELETON_PROMPT.format(
            file_path=file_path,
            kind=node.kind,
            name=node.name or "<module>",
            related=related,
            code=code_block,
        )

    async def skeletonize_code_graph_node(
        self,
        file_path: str,
        node: CodeGraphNode,
        code_block: str,
        document_cache: Dict[str, TextDocument],
        related_nodes: Sequence[CodeGraphNode],
    ) -> SkeletonizedCodeGraphNode:
        prompt = self.build_prompt(file_path, node, code_block, related_nodes)
        response = await asyncio.to_thread(self.llm.generate, prompt, self.max_tokens)
        if not response:
            raise GenerationError(
                node.id, f"provider '{self.llm.provider_name}' returned no completion",
            )
        return SkeletonizedCodeGraphNode.from_node(node, _strip_fences(response))


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        lines = stripped.splitlines()[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        return "\n".join(lines)
    return stripped


# ===================================================================
# Deterministic outline generator (offline)
# ===================================================================

class OutlineGenerator(Generator):
    """Keeps signatures and docstring summaries; function bodies become ``...``.

    Class and module blocks are kept as-is apart from truncation: their nested
    definitions have already been replaced by the children's outlines.
    """

    async def skeletonize_code_graph_node(
        self,
        file_path: str,
        node: CodeGraphNode,
        code_block: str,
        document_cache: Dict[str, TextDocument],
        related_nodes: Sequence[CodeGraphNode],
    ) -> SkeletonizedCodeGraphNode:
        if node.kind == "function":
            skeleton = outline_function(code_block)
        else:
            skeleton = _truncate(code_block.rstrip())
        return SkeletonizedCodeGraphNode.from_node(node, skeleton)


def outline_function(code_block: str) -> str:
    lines = code_block.splitlines()
    header_end = _signature_end(lines)
    header = lines[: header_end + 1]
    rest = lines[header_end + 1:]

    body_indent = None
    docstring: Optional[str] = None
    for line in rest:
        if not line.strip():
            continue
        body_indent = line[: len(line) - len(line.lstrip())]
        match = _DOCSTRING_START.match(line)
        if match:
            docstring = _first_docstring_line(line.strip(), match.group(1))
        break

    if body_indent is None:
        # one-liner such as ``def f(): return 1``
        return "\n".join(header)

    out: List[str] = list(header)
    if docstring:
        out.append(f"{body_indent}{docstring}")
    out.append(f"{body_indent}...")
    return "\n".join(out)


def _signature_end(lines: List[str]) -> int:
    depth = 0
    for idx, line in enumerate(lines):
        for ch in line:
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
        stripped = line.split("#", 1)[0].rstrip()
        if depth <= 0 and stripped.endswith(":") and not stripped.lstrip().startswith("@"):
            return idx
    return 0


def _first_docstring_line(stripped: str, quote: str) -> str:
    prefix_len = stripped.index(quote)
    inner = stripped[prefix_len + len(quote):]
    closing = inner.find(quote)
    text = inner[:closing] if closing >= 0 else inner
    return f"{quote}{text.strip()}{quote}"


def _truncate(text: str) -> str:
    lines = text.splitlines()
    if len(lines) <= _MAX_OUTLINE_LINES:
        return text
    return "\n".join(lines[:_MAX_OUTLINE_LINES] + ["# ..."])


# ===================================================================
# Factory
# ===================================================================

def get_generator(provider: Optional[str] = None, model: Optional[str] = None) -> Generator:
    """``OutlineGenerator`` for provider ``none``, otherwise an :class:`LLMGenerator`."""
    name = (provider or llm_settings().get("provider", "none")).lower()
    if name == "none":
        return OutlineGenerator()
    llm = LocalLLM(provider=name, model=model)
    logger.info("Using %s (%s) for skeleton generation", llm.provider_name, llm.model)
    return LLMGenerator(llm)
