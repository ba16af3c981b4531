"""Tests for bottom-up skeleton composition."""

import asyncio
from pathlib import Path

import pytest

from codeskel.documents import TextDocument, path_to_uri
from codeskel.errors import GenerationError
from codeskel.graph import CodeGraph
from codeskel.models import FileEntry, SkeletonizedCodeGraphNode
from codeskel.parser import ASTCodeParser
from codeskel.skeletonizer import Skeletonizer

from conftest import RecordingGenerator, write_file


def _parse(workspace: Path, rel: str, text: str):
    parser = ASTCodeParser(workspace)
    uri = write_file(workspace, rel, text)
    return parser, parser.create_nodes_from_document(TextDocument(uri, text)), uri


class TestOrdering:
    """Children are generated before their parents."""

    def test_parent_after_children(self, workspace, sample_python_code):
        parser, result, _ = _parse(workspace, "sample.py", sample_python_code)
        generator = RecordingGenerator()
        skeletonizer = Skeletonizer(CodeGraph(workspace), parser, generator)

        done = asyncio.run(skeletonizer.skeletonize(list(result.nodes.values())))

        order = generator.order()
        assert len(done) == 5
        assert order[-1] == "sample"
        assert order.index("add") < order.index("Calculator")
        assert order.index("multiply") < order.index("Calculator")
        assert [n.name for n in done] == order

    def test_parent_sees_child_skeletons(self, workspace, sample_python_code):
        parser, result, _ = _parse(workspace, "sample.py", sample_python_code)
        generator = RecordingGenerator()
        skeletonizer = Skeletonizer(CodeGraph(workspace), parser, generator)

        asyncio.run(skeletonizer.skeletonize(list(result.nodes.values())))

        calls = {call["name"]: call for call in generator.calls}
        cls_block = calls["Calculator"]["code_block"]
        assert "<function add>" in cls_block
        assert "<function multiply>" in cls_block
        assert "return a + b" not in cls_block
        module_block = calls["sample"]["code_block"]
        assert "<class Calculator>" in module_block
        assert "<function hello>" in module_block
        assert module_block.startswith('"""Sample module for testing."""')

    def test_node_with_absent_parent_is_a_root(self, workspace, sample_python_code):
        parser, result, _ = _parse(workspace, "sample.py", sample_python_code)
        add = next(n for n in result.nodes.values() if n.name == "add")
        generator = RecordingGenerator()

        done = asyncio.run(Skeletonizer(CodeGraph(workspace), parser, generator).skeletonize([add]))

        assert [n.id for n in done] == [add.id]
        assert isinstance(done[0], SkeletonizedCodeGraphNode)
        assert done[0].skeleton == "<function add>"
        assert generator.calls[0]["code_block"].startswith("def add")


class TestInputs:
    """What the generator receives."""

    def test_related_nodes_resolved_from_import_edges(self, workspace):
        write_file(workspace, "dep.py", "def d():\n    pass\n")
        parser, result, uri = _parse(workspace, "user.py", "import dep\n\n\ndef u():\n    pass\n")
        graph = CodeGraph(workspace)
        local = [n for n in result.nodes.values() if n.location.uri == uri]
        graph.update_file_with_edges(
            "user.py",
            FileEntry({"user.py", "user.py#3:0"}, "sha"),
            result.import_edges,
            result.export_edges,
            nodes=result.nodes.values(),
        )
        generator = RecordingGenerator()

        asyncio.run(Skeletonizer(graph, parser, generator).skeletonize(local))

        calls = {call["name"]: call for call in generator.calls}
        dep_uri = path_to_uri(workspace / "dep.py")
        assert calls["user"]["related"] == [dep_uri]
        assert calls["u"]["related"] == []
        assert calls["user"]["file_path"] == str(workspace / "user.py")

    def test_unreadable_document_skips_nodes(self, workspace):
        parser, result, _ = _parse(workspace, "gone.py", "def f():\n    pass\n")
        (workspace / "gone.py").unlink()
        generator = RecordingGenerator()

        done = asyncio.run(
            Skeletonizer(CodeGraph(workspace), parser, generator).skeletonize(list(result.nodes.values()))
        )

        assert done == []
        assert generator.calls == []


class TestConcurrency:
    """Siblings are generated concurrently."""

    def test_siblings_overlap(self, workspace, sample_python_code):
        parser, result, _ = _parse(workspace, "sample.py", sample_python_code)

        class SlowGenerator(RecordingGenerator):
            def __init__(self):
                super().__init__()
                self.in_flight = 0
                self.max_in_flight = 0

            async def skeletonize_code_graph_node(self, file_path, node, code_block, cache, related):
                self.in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self.in_flight)
                await asyncio.sleep(0.01)
                self.in_flight -= 1
                return await super().skeletonize_code_graph_node(file_path, node, code_block, cache, related)

        generator = SlowGenerator()
        asyncio.run(Skeletonizer(CodeGraph(workspace), parser, generator).skeletonize(list(result.nodes.values())))

        assert generator.max_in_flight >= 2

    def test_failed_child_cancels_siblings(self, workspace):
        parser, result, _ = _parse(
            workspace, "pair.py",
            "class Pair:\n    def bad(self):\n        pass\n\n    def slow(self):\n        pass\n",
        )

        class FlakyGenerator(RecordingGenerator):
            def __init__(self):
                super().__init__(fail_on=["bad"])
                self.finished = []

            async def skeletonize_code_graph_node(self, file_path, node, code_block, cache, related):
                if node.name == "slow":
                    await asyncio.sleep(0.05)
                    self.finished.append(node.name)
                return await super().skeletonize_code_graph_node(file_path, node, code_block, cache, related)

        generator = FlakyGenerator()
        skeletonizer = Skeletonizer(CodeGraph(workspace), parser, generator)

        async def run():
            with pytest.raises(GenerationError):
                await skeletonizer.skeletonize(list(result.nodes.values()))
            await asyncio.sleep(0.1)

        asyncio.run(run())

        assert generator.finished == []
        assert "Pair" not in generator.order()
