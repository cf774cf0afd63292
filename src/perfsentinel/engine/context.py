from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from tree_sitter import Node, Tree

from perfsentinel.config import PerfConfig
from perfsentinel.engine.line_index import LineIndex


@dataclass(frozen=True, slots=True)
class AnalysisContext:
    """Everything a rule needs to analyze a single file."""

    path: Path
    source: str
    tree: Tree
    config: PerfConfig
    source_bytes: bytes = field(init=False)
    line_index: LineIndex = field(init=False)

    def __post_init__(self) -> None:
        data = self.source.encode("utf-8")
        object.__setattr__(self, "source_bytes", data)
        object.__setattr__(self, "line_index", LineIndex(data))

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def node_text(self, node: Node) -> str:
        return self.source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    def line_col(self, offset: int) -> tuple[int, int]:
        return self.line_index.line_col(offset)

    def position(self, node: Node) -> tuple[int, int]:
        """1-based (line, column) of the node start."""

        row, col = node.start_point
        return row + 1, col + 1

    def end_position(self, node: Node) -> tuple[int, int]:
        row, col = node.end_point
        return row + 1, col + 1

    def get_line(self, line: int) -> str | None:
        return self.line_index.line_text(line)
