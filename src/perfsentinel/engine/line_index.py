from __future__ import annotations

from bisect import bisect_right


class LineIndex:
    """
    Byte-offset <-> (line, column) conversion for one source file.

    Lines and columns are 1-based; columns count UTF-8 bytes, which matches the
    column convention of tree-sitter points. Lookups are O(log n).
    """

    __slots__ = ("_data", "_line_starts")

    def __init__(self, source: str | bytes) -> None:
        data = source.encode("utf-8") if isinstance(source, str) else source
        starts = [0]
        pos = data.find(b"\n")
        while pos != -1:
            starts.append(pos + 1)
            pos = data.find(b"\n", pos + 1)
        self._data = data
        self._line_starts: tuple[int, ...] = tuple(starts)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    @property
    def line_starts(self) -> tuple[int, ...]:
        return self._line_starts

    def line_col(self, offset: int) -> tuple[int, int]:
        """Return the 1-based (line, column) for a byte offset."""

        offset = max(0, offset)
        line_idx = max(0, bisect_right(self._line_starts, offset) - 1)
        return line_idx + 1, offset - self._line_starts[line_idx] + 1

    def line_start(self, line: int) -> int | None:
        if line < 1 or line > len(self._line_starts):
            return None
        return self._line_starts[line - 1]

    def line_end(self, line: int) -> int | None:
        """Byte offset just past the last content byte of `line` (newline excluded)."""

        start = self.line_start(line)
        if start is None:
            return None
        if line < len(self._line_starts):
            return self._line_starts[line] - 1
        return len(self._data)

    def byte_offset(self, line: int, column: int) -> int | None:
        """
        Return the byte offset for a 1-based (line, column).

        Out-of-range lines return None; columns past the end of the line clamp
        to the end of that line.
        """

        start = self.line_start(line)
        if start is None:
            return None
        end = self.line_end(line)
        assert end is not None
        return min(start + max(column, 1) - 1, end)

    def line_text(self, line: int) -> str | None:
        start = self.line_start(line)
        if start is None:
            return None
        end = self.line_end(line)
        text = self._data[start:end].decode("utf-8", errors="replace")
        return text.removesuffix("\r")
