from __future__ import annotations

import pytest

from perfsentinel.engine.line_index import LineIndex

SOURCE = "fn main() {\n    let x = 1;\n}\n"


def test_line_col_round_trips_every_offset() -> None:
    index = LineIndex(SOURCE)
    for offset in range(len(SOURCE.encode("utf-8")) + 1):
        line, col = index.line_col(offset)
        assert index.byte_offset(line, col) == offset


def test_line_starts_and_positions() -> None:
    index = LineIndex(SOURCE)
    assert index.line_starts == (0, 12, 27, 29)
    assert index.line_count == 4
    assert index.line_col(0) == (1, 1)
    assert index.line_col(12) == (2, 1)
    assert index.line_col(16) == (2, 5)
    assert index.line_text(2) == "    let x = 1;"


def test_columns_count_utf8_bytes() -> None:
    index = LineIndex("é\nx")
    assert index.line_col(1) == (1, 2)
    assert index.line_col(3) == (2, 1)
    assert index.line_text(1) == "é"


def test_out_of_range_lookups() -> None:
    index = LineIndex(SOURCE)
    assert index.byte_offset(0, 1) is None
    assert index.byte_offset(5, 1) is None
    assert index.line_text(99) is None
    # Columns past the end clamp to the end of the line.
    assert index.byte_offset(1, 999) == 11
    assert index.line_col(-5) == (1, 1)


@pytest.mark.parametrize("source", ["", "no newline"])
def test_single_line_sources(source: str) -> None:
    index = LineIndex(source)
    assert index.line_count == 1
    assert index.line_col(0) == (1, 1)
    assert index.line_end(1) == len(source)


def test_line_text_drops_carriage_return() -> None:
    index = LineIndex("a\r\nb")
    assert index.line_text(1) == "a"
    assert index.line_text(2) == "b"
