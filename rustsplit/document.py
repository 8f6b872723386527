"""In-memory view of a source file with position/offset conversion."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .errors import InputError, WorkspaceError
from .models import CodeSpan, Position, TextRange


@dataclass
class Document:
    path: Path
    text: str
    _line_starts: List[int] = field(init=False, repr=False, default_factory=list)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        starts = [0]
        for index, char in enumerate(self.text):
            if char == "\n":
                starts.append(index + 1)
        self._line_starts = starts

    @classmethod
    def load(cls, path: Path) -> "Document":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise WorkspaceError(f"Cannot read {path}: {exc}") from exc
        return cls(path, text)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def line_text(self, line: int) -> str:
        start = self._line_starts[line]
        if line + 1 < len(self._line_starts):
            end = self._line_starts[line + 1] - 1
        else:
            end = len(self.text)
        return self.text[start:end].rstrip("\r")

    def offset_at(self, position: Position) -> int:
        line = min(max(position.line, 0), self.line_count - 1)
        column = min(max(position.column, 0), len(self.line_text(line)))
        return self._line_starts[line] + column

    def position_at(self, offset: int) -> Position:
        offset = min(max(offset, 0), len(self.text))
        line = bisect_right(self._line_starts, offset) - 1
        return Position(line, offset - self._line_starts[line])

    def line_end(self, line: int) -> Position:
        return Position(line, len(self.line_text(line)))

    def get_text(self, text_range: TextRange) -> str:
        return self.text[self.offset_at(text_range.start):self.offset_at(text_range.end)]

    def span(self, text_range: TextRange) -> CodeSpan:
        return CodeSpan(self.get_text(text_range), text_range)

    def lines_range(self, start_line: int, end_line: int) -> TextRange:
        """Range covering whole lines ``start_line..end_line`` (inclusive)."""
        return TextRange(Position(start_line, 0), self.line_end(end_line))

    def selection_for_lines(self, start_line: int, end_line: int) -> TextRange:
        """Whole-line selection from 1-based, inclusive line numbers."""
        if start_line < 1 or end_line < start_line or end_line > self.line_count:
            raise InputError(
                f"Invalid line range {start_line}-{end_line} for {self.path.name} "
                f"({self.line_count} lines)"
            )
        return self.lines_range(start_line - 1, end_line - 1)

    def validate_range(self, text_range: TextRange) -> None:
        """Raise :class:`InputError` if the range is empty or out of bounds."""
        start, end = text_range.start, text_range.end
        if start.line < 0 or end.line >= self.line_count:
            raise InputError(
                f"Selection {text_range} is outside {self.path.name} "
                f"({self.line_count} lines)"
            )
        if (end.line, end.column) < (start.line, start.column):
            raise InputError(f"Selection {text_range} ends before it starts")
        if not self.get_text(text_range).strip():
            raise InputError("Selection is empty")
