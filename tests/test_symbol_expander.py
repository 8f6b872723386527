"""Tests for selection expansion and symbol lookup."""

from pathlib import Path
from typing import List

import pytest

from rustsplit.document import Document
from rustsplit.models import Position, TextRange
from rustsplit.symbol_expander import SymbolExpander
from rustsplit.symbol_index import SymbolIndexProvider, SymbolNode


@pytest.fixture
def document(user_rs: str) -> Document:
    return Document(Path("src/models/user.rs"), user_rs)


class EmptyIndex(SymbolIndexProvider):
    async def document_symbols(self, document: Document) -> List[SymbolNode]:
        return []


@pytest.mark.asyncio
async def test_selection_inside_struct_body_expands_to_struct(document: Document, line_of):
    """A field line grows to the whole struct, doc comment and derive included."""
    line = line_of(document, "pub age: u32")
    selection = TextRange(Position(line, 4), Position(line, 8))

    span = await SymbolExpander().expand(document, selection)

    text = document.text
    start = text.index("/// A registered user.")
    end = text.index("}", text.index("pub age: u32")) + 1
    assert span.text == text[start:end]
    assert span.start == Position(line_of(document, "/// A registered user."), 0)


@pytest.mark.asyncio
async def test_selection_inside_free_function(document: Document, line_of):
    """Start and end match the function's boundaries exactly."""
    line = line_of(document, "users.iter()")
    span = await SymbolExpander().expand(document, document.lines_range(line, line))

    assert span.start.line == line_of(document, "pub fn index_users")
    assert span.end.line == line + 1
    assert span.text.startswith("pub fn index_users")
    assert span.text.endswith("}")


@pytest.mark.asyncio
async def test_method_selection_includes_enclosing_impl(document: Document, line_of):
    """By default the enclosing impl is kept as context."""
    line = line_of(document, "self.age >= 18")
    span = await SymbolExpander().expand(document, document.lines_range(line, line))

    assert span.text.startswith("impl User {")
    assert "pub fn new" in span.text


@pytest.mark.asyncio
async def test_method_selection_without_enclosing_impl(document: Document, line_of):
    """With include_enclosing=False only the overlapping method is taken."""
    line = line_of(document, "self.age >= 18")
    span = await SymbolExpander().expand(document, document.lines_range(line, line), include_enclosing=False)

    assert span.text.startswith("    pub fn is_adult(&self) -> bool {")
    assert span.text.rstrip().endswith("}")
    assert "impl User" not in span.text
    assert "pub fn new" not in span.text


@pytest.mark.asyncio
async def test_selection_spanning_two_items(document: Document, line_of):
    """A selection touching two declarations covers both."""
    first = line_of(document, "pub name: String")
    second = line_of(document, "Active,")
    span = await SymbolExpander().expand(document, TextRange(Position(first, 0), Position(second, 2)))

    assert span.text.startswith("/// A registered user.")
    assert "pub enum Status" in span.text
    assert span.text.endswith("}")


@pytest.mark.asyncio
async def test_no_overlap_returns_none(document: Document, line_of):
    """Imports are not declarations, so selecting them expands to nothing."""
    line = line_of(document, "use std::collections::HashMap;")
    span = await SymbolExpander().expand(document, document.lines_range(line, line))

    assert span is None


@pytest.mark.asyncio
async def test_empty_index_returns_none(document: Document):
    """An index with no symbols yields no expansion."""
    span = await SymbolExpander(index=EmptyIndex()).expand(document, document.lines_range(0, 3))

    assert span is None


class TestFindSymbol:
    """Lookup by declaration name."""

    @pytest.mark.asyncio
    async def test_find_enum_with_attributes(self, document: Document):
        """The span starts at the derive attribute above the enum."""
        span = await SymbolExpander().find_symbol(document, "Status")

        assert span.text.startswith("#[derive(Debug, Clone, Copy, PartialEq)]\npub enum Status {")
        assert span.text.endswith("}")

    @pytest.mark.asyncio
    async def test_find_nested_method(self, document: Document):
        """Methods are found depth-first inside impl blocks."""
        span = await SymbolExpander().find_symbol(document, "fmt")

        assert span.text.startswith("    fn fmt(&self")
        assert "write!" in span.text

    @pytest.mark.asyncio
    async def test_unknown_symbol(self, document: Document):
        """Unknown names return None."""
        assert await SymbolExpander().find_symbol(document, "does_not_exist") is None


def test_attribute_walk_skips_blank_lines():
    """Blank lines between attributes and the item are absorbed, leading blanks are not."""
    text = "fn before() {}\n\n#[inline]\n\n/// Docs\nfn after() {}\n"
    document = Document(Path("lib.rs"), text)

    assert SymbolExpander().find_attribute_start(document, 5) == 2
