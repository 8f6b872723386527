"""Tests for cargo diagnostics parsing and the provider contract."""

import json
from pathlib import Path
from typing import Optional

import pytest

from rustsplit.diagnostics import CargoDiagnosticsProvider, NullDiagnosticsProvider
from rustsplit.models import DiagnosticSeverity, Position, TextRange


def _span(file_name: str, line: int, col_start: int, col_end: int, primary: bool = True, replacement=None) -> dict:
    return {
        "file_name": file_name,
        "line_start": line,
        "line_end": line,
        "column_start": col_start,
        "column_end": col_end,
        "is_primary": primary,
        "suggested_replacement": replacement,
    }


def _message(level: str, text: str, span: dict, children=None) -> str:
    return json.dumps({
        "reason": "compiler-message",
        "message": {"level": level, "message": text, "spans": [span], "children": children or []},
    })


CARGO_OUTPUT = "\n".join([
    json.dumps({"reason": "compiler-artifact", "target": {"name": "sample_crate"}}),
    _message(
        "error",
        "cannot find type `User` in this scope",
        _span("src/models/user_index.rs", 3, 24, 28),
        children=[
            {
                "message": "consider importing this struct",
                "spans": [_span("src/models/user_index.rs", 1, 1, 1, primary=True, replacement="use super::User;\n")],
            },
            {"message": "the type is defined here", "spans": [_span("src/models/user.rs", 9, 1, 16)]},
        ],
    ),
    _message("warning", "unused variable: `x`", _span("src/lib.rs", 10, 9, 10)),
    "not json",
    json.dumps({"reason": "build-finished", "success": False}),
])


class CannedCargo(CargoDiagnosticsProvider):
    """Provider that replays fixed cargo output."""

    def __init__(self, workspace_root: Path, output: Optional[str]) -> None:
        super().__init__(workspace_root)
        self.output = output
        self.runs = 0

    async def _run_cargo(self) -> Optional[str]:
        self.runs += 1
        return self.output


class TestParseMessages:
    """Mapping rustc JSON onto diagnostics."""

    def test_grouped_by_primary_file(self, temp_dir: Path):
        """Only compiler messages are kept, keyed by their primary span's file."""
        grouped = CargoDiagnosticsProvider(temp_dir).parse_messages(CARGO_OUTPUT)
        root = temp_dir.resolve()

        assert set(grouped) == {root / "src" / "models" / "user_index.rs", root / "src" / "lib.rs"}

    def test_severity_and_zero_based_range(self, temp_dir: Path):
        """Levels map to severities and 1-based spans become 0-based."""
        grouped = CargoDiagnosticsProvider(temp_dir).parse_messages(CARGO_OUTPUT)
        diag, _ = grouped[temp_dir.resolve() / "src" / "models" / "user_index.rs"][0]
        warning, _ = grouped[temp_dir.resolve() / "src" / "lib.rs"][0]

        assert diag.severity is DiagnosticSeverity.ERROR
        assert diag.range == TextRange(Position(2, 23), Position(2, 27))
        assert diag.source == "rustc"
        assert warning.severity is DiagnosticSeverity.WARNING
        assert not warning.is_error

    def test_suggested_replacements_become_quick_fixes(self, temp_dir: Path):
        """Children with replacements are fixes; purely informative children are not."""
        grouped = CargoDiagnosticsProvider(temp_dir).parse_messages(CARGO_OUTPUT)
        _, fixes = grouped[temp_dir.resolve() / "src" / "models" / "user_index.rs"][0]

        assert len(fixes) == 1
        assert fixes[0].description == "consider importing this struct"
        assert fixes[0].edits[0].new_text == "use super::User;\n"
        assert fixes[0].edits[0].range == TextRange(Position(0, 0), Position(0, 0))


@pytest.mark.asyncio
class TestProvider:
    """check() and quick_fixes() against canned output."""

    async def test_check_returns_file_diagnostics(self, temp_dir: Path):
        """Diagnostics for other files are not returned."""
        provider = CannedCargo(temp_dir, CARGO_OUTPUT)

        diags = await provider.check(temp_dir / "src" / "models" / "user_index.rs")

        assert [d.message for d in diags] == ["cannot find type `User` in this scope"]

    async def test_quick_fixes_reuse_last_run(self, temp_dir: Path):
        """Fixes come from the last check without running cargo again."""
        provider = CannedCargo(temp_dir, CARGO_OUTPUT)
        target = temp_dir / "src" / "models" / "user_index.rs"
        await provider.check(target)

        fixes = await provider.quick_fixes(target, TextRange.from_lines(0, 10))

        assert [f.description for f in fixes] == ["consider importing this struct"]
        assert provider.runs == 1

    async def test_quick_fixes_outside_range(self, temp_dir: Path):
        """Diagnostics outside the requested range contribute no fixes."""
        provider = CannedCargo(temp_dir, CARGO_OUTPUT)
        target = temp_dir / "src" / "models" / "user_index.rs"
        await provider.check(target)

        assert await provider.quick_fixes(target, TextRange.from_lines(5, 6)) == []

    async def test_unavailable_cargo(self, temp_dir: Path):
        """No output means no diagnostics."""
        provider = CannedCargo(temp_dir, None)

        assert await provider.check(temp_dir / "src" / "lib.rs") == []

    async def test_missing_cargo_binary(self, temp_dir: Path):
        """A cargo that cannot be started degrades to no diagnostics."""
        provider = CargoDiagnosticsProvider(temp_dir, cargo=str(temp_dir / "no-such-cargo"))

        assert await provider.check(temp_dir / "src" / "lib.rs") == []

    async def test_null_provider(self, temp_dir: Path):
        """The null provider never reports anything."""
        provider = NullDiagnosticsProvider()

        assert await provider.check(temp_dir / "src" / "lib.rs") == []
        assert await provider.quick_fixes(temp_dir / "src" / "lib.rs", TextRange.from_lines(0, 1)) == []
