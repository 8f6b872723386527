"""Pytest configuration and fixtures for rustsplit tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from rustsplit.config_manager import ExtractionSettings
from rustsplit.document import Document


@pytest.fixture(autouse=True)
def _isolated_global_config(tmp_path_factory, monkeypatch):
    """Point the global config at an empty temp directory.

    Keeps a developer's ``~/.rustsplit/config.toml`` from leaking into tests.
    """
    home = tmp_path_factory.mktemp("rustsplit_home")
    monkeypatch.setattr("rustsplit.config_manager.CONFIG_FILE", home / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_crate_path() -> Path:
    """Get path to the pristine sample crate."""
    return Path(__file__).parent / "fixtures" / "sample_crate"


@pytest.fixture
def sample_crate(temp_dir: Path, sample_crate_path: Path) -> Path:
    """A writable copy of the sample crate."""
    crate = temp_dir / "sample_crate"
    shutil.copytree(sample_crate_path, crate)
    return crate.resolve()


@pytest.fixture
def settings() -> ExtractionSettings:
    """Settings with no settle delay so validation tests run instantly."""
    return ExtractionSettings(settle_delay=0.0)


@pytest.fixture
def user_rs(sample_crate_path: Path) -> str:
    """Source of ``src/models/user.rs``."""
    return (sample_crate_path / "src" / "models" / "user.rs").read_text(encoding="utf-8")


def _line_of(document: Document, needle: str, start: int = 0) -> int:
    for line in range(start, document.line_count):
        if needle in document.line_text(line):
            return line
    raise AssertionError(f"{needle!r} not found in {document.path}")


@pytest.fixture
def line_of():
    """Zero-based index of the first line (at or after ``start``) containing a needle."""
    return _line_of
