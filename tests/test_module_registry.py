"""Tests for locating and editing module registration files."""

from pathlib import Path

import pytest

from rustsplit.errors import InputError
from rustsplit.module_registry import ModuleRegistry, validate_module_name


@pytest.fixture
def registry(sample_crate: Path) -> ModuleRegistry:
    return ModuleRegistry(sample_crate)


class TestModuleName:
    """Rust module identifiers."""

    @pytest.mark.parametrize("name", ["billing", "user_index", "v2"])
    def test_valid(self, name: str):
        """Lowercase snake_case names pass."""
        validate_module_name(name)

    @pytest.mark.parametrize("name", ["", "UserIndex", "2fast", "user-index", "_hidden"])
    def test_invalid(self, name: str):
        """Anything else is an input error."""
        with pytest.raises(InputError):
            validate_module_name(name)


class TestResolveModuleFile:
    """Where the new file goes."""

    def test_default_location(self, registry: ModuleRegistry, sample_crate: Path):
        """Without a path the module lands in src/."""
        assert registry.resolve_module_file("billing") == sample_crate / "src" / "billing.rs"

    def test_backslashes_and_missing_suffix(self, registry: ModuleRegistry, sample_crate: Path):
        """Windows-style paths are normalised and ``.rs`` appended."""
        path = registry.resolve_module_file("user_index", "src\\models\\user_index")

        assert path == sample_crate / "src" / "models" / "user_index.rs"

    def test_outside_workspace(self, registry: ModuleRegistry):
        """Paths escaping the workspace are rejected."""
        with pytest.raises(InputError):
            registry.resolve_module_file("evil", "../evil.rs")


class TestRegistrationFile:
    """Finding the file that must declare the module."""

    def test_folder_index(self, registry: ModuleRegistry, sample_crate: Path):
        """A file in src/models is declared by src/models/mod.rs."""
        target = sample_crate / "src" / "models" / "billing.rs"

        assert registry.find_registration_file(target) == sample_crate / "src" / "models" / "mod.rs"

    def test_crate_root(self, registry: ModuleRegistry, sample_crate: Path):
        """A file directly in src/ is declared by lib.rs."""
        target = sample_crate / "src" / "billing.rs"

        assert registry.find_registration_file(target) == sample_crate / "src" / "lib.rs"

    def test_ancestor_index_needs_path_attribute(self, registry: ModuleRegistry, sample_crate: Path):
        """With no index in the target folder an ancestor is used with ``#[path]``."""
        target = sample_crate / "src" / "services" / "reports" / "summary.rs"
        owner = registry.find_registration_file(target)

        assert owner == sample_crate / "src" / "services" / "mod.rs"
        assert registry.path_attribute(owner, "summary", target) == "reports/summary.rs"

    def test_default_location_needs_no_attribute(self, registry: ModuleRegistry, sample_crate: Path):
        """The conventional location gets no ``#[path]``."""
        owner = sample_crate / "src" / "models" / "mod.rs"

        assert registry.path_attribute(owner, "billing", sample_crate / "src" / "models" / "billing.rs") is None


class TestPlanRegistration:
    """Inserting ``mod`` declarations."""

    def test_after_existing_mod(self, registry: ModuleRegistry, sample_crate: Path):
        """The declaration and re-export go right after the last ``mod``."""
        owner = sample_crate / "src" / "models" / "mod.rs"
        text = owner.read_text(encoding="utf-8")
        plan = registry.plan_registration(
            owner, text, "billing", sample_crate / "src" / "models" / "billing.rs", reexport=True,
        )

        assert plan.changed
        assert plan.new_text.startswith("pub mod user;\npub mod billing;\npub use billing::*;\n\npub use user::*;")

    def test_already_registered(self, registry: ModuleRegistry, sample_crate: Path):
        """An existing declaration leaves the file alone."""
        owner = sample_crate / "src" / "models" / "mod.rs"
        text = owner.read_text(encoding="utf-8")
        plan = registry.plan_registration(
            owner, text, "user", sample_crate / "src" / "models" / "user.rs", reexport=True,
        )

        assert plan.already_registered
        assert not plan.changed

    def test_existing_reexport_not_duplicated(self, registry: ModuleRegistry, sample_crate: Path):
        """A ``pub use name::*;`` already present is not added twice."""
        owner = sample_crate / "src" / "lib.rs"
        text = "pub use self::billing::*;\n"
        plan = registry.plan_registration(owner, text, "billing", sample_crate / "src" / "billing.rs", reexport=True)

        assert plan.new_text.count("pub use") == 1
        assert "pub mod billing;" in plan.new_text

    def test_top_fallback_below_header(self, registry: ModuleRegistry, sample_crate: Path):
        """With no ``mod`` or ``use`` the block goes below inner docs and attributes."""
        text = "//! Crate docs\n#![allow(dead_code)]\n\nfn main() {}\n"
        plan = registry.plan_registration(
            sample_crate / "src" / "lib.rs", text, "billing", sample_crate / "src" / "billing.rs", reexport=False,
        )

        assert plan.new_text == "//! Crate docs\n#![allow(dead_code)]\n\npub mod billing;\n\nfn main() {}\n"

    def test_use_fallback(self, registry: ModuleRegistry, sample_crate: Path):
        """With no ``mod`` the block follows the last top-level ``use``."""
        text = "use std::fmt;\n\nfn main() {}\n"
        plan = registry.plan_registration(
            sample_crate / "src" / "lib.rs", text, "billing", sample_crate / "src" / "billing.rs", reexport=False,
        )

        assert plan.new_text == "use std::fmt;\n\npub mod billing;\n\nfn main() {}\n"

    def test_shift_maps_offsets_past_the_insertion(self, registry: ModuleRegistry, sample_crate: Path):
        """Offsets below the new block move by its length; those above stay."""
        text = "use std::fmt;\n\nfn main() {}\n"
        plan = registry.plan_registration(
            sample_crate / "src" / "lib.rs", text, "billing", sample_crate / "src" / "billing.rs", reexport=False,
        )
        start = text.index("fn main")

        assert plan.shift(4) == 4
        assert plan.new_text[plan.shift(start):plan.shift(len(text))] == text[start:]

    def test_mod_in_string_is_ignored(self):
        """Declarations inside string literals do not count."""
        assert not ModuleRegistry.is_registered('let s = "mod billing;";', "billing")
        assert ModuleRegistry.is_registered("pub(crate) mod billing;", "billing")
        assert ModuleRegistry.is_reexported("pub use billing::*;", "billing")


class TestConversion:
    """Turning ``models.rs`` into ``models/mod.rs``."""

    def test_flat_module_is_converted(self, temp_dir: Path):
        """A flat parent file moves into its folder as mod.rs."""
        crate = temp_dir / "flat"
        (crate / "src").mkdir(parents=True)
        (crate / "Cargo.toml").write_text("[package]\nname = \"flat\"\n", encoding="utf-8")
        (crate / "src" / "lib.rs").write_text("pub mod models;\n", encoding="utf-8")
        (crate / "src" / "models.rs").write_text("pub struct User;\n", encoding="utf-8")
        registry = ModuleRegistry(crate)
        target = registry.resolve_module_file("billing", "src/models/billing.rs")

        conversion = registry.check_module_conversion(target)
        assert conversion == (registry.source_root / "models.rs", registry.source_root / "models" / "mod.rs")

        registry.convert_module_to_folder(*conversion)
        assert not (registry.source_root / "models.rs").exists()
        assert (registry.source_root / "models" / "mod.rs").read_text(encoding="utf-8") == "pub struct User;\n"

    def test_folder_module_needs_no_conversion(self, registry: ModuleRegistry, sample_crate: Path):
        """Folders that already have mod.rs are left alone."""
        assert registry.check_module_conversion(sample_crate / "src" / "models" / "billing.rs") is None
