"""Tests for import usage filtering and path absolutization."""

from pathlib import Path

import pytest

from rustsplit.import_resolver import (
    ImportResolver,
    bare_name_occurs,
    module_path_from_file,
    word_occurs,
)
from rustsplit.models import AnalysisResult, ImplementationInfo, StructInfo
from rustsplit.parser import RustParser, parse_import


@pytest.fixture
def resolver() -> ImportResolver:
    return ImportResolver()


class TestModulePath:
    """Module paths derived from file locations."""

    def test_regular_file(self, temp_dir: Path):
        """``src/models/subscription.rs`` is ``models::subscription``."""
        path = module_path_from_file(temp_dir, temp_dir / "src" / "models" / "subscription.rs")
        assert path == ["models", "subscription"]

    def test_index_files(self, temp_dir: Path):
        """``mod.rs`` and ``lib.rs`` add no segment."""
        assert module_path_from_file(temp_dir, temp_dir / "src" / "models" / "mod.rs") == ["models"]
        assert module_path_from_file(temp_dir, temp_dir / "src" / "lib.rs") == []


class TestAbsolutize:
    """Rewriting ``super::`` and ``self::`` imports."""

    def test_parent_import_from_subscription(self, resolver: ImportResolver):
        """``super::Handler`` seen from models/subscription is models::Handler."""
        statement = resolver.absolutize(parse_import("super::Handler"), ["models", "subscription"])

        assert statement.path == "crate::models::Handler"
        assert statement.bound_identifiers == ["Handler"]

    @pytest.mark.parametrize("levels", [1, 2])
    def test_parent_markers_pop_segments(self, resolver: ImportResolver, levels: int):
        """N parent markers pop N segments off the module path."""
        module_path = ["a", "b"]
        statement = parse_import("::".join(["super"] * levels + ["X"]))

        manual = "::".join(["crate"] + module_path[:len(module_path) - levels] + ["X"])
        assert resolver.absolutize(statement, module_path).path == manual

    def test_self_import(self, resolver: ImportResolver):
        """``self::`` stays in the current module."""
        statement = resolver.absolutize(parse_import("self::helpers::Thing"), ["models", "user"])

        assert statement.path == "crate::models::user::helpers::Thing"

    def test_grouped_parent_import(self, resolver: ImportResolver):
        """Groups survive the rewrite."""
        statement = resolver.absolutize(parse_import("super::{Handler, Router}"), ["models", "user"])

        assert statement.path == "crate::models::{Handler, Router}"
        assert statement.bound_identifiers == ["Handler", "Router"]

    def test_climbing_above_root_is_left_alone(self, resolver: ImportResolver):
        """Unresolvable paths pass through unchanged."""
        original = parse_import("super::super::X")
        assert resolver.absolutize(original, ["a"]) is original

    def test_absolute_and_external_paths_unchanged(self, resolver: ImportResolver):
        """``crate::`` and external crate paths need no rewrite."""
        for path in ("crate::models::User", "serde::Serialize"):
            statement = parse_import(path)
            assert resolver.absolutize(statement, ["models", "user"]) is statement


class TestUsage:
    """Dropping imports the extracted code never references."""

    SOURCE_IMPORTS = """
use std::collections::HashMap;
use std::fmt::{self, Display};
use serde::{Deserialize, Serialize};
use super::Handler;
use crate::services::billing::Invoice;
use crate::models::*;
"""

    def _imports(self):
        return RustParser().extract_imports(self.SOURCE_IMPORTS)

    def test_dead_import_is_dropped(self, resolver: ImportResolver):
        """Only imports whose identifiers occur survive."""
        code = "pub fn bill(user: &User) -> Invoice { Invoice::default() }"
        kept = [s.path for s in resolver.filter_used(self._imports(), code)]

        assert kept == ["crate::services::billing::Invoice"]

    def test_whole_word_matching(self, resolver: ImportResolver):
        """``HandlerRegistry`` does not count as a use of ``Handler``."""
        statement = parse_import("super::Handler")

        assert not resolver.is_used(statement, "let r = HandlerRegistry::new();")
        assert resolver.is_used(statement, "fn f(h: &Handler) {}")

    def test_self_group_binds_module_name(self, resolver: ImportResolver):
        """``fmt::Result`` keeps ``use std::fmt::{self, Display}``."""
        statement = parse_import("std::fmt::{self, Display}")

        assert resolver.is_used(statement, "fn f() -> fmt::Result { Ok(()) }")

    def test_wildcard_uses_namespace(self, resolver: ImportResolver):
        """A wildcard is kept when its namespace appears."""
        statement = parse_import("crate::models::*")

        assert resolver.is_used(statement, "let u = models::User::default();")
        assert not resolver.is_used(statement, "let u = 1;")

    def test_external_crate_prefix(self, resolver: ImportResolver):
        """A qualified use of the crate keeps its import."""
        statement = parse_import("serde::Serialize")

        assert resolver.is_used(statement, "#[derive(serde::Deserialize)] struct A;")

    def test_unbound_import_is_kept(self, resolver: ImportResolver):
        """``use Trait as _`` cannot be checked and is kept."""
        assert resolver.is_used(parse_import("std::io::Write as _"), "fn f() {}")

    def test_soundness(self, resolver: ImportResolver):
        """Every kept internal import has an identifier in the code, and vice versa."""
        code = "fn f(h: &Handler) -> usize { models::count() }"
        internal = [s for s in self._imports() if not s.is_external]
        kept = resolver.filter_used(internal, code)

        for statement in internal:
            names = statement.bound_identifiers or [statement.namespace]
            occurs = any(word_occurs(name, code) for name in names)
            assert (statement in kept) == occurs


class TestResolve:
    """The whole import pipeline."""

    def test_resolve_filters_absolutizes_and_dedupes(self, resolver: ImportResolver):
        """Parent imports are rewritten and bridge suggestions merged once."""
        analysis = AnalysisResult(
            selected_code="",
            imports=[parse_import("super::Handler"), parse_import("std::collections::HashMap")],
        )
        code = "fn route(h: &Handler, m: HashMap<u8, u8>, r: Router) {}"
        suggestions = ["use crate::models::Handler;", "use crate::routing::Router;", "use crate::unused::Thing;"]

        paths = [s.path for s in resolver.resolve(analysis, code, ["models", "subscription"], suggestions)]

        assert paths == ["crate::models::Handler", "std::collections::HashMap", "crate::routing::Router"]

    def test_impl_target_is_synthesized(self, resolver: ImportResolver):
        """A method moved out of ``impl Summary for Report`` imports both from the parent."""
        analysis = AnalysisResult(
            selected_code="fn summarize(&self) -> String { String::new() }",
            is_inside_impl=True,
            impl_context=ImplementationInfo(target_type="Report", trait_name="Summary"),
        )
        code = "impl Summary for Report {\n    fn summarize(&self) -> String { String::new() }\n}"

        paths = [s.path for s in resolver.resolve(analysis, code, ["reports"])]

        assert paths == ["super::Report", "super::Summary"]

    def test_std_trait_and_imported_names_not_synthesized(self, resolver: ImportResolver):
        """Prelude traits and names already imported are not added again."""
        analysis = AnalysisResult(
            selected_code="",
            imports=[parse_import("crate::models::User")],
            is_inside_impl=True,
            impl_context=ImplementationInfo(target_type="User", trait_name="Display"),
        )
        code = "impl Display for User {}"

        paths = [s.path for s in resolver.resolve(analysis, code, ["models", "user"])]

        assert paths == ["crate::models::User"]

    def test_relative_globs_are_passed_through(self, resolver: ImportResolver):
        """``super::*`` and ``crate::*`` bind unknown names and are kept, rewritten."""
        analysis = AnalysisResult(
            selected_code="",
            imports=[parse_import("super::*"), parse_import("crate::*"), parse_import("self::*")],
        )
        code = "fn f(u: &User) -> Role {\n    u.role()\n}"

        paths = [s.path for s in resolver.resolve(analysis, code, ["models", "user"])]

        assert paths == ["crate::models::*", "crate::*", "crate::models::user::*"]


class TestUnresolvedTypes:
    """Type names the new module would use without anything in scope."""

    def test_imported_declared_and_prelude_names_are_covered(self, resolver: ImportResolver):
        """Only names no import, declaration or prelude covers are reported."""
        analysis = AnalysisResult(
            selected_code="",
            used_types={"Handler", "Ledger", "Report", "Vec"},
            imports=[parse_import("super::Handler")],
            structs=[StructInfo(name="Report")],
        )
        code = "pub struct Report { h: Handler, l: Ledger, v: Vec<u8> }"

        assert resolver.unresolved_types(analysis, code) == ["Ledger"]

    def test_qualified_uses_are_not_reported(self, resolver: ImportResolver):
        """``fmt::Formatter`` is resolved through its path."""
        analysis = AnalysisResult(selected_code="", used_types={"Formatter"})
        code = "fn fmt(&self, f: &mut fmt::Formatter<'_>) -> fmt::Result { Ok(()) }"

        assert resolver.unresolved_types(analysis, code) == []
        assert not bare_name_occurs("Formatter", code)

    def test_extra_names_and_suggestions(self, resolver: ImportResolver):
        """Extra names are checked too; suggested imports cover their names."""
        analysis = AnalysisResult(selected_code="", used_types={"Invoice"})
        code = "fn f(i: Invoice) { let l = Ledger::open(); let c = Clock::now(); }"

        unresolved = resolver.unresolved_types(
            analysis, code,
            extra=["Ledger", "Clock", "Missing"],
            suggestions=["use crate::time::Clock;"],
        )

        assert unresolved == ["Invoice", "Ledger"]

    def test_enclosing_impl_names_are_covered(self, resolver: ImportResolver):
        """The impl target and trait are imported by synthesis."""
        analysis = AnalysisResult(
            selected_code="",
            used_types={"Report"},
            is_inside_impl=True,
            impl_context=ImplementationInfo(target_type="Report", trait_name="Summary"),
        )
        code = "impl Summary for Report {\n    fn merge(&self, other: Report) {}\n}"

        assert resolver.unresolved_types(analysis, code, extra=["Summary"]) == []
