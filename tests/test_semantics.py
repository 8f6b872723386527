"""Tests for the semantic properties analyzer."""

from rustsplit.models import Visibility
from rustsplit.parser import RustParser
from rustsplit.semantics import STD_TYPES, SemanticAnalyzer


def _analyze(code: str):
    parser = RustParser()
    return SemanticAnalyzer().analyze(code, parser.parse_declarations(code))


def test_used_types_skip_std_containers():
    """Types after a colon are collected; std containers are not."""
    props = _analyze("fn f(user: &User, names: Vec<String>, cache: &mut Cache) -> u32 { 0 }\n")

    assert {"User", "Cache"} <= props.used_types
    assert not (props.used_types & STD_TYPES)


def test_declared_types_are_used_types():
    """Structs and enums defined in the span count as used."""
    props = _analyze("pub struct Invoice { amount: u64 }\nenum Currency { Eur, Usd }\n")

    assert {"Invoice", "Currency"} <= props.used_types


def test_traits_from_bounds_and_where_clauses():
    """Generic bounds, where clauses, impl-for, impl Trait and dyn are all traits."""
    code = """
pub fn summarize<T: Display + Clone>(item: &T) -> String where T: Debug {
    format!("{}", item)
}

impl Summary for Report {}

fn boxed(sink: impl Write, err: Box<dyn Error>) {}
"""
    props = _analyze(code)

    assert {"Display", "Clone", "Debug", "Summary", "Write", "Error"} <= props.used_traits


def test_lifetime_bounds_are_not_traits():
    """``'a`` in a bound list is ignored."""
    props = _analyze("struct Holder<'a, T: 'a + Send> { item: &'a T }\n")

    assert "Send" in props.used_traits
    assert not any(t.startswith("'") for t in props.used_traits)


def test_has_generics():
    """Any generic declaration makes the span generic."""
    assert _analyze("struct Wrapper<T> { inner: T }\n").has_generics is True
    assert _analyze("struct Plain { inner: u8 }\n").has_generics is False


def test_overall_visibility_is_most_public():
    """The most public top-level declaration wins; impls are ignored."""
    assert _analyze("fn a() {}\npub(crate) fn b() {}\n").visibility is Visibility.RESTRICTED
    assert _analyze("fn a() {}\npub struct B;\n").visibility is Visibility.PUBLIC
    assert _analyze("impl A { pub fn f() {} }\n").visibility is Visibility.PRIVATE


def test_generic_arguments_and_paths_are_used_types():
    """Types nested in generic arguments and path-qualified fields are collected."""
    code = "struct Ledger {\n    items: Vec<Invoice>,\n    owner: Option<Customer>,\n    m: crate::models::Account,\n}\n"
    props = _analyze(code)

    assert {"Invoice", "Customer", "Account", "Ledger"} <= props.used_types
    assert not (props.used_types & STD_TYPES)


def test_return_position_types_are_used_types():
    """A type only named after ``->`` still counts."""
    props = _analyze("fn bill(x: u8) -> Receipt {\n    Receipt::new(x)\n}\n")

    assert "Receipt" in props.used_types


def test_generic_parameters_and_traits_are_not_types():
    """``T``-style parameters and trait bounds stay out of the type set."""
    code = "fn first<Item: Display>(items: &[Item], out: Box<dyn Error>) -> Wrapper<Item> { todo!() }\n"
    props = _analyze(code)

    assert "Wrapper" in props.used_types
    assert "Item" not in props.used_types
    assert "Display" not in props.used_types
    assert "Error" not in props.used_types


def test_associated_type_bindings_are_skipped():
    """``Iterator<Item = Order>`` yields ``Order`` but not ``Item``."""
    props = _analyze("fn orders(src: Source) -> impl Iterator<Item = Order> { src.into_iter() }\n")

    assert "Order" in props.used_types
    assert "Source" in props.used_types
    assert "Item" not in props.used_types
