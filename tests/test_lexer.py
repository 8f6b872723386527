"""Tests for the literal-aware scanning helpers."""

from rustsplit.lexer import (
    brace_depths,
    find_block_end,
    find_matching,
    mask_literals,
    split_path,
    split_top_level,
    strip_attributes,
)


class TestMaskLiterals:
    """Comments and literals are blanked without moving offsets."""

    def test_strings_and_comments_are_blanked(self):
        """Braces inside strings and comments disappear from the masked text."""
        code = 'let s = "{ }"; // }\nlet t = 1;'
        masked = mask_literals(code)

        assert len(masked) == len(code)
        assert "{" not in masked
        assert "}" not in masked
        assert masked.splitlines()[1] == "let t = 1;"

    def test_newlines_are_preserved(self):
        """Block comments keep their line breaks so line numbers still match."""
        code = "/* one\ntwo */ fn f() {}"
        masked = mask_literals(code)

        assert masked.count("\n") == 1
        assert masked.endswith("fn f() {}")

    def test_lifetimes_are_not_char_literals(self):
        """``'a`` and ``'_`` stay visible; ``'x'`` is masked."""
        code = "fn f<'a>(x: &'a str, c: char) -> &'a str { if c == '{' { x } else { x } }"
        masked = mask_literals(code)

        assert "<'a>" in masked
        assert "'{'" not in masked
        assert masked.count("{") == masked.count("}")

    def test_raw_strings(self):
        """Raw strings with hashes are masked up to the matching terminator."""
        code = 'let s = r#"a "quoted" } brace"#; fn g() {}'
        masked = mask_literals(code)

        assert "}" not in masked[:masked.index("fn")]
        assert masked.endswith("fn g() {}")


class TestBracketMatching:
    """Bracket matching on masked text."""

    def test_nested_braces(self):
        """The matching brace of the outer block is the last one."""
        code = "fn f() { if x { y } }"
        assert find_matching(code, code.index("{")) == len(code) - 1

    def test_angle_brackets_skip_arrows(self):
        """``->`` inside generics does not close the angle bracket."""
        code = "Box<dyn Fn(u8) -> u32>"
        assert find_matching(code, code.index("<")) == len(code) - 1

    def test_unbalanced_returns_length(self):
        """An unclosed block reports the end of the text."""
        code = "impl User { fn f() {"
        assert find_block_end(code, 0) == len(code)

    def test_brace_depths(self):
        """Depth is counted at each requested offset."""
        code = "use a; fn f() { use b; }"
        offsets = [code.index("use a"), code.index("use b")]
        assert brace_depths(code, offsets) == [0, 1]


class TestSplitting:
    """Top-level splitting helpers."""

    def test_split_top_level_ignores_nested_commas(self):
        """Commas inside generics and tuples do not split."""
        parts = split_top_level("a: Vec<(u8, u16)>, b: HashMap<K, V>,")
        assert parts == ["a: Vec<(u8, u16)>", "b: HashMap<K, V>"]

    def test_split_path_keeps_groups(self):
        """``::`` inside a brace group is not a separator."""
        assert split_path("std::{fmt, io::Write}") == ["std", "{fmt, io::Write}"]

    def test_strip_attributes(self):
        """Leading attributes are removed from fields and variants."""
        assert strip_attributes('#[serde(rename = "n")] #[doc(hidden)] pub name: String') == "pub name: String"
