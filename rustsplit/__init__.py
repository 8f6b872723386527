"""rustsplit: move a selection of Rust code into its own module."""

__version__ = "0.3.0"
