"""Tests for the analysis cache and its SQLite store."""

from pathlib import Path

import pytest

from rustsplit.analyzer import RustCodeAnalyzer
from rustsplit.cache import AnalysisCache, CacheStore, cache_key
from rustsplit.document import Document
from rustsplit.models import AnalysisResult


def _result(name: str) -> AnalysisResult:
    return AnalysisResult(selected_code=f"fn {name}() {{}}", source_path=f"/tmp/{name}.rs")


@pytest.fixture
def store(temp_dir: Path) -> CacheStore:
    store = CacheStore(temp_dir, max_entries=4)
    yield store
    store.close()


def test_cache_key_is_deterministic(temp_dir: Path):
    """Same path and text give the same key; different text does not."""
    path = temp_dir / "lib.rs"
    assert cache_key(path, "fn a() {}") == cache_key(path, "fn a() {}")
    assert cache_key(path, "fn a() {}") != cache_key(path, "fn b() {}")
    assert cache_key(path, "fn a() {}") != cache_key(temp_dir / "main.rs", "fn a() {}")


class TestAnalysisCache:
    """In-memory behaviour."""

    def test_hit_and_miss_counters(self):
        """get() counts hits and misses."""
        cache = AnalysisCache(max_entries=2)
        cache.put("a", _result("a"))

        assert cache.get("a") is not None
        assert cache.get("b") is None
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entry_count) == (1, 1, 1)
        assert stats.hit_rate == 0.5

    def test_lru_eviction(self):
        """The least recently used entry is evicted first."""
        cache = AnalysisCache(max_entries=2)
        cache.put("a", _result("a"))
        cache.put("b", _result("b"))
        cache.get("a")
        cache.put("c", _result("c"))

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None

    def test_clear(self):
        """clear() drops entries and counters."""
        cache = AnalysisCache()
        cache.put("a", _result("a"))
        cache.get("a")
        cache.clear()

        assert cache.stats().to_dict() == {"hits": 0, "misses": 0, "hit_rate": 0.0, "entry_count": 0}


class TestPersistence:
    """Write-through to the per-workspace SQLite store."""

    def test_entries_survive_a_new_cache(self, temp_dir: Path, user_rs: str):
        """A fresh cache on the same workspace reads what the first one wrote."""
        document = Document(temp_dir / "src" / "user.rs", user_rs)
        span = document.span(document.lines_range(0, document.line_count - 1))
        first = RustCodeAnalyzer(cache=AnalysisCache(store=CacheStore(temp_dir))).analyze(document, span)

        second_cache = AnalysisCache(store=CacheStore(temp_dir))
        loaded = second_cache.get(cache_key(document.path, span.text))

        assert loaded is not None
        assert loaded.to_dict() == first.to_dict()
        assert second_cache.stats().hits == 1

    def test_store_eviction(self, store: CacheStore):
        """The store keeps at most max_entries rows."""
        for index in range(6):
            store.put(f"k{index}", "/tmp/x.rs", "{}")

        assert store.count() == 4
        assert store.get("k0") is None
        assert store.get("k5") == "{}"

    def test_corrupt_entry_is_discarded(self, store: CacheStore):
        """Unreadable payloads count as a miss and are deleted."""
        store.put("bad", "/tmp/x.rs", "not json")
        cache = AnalysisCache(store=store)

        assert cache.get("bad") is None
        assert store.get("bad") is None
        assert cache.stats().misses == 1

    def test_lifetime_counters(self, temp_dir: Path):
        """Hit and miss totals accumulate across cache instances."""
        first = AnalysisCache(store=CacheStore(temp_dir))
        first.put("a", _result("a"))
        first.get("a")
        first.get("missing")

        second = AnalysisCache(store=CacheStore(temp_dir))
        second.get("a")

        totals = second.lifetime_stats()
        assert (totals.hits, totals.misses, totals.entry_count) == (2, 1, 1)
        assert second.stats().hits == 1

        second.clear()
        assert second.lifetime_stats().to_dict()["hits"] == 0


class TestAnalyzerCaching:
    """Re-analysing an unchanged span."""

    def test_second_analysis_is_a_cache_hit(self, temp_dir: Path, user_rs: str):
        """The second call returns the cached result and adds exactly one hit."""
        cache = AnalysisCache()
        analyzer = RustCodeAnalyzer(cache=cache)
        document = Document(temp_dir / "user.rs", user_rs)
        start = user_rs.index("pub fn index_users")
        end = user_rs.index("}", start) + 1
        span = document.span(document.lines_range(
            document.position_at(start).line, document.position_at(end).line,
        ))

        first = analyzer.analyze(document, span)
        hits_before = cache.stats().hits
        second = analyzer.analyze(document, span)

        assert second is first
        assert analyzer.last_from_cache is True
        assert cache.stats().hits == hits_before + 1
        assert [f.name for f in second.functions] == ["index_users"]

    def test_edited_span_misses(self, temp_dir: Path, user_rs: str):
        """Changing the span text produces a new key."""
        cache = AnalysisCache()
        analyzer = RustCodeAnalyzer(cache=cache)
        document = Document(temp_dir / "user.rs", user_rs)
        analyzer.analyze(document, document.span(document.lines_range(0, 3)))
        analyzer.analyze(document, document.span(document.lines_range(0, 4)))

        assert cache.stats().hits == 0
        assert cache.stats().misses == 2
