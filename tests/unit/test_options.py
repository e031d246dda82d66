"""Tests for title resolution, selector options and the title cache."""

import pytest

from protean import ProteanDB, Settings, TitleCache
from protean.core.types import TitleOption
from protean.exceptions import EntityDefinitionNotFoundError, ValidationError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTitleCache:
    """Tests for TitleCache in isolation."""

    def test_put_and_get(self):
        """Cached titles are returned for the requested ids only."""
        cache = TitleCache(ttl_seconds=10, clock=FakeClock())
        cache.put("d1", {"a": "A", "b": "B"})
        assert cache.get("d1", ["a", "c"]) == {"a": "A"}
        assert cache.get("d2", ["a"]) == {}

    def test_expiry(self):
        """Entries expire after the TTL."""
        clock = FakeClock()
        cache = TitleCache(ttl_seconds=10, clock=clock)
        cache.put("d1", {"a": "A"})
        clock.advance(9.9)
        assert cache.get("d1", ["a"]) == {"a": "A"}
        clock.advance(0.1)
        assert cache.get("d1", ["a"]) == {}
        assert len(cache) == 0

    def test_merge_keeps_original_expiry(self):
        """Adding titles to a live entry does not extend it."""
        clock = FakeClock()
        cache = TitleCache(ttl_seconds=10, clock=clock)
        cache.put("d1", {"a": "A"})
        clock.advance(5)
        cache.put("d1", {"b": "B"})
        assert cache.get("d1", ["a", "b"]) == {"a": "A", "b": "B"}
        clock.advance(5)
        assert cache.get("d1", ["b"]) == {}

    def test_zero_ttl_disables(self):
        """A TTL of zero caches nothing."""
        cache = TitleCache(ttl_seconds=0)
        cache.put("d1", {"a": "A"})
        assert len(cache) == 0

    def test_invalidate(self):
        """Entries can be dropped per definition or all at once."""
        cache = TitleCache(ttl_seconds=10, clock=FakeClock())
        cache.put("d1", {"a": "A"})
        cache.put("d2", {"b": "B"})
        cache.invalidate("d1")
        assert len(cache) == 1
        cache.invalidate()
        assert len(cache) == 0


class TestResolveTitles:
    """Tests for resolve_titles."""

    def test_input_order_and_duplicates(self, memory_db: ProteanDB, blog):
        """Titles come back in input order, de-duplicated."""
        a = memory_db.create_instance(blog.tag.id, {"label": "alpha"})
        b = memory_db.create_instance(blog.tag.id, {"label": "beta"})
        options = memory_db.resolve_titles(blog.tag.id, [b.id, a.id, b.id])
        assert options == [
            TitleOption(id=b.id, title="beta"),
            TitleOption(id=a.id, title="alpha"),
        ]

    def test_missing_ids_fall_back_to_id(self, memory_db: ProteanDB, blog):
        """Unknown ids resolve to themselves."""
        assert memory_db.resolve_titles(blog.tag.id, ["ghost"]) == [
            TitleOption(id="ghost", title="ghost")
        ]

    def test_empty_title_falls_back_to_id(self, memory_db: ProteanDB, blog):
        """Instances without a title value show their id."""
        tag = memory_db.create_instance(blog.tag.id, {})
        assert memory_db.resolve_titles(blog.tag.id, [tag.id])[0].title == tag.id

    def test_empty_input(self, memory_db: ProteanDB, blog):
        """No ids, no options."""
        assert memory_db.resolve_titles(blog.tag.id, []) == []

    def test_unknown_definition(self, memory_db: ProteanDB):
        """Resolving against a missing definition raises NotFound."""
        with pytest.raises(EntityDefinitionNotFoundError):
            memory_db.resolve_titles("missing", ["x"])

    def test_titles_stale_until_ttl(self, blog_factory):
        """Renamed instances show their cached title until the entry expires."""
        clock = FakeClock()
        cache = TitleCache(ttl_seconds=60, clock=clock)
        with ProteanDB("sqlite:///:memory:", title_cache=cache) as db:
            blog = blog_factory(db)
            tag = db.create_instance(blog.tag.id, {"label": "old"})
            assert db.resolve_titles(blog.tag.id, [tag.id])[0].title == "old"

            db.update_instance(tag.id, {"label": "new"})
            assert db.resolve_titles(blog.tag.id, [tag.id])[0].title == "old"

            clock.advance(60)
            assert db.resolve_titles(blog.tag.id, [tag.id])[0].title == "new"

    def test_schema_change_invalidates(self, blog_factory):
        """Changing the title field drops cached titles for the definition."""
        cache = TitleCache(ttl_seconds=60, clock=FakeClock())
        with ProteanDB("sqlite:///:memory:", title_cache=cache) as db:
            blog = blog_factory(db)
            ann = db.create_instance(blog.author.id, {"name": "Ann"})
            assert db.resolve_titles(blog.author.id, [ann.id])[0].title == "Ann"

            db.create_field(blog.author.id, {"name": "handle", "is_title_field": True})
            db.update_instance(ann.id, {"handle": "@ann"})
            assert db.resolve_titles(blog.author.id, [ann.id])[0].title == "@ann"

    def test_cache_disabled_by_settings(self, blog_factory):
        """A zero TTL setting always reads fresh titles."""
        settings = Settings(database_url="sqlite:///:memory:", title_cache_ttl_seconds=0)
        with ProteanDB(settings=settings) as db:
            blog = blog_factory(db)
            tag = db.create_instance(blog.tag.id, {"label": "old"})
            db.resolve_titles(blog.tag.id, [tag.id])
            db.update_instance(tag.id, {"label": "new"})
            assert db.resolve_titles(blog.tag.id, [tag.id])[0].title == "new"


class TestListOptions:
    """Tests for list_options."""

    def test_all_instances(self, memory_db: ProteanDB, blog):
        """Every instance of the definition is an option."""
        a = memory_db.create_instance(blog.tag.id, {"label": "alpha"})
        b = memory_db.create_instance(blog.tag.id, {"label": "beta"})
        options = memory_db.list_options(blog.tag.id)
        assert {(o.id, o.title) for o in options} == {(a.id, "alpha"), (b.id, "beta")}

    def test_limit(self, memory_db: ProteanDB, blog):
        """The limit caps the option count."""
        for label in ("a", "b", "c"):
            memory_db.create_instance(blog.tag.id, {"label": label})
        assert len(memory_db.list_options(blog.tag.id, limit=2)) == 2

    def test_bad_limit(self, memory_db: ProteanDB, blog):
        """Limits below one are rejected."""
        with pytest.raises(ValidationError):
            memory_db.list_options(blog.tag.id, limit=0)

    def test_project_scope(self, memory_db: ProteanDB, blog):
        """Options are scoped to the project."""
        memory_db.create_instance(blog.tag.id, {"label": "here"})
        memory_db.create_instance(blog.tag.id, {"label": "there"}, project_id="other")
        assert [o.title for o in memory_db.list_options(blog.tag.id)] == ["here"]
        assert [o.title for o in memory_db.list_options(blog.tag.id, project_id="other")] == [
            "there"
        ]
