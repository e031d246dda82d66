"""Tests for the filter compiler, search and sorting."""

import pytest

from protean import ProteanDB
from protean.exceptions import UnknownFieldError, ValidationError


@pytest.fixture
def tagged(memory_db: ProteanDB, blog):
    """Posts X -> {A}, Y -> {A, B}, Z -> {B} and W with no tags."""
    a = memory_db.create_instance(blog.tag.id, {"label": "A"})
    b = memory_db.create_instance(blog.tag.id, {"label": "B"})
    ann = memory_db.create_instance(blog.author.id, {"name": "Ann"})
    posts = {
        "X": memory_db.create_instance(
            blog.post.id,
            {"title": "X", "views": 10, "published": True, "tags": [a.id], "author": ann.id},
        ),
        "Y": memory_db.create_instance(
            blog.post.id,
            {"title": "Y", "views": 20, "published": False, "tags": [a.id, b.id]},
        ),
        "Z": memory_db.create_instance(
            blog.post.id, {"title": "Z", "views": 30, "body": "zebra", "tags": [b.id]}
        ),
        "W": memory_db.create_instance(blog.post.id, {"title": "W"}),
    }
    return {"A": a.id, "B": b.id, "ann": ann.id, **{k: v.id for k, v in posts.items()}}


def _titles(db: ProteanDB, definition_id: str, **kwargs) -> set[str]:
    page = db.get_instances(definition_id, limit=100, **kwargs)
    return {r.data["title"] for r in page.data}


class TestManyToManyFilter:
    """Tests for set-membership filters."""

    def test_or_mode(self, memory_db: ProteanDB, blog, tagged):
        """OR matches posts with any of the tags."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "many_to_many", "field": "tags", "values": [tagged["A"], tagged["B"]]}],
        )
        assert result == {"X", "Y", "Z"}

    def test_and_mode(self, memory_db: ProteanDB, blog, tagged):
        """AND matches posts with all of the tags."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[
                {
                    "type": "many_to_many",
                    "field": "tags",
                    "values": [tagged["A"], tagged["B"]],
                    "mode": "and",
                }
            ],
        )
        assert result == {"Y"}

    def test_single_value(self, memory_db: ProteanDB, blog, tagged):
        """One value matches posts with that tag in either mode."""
        for mode in ("or", "and"):
            result = _titles(
                memory_db,
                blog.post.id,
                filters=[
                    {"type": "many_to_many", "field": "tags", "values": [tagged["B"]], "mode": mode}
                ],
            )
            assert result == {"Y", "Z"}

    def test_csv_values(self, memory_db: ProteanDB, blog, tagged):
        """Comma-separated values work like a list."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[
                {
                    "type": "many-to-many",
                    "field": "tags",
                    "values": f"{tagged['A']},{tagged['B']}",
                    "mode": "and",
                }
            ],
        )
        assert result == {"Y"}

    def test_empty_values_no_constraint(self, memory_db: ProteanDB, blog, tagged):
        """An empty value list does not constrain the result."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "many_to_many", "field": "tags", "values": []}],
        )
        assert result == {"X", "Y", "Z", "W"}

    def test_reverse_side(self, memory_db: ProteanDB, blog, tagged):
        """Tags can be filtered by the posts that carry them."""
        page = memory_db.get_instances(
            blog.tag.id,
            filters=[{"type": "many_to_many", "field": "posts", "values": [tagged["X"]]}],
        )
        assert [r.id for r in page.data] == [tagged["A"]]

    def test_intersects_with_simple(self, memory_db: ProteanDB, blog, tagged):
        """Relation and scalar filters are ANDed."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[
                {"type": "many_to_many", "field": "tags", "values": [tagged["A"]]},
                {"type": "simple", "field": "views", "operator": "gt", "value": 15},
            ],
        )
        assert result == {"Y"}

    def test_scalar_field_rejected(self, memory_db: ProteanDB, blog, tagged):
        """Relation filters need relation fields."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(
                blog.post.id,
                filters=[{"type": "many_to_many", "field": "title", "values": ["x"]}],
            )


class TestRelationFilter:
    """Tests for single-link relation filters."""

    def test_exact_target(self, memory_db: ProteanDB, blog, tagged):
        """Matches posts whose author is the given instance."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "relation", "field": "author", "value": tagged["ann"]}],
        )
        assert result == {"X"}

    def test_multi_link_field_rejected(self, memory_db: ProteanDB, blog, tagged):
        """'relation' filters only apply to single-link fields."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(
                blog.post.id,
                filters=[{"type": "relation", "field": "tags", "value": tagged["A"]}],
            )

    def test_whitelist(self, memory_db: ProteanDB, blog, tagged):
        """Only whitelisted related definitions can be filtered on."""
        memory_db.update_entity_definition(
            blog.post.id, {"filter_entity_definition_ids": [blog.author.id]}
        )
        assert _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "relation", "field": "author", "value": tagged["ann"]}],
        ) == {"X"}
        with pytest.raises(ValidationError):
            memory_db.get_instances(
                blog.post.id,
                filters=[{"type": "many_to_many", "field": "tags", "values": [tagged["A"]]}],
            )


class TestSimpleFilter:
    """Tests for scalar filters."""

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            ("eq", 20, {"Y"}),
            ("gt", 10, {"Y", "Z"}),
            ("gte", 20, {"Y", "Z"}),
            ("lt", 20, {"X", "W"}),
            ("lte", 10, {"X", "W"}),
            ("in", [10, 30], {"X", "Z"}),
        ],
    )
    def test_number_operators(self, memory_db: ProteanDB, blog, tagged, operator, value, expected):
        """Number comparisons read the stored value (W defaults to 0)."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "simple", "field": "views", "operator": operator, "value": value}],
        )
        assert result == expected

    def test_neq_includes_missing(self, memory_db: ProteanDB, blog, tagged):
        """Instances without the value count as not equal."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "simple", "field": "published", "operator": "neq", "value": True}],
        )
        assert result == {"Y", "Z", "W"}

    def test_boolean_eq(self, memory_db: ProteanDB, blog, tagged):
        """Boolean values are coerced before comparison."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "simple", "field": "published", "operator": "eq", "value": "true"}],
        )
        assert result == {"X"}

    def test_ilike(self, memory_db: ProteanDB, blog, tagged):
        """ilike is a case-insensitive substring match."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "simple", "field": "body", "operator": "ilike", "value": "ZEB"}],
        )
        assert result == {"Z"}

    def test_system_column(self, memory_db: ProteanDB, blog, tagged):
        """System columns can be filtered."""
        result = _titles(
            memory_db,
            blog.post.id,
            filters=[{"type": "simple", "field": "id", "operator": "eq", "value": tagged["Z"]}],
        )
        assert result == {"Z"}

    def test_unknown_field(self, memory_db: ProteanDB, blog, tagged):
        """Unknown fields are rejected with the available names."""
        with pytest.raises(UnknownFieldError):
            memory_db.get_instances(
                blog.post.id, filters=[{"type": "simple", "field": "nope", "value": 1}]
            )

    def test_relation_field_in_simple_filter(self, memory_db: ProteanDB, blog, tagged):
        """Relation fields need relation filters."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(
                blog.post.id, filters=[{"type": "simple", "field": "tags", "value": tagged["A"]}]
            )

    def test_value_must_fit_kind(self, memory_db: ProteanDB, blog, tagged):
        """Filter values are coerced to the field kind."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(
                blog.post.id,
                filters=[{"type": "simple", "field": "views", "operator": "gt", "value": "lots"}],
            )

    def test_datetime_offsets_compare_in_time_order(self, memory_db: ProteanDB, blog):
        """Datetimes written with different offsets compare by instant."""
        memory_db.create_field(blog.post.id, {"name": "at", "kind": "datetime"})
        memory_db.create_instance(
            blog.post.id, {"title": "Early", "at": "2024-01-01T10:00:00+05:00"}
        )
        memory_db.create_instance(
            blog.post.id, {"title": "Late", "at": "2024-01-01T08:00:00+00:00"}
        )

        result = _titles(
            memory_db,
            blog.post.id,
            filters=[
                {
                    "type": "simple",
                    "field": "at",
                    "operator": "gt",
                    "value": "2024-01-01T06:00:00+00:00",
                }
            ],
        )
        assert result == {"Late"}

        page = memory_db.get_instances(blog.post.id, sort_by="at", sort_order="asc")
        assert [r.data["title"] for r in page.data] == ["Early", "Late"]


class TestSearchAndSort:
    """Tests for search and ordering."""

    def test_search_searchable_fields(self, memory_db: ProteanDB, blog, tagged):
        """Search matches any searchable field, case-insensitively."""
        assert _titles(memory_db, blog.post.id, search="zeb") == {"Z"}
        assert _titles(memory_db, blog.post.id, search="y") == {"Y"}

    def test_search_falls_back_to_title(self, memory_db: ProteanDB, blog, tagged):
        """Definitions without searchable fields search their title field."""
        page = memory_db.get_instances(blog.tag.id, search="a")
        assert [r.id for r in page.data] == [tagged["A"]]

    def test_sort_by_field(self, memory_db: ProteanDB, blog, tagged):
        """Sorting by a number field orders by value."""
        page = memory_db.get_instances(blog.post.id, sort_by="views", sort_order="asc")
        assert [r.data["title"] for r in page.data] == ["W", "X", "Y", "Z"]
        page = memory_db.get_instances(blog.post.id, sort_by="views")
        assert [r.data["title"] for r in page.data] == ["Z", "Y", "X", "W"]

    def test_sort_by_relation_rejected(self, memory_db: ProteanDB, blog, tagged):
        """Relation fields cannot be sorted on."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(blog.post.id, sort_by="tags")

    def test_bad_sort_order(self, memory_db: ProteanDB, blog, tagged):
        """Sort order is asc or desc."""
        with pytest.raises(ValidationError):
            memory_db.get_instances(blog.post.id, sort_order="sideways")
