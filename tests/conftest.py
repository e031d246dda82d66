"""Shared test fixtures for Protean."""

import os
from collections.abc import Generator
from dataclasses import dataclass

import pytest

from protean import ProteanDB
from protean.core.types import EntityDefinitionInfo, FieldInfo


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        from protean.core.connection import DatabaseConnection

        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Tests using this fixture should also carry the requires_postgresql marker.
    """
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        # Default to local PostgreSQL
        url = "postgresql://localhost/protean_test"

    if not _psycopg_available():
        pytest.skip("psycopg not installed")

    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")

    return url


@pytest.fixture
def memory_db() -> Generator[ProteanDB, None, None]:
    """Create a ProteanDB instance with SQLite in-memory."""
    database = ProteanDB("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def pg_db(postgresql_url: str) -> Generator[ProteanDB, None, None]:
    """Create a ProteanDB instance with PostgreSQL.

    The postgresql_url fixture handles skipping when PostgreSQL isn't available.
    """
    database = ProteanDB(postgresql_url)
    yield database
    # Cleanup - drop all pt_ tables
    from sqlalchemy import text

    with database.connection.engine.connect() as conn:
        result = conn.execute(text("SELECT tablename FROM pg_tables WHERE tablename LIKE 'pt_%'"))
        for row in result:
            conn.execute(text(f'DROP TABLE IF EXISTS "{row[0]}" CASCADE'))
        conn.commit()
    database.close()


@dataclass
class Blog:
    """Post/Tag/Author definitions wired with relation pairs."""

    post: EntityDefinitionInfo
    tag: EntityDefinitionInfo
    author: EntityDefinitionInfo
    post_tags: FieldInfo
    tag_posts: FieldInfo
    post_author: FieldInfo
    author_posts: FieldInfo


def make_blog(db: ProteanDB, project_id: str = "blog") -> Blog:
    """Create Post, Tag and Author with Post.tags <-> Tag.posts and Post.author <-> Author.posts."""
    tag = db.create_entity_definition(
        {
            "project_id": project_id,
            "name": "Tag",
            "table_name": "tags",
            "fields": [{"name": "label", "kind": "string", "is_title_field": True}],
        }
    )
    author = db.create_entity_definition(
        {
            "project_id": project_id,
            "name": "Author",
            "table_name": "authors",
            "fields": [
                {"name": "name", "kind": "string", "required": True, "is_title_field": True}
            ],
        }
    )
    post = db.create_entity_definition(
        {
            "project_id": project_id,
            "name": "Post",
            "table_name": "posts",
            "enable_filters": True,
            "fields": [
                {
                    "name": "title",
                    "kind": "string",
                    "required": True,
                    "searchable": True,
                    "is_title_field": True,
                },
                {"name": "body", "kind": "text", "searchable": True, "display_index": 1},
                {"name": "views", "kind": "number", "default": 0, "display_index": 2},
                {"name": "published", "kind": "boolean", "display_index": 3},
            ],
        }
    )
    post_tags = db.create_field(
        post.id,
        {
            "name": "tags",
            "kind": "many_to_many",
            "related_entity_definition_id": tag.id,
            "relation_field_name": "posts",
            "display_index": 4,
        },
    )
    post_author = db.create_field(
        post.id,
        {
            "name": "author",
            "kind": "many_to_one",
            "related_entity_definition_id": author.id,
            "relation_field_name": "posts",
            "display_index": 5,
        },
    )
    return Blog(
        post=db.get_entity_definition_with_fields(post.id),
        tag=db.get_entity_definition_with_fields(tag.id),
        author=db.get_entity_definition_with_fields(author.id),
        post_tags=post_tags,
        tag_posts=db.get_field(post_tags.relation_field_id),
        post_author=post_author,
        author_posts=db.get_field(post_author.relation_field_id),
    )


@pytest.fixture
def blog(memory_db: ProteanDB) -> Blog:
    """Blog definitions on the in-memory store."""
    return make_blog(memory_db)


@pytest.fixture
def blog_factory():
    """The blog builder, for tests that need a second project or store."""
    return make_blog
