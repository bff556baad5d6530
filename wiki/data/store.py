from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from wiki.data.config import build_postgres_dsn, load_database_config
from wiki.data.models import WikiPage, WikiTag, WikiTitle, WikiUser

logger = logging.getLogger(__name__)


class WikiData(Protocol):
    """Everything the wiki reads and writes."""

    # Users
    def get_user_by_user_name(self, user_name: str) -> Optional[WikiUser]: ...

    def get_user_by_identifier(self, identifier: str) -> Optional[WikiUser]: ...

    def add_user(self, user: WikiUser) -> WikiUser: ...

    # Pages
    def get_all_page_titles(self) -> List[WikiTitle]: ...

    def get_page(self, page_id: int) -> Optional[WikiPage]: ...

    def add_page(self, page: WikiPage) -> WikiPage: ...

    def update_page(self, page: WikiPage) -> None: ...

    def delete_page(self, page_id: int) -> None: ...

    # Tags
    def get_all_tags(self) -> List[WikiTag]: ...

    def add_tag(self, name: str) -> WikiTag: ...

    def get_page_tags(self, page_id: int) -> List[WikiTag]: ...

    def add_page_tag(self, page_id: int, name: str) -> None: ...

    def delete_page_tags(self, page_id: int) -> None: ...

    def close(self) -> None: ...


_USER_COLUMNS = "id, user_name, first_name, last_name, identifier, password_hash"
_PAGE_COLUMNS = "id, alias, title, body, author_id, created_on, modified_on, published"


def _row_to_user(row) -> WikiUser:
    user_id, user_name, first_name, last_name, identifier, password_hash = row
    return WikiUser(
        id=int(user_id),
        user_name=str(user_name),
        first_name=first_name,
        last_name=last_name,
        identifier=identifier,
        password_hash=password_hash,
    )


def _row_to_page(row) -> WikiPage:
    page_id, alias, title, body, author_id, created_on, modified_on, published = row
    return WikiPage(
        id=int(page_id),
        alias=str(alias),
        title=str(title),
        body=str(body or ""),
        author_id=author_id,
        created_on=created_on,
        modified_on=modified_on,
        published=bool(published),
    )


class PostgresWikiData:
    """`WikiData` over one psycopg connection (one per request)."""

    def __init__(self, conn) -> None:
        self._conn = conn

    def get_user_by_user_name(self, user_name: str) -> Optional[WikiUser]:
        row = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM wiki_users WHERE user_name = %s",
            (user_name,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_identifier(self, identifier: str) -> Optional[WikiUser]:
        row = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM wiki_users WHERE identifier = %s",
            (identifier,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def add_user(self, user: WikiUser) -> WikiUser:
        """
        Create a wiki account.

        Raises:
            psycopg.IntegrityError: If the user name or identifier already exists
        """
        with self._conn.transaction():
            row = self._conn.execute(
                f"""
                INSERT INTO wiki_users (user_name, first_name, last_name, identifier, password_hash)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_USER_COLUMNS}
                """,
                (user.user_name, user.first_name, user.last_name, user.identifier, user.password_hash),
            ).fetchone()
        if not row:
            raise ValueError("Failed to create user")
        return _row_to_user(row)

    def get_all_page_titles(self) -> List[WikiTitle]:
        rows = self._conn.execute("SELECT id, alias, title FROM wiki_pages ORDER BY id").fetchall()
        return [WikiTitle(id=int(r[0]), alias=str(r[1]), title=str(r[2])) for r in rows]

    def get_page(self, page_id: int) -> Optional[WikiPage]:
        row = self._conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM wiki_pages WHERE id = %s",
            (page_id,),
        ).fetchone()
        return _row_to_page(row) if row else None

    def add_page(self, page: WikiPage) -> WikiPage:
        with self._conn.transaction():
            row = self._conn.execute(
                f"""
                INSERT INTO wiki_pages (alias, title, body, author_id, published)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_PAGE_COLUMNS}
                """,
                (page.alias, page.title, page.body, page.author_id, page.published),
            ).fetchone()
        if not row:
            raise ValueError("Failed to create page")
        return _row_to_page(row)

    def update_page(self, page: WikiPage) -> None:
        with self._conn.transaction():
            self._conn.execute(
                """
                UPDATE wiki_pages
                SET alias = %s, title = %s, body = %s, author_id = %s, published = %s, modified_on = now()
                WHERE id = %s
                """,
                (page.alias, page.title, page.body, page.author_id, page.published, page.id),
            )

    def delete_page(self, page_id: int) -> None:
        with self._conn.transaction():
            self._conn.execute("DELETE FROM wiki_pages WHERE id = %s", (page_id,))

    def get_all_tags(self) -> List[WikiTag]:
        rows = self._conn.execute("SELECT id, name, created_on FROM wiki_tags ORDER BY name").fetchall()
        return [WikiTag(id=int(r[0]), name=str(r[1]), created_on=r[2]) for r in rows]

    def add_tag(self, name: str) -> WikiTag:
        with self._conn.transaction():
            row = self._conn.execute(
                """
                INSERT INTO wiki_tags (name) VALUES (%s)
                ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
                RETURNING id, name, created_on
                """,
                (name,),
            ).fetchone()
        return WikiTag(id=int(row[0]), name=str(row[1]), created_on=row[2])

    def get_page_tags(self, page_id: int) -> List[WikiTag]:
        rows = self._conn.execute(
            """
            SELECT t.id, t.name, t.created_on
            FROM wiki_tags t
            JOIN wiki_page_tags pt ON pt.tag_id = t.id
            WHERE pt.page_id = %s
            ORDER BY t.name
            """,
            (page_id,),
        ).fetchall()
        return [WikiTag(id=int(r[0]), name=str(r[1]), created_on=r[2]) for r in rows]

    def add_page_tag(self, page_id: int, name: str) -> None:
        with self._conn.transaction():
            self._conn.execute(
                """
                INSERT INTO wiki_page_tags (page_id, tag_id)
                SELECT %s, id FROM wiki_tags WHERE name = %s
                ON CONFLICT DO NOTHING
                """,
                (page_id, name),
            )

    def delete_page_tags(self, page_id: int) -> None:
        with self._conn.transaction():
            self._conn.execute("DELETE FROM wiki_page_tags WHERE page_id = %s", (page_id,))

    def close(self) -> None:
        self._conn.close()


def open_wiki_data() -> Optional[WikiData]:
    """Open a Postgres-backed data layer, or return None if Postgres is not configured/reachable."""
    dsn = build_postgres_dsn(load_database_config())
    if not dsn:
        return None
    try:
        import psycopg

        # Autocommit so each `transaction()` block commits on its own.
        return PostgresWikiData(psycopg.connect(dsn, autocommit=True))
    except Exception as e:
        logger.debug("Failed to connect to Postgres: %s", str(e))
        return None
