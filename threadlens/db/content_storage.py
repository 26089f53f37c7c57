"""Storage for ingested posts and replies."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set

from psycopg2.extras import RealDictCursor

from .connection import Database
from .models import ContentItem, ItemKind, utc_now

logger = logging.getLogger(__name__)

ITEM_COLUMNS = """
    kind, id, parent_id, created_utc, author, title, body, link_flair_text,
    permalink, score, upvote_ratio, approx_upvotes, approx_downvotes,
    num_comments, is_staff, analyzed, analyzed_at
"""

# Label columns that must be non-null for an item to count as fully analyzed
REQUIRED_LABEL_COLUMNS = ("intent", "target", "sentiment", "category", "summary")


class ContentStore:
    """Upsert-by-identity access to the content_items table."""

    def __init__(self, db: Database):
        self.db = db

    def upsert_item(self, item: ContentItem) -> None:
        """Insert an item, or refresh its volatile counters if it already exists.

        created_utc, text fields and analysis state are never rewritten here.
        """
        sql = f"""
        INSERT INTO content_items ({ITEM_COLUMNS})
        VALUES (
            %s, %s, %s, %s, %s, %s, %s, %s,
            %s, %s, %s, %s, %s,
            %s, %s, %s, %s
        )
        ON CONFLICT (kind, id) DO UPDATE SET
            score = EXCLUDED.score,
            upvote_ratio = EXCLUDED.upvote_ratio,
            approx_upvotes = EXCLUDED.approx_upvotes,
            approx_downvotes = EXCLUDED.approx_downvotes,
            num_comments = EXCLUDED.num_comments,
            is_staff = EXCLUDED.is_staff
        """
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    item.kind, item.id, item.parent_id, item.created_utc,
                    item.author, item.title, item.body, item.link_flair_text,
                    item.permalink, item.score, item.upvote_ratio,
                    item.approx_upvotes, item.approx_downvotes,
                    item.num_comments, item.is_staff, item.analyzed, item.analyzed_at,
                ))

    def item_exists(self, kind: ItemKind, item_id: str) -> bool:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT 1 FROM content_items WHERE kind = %s AND id = %s",
                    (kind, item_id),
                )
                return cur.fetchone() is not None

    def existing_ids(self, kind: ItemKind, item_ids: Iterable[str]) -> Set[str]:
        """Return the subset of item_ids already stored for this kind."""
        ids = list(item_ids)
        if not ids:
            return set()
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM content_items WHERE kind = %s AND id = ANY(%s)",
                    (kind, ids),
                )
                return {row[0] for row in cur.fetchall()}

    def get_item(self, kind: ItemKind, item_id: str) -> Optional[ContentItem]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {ITEM_COLUMNS} FROM content_items WHERE kind = %s AND id = %s",
                    (kind, item_id),
                )
                row = cur.fetchone()
                return ContentItem(**row) if row else None

    def select_unanalyzed(self, kind: ItemKind, limit: int) -> List[ContentItem]:
        """Items still needing a label, newest first.

        An item qualifies when it was never marked analyzed, or when its label
        exists but is missing one of the required columns.
        """
        null_checks = " OR ".join(f"l.{col} IS NULL" for col in REQUIRED_LABEL_COLUMNS)
        sql = f"""
        SELECT {", ".join("c." + col.strip() for col in ITEM_COLUMNS.split(","))}
        FROM content_items c
        LEFT JOIN labels l ON l.item_kind = c.kind AND l.item_id = c.id
        WHERE c.kind = %s
          AND (c.analyzed = FALSE OR (l.item_id IS NOT NULL AND ({null_checks})))
        ORDER BY c.created_utc DESC
        LIMIT %s
        """
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (kind, limit))
                return [ContentItem(**row) for row in cur.fetchall()]

    def get_replies(self, post_id: str) -> List[ContentItem]:
        """All stored replies to a post, oldest first."""
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {ITEM_COLUMNS} FROM content_items
                    WHERE kind = 'reply' AND parent_id = %s
                    ORDER BY created_utc ASC, id ASC
                    """,
                    (post_id,),
                )
                return [ContentItem(**row) for row in cur.fetchall()]

    def mark_analyzed(self, kind: ItemKind, item_id: str, analyzed_at: Optional[datetime] = None) -> None:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE content_items SET analyzed = TRUE, analyzed_at = %s
                    WHERE kind = %s AND id = %s
                    """,
                    (analyzed_at or utc_now(), kind, item_id),
                )

    def is_analyzed(self, kind: ItemKind, item_id: str) -> bool:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT analyzed FROM content_items WHERE kind = %s AND id = %s",
                    (kind, item_id),
                )
                row = cur.fetchone()
                return bool(row and row[0])

    def sync_staff_flags(self, usernames: Iterable[str]) -> int:
        """Set is_staff from the roster for every stored item. Returns rows changed."""
        lowered = sorted({u.lower() for u in usernames})
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE content_items
                    SET is_staff = (LOWER(author) = ANY(%s))
                    WHERE is_staff IS DISTINCT FROM (LOWER(author) = ANY(%s))
                    """,
                    (lowered, lowered),
                )
                return cur.rowcount

    def list_posts_since(self, since_utc: int) -> List[ContentItem]:
        """Posts created at or after since_utc, newest first."""
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {ITEM_COLUMNS} FROM content_items
                    WHERE kind = 'post' AND created_utc >= %s
                    ORDER BY created_utc DESC
                    """,
                    (since_utc,),
                )
                return [ContentItem(**row) for row in cur.fetchall()]

    def post_ids_with_staff_replies(self, since_utc: Optional[int] = None) -> List[str]:
        """Ids of posts that have at least one staff-authored reply stored."""
        sql = """
        SELECT DISTINCT p.id, p.created_utc
        FROM content_items p
        JOIN content_items r ON r.kind = 'reply' AND r.parent_id = p.id
        WHERE p.kind = 'post' AND r.is_staff = TRUE
        """
        params: tuple = ()
        if since_utc is not None:
            sql += " AND p.created_utc >= %s"
            params = (since_utc,)
        sql += " ORDER BY p.created_utc ASC"
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return [row[0] for row in cur.fetchall()]

    def posts_missing_replies(
        self,
        since_utc: Optional[int] = None,
        until_utc: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ContentItem]:
        """Posts reporting comments upstream but with no reply stored, newest first.

        Picks up posts whose reply fetch failed after the post itself was
        stored, along with posts whose replies were all removed. Bounds are half-open: since_utc <= created_utc < until_utc.
        """
        sql = f"""
        SELECT {", ".join("p." + col.strip() for col in ITEM_COLUMNS.split(","))}
        FROM content_items p
        WHERE p.kind = 'post' AND p.num_comments > 0
          AND NOT EXISTS (
              SELECT 1 FROM content_items r
              WHERE r.kind = 'reply' AND r.parent_id = p.id
          )
        """
        params: list = []
        if since_utc is not None:
            sql += " AND p.created_utc >= %s"
            params.append(since_utc)
        if until_utc is not None:
            sql += " AND p.created_utc < %s"
            params.append(until_utc)
        sql += " ORDER BY p.created_utc DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, tuple(params))
                return [ContentItem(**row) for row in cur.fetchall()]
