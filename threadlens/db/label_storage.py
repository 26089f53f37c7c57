"""Storage for classification labels (one row per content item)."""

import logging
from typing import List, Optional, Sequence

from psycopg2.extras import Json, RealDictCursor

from .connection import Database
from .content_storage import ITEM_COLUMNS
from .models import DEFAULT_MODEL_NAME, ContentItem, ItemKind, Label

logger = logging.getLogger(__name__)

LABEL_COLUMNS = """
    item_kind, item_id, intent, target, sentiment, category, summary,
    key_issues, model_name, tokens_in, tokens_out, cost_usd, created_at
"""

# Columns a correction pass may test for NULL
NULLABLE_LABEL_COLUMNS = {"intent", "target", "sentiment", "category", "summary"}


def _qualified_item_columns(alias: str) -> str:
    return ", ".join(f"{alias}.{col.strip()}" for col in ITEM_COLUMNS.split(","))


class LabelStore:
    """Upsert-by-item access to the labels table."""

    def __init__(self, db: Database):
        self.db = db

    def upsert_label(self, label: Label) -> None:
        """Insert or overwrite the label for label.item_kind/label.item_id."""
        sql = f"""
        INSERT INTO labels ({LABEL_COLUMNS})
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (item_kind, item_id) DO UPDATE SET
            intent = EXCLUDED.intent,
            target = EXCLUDED.target,
            sentiment = EXCLUDED.sentiment,
            category = EXCLUDED.category,
            summary = EXCLUDED.summary,
            key_issues = EXCLUDED.key_issues,
            model_name = EXCLUDED.model_name,
            tokens_in = EXCLUDED.tokens_in,
            tokens_out = EXCLUDED.tokens_out,
            cost_usd = EXCLUDED.cost_usd,
            created_at = EXCLUDED.created_at
        """
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    label.item_kind, label.item_id,
                    label.intent, label.target, label.sentiment, label.category,
                    label.summary, Json(label.key_issues), label.model_name,
                    label.tokens_in, label.tokens_out, label.cost_usd, label.created_at,
                ))

    def get_label(self, kind: ItemKind, item_id: str) -> Optional[dict]:
        """Raw label row, or None. Returned as a dict since legacy rows may hold NULLs."""
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {LABEL_COLUMNS} FROM labels WHERE item_kind = %s AND item_id = %s",
                    (kind, item_id),
                )
                row = cur.fetchone()
                return dict(row) if row else None

    def select_items_with_null_fields(
        self, kind: ItemKind, fields: Sequence[str], limit: int
    ) -> List[ContentItem]:
        """Items whose label has a NULL in any of the given columns, newest first."""
        unknown = set(fields) - NULLABLE_LABEL_COLUMNS
        if unknown or not fields:
            raise ValueError(f"Invalid label fields: {sorted(unknown) or 'none given'}")

        null_checks = " OR ".join(f"l.{f} IS NULL" for f in fields)
        sql = f"""
        SELECT {_qualified_item_columns("c")}
        FROM content_items c
        JOIN labels l ON l.item_kind = c.kind AND l.item_id = c.id
        WHERE c.kind = %s AND ({null_checks})
        ORDER BY c.created_utc DESC
        LIMIT %s
        """
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (kind, limit))
                return [ContentItem(**row) for row in cur.fetchall()]

    def select_default_labeled(self, kind: ItemKind, limit: int) -> List[ContentItem]:
        """Items whose stored label is the fallback written after a failed model call."""
        sql = f"""
        SELECT {_qualified_item_columns("c")}
        FROM content_items c
        JOIN labels l ON l.item_kind = c.kind AND l.item_id = c.id
        WHERE c.kind = %s AND l.model_name = %s
        ORDER BY c.created_utc DESC
        LIMIT %s
        """
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (kind, DEFAULT_MODEL_NAME, limit))
                return [ContentItem(**row) for row in cur.fetchall()]

    def label_counts_by_model(self) -> dict:
        """Map of model_name -> number of labels, for the end-of-run summary."""
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT model_name, COUNT(*) FROM labels GROUP BY model_name")
                return {name: count for name, count in cur.fetchall()}
