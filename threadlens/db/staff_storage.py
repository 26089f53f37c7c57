"""Storage for staff response facts and per-staff aggregates.

Both tables are fully derived from content_items and can be rebuilt at any
time without touching content or labels.
"""

import logging
from typing import List, Sequence

from psycopg2.extras import RealDictCursor, execute_values

from .connection import Database
from .models import StaffResponse, StaffStats

logger = logging.getLogger(__name__)

RESPONSE_COLUMNS = """
    post_id, reply_id, staff_username, response_time_seconds,
    post_created_utc, reply_created_utc, is_first_response
"""

STATS_COLUMNS = """
    username, total_responses, avg_response_time_seconds,
    fastest_response_seconds, slowest_response_seconds,
    first_responses, last_updated
"""


class StaffStore:
    """Access to staff_responses and staff_stats."""

    def __init__(self, db: Database):
        self.db = db

    def replace_for_post(self, post_id: str, responses: Sequence[StaffResponse]) -> int:
        """Make the stored responses for post_id match `responses` exactly.

        Runs in one transaction: rows for replies no longer in the set are
        deleted, first-response flags are cleared, then every response is
        upserted by (post_id, reply_id). Clearing first keeps the one-first-
        response-per-post index satisfied while the flag moves between rows.
        """
        keep_ids = [r.reply_id for r in responses]
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM staff_responses WHERE post_id = %s AND NOT (reply_id = ANY(%s))",
                    (post_id, keep_ids),
                )
                if cur.rowcount:
                    logger.info(f"Removed {cur.rowcount} stale staff responses for post {post_id}")
                cur.execute(
                    "UPDATE staff_responses SET is_first_response = FALSE WHERE post_id = %s",
                    (post_id,),
                )
                if not responses:
                    return 0
                execute_values(
                    cur,
                    f"""
                    INSERT INTO staff_responses ({RESPONSE_COLUMNS}) VALUES %s
                    ON CONFLICT (post_id, reply_id) DO UPDATE SET
                        staff_username = EXCLUDED.staff_username,
                        response_time_seconds = EXCLUDED.response_time_seconds,
                        post_created_utc = EXCLUDED.post_created_utc,
                        reply_created_utc = EXCLUDED.reply_created_utc,
                        is_first_response = EXCLUDED.is_first_response
                    """,
                    [
                        (
                            r.post_id, r.reply_id, r.staff_username, r.response_time_seconds,
                            r.post_created_utc, r.reply_created_utc, r.is_first_response,
                        )
                        for r in responses
                    ],
                )
                return len(responses)

    def responses_for_post(self, post_id: str) -> List[StaffResponse]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {RESPONSE_COLUMNS} FROM staff_responses
                    WHERE post_id = %s ORDER BY reply_created_utc ASC
                    """,
                    (post_id,),
                )
                return [StaffResponse(**row) for row in cur.fetchall()]

    def list_responses(self) -> List[StaffResponse]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {RESPONSE_COLUMNS} FROM staff_responses ORDER BY post_id, reply_created_utc"
                )
                return [StaffResponse(**row) for row in cur.fetchall()]

    def post_ids(self) -> List[str]:
        """Posts that currently have at least one stored staff response."""
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT DISTINCT post_id FROM staff_responses")
                return [row[0] for row in cur.fetchall()]

    def replace_stats(self, stats: Sequence[StaffStats]) -> int:
        """Upsert every stats row and drop rows for usernames not in `stats`."""
        usernames = [s.username for s in stats]
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM staff_stats WHERE NOT (username = ANY(%s))",
                    (usernames,),
                )
                if not stats:
                    return 0
                execute_values(
                    cur,
                    f"""
                    INSERT INTO staff_stats ({STATS_COLUMNS}) VALUES %s
                    ON CONFLICT (username) DO UPDATE SET
                        total_responses = EXCLUDED.total_responses,
                        avg_response_time_seconds = EXCLUDED.avg_response_time_seconds,
                        fastest_response_seconds = EXCLUDED.fastest_response_seconds,
                        slowest_response_seconds = EXCLUDED.slowest_response_seconds,
                        first_responses = EXCLUDED.first_responses,
                        last_updated = EXCLUDED.last_updated
                    """,
                    [
                        (
                            s.username, s.total_responses, s.avg_response_time_seconds,
                            s.fastest_response_seconds, s.slowest_response_seconds,
                            s.first_responses, s.last_updated,
                        )
                        for s in stats
                    ],
                )
                return len(stats)

    def list_stats(self) -> List[StaffStats]:
        """Stats rows, most active staff first."""
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {STATS_COLUMNS} FROM staff_stats ORDER BY total_responses DESC, username"
                )
                return [StaffStats(**row) for row in cur.fetchall()]
