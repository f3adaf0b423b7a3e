"""Notifications repository - in-app notifications for users.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_notification(
    cur: PgCursor,
    *,
    user_id: str,
    kind: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> str:
    cur.execute(
        """
        INSERT INTO notifications (user_id, kind, title, message, data)
        VALUES (%s, %s, %s, %s, %s::jsonb)
        RETURNING id
        """,
        (user_id, kind, title, message, json.dumps(data or {})),
    )
    return str(cur.fetchone()[0])
