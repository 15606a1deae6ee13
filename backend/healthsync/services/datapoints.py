from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Optional

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100


class DataPointStore:
    """Data point persistence for one provider, keyed by (user_id, date, variable_id)."""

    def __init__(self, conn: sqlite3.Connection, provider: str):
        self.conn = conn
        self.provider = provider

    def existing_dates(self, user_id: str) -> set[date]:
        rows = self.conn.execute(
            """SELECT DISTINCT date
               FROM data_points
               WHERE user_id=? AND provider=?
               ORDER BY date""",
            (user_id, self.provider),
        ).fetchall()
        return {date.fromisoformat(str(row["date"])[:10]) for row in rows}

    def upsert(self, rows: list[dict[str, Any]], *, batch_size: int = UPSERT_BATCH_SIZE) -> int:
        upserted = 0
        for offset in range(0, len(rows), batch_size):
            batch = rows[offset : offset + batch_size]
            self.conn.executemany(
                """INSERT INTO data_points
                   (id, user_id, provider, date, variable_id, value, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id, date, variable_id) DO UPDATE SET
                     value=excluded.value,
                     created_at=excluded.created_at,
                     provider=excluded.provider""",
                [
                    (
                        row["id"],
                        row["user_id"],
                        self.provider,
                        row["date"],
                        row["variable_id"],
                        row["value"],
                        row["created_at"],
                    )
                    for row in batch
                ],
            )
            self.conn.commit()
            upserted += len(batch)
        return upserted

    def delete_all(self, user_id: str) -> int:
        cur = self.conn.execute(
            "DELETE FROM data_points WHERE user_id=? AND provider=?",
            (user_id, self.provider),
        )
        self.conn.commit()
        logger.info("Cleared %d %s data points for user %s", cur.rowcount, self.provider, user_id)
        return cur.rowcount

    def count(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total FROM data_points WHERE user_id=? AND provider=?",
            (user_id, self.provider),
        ).fetchone()
        return int(row["total"])


def list_data_points(
    conn: sqlite3.Connection,
    *,
    user_id: str,
    provider: Optional[str],
    start: date,
    end: date,
) -> list[dict]:
    params: list[Any] = [user_id, start.isoformat(), end.isoformat()]
    provider_clause = ""
    if provider:
        provider_clause = "AND dp.provider = ?"
        params.append(provider)
    rows = conn.execute(
        f"""SELECT dp.date, dp.provider, v.slug, v.label, v.canonical_unit AS unit,
                  dp.value, dp.created_at
           FROM data_points dp
           JOIN variables v ON v.id = dp.variable_id
           WHERE dp.user_id = ?
             AND dp.date BETWEEN ? AND ?
             {provider_clause}
           ORDER BY dp.date, v.slug""",
        params,
    ).fetchall()
    return [dict(row) for row in rows]
