import logging
import sqlite3
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import get_settings

logger = logging.getLogger(__name__)


def get_user_timezone(conn: sqlite3.Connection, user_id: str) -> ZoneInfo:
    default_zone = get_settings().default_timezone
    row = conn.execute(
        "SELECT timezone FROM profiles WHERE id=?",
        (user_id,),
    ).fetchone()
    name = (row["timezone"] if row else None) or default_zone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for user %s, using %s", name, user_id, default_zone)
        return ZoneInfo(default_zone)
