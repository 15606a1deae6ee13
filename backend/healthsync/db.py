import sqlite3
from collections.abc import Generator
from pathlib import Path

from .config import get_settings

DATABASE_PATH = get_settings().database_path


def get_db() -> sqlite3.Connection:
    # FastAPI may resolve dependency lifecycle and endpoint execution on different threads.
    # Disable SQLite thread affinity checks for request-scoped connections.
    conn = sqlite3.connect(DATABASE_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_db_dependency() -> Generator[sqlite3.Connection, None, None]:
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    schema_path = Path(__file__).parent.parent / "schema.sql"
    conn = get_db()
    try:
        with open(schema_path, "r") as f:
            conn.executescript(f.read())
        conn.commit()
    finally:
        conn.close()
