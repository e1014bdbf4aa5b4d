import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional, Set


class Database:
    """SQLite database repository"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection context manager"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database tables"""
        with self._get_conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subscribers (
                    chat_id INTEGER PRIMARY KEY,
                    created_at TEXT
                );
            """)

    # Settings operations
    def get_setting(self, key: str) -> Optional[str]:
        """Get a setting value, None if absent"""
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        """Insert or overwrite a setting value"""
        with self._get_conn() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value)
            )

    def delete_setting(self, key: str) -> None:
        with self._get_conn() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    # Subscriber operations
    def add_subscriber(self, chat_id: int) -> bool:
        """Add a subscriber, returns True if new"""
        now = datetime.now().isoformat()
        with self._get_conn() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO subscribers (chat_id, created_at) VALUES (?, ?)",
                (chat_id, now)
            )
        return cursor.rowcount > 0

    def remove_subscriber(self, chat_id: int) -> bool:
        """Remove a subscriber, returns True if it existed"""
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM subscribers WHERE chat_id = ?", (chat_id,)
            )
        return cursor.rowcount > 0

    def get_subscribers(self) -> Set[int]:
        """Get all subscribed chat_ids"""
        with self._get_conn() as conn:
            rows = conn.execute("SELECT chat_id FROM subscribers").fetchall()
        return {row["chat_id"] for row in rows}

