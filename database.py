# database.py
import json
import sqlite3
from datetime import datetime

from logger import get_logger

logger = get_logger("database")

KEY_PREFIX = "inventory_app_"


class Database:
    """
    Local key-value store backed by a SQLite file. Every collection is kept
    as one JSON document under a prefixed key; writes replace the document.
    """
    def __init__(self, db_name: str = "inventory.db", prefix: str = KEY_PREFIX):
        self.db_name = db_name
        self.prefix = prefix
        self.conn = sqlite3.connect(db_name)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        cur = self.conn.cursor()
        cur.execute("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT
        )
        """)
        self.conn.commit()

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def load_data(self, key: str, default=None):
        """Return the decoded value stored under key, or default."""
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT value FROM kv_store WHERE key = ?", (self._full_key(key),))
            row = cur.fetchone()
            return json.loads(row["value"]) if row else default
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Error loading data for key: {key}: {e}")
            return default

    def save_data(self, key: str, value) -> bool:
        """
        Serialize value as JSON and store it under key.
        Failures are logged and reported as False; they never raise.
        """
        try:
            payload = json.dumps(value, ensure_ascii=False)
            ts = datetime.now().isoformat(timespec='seconds')
            cur = self.conn.cursor()
            cur.execute("""
            INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (self._full_key(key), payload, ts))
            self.conn.commit()
            return True
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Error saving data for key: {key}: {e}")
            return False

    def clear_data(self, key: str) -> bool:
        """Remove a single key."""
        try:
            cur = self.conn.cursor()
            cur.execute("DELETE FROM kv_store WHERE key = ?", (self._full_key(key),))
            self.conn.commit()
            return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Error clearing data for key: {key}: {e}")
            return False

    def clear_all_data(self) -> int:
        """Remove every key under this store's prefix. Returns rows removed."""
        try:
            cur = self.conn.cursor()
            cur.execute("DELETE FROM kv_store WHERE substr(key, 1, ?) = ?",
                        (len(self.prefix), self.prefix))
            self.conn.commit()
            return cur.rowcount
        except sqlite3.Error as e:
            logger.error(f"Error clearing all data: {e}")
            return 0

    def keys(self):
        """List stored keys (without prefix)."""
        cur = self.conn.cursor()
        cur.execute("SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(self.prefix), self.prefix))
        return [row["key"][len(self.prefix):] for row in cur.fetchall()]

    def close(self):
        self.conn.close()
