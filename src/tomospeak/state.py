"""Key-value lesson store for TomoSpeak.

Uses SQLite for persistence with two independent slots: the serialized
message history and the lesson progress scalar.
"""

import json
import logging
import sqlite3
from pathlib import Path

from .models import ChatMessage, clamp_progress

logger = logging.getLogger(__name__)

MESSAGES_KEY = "chat_messages"
PROGRESS_KEY = "lesson_progress"

# SQL schema for the lesson database
SCHEMA = """
CREATE TABLE IF NOT EXISTS slots (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class LessonStore:
    """Durable key-value store backed by SQLite.

    Pure load/save: no lesson logic lives here. Corrupt data degrades to
    empty/default values instead of raising.
    """

    def __init__(self, db_path: Path | str):
        """Initialize the lesson store.

        Args:
            db_path: Path to SQLite database file (``":memory:"`` for tests)
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else None
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    # --- Raw slots ---

    def _get(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM slots WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def _set(self, key: str, value: str) -> None:
        self.conn.execute(
            """
            INSERT INTO slots (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self.conn.commit()

    def _delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM slots WHERE key = ?", (key,))
        self.conn.commit()

    # --- Messages ---

    def load_messages(self) -> list[ChatMessage]:
        """Load message history.

        Returns:
            Stored messages in append order, or an empty list when the slot
            is missing or holds anything other than a list of valid messages
        """
        raw = self._get(MESSAGES_KEY)
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored messages are not valid JSON, starting fresh")
            return []

        if not isinstance(parsed, list):
            logger.warning("Stored messages are not a list, starting fresh")
            return []

        try:
            return [ChatMessage.from_dict(entry) for entry in parsed]
        except (ValueError, TypeError) as e:
            logger.warning(f"Stored messages are malformed ({e}), starting fresh")
            return []

    def save_messages(self, messages: list[ChatMessage]) -> None:
        """Replace stored message history."""
        self._set(MESSAGES_KEY, json.dumps([m.to_dict() for m in messages]))

    def clear_messages(self) -> None:
        """Remove stored message history."""
        self._delete(MESSAGES_KEY)

    # --- Progress ---

    def load_progress(self) -> int | None:
        """Load lesson progress clamped to [0, 100], or None when unset/invalid."""
        raw = self._get(PROGRESS_KEY)
        if raw is None:
            return None
        try:
            value = int(raw.strip())
        except ValueError:
            return None
        return clamp_progress(value)

    def save_progress(self, value: int | None) -> None:
        """Store lesson progress; None removes the slot."""
        if value is None:
            self._delete(PROGRESS_KEY)
            return
        self._set(PROGRESS_KEY, str(clamp_progress(value)))
