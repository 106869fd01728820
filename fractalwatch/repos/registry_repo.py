"""Breakout registry — durable set of breakout keys already recorded."""

import logging
import sqlite3

from fractalwatch.repos.db import get_connection

logger = logging.getLogger("fractalwatch.repos")


class BreakoutRegistry:
    """In-memory key set backed by the ``breakout_registry`` table.

    Supports ``key in registry`` so the lifecycle classifier can read it.
    The engine adds a key only once the breakout's event is stored; new
    keys stay pending until :meth:`persist` writes them.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._keys: set[str] = set()
        self._pending: set[str] = set()

    def load(self) -> set[str]:
        """Reload the key set from storage.

        An unreadable table leaves the registry empty; later event-log
        uniqueness still prevents duplicate records.
        """
        try:
            conn = get_connection(self._db_path)
            try:
                rows = conn.execute("SELECT event_key FROM breakout_registry").fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as exc:
            logger.warning("Breakout registry unreadable, starting empty: %s", exc)
            rows = []
        self._keys = {row["event_key"] for row in rows}
        self._pending.clear()
        return set(self._keys)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def contains(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        """Record *key* in memory; call :meth:`persist` to make it durable."""
        if key not in self._keys:
            self._keys.add(key)
            self._pending.add(key)

    def persist(self) -> int:
        """Write pending keys.  Returns the number of keys written."""
        if not self._pending:
            return 0
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                "INSERT OR IGNORE INTO breakout_registry (event_key) VALUES (?)",
                [(k,) for k in sorted(self._pending)],
            )
            conn.commit()
        finally:
            conn.close()
        written = len(self._pending)
        self._pending.clear()
        return written
