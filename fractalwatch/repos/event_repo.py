"""Breakout event repository — append-only log keyed by event key."""

import logging
import sqlite3

from fractalwatch.models import BreakoutEvent
from fractalwatch.repos.db import get_connection

logger = logging.getLogger("fractalwatch.repos")

_COLUMNS = (
    "instrument", "direction", "timeframe",
    "fractal_price", "break_price", "timestamp",
)


class BreakoutEventRepo:
    """Data access layer for the ``breakout_events`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def append(self, event: BreakoutEvent) -> bool:
        """Insert *event*.  Returns ``False`` if its key is already stored."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO breakout_events
                    (event_key, instrument, direction, timeframe,
                     fractal_price, break_price, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.key, event.instrument, event.direction, event.timeframe,
                    event.fractal_price, event.break_price, event.timestamp,
                ),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def save(self, events: list[BreakoutEvent]) -> None:
        """Replace the whole log (dedup repair)."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM breakout_events")
            conn.executemany(
                """
                INSERT OR IGNORE INTO breakout_events
                    (event_key, instrument, direction, timeframe,
                     fractal_price, break_price, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        e.key, e.instrument, e.direction, e.timeframe,
                        e.fractal_price, e.break_price, e.timestamp,
                    )
                    for e in events
                ],
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def load(self) -> list[BreakoutEvent]:
        """Return the log in insertion order; ``[]`` if unreadable."""
        try:
            conn = get_connection(self._db_path)
            try:
                rows = conn.execute(
                    "SELECT * FROM breakout_events ORDER BY id"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as exc:
            logger.warning("Breakout event log unreadable, treating as empty: %s", exc)
            return []

        events: list[BreakoutEvent] = []
        for row in rows:
            try:
                events.append(BreakoutEvent(**{c: row[c] for c in _COLUMNS}))
            except (TypeError, ValueError, IndexError) as exc:
                logger.warning("Skipping malformed breakout event row %s: %s", row["id"], exc)
        return events
