"""Reaction repository — SQLite log of breakout reaction records."""

import dataclasses
import logging
import sqlite3
from typing import Optional

from fractalwatch.analysis.stats import filter_reactions
from fractalwatch.models import FilterCriteria, ReactionRecord
from fractalwatch.repos.db import get_connection

logger = logging.getLogger("fractalwatch.repos")

_FIELDS = [f.name for f in dataclasses.fields(ReactionRecord)]
_BOOL_FIELDS = {"follow_through"}

_INSERT_SQL = (
    f"INSERT OR IGNORE INTO breakout_reactions (event_key, {', '.join(_FIELDS)}) "
    f"VALUES ({', '.join('?' for _ in range(len(_FIELDS) + 1))})"
)


def _to_params(record: ReactionRecord) -> tuple:
    values = dataclasses.asdict(record)
    return (record.key, *(values[f] for f in _FIELDS))


def _from_row(row: sqlite3.Row) -> ReactionRecord:
    values = {f: row[f] for f in _FIELDS}
    for f in _BOOL_FIELDS:
        values[f] = bool(values[f])
    return ReactionRecord(**values)


class ReactionRepo:
    """Data access layer for the ``breakout_reactions`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def append(self, record: ReactionRecord) -> bool:
        """Insert *record*.  Returns ``False`` if its event key is already stored."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(_INSERT_SQL, _to_params(record))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def save(self, records: list[ReactionRecord]) -> None:
        """Replace the whole log, e.g. after outcome resolution or dedup repair."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM breakout_reactions")
            conn.executemany(_INSERT_SQL, [_to_params(r) for r in records])
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def load(self) -> list[ReactionRecord]:
        """Return every record in insertion order; ``[]`` if unreadable."""
        try:
            conn = get_connection(self._db_path)
            try:
                rows = conn.execute(
                    "SELECT * FROM breakout_reactions ORDER BY id"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as exc:
            logger.warning("Reaction log unreadable, treating as empty: %s", exc)
            return []

        records: list[ReactionRecord] = []
        for row in rows:
            try:
                records.append(_from_row(row))
            except (TypeError, ValueError, IndexError) as exc:
                logger.warning("Skipping malformed reaction row %s: %s", row["id"], exc)
        return records

    def find(self, criteria: Optional[FilterCriteria] = None) -> list[ReactionRecord]:
        """Load and filter in one call."""
        return filter_reactions(self.load(), criteria)
