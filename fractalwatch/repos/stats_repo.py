"""Trading stats repository — derived per-instrument statistics, replaced wholesale."""

import dataclasses
import logging
import sqlite3

from fractalwatch.models import TradingStats
from fractalwatch.repos.db import get_connection

logger = logging.getLogger("fractalwatch.repos")

_FIELDS = [f.name for f in dataclasses.fields(TradingStats)]

_UPSERT_SQL = (
    f"INSERT OR REPLACE INTO trading_stats ({', '.join(_FIELDS)}) "
    f"VALUES ({', '.join('?' for _ in _FIELDS)})"
)


class StatsRepo:
    """Data access layer for the ``trading_stats`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def save(self, stats: list[TradingStats]) -> None:
        """Replace all stored stats with *stats*."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM trading_stats")
            conn.executemany(
                _UPSERT_SQL,
                [tuple(getattr(s, f) for f in _FIELDS) for s in stats],
            )
            conn.commit()
        finally:
            conn.close()

    def append(self, stats: TradingStats) -> bool:
        """Insert or replace the row for ``stats.instrument``."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(_UPSERT_SQL, tuple(getattr(stats, f) for f in _FIELDS))
            conn.commit()
            return True
        finally:
            conn.close()

    def load(self) -> list[TradingStats]:
        """Return stats ordered by instrument; ``[]`` if unreadable."""
        try:
            conn = get_connection(self._db_path)
            try:
                rows = conn.execute(
                    "SELECT * FROM trading_stats ORDER BY instrument"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as exc:
            logger.warning("Trading stats unreadable, treating as empty: %s", exc)
            return []
        return [TradingStats(**{f: row[f] for f in _FIELDS}) for row in rows]
