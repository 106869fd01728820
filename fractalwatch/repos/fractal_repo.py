"""Fractal snapshot repository — latest-wins per instrument."""

import logging
import sqlite3
from collections import defaultdict
from typing import Optional

from fractalwatch.models import (
    HIGH,
    LOW,
    TIMEFRAMES,
    Fractal,
    FractalSet,
    InstrumentFractals,
)
from fractalwatch.repos.db import get_connection

logger = logging.getLogger("fractalwatch.repos")


def _rows_for(snapshot: InstrumentFractals) -> list[tuple]:
    rows: list[tuple] = []
    for tf in TIMEFRAMES:
        fs = snapshot.for_timeframe(tf)
        for position, f in enumerate([*fs.highs, *fs.lows]):
            rows.append((
                snapshot.instrument, tf, f.side, position, f.price,
                f.occurred_at, f.days_ago, f.status, f.broken_at,
                int(f.synthetic), snapshot.last_updated,
            ))
    return rows


def _insert(conn: sqlite3.Connection, snapshot: InstrumentFractals) -> None:
    conn.executemany(
        """
        INSERT INTO fractal_snapshots
            (instrument, timeframe, side, position, price, occurred_at,
             days_ago, status, broken_at, synthetic, last_updated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        _rows_for(snapshot),
    )


class FractalRepo:
    """Data access layer for the ``fractal_snapshots`` table.

    An instrument with no detected fractals on any timeframe is not
    stored and is therefore absent from :meth:`load`.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def save(self, snapshots: list[InstrumentFractals]) -> None:
        """Replace every stored snapshot with *snapshots*."""
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM fractal_snapshots")
            for snapshot in snapshots:
                _insert(conn, snapshot)
            conn.commit()
        finally:
            conn.close()

    def append(self, snapshot: InstrumentFractals) -> bool:
        """Replace the stored snapshot for ``snapshot.instrument``."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                "DELETE FROM fractal_snapshots WHERE instrument = ?",
                (snapshot.instrument,),
            )
            _insert(conn, snapshot)
            conn.commit()
            return True
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def load(self) -> list[InstrumentFractals]:
        """Return all snapshots ordered by instrument; ``[]`` if unreadable."""
        try:
            conn = get_connection(self._db_path)
            try:
                rows = conn.execute(
                    """
                    SELECT * FROM fractal_snapshots
                    ORDER BY instrument, timeframe, side, position
                    """
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as exc:
            logger.warning("Fractal snapshots unreadable, treating as empty: %s", exc)
            return []

        grouped: dict[str, dict[tuple[str, str], list[Fractal]]] = defaultdict(
            lambda: defaultdict(list)
        )
        updated_at: dict[str, str] = {}
        for row in rows:
            try:
                fractal = Fractal(
                    price=row["price"],
                    timeframe=row["timeframe"],
                    side=row["side"],
                    occurred_at=row["occurred_at"],
                    days_ago=row["days_ago"],
                    status=row["status"],
                    broken_at=row["broken_at"],
                    synthetic=bool(row["synthetic"]),
                )
            except (TypeError, ValueError, IndexError) as exc:
                logger.warning("Skipping malformed fractal row %s: %s", row["id"], exc)
                continue
            grouped[row["instrument"]][(row["timeframe"], row["side"])].append(fractal)
            updated_at[row["instrument"]] = row["last_updated"]

        snapshots: list[InstrumentFractals] = []
        for instrument, by_key in grouped.items():
            sets = {
                tf: FractalSet(
                    highs=by_key.get((tf, HIGH), []),
                    lows=by_key.get((tf, LOW), []),
                )
                for tf in TIMEFRAMES
            }
            snapshots.append(
                InstrumentFractals(
                    instrument=instrument,
                    last_updated=updated_at.get(instrument, ""),
                    **sets,
                )
            )
        return snapshots

    def get(self, instrument: str) -> Optional[InstrumentFractals]:
        """Return the snapshot for *instrument*, or ``None``."""
        for snapshot in self.load():
            if snapshot.instrument == instrument:
                return snapshot
        return None
