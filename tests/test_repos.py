"""Tests for the SQLite repositories and the breakout registry."""

import sqlite3

import pytest

from fractalwatch.models import (
    BROKEN,
    BULLISH,
    HIGH,
    LOW,
    BreakoutEvent,
    FilterCriteria,
    Fractal,
    FractalSet,
    InstrumentFractals,
    ReactionRecord,
    TradingStats,
)
from fractalwatch.repos.base import Repository
from fractalwatch.repos.db import get_connection, init_db
from fractalwatch.repos.event_repo import BreakoutEventRepo
from fractalwatch.repos.fractal_repo import FractalRepo
from fractalwatch.repos.reaction_repo import ReactionRepo
from fractalwatch.repos.registry_repo import BreakoutRegistry
from fractalwatch.repos.stats_repo import StatsRepo

_STAMP = "2024-03-05T14:30:00+00:00"


# ── Helpers ──────────────────────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "data" / "test.db")
    init_db(path)
    return path


@pytest.fixture
def corrupt_db(tmp_path) -> str:
    path = tmp_path / "corrupt.db"
    path.write_bytes(b"this is not a sqlite database" * 100)
    return str(path)


def _make_event(**overrides) -> BreakoutEvent:
    defaults = dict(
        instrument="EURUSD",
        direction=HIGH,
        timeframe="daily",
        fractal_price=1.1050,
        break_price=1.1060,
        timestamp=_STAMP,
    )
    defaults.update(overrides)
    return BreakoutEvent(**defaults)


def _make_record(**overrides) -> ReactionRecord:
    defaults = dict(
        instrument="EURUSD",
        direction=HIGH,
        timeframe="daily",
        fractal_price=1.1050,
        break_price=1.1060,
        timestamp=_STAMP,
        impulse_15m=0.12,
        impulse_1h=0.25,
        impulse_4h=0.4,
        retrace_15m=0.05,
        retrace_1h=0.09,
        max_drawdown=0.07,
        time_to_reverse=None,
        follow_through=True,
        day_of_week=2,
        session="OVERLAP",
        time_bucket="12-16",
        atr=0.0004,
    )
    defaults.update(overrides)
    return ReactionRecord(**defaults)


def _make_snapshot(instrument: str = "EURUSD") -> InstrumentFractals:
    return InstrumentFractals(
        instrument=instrument,
        daily=FractalSet(
            highs=[
                Fractal(1.1050, "daily", HIGH, "2024-03-01", 4),
                Fractal(1.0990, "daily", HIGH, "2024-02-20", 14,
                        status=BROKEN, broken_at="2024-02-28"),
            ],
            lows=[Fractal(1.0950, "daily", LOW, "2024-03-03", 2, synthetic=True)],
        ),
        monthly=FractalSet(highs=[Fractal(1.1275, "monthly", HIGH, "2023-12-01", 95)]),
        last_updated=_STAMP,
    )


# ── Schema ───────────────────────────────────────────────────────────────


class TestInitDb:
    def test_creates_parent_directory_and_tables(self, db_path):
        conn = get_connection(db_path)
        try:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert {
            "fractal_snapshots", "breakout_registry", "breakout_events",
            "breakout_reactions", "trading_stats",
        } <= names

    def test_rerun_is_noop(self, db_path):
        init_db(db_path)
        init_db(db_path)

    def test_repos_satisfy_protocol(self, db_path):
        for repo in (
            FractalRepo(db_path), BreakoutEventRepo(db_path),
            ReactionRepo(db_path), StatsRepo(db_path),
        ):
            assert isinstance(repo, Repository)


# ── Registry ─────────────────────────────────────────────────────────────


class TestBreakoutRegistry:
    def test_add_is_pending_until_persist(self, db_path):
        registry = BreakoutRegistry(db_path)
        registry.load()
        registry.add("EURUSD|HIGH|daily|1.10500")

        assert "EURUSD|HIGH|daily|1.10500" in registry
        assert BreakoutRegistry(db_path).load() == set()

        assert registry.persist() == 1
        reloaded = BreakoutRegistry(db_path)
        reloaded.load()
        assert reloaded.contains("EURUSD|HIGH|daily|1.10500")
        assert len(reloaded) == 1

    def test_persist_twice_writes_once(self, db_path):
        registry = BreakoutRegistry(db_path)
        registry.add("k1")
        registry.add("k1")
        assert registry.persist() == 1
        assert registry.persist() == 0

    def test_unreadable_store_starts_empty(self, corrupt_db):
        registry = BreakoutRegistry(corrupt_db)
        assert registry.load() == set()
        assert len(registry) == 0


# ── Event log ────────────────────────────────────────────────────────────


class TestBreakoutEventRepo:
    def test_append_and_load(self, db_path):
        repo = BreakoutEventRepo(db_path)
        assert repo.append(_make_event()) is True
        assert repo.load() == [_make_event()]

    def test_duplicate_key_reports_already_recorded(self, db_path):
        repo = BreakoutEventRepo(db_path)
        repo.append(_make_event())
        # Same key: price differs only beyond five decimals
        assert repo.append(_make_event(fractal_price=1.105001, break_price=1.2)) is False
        assert len(repo.load()) == 1

    def test_save_replaces_log(self, db_path):
        repo = BreakoutEventRepo(db_path)
        repo.append(_make_event())
        repo.save([_make_event(timeframe="weekly"), _make_event(direction=LOW)])
        assert [(e.timeframe, e.direction) for e in repo.load()] == [
            ("weekly", HIGH), ("daily", LOW),
        ]

    def test_unreadable_log_is_empty(self, corrupt_db):
        assert BreakoutEventRepo(corrupt_db).load() == []

    def test_missing_table_is_empty(self, tmp_path):
        assert BreakoutEventRepo(str(tmp_path / "blank.db")).load() == []


# ── Reaction log ─────────────────────────────────────────────────────────


class TestReactionRepo:
    def test_round_trip_preserves_types(self, db_path):
        repo = ReactionRepo(db_path)
        record = _make_record(time_to_reverse=12, follow_through=False)
        assert repo.append(record) is True

        loaded = repo.load()
        assert loaded == [record]
        assert loaded[0].follow_through is False
        assert loaded[0].time_to_reverse == 12

    def test_duplicate_key_ignored(self, db_path):
        repo = ReactionRepo(db_path)
        repo.append(_make_record())
        assert repo.append(_make_record(atr=0.9)) is False
        assert repo.load()[0].atr == 0.0004

    def test_save_persists_outcomes(self, db_path):
        repo = ReactionRepo(db_path)
        repo.append(_make_record())
        resolved = _make_record(price_after_1h=1.107, price_after_4h=1.109, outcome=BULLISH)
        repo.save([resolved])
        assert repo.load() == [resolved]

    def test_find_filters(self, db_path):
        repo = ReactionRepo(db_path)
        repo.append(_make_record())
        repo.append(_make_record(instrument="GBPUSD", session="ASIA"))
        assert [r.instrument for r in repo.find(FilterCriteria(session="ASIA"))] == ["GBPUSD"]
        assert len(repo.find()) == 2

    def test_unreadable_log_is_empty(self, corrupt_db):
        assert ReactionRepo(corrupt_db).load() == []


# ── Fractal snapshots ────────────────────────────────────────────────────


class TestFractalRepo:
    def test_round_trip(self, db_path):
        repo = FractalRepo(db_path)
        snapshot = _make_snapshot()
        repo.save([snapshot])
        assert repo.load() == [snapshot]

    def test_append_replaces_one_instrument(self, db_path):
        repo = FractalRepo(db_path)
        repo.save([_make_snapshot("EURUSD"), _make_snapshot("GBPUSD")])

        replacement = InstrumentFractals(
            instrument="GBPUSD",
            daily=FractalSet(highs=[Fractal(1.27, "daily", HIGH, "2024-03-02", 3)]),
            last_updated="2024-03-06T00:00:00+00:00",
        )
        repo.append(replacement)

        assert repo.get("GBPUSD") == replacement
        assert repo.get("EURUSD") == _make_snapshot("EURUSD")

    def test_save_is_wholesale(self, db_path):
        repo = FractalRepo(db_path)
        repo.save([_make_snapshot("EURUSD")])
        repo.save([_make_snapshot("USDJPY")])
        assert [s.instrument for s in repo.load()] == ["USDJPY"]

    def test_get_unknown(self, db_path):
        assert FractalRepo(db_path).get("NZDUSD") is None

    def test_unreadable_is_empty(self, corrupt_db):
        assert FractalRepo(corrupt_db).load() == []


# ── Stats ────────────────────────────────────────────────────────────────


class TestStatsRepo:
    def test_save_replaces_all(self, db_path):
        repo = StatsRepo(db_path)
        repo.save([TradingStats("EURUSD", 4, 2, 2, 3, 1, 75.0, 25.0, _STAMP)])
        repo.save([TradingStats("GBPUSD", 1, 1, 0, 0, 1, 0.0, 100.0, _STAMP)])
        assert [s.instrument for s in repo.load()] == ["GBPUSD"]

    def test_append_upserts(self, db_path):
        repo = StatsRepo(db_path)
        repo.append(TradingStats("EURUSD", 1, 1, 0, 1, 0, 100.0, 0.0, _STAMP))
        repo.append(TradingStats("EURUSD", 2, 1, 1, 1, 1, 50.0, 50.0, _STAMP))
        loaded = repo.load()
        assert len(loaded) == 1
        assert loaded[0].total_breakouts == 2

    def test_unreadable_is_empty(self, corrupt_db):
        assert StatsRepo(corrupt_db).load() == []


def test_connection_uses_row_factory(db_path):
    conn = get_connection(db_path)
    try:
        assert conn.row_factory is sqlite3.Row
    finally:
        conn.close()
