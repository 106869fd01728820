"""Tests for the fractal lifecycle — breakout detection, registry dedup, reference levels."""

from datetime import datetime, timezone

from fractalwatch.analysis.lifecycle import (
    check_breakouts,
    check_instrument,
    is_breaking,
    next_reference_levels,
)
from fractalwatch.models import (
    ACTIVE,
    BROKEN,
    HIGH,
    LOW,
    BreakoutEvent,
    Fractal,
    FractalSet,
    InstrumentFractals,
    event_key,
)

_NOW = datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_fractal(price: float, side: str, timeframe: str = "daily", **kw) -> Fractal:
    defaults = dict(occurred_at="2024-03-01", days_ago=4)
    defaults.update(kw)
    return Fractal(price=price, timeframe=timeframe, side=side, **defaults)


def _make_snapshot(instrument: str = "EURUSD") -> InstrumentFractals:
    """Daily 1.1050 / 1.0950, weekly 1.1200 / 1.0800, one broken daily high."""
    return InstrumentFractals(
        instrument=instrument,
        daily=FractalSet(
            highs=[
                _make_fractal(1.1050, HIGH),
                _make_fractal(1.0990, HIGH, status=BROKEN, broken_at="2024-03-02"),
            ],
            lows=[_make_fractal(1.0950, LOW)],
        ),
        weekly=FractalSet(
            highs=[_make_fractal(1.1200, HIGH, "weekly")],
            lows=[_make_fractal(1.0800, LOW, "weekly")],
        ),
        last_updated="2024-03-05T00:00:00+00:00",
    )


# ── Break rule ───────────────────────────────────────────────────────────


class TestIsBreaking:
    def test_high_requires_strictly_above(self):
        f = _make_fractal(1.1050, HIGH)
        assert is_breaking(f, 1.1051)
        assert not is_breaking(f, 1.1050)

    def test_low_requires_strictly_below(self):
        f = _make_fractal(1.0950, LOW)
        assert is_breaking(f, 1.0949)
        assert not is_breaking(f, 1.0950)

    def test_broken_fractal_never_breaks_again(self):
        f = _make_fractal(1.1050, HIGH, status=BROKEN, broken_at="2024-03-02")
        assert not is_breaking(f, 2.0)


class TestEventKey:
    def test_key_rounds_price_to_five_places(self):
        assert event_key("EURUSD", HIGH, "daily", 1.123456789) == "EURUSD|HIGH|daily|1.12346"

    def test_event_and_record_share_key(self):
        e = BreakoutEvent("EURUSD", LOW, "weekly", 1.08, 1.0799, _NOW.isoformat())
        assert e.key == "EURUSD|LOW|weekly|1.08000"


# ── Breakout check ───────────────────────────────────────────────────────


class TestCheckInstrument:
    def test_emits_event_and_flips_to_broken(self):
        registry: set[str] = set()
        events, snapshot = check_instrument(_make_snapshot(), 1.1060, registry, _NOW)

        assert len(events) == 1
        event = events[0]
        assert event.instrument == "EURUSD"
        assert event.direction == HIGH
        assert event.timeframe == "daily"
        assert event.fractal_price == 1.1050
        assert event.break_price == 1.1060
        assert event.timestamp == _NOW.isoformat()

        flipped = snapshot.daily.highs[0]
        assert flipped.status == BROKEN
        assert flipped.broken_at == _NOW.isoformat()
        assert registry == set()

    def test_untouched_levels_stay_active(self):
        _, snapshot = check_instrument(_make_snapshot(), 1.1060, set(), _NOW)
        assert snapshot.daily.lows[0].status == ACTIVE
        assert snapshot.weekly.highs[0].status == ACTIVE

    def test_low_break(self):
        events, snapshot = check_instrument(_make_snapshot(), 1.0900, set(), _NOW)
        assert [(e.direction, e.timeframe) for e in events] == [(LOW, "daily")]
        assert snapshot.daily.lows[0].status == BROKEN

    def test_large_move_breaks_every_timeframe(self):
        events, _ = check_instrument(_make_snapshot(), 1.1300, set(), _NOW)
        assert sorted(e.timeframe for e in events) == ["daily", "weekly"]

    def test_input_snapshot_unchanged(self):
        original = _make_snapshot()
        check_instrument(original, 1.1060, set(), _NOW)
        assert original.daily.highs[0].status == ACTIVE


class TestCheckBreakouts:
    def test_registry_hit_suppresses_event(self):
        registry = {event_key("EURUSD", HIGH, "daily", 1.1050)}
        events, _ = check_breakouts([_make_snapshot()], {"EURUSD": 1.1060}, registry, _NOW)
        assert events == []

    def test_repeated_scan_is_idempotent(self):
        registry: set[str] = set()
        snapshots = [_make_snapshot()]
        first, updated = check_breakouts(snapshots, {"EURUSD": 1.1060}, registry, _NOW)
        registry.update(e.key for e in first)
        second, _ = check_breakouts(updated, {"EURUSD": 1.1070}, registry, _NOW)
        third, _ = check_breakouts(snapshots, {"EURUSD": 1.1070}, registry, _NOW)

        assert len(first) == 1
        assert second == []
        assert third == []

    def test_missing_price_skips_instrument(self):
        snapshots = [_make_snapshot("EURUSD"), _make_snapshot("GBPUSD")]
        events, updated = check_breakouts(
            snapshots, {"EURUSD": None, "GBPUSD": 1.1060}, set(), _NOW,
        )

        assert [e.instrument for e in events] == ["GBPUSD"]
        assert updated[0] == snapshots[0]
        assert [s.instrument for s in updated] == ["EURUSD", "GBPUSD"]

    def test_absent_price_key_skips_instrument(self):
        events, updated = check_breakouts([_make_snapshot()], {}, set(), _NOW)
        assert events == []
        assert updated[0].daily.highs[0].status == ACTIVE

    def test_same_price_on_different_instruments_are_separate(self):
        registry: set[str] = set()
        events, _ = check_breakouts(
            [_make_snapshot("EURUSD"), _make_snapshot("GBPUSD")],
            {"EURUSD": 1.1060, "GBPUSD": 1.1060},
            registry,
            _NOW,
        )
        assert len({e.key for e in events}) == 2
        assert registry == set()

    def test_unrecorded_break_is_emitted_again(self):
        snapshots = [_make_snapshot()]
        first, _ = check_breakouts(snapshots, {"EURUSD": 1.1060}, set(), _NOW)
        retry, _ = check_breakouts(snapshots, {"EURUSD": 1.1065}, set(), _NOW)
        assert [e.key for e in retry] == [e.key for e in first]

    def test_duplicate_level_emits_once_per_pass(self):
        level = _make_fractal(1.1050, HIGH)
        snapshot = InstrumentFractals(
            instrument="EURUSD", daily=FractalSet(highs=[level, level], lows=[]),
        )
        events, updated = check_instrument(snapshot, 1.1060, set(), _NOW)
        assert len(events) == 1
        assert [f.status for f in updated.daily.highs] == [BROKEN, ACTIVE]


# ── Reference levels ─────────────────────────────────────────────────────


class TestNextReferenceLevels:
    def test_first_active_levels_with_pip_distance(self):
        levels = next_reference_levels(_make_snapshot(), 1.1000, pip_size=0.0001)

        assert levels["daily"]["high"] == {"price": 1.1050, "distance_pips": 50}
        assert levels["daily"]["low"] == {"price": 1.0950, "distance_pips": 50}
        assert levels["weekly"]["high"]["distance_pips"] == 200
        assert levels["monthly"] == {"high": None, "low": None}

    def test_skips_broken_levels(self):
        snapshot = InstrumentFractals(
            instrument="USDJPY",
            daily=FractalSet(
                highs=[
                    _make_fractal(151.00, HIGH, status=BROKEN, broken_at="2024-03-01"),
                    _make_fractal(152.00, HIGH),
                ],
            ),
        )
        levels = next_reference_levels(snapshot, 150.00, pip_size=0.01)
        assert levels["daily"]["high"] == {"price": 152.00, "distance_pips": 200}
        assert levels["daily"]["low"] is None
