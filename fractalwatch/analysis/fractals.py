"""Fractal (swing high / swing low) detection from OHLC bars — pure functions."""

from datetime import date, datetime, timezone
from typing import Optional

from fractalwatch.models import (
    ACTIVE,
    BROKEN,
    HIGH,
    LOW,
    TIMEFRAMES,
    Bar,
    Fractal,
    FractalSet,
    InstrumentFractals,
)

_FALLBACK_COUNT = 3


def _to_date(value: str) -> date:
    return date.fromisoformat(value[:10])


def _days_between(earlier: str, later: str) -> int:
    return (_to_date(later) - _to_date(earlier)).days


def _is_swing_high(bars: list[Bar], i: int, lookback: int) -> bool:
    """True if ``bars[i].high`` is strictly above every other high in the window."""
    high = bars[i].high
    for j in range(i - lookback, i + lookback + 1):
        if j != i and bars[j].high >= high:
            return False
    return True


def _is_swing_low(bars: list[Bar], i: int, lookback: int) -> bool:
    """True if ``bars[i].low`` is strictly below every other low in the window."""
    low = bars[i].low
    for j in range(i - lookback, i + lookback + 1):
        if j != i and bars[j].low <= low:
            return False
    return True


def _first_break(bars: list[Bar], i: int, price: float, side: str) -> Optional[str]:
    """Date of the first bar after *i* that trades through *price*, or ``None``."""
    for bar in bars[i + 1:]:
        if side == HIGH and bar.high >= price:
            return bar.date
        if side == LOW and bar.low <= price:
            return bar.date
    return None


def _make_fractal(
    bars: list[Bar], i: int, side: str, timeframe: str,
) -> Fractal:
    price = bars[i].high if side == HIGH else bars[i].low
    broken_at = _first_break(bars, i, price, side)
    return Fractal(
        price=price,
        timeframe=timeframe,
        side=side,
        occurred_at=bars[i].date,
        days_ago=_days_between(bars[i].date, bars[-1].date),
        status=BROKEN if broken_at else ACTIVE,
        broken_at=broken_at,
    )


def _fallback_levels(bars: list[Bar], side: str, timeframe: str) -> list[Fractal]:
    """Nearest untouched extremes beyond the last close.

    Used when a scan finds no ACTIVE swing on *side*, so there is always a
    forward reference level even in a one-way market.
    """
    close = bars[-1].close
    if side == HIGH:
        candidates = [(b.high - close, b) for b in bars if b.high > close]
    else:
        candidates = [(close - b.low, b) for b in bars if b.low < close]
    candidates.sort(key=lambda c: c[0])

    levels: list[Fractal] = []
    seen: set[float] = set()
    for _, bar in candidates:
        price = bar.high if side == HIGH else bar.low
        if price in seen:
            continue
        seen.add(price)
        levels.append(
            Fractal(
                price=price,
                timeframe=timeframe,
                side=side,
                occurred_at=bar.date,
                days_ago=_days_between(bar.date, bars[-1].date),
                status=ACTIVE,
                synthetic=True,
            )
        )
        if len(levels) >= _FALLBACK_COUNT:
            break
    return levels


def _order(fractals: list[Fractal], limit: int) -> list[Fractal]:
    """ACTIVE before BROKEN, most recent first within each group."""
    ordered = sorted(fractals, key=lambda f: (f.status != ACTIVE, f.days_ago))
    return ordered[:limit]


def detect_fractals(
    bars: list[Bar],
    lookback: int = 5,
    timeframe: str = "daily",
    max_per_list: int = 5,
) -> FractalSet:
    """Detect swing highs and lows on a single bar series.

    Args:
        bars: Bars sorted ascending by date.
        lookback: Half-window; a candidate must beat *lookback* bars on each side.
        timeframe: Label stored on every fractal.
        max_per_list: Cap applied to each of the highs and lows lists.

    Returns:
        ``FractalSet``; empty when fewer than ``2 * lookback + 1`` bars.
    """
    if len(bars) < 2 * lookback + 1:
        return FractalSet()

    highs: list[Fractal] = []
    lows: list[Fractal] = []
    for i in range(lookback, len(bars) - lookback):
        if _is_swing_high(bars, i, lookback):
            highs.append(_make_fractal(bars, i, HIGH, timeframe))
        if _is_swing_low(bars, i, lookback):
            lows.append(_make_fractal(bars, i, LOW, timeframe))

    if not any(f.is_active for f in highs):
        highs.extend(_fallback_levels(bars, HIGH, timeframe))
    if not any(f.is_active for f in lows):
        lows.extend(_fallback_levels(bars, LOW, timeframe))

    return FractalSet(
        highs=_order(highs, max_per_list),
        lows=_order(lows, max_per_list),
    )


def detect_multi_timeframe(
    instrument: str,
    bars_by_timeframe: dict[str, list[Bar]],
    lookback: int = 5,
    max_per_list: int = 5,
    now: Optional[datetime] = None,
) -> InstrumentFractals:
    """Run :func:`detect_fractals` independently on each timeframe.

    Timeframes missing from *bars_by_timeframe* get an empty set.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    sets = {
        tf: detect_fractals(
            bars_by_timeframe.get(tf, []),
            lookback=lookback,
            timeframe=tf,
            max_per_list=max_per_list,
        )
        for tf in TIMEFRAMES
    }
    return InstrumentFractals(
        instrument=instrument,
        daily=sets["daily"],
        weekly=sets["weekly"],
        monthly=sets["monthly"],
        last_updated=now.isoformat(),
    )
