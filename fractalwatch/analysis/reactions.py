"""Post-breakout reaction analytics — pure functions over a forward price path.

The forward path is a chronological list of prices sampled at one-minute
intervals starting immediately after the break, so sample counts double as
minutes (15 samples = 15m, 60 = 1h, 240 = 4h).
"""

from typing import Optional

import numpy as np

from fractalwatch.analysis.indicators import calculate_path_atr
from fractalwatch.analysis.sessions import (
    day_of_week,
    get_session,
    get_time_bucket,
    parse_timestamp,
)
from fractalwatch.models import (
    HIGH,
    BreakoutEvent,
    ReactionMetrics,
    ReactionRecord,
)

WINDOW_15M = 15
WINDOW_1H = 60
WINDOW_4H = 240

FOLLOW_THROUGH_SAMPLES = 60
FOLLOW_THROUGH_THRESHOLD = 0.002  # 0.2 % of the break price


def calculate_impulse(prices: list[float], window: int) -> float:
    """Percent change from the first sample to the end of *window*.

    Returns ``0.0`` when fewer than *window* samples exist.
    """
    if len(prices) < window or window < 1 or prices[0] == 0:
        return 0.0
    start = prices[0]
    end = prices[min(window - 1, len(prices) - 1)]
    return float((end - start) / start * 100.0)


def calculate_retrace(prices: list[float], window: int) -> float:
    """Percent high-low range of the first *window* samples, relative to the first.

    Returns ``0.0`` when fewer than *window* samples exist.
    """
    if len(prices) < window or window < 1 or prices[0] == 0:
        return 0.0
    segment = np.asarray(prices[:window], dtype=float)
    return float((segment.max() - segment.min()) / prices[0] * 100.0)


def calculate_max_drawdown(
    prices: list[float], break_price: float, direction: str,
) -> float:
    """Largest adverse excursion from the running favourable extreme, in percent.

    The extreme is seeded at *break_price* and tracks the running max after a
    HIGH break (running min after a LOW break).  Always non-negative.
    """
    if not prices:
        return 0.0
    path = np.asarray(prices, dtype=float)
    seeded = np.concatenate(([break_price], path))
    if direction == HIGH:
        extremes = np.maximum.accumulate(seeded)[1:]
        worst = min(0.0, float(((path - extremes) / extremes).min()))
    else:
        extremes = np.minimum.accumulate(seeded)[1:]
        worst = max(0.0, float(((path - extremes) / extremes).max()))
    return abs(worst) * 100.0


def calculate_time_to_reverse(
    prices: list[float], break_price: float, direction: str,
) -> Optional[int]:
    """Index of the first sample back across *break_price*, or ``None``."""
    if not prices:
        return None
    path = np.asarray(prices, dtype=float)
    if direction == HIGH:
        reversed_at = np.flatnonzero(path < break_price)
    else:
        reversed_at = np.flatnonzero(path > break_price)
    if reversed_at.size == 0:
        return None
    return int(reversed_at[0])


def calculate_follow_through(
    prices: list[float], break_price: float, direction: str,
) -> bool:
    """True if the 60th sample sits beyond the 0.2 % threshold in the break's favour."""
    if len(prices) < FOLLOW_THROUGH_SAMPLES:
        return False
    price = prices[FOLLOW_THROUGH_SAMPLES - 1]
    threshold = break_price * FOLLOW_THROUGH_THRESHOLD
    if direction == HIGH:
        return price > break_price + threshold
    return price < break_price - threshold


def analyze_reaction(
    break_price: float,
    direction: str,
    forward_path: list[float],
    atr: float = 0.0,
) -> ReactionMetrics:
    """Compute the full metric set for one breakout.

    *atr* is not used by any metric and is carried through unchanged.
    """
    return ReactionMetrics(
        impulse_15m=calculate_impulse(forward_path, WINDOW_15M),
        impulse_1h=calculate_impulse(forward_path, WINDOW_1H),
        impulse_4h=calculate_impulse(forward_path, WINDOW_4H),
        retrace_15m=calculate_retrace(forward_path, WINDOW_15M),
        retrace_1h=calculate_retrace(forward_path, WINDOW_1H),
        max_drawdown=calculate_max_drawdown(forward_path, break_price, direction),
        time_to_reverse=calculate_time_to_reverse(forward_path, break_price, direction),
        follow_through=calculate_follow_through(forward_path, break_price, direction),
        atr=atr,
    )


def build_reaction_record(
    event: BreakoutEvent,
    forward_path: list[float],
    atr: Optional[float] = None,
) -> ReactionRecord:
    """Combine *event* with reaction metrics and its time-of-break labels.

    When *atr* is not given it is measured from *forward_path*.  The
    outcome starts as PENDING.
    """
    if atr is None:
        atr = calculate_path_atr(forward_path)
    metrics = analyze_reaction(event.break_price, event.direction, forward_path, atr)
    moment = parse_timestamp(event.timestamp)

    return ReactionRecord(
        instrument=event.instrument,
        direction=event.direction,
        timeframe=event.timeframe,
        fractal_price=event.fractal_price,
        break_price=event.break_price,
        timestamp=event.timestamp,
        impulse_15m=metrics.impulse_15m,
        impulse_1h=metrics.impulse_1h,
        impulse_4h=metrics.impulse_4h,
        retrace_15m=metrics.retrace_15m,
        retrace_1h=metrics.retrace_1h,
        max_drawdown=metrics.max_drawdown,
        time_to_reverse=metrics.time_to_reverse,
        follow_through=metrics.follow_through,
        day_of_week=day_of_week(moment),
        session=get_session(moment.hour),
        time_bucket=get_time_bucket(moment.hour),
        atr=metrics.atr,
    )
