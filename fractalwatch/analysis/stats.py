"""Breakout statistics — outcome resolution, aggregation, filtering and dedup.

Pure functions over lists of records.  Nothing here reads or writes storage;
the engine loads records from the repos, calls these, and saves the result.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, TypeVar

import numpy as np

from fractalwatch.analysis.sessions import parse_timestamp
from fractalwatch.models import (
    BEARISH,
    BULLISH,
    HIGH,
    LOW,
    NEUTRAL,
    STRICT_DEDUP_PLACES,
    BreakoutEvent,
    FilterCriteria,
    ReactionRecord,
    TradingStats,
)

T = TypeVar("T")

NEUTRAL_PRIOR = 50.0
OUTCOME_THRESHOLD = 0.001  # 0.1 % of the break price
BIAS_THRESHOLD = 60.0

LONG_BIAS = "LONG BIAS"
SHORT_BIAS = "SHORT BIAS"
NO_BIAS = "NEUTRAL"


# ── Outcome resolution ───────────────────────────────────────────────────


def resolve_outcome(
    record: ReactionRecord,
    current_price: float,
    now: Optional[datetime] = None,
) -> ReactionRecord:
    """Take price snapshots at 1h / 4h after the break and settle the outcome.

    At 4 hours the outcome becomes NEUTRAL if price is within 0.1 % of the
    break price, otherwise BULLISH (above) or BEARISH (below).  Records
    that are already resolved are returned unchanged.
    """
    if not record.is_pending:
        return record
    if now is None:
        now = datetime.now(timezone.utc)

    elapsed = now - parse_timestamp(record.timestamp)
    changes: dict = {}

    if elapsed >= timedelta(hours=1) and record.price_after_1h is None:
        changes["price_after_1h"] = current_price

    if elapsed >= timedelta(hours=4) and record.price_after_4h is None:
        changes["price_after_4h"] = current_price
        move = current_price - record.break_price
        if abs(move) < record.break_price * OUTCOME_THRESHOLD:
            changes["outcome"] = NEUTRAL
        elif move > 0:
            changes["outcome"] = BULLISH
        else:
            changes["outcome"] = BEARISH

    if not changes:
        return record
    return replace(record, **changes)


def resolve_outcomes(
    records: list[ReactionRecord],
    current_prices: dict[str, Optional[float]],
    now: Optional[datetime] = None,
) -> tuple[list[ReactionRecord], bool]:
    """Apply :func:`resolve_outcome` to every pending record with a known price.

    Returns ``(records, changed)`` where *changed* is ``True`` if any
    record was updated.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    updated: list[ReactionRecord] = []
    changed = False
    for record in records:
        price = current_prices.get(record.instrument)
        if record.is_pending and price is not None:
            new_record = resolve_outcome(record, price, now)
            if new_record != record:
                changed = True
            updated.append(new_record)
        else:
            updated.append(record)
    return updated, changed


# ── Aggregation ──────────────────────────────────────────────────────────


def calculate_stats(
    records: Iterable[ReactionRecord],
    instrument: str,
    now: Optional[datetime] = None,
) -> TradingStats:
    """Outcome counters and long/short probabilities for one instrument.

    Only resolved (non-PENDING) records count.  With no resolved records
    both probabilities are 50, the neutral prior.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    resolved = [
        r for r in records if r.instrument == instrument and not r.is_pending
    ]
    total = len(resolved)
    bullish = sum(1 for r in resolved if r.outcome == BULLISH)
    bearish = sum(1 for r in resolved if r.outcome == BEARISH)

    return TradingStats(
        instrument=instrument,
        total_breakouts=total,
        high_breakouts=sum(1 for r in resolved if r.direction == HIGH),
        low_breakouts=sum(1 for r in resolved if r.direction == LOW),
        bullish_outcomes=bullish,
        bearish_outcomes=bearish,
        long_probability=bullish / total * 100.0 if total else NEUTRAL_PRIOR,
        short_probability=bearish / total * 100.0 if total else NEUTRAL_PRIOR,
        last_updated=now.isoformat(),
    )


def recompute_stats(
    records: list[ReactionRecord],
    now: Optional[datetime] = None,
) -> dict[str, TradingStats]:
    """Rebuild every instrument's ``TradingStats`` from the full record set."""
    if now is None:
        now = datetime.now(timezone.utc)
    instruments = list(dict.fromkeys(r.instrument for r in records if not r.is_pending))
    return {
        instrument: calculate_stats(records, instrument, now)
        for instrument in instruments
    }


def trading_bias(stats: TradingStats, threshold: float = BIAS_THRESHOLD) -> str:
    """``"LONG BIAS"``, ``"SHORT BIAS"`` or ``"NEUTRAL"`` from the probabilities."""
    if stats.long_probability > threshold:
        return LONG_BIAS
    if stats.short_probability > threshold:
        return SHORT_BIAS
    return NO_BIAS


def summarize_reactions(records: list[ReactionRecord]) -> Optional[dict]:
    """Averages over a set of reaction records, or ``None`` when empty.

    ``avg_time_to_reverse`` only considers records that reversed; it is
    ``None`` if none did.
    """
    if not records:
        return None

    reversals = [r.time_to_reverse for r in records if r.time_to_reverse is not None]
    return {
        "count": len(records),
        "follow_through_rate": round(
            sum(1 for r in records if r.follow_through) / len(records) * 100.0, 1,
        ),
        "avg_impulse_15m": round(float(np.mean([r.impulse_15m for r in records])), 2),
        "avg_impulse_1h": round(float(np.mean([r.impulse_1h for r in records])), 2),
        "avg_impulse_4h": round(float(np.mean([r.impulse_4h for r in records])), 2),
        "avg_max_drawdown": round(float(np.mean([r.max_drawdown for r in records])), 2),
        "avg_time_to_reverse": (
            round(float(np.mean(reversals))) if reversals else None
        ),
    }


# ── Read-side filtering ──────────────────────────────────────────────────


def _matches(record: ReactionRecord, criteria: FilterCriteria) -> bool:
    if criteria.instrument is not None and record.instrument != criteria.instrument:
        return False
    if criteria.day_of_week is not None and record.day_of_week != criteria.day_of_week:
        return False
    if criteria.session is not None and record.session != criteria.session:
        return False
    if criteria.time_bucket is not None and record.time_bucket != criteria.time_bucket:
        return False
    if criteria.atr_range is not None:
        lo, hi = criteria.atr_range
        if record.atr < lo or record.atr > hi:
            return False
    if criteria.date_range is not None:
        moment = parse_timestamp(record.timestamp)
        start, end = (parse_timestamp(d) for d in criteria.date_range)
        if moment < start or moment > end:
            return False
    return True


def filter_reactions(
    records: list[ReactionRecord],
    criteria: Optional[FilterCriteria] = None,
) -> list[ReactionRecord]:
    """Records matching every set field of *criteria* (inclusive ranges)."""
    if criteria is None:
        return list(records)
    return [r for r in records if _matches(r, criteria)]


# ── Dedup repair ─────────────────────────────────────────────────────────


def dedup_records(items: Iterable[T], places: int = STRICT_DEDUP_PLACES) -> list[T]:
    """Keep the first item per ``(instrument, direction, fractal_price)``.

    Prices are compared after rounding to *places* decimals.  Works on
    ``ReactionRecord`` and ``BreakoutEvent`` alike.  Idempotent.
    """
    seen: set[tuple[str, str, str]] = set()
    unique: list[T] = []
    for item in items:
        key = (item.instrument, item.direction, f"{item.fractal_price:.{places}f}")
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def dedup_events(events: Iterable[BreakoutEvent]) -> list[BreakoutEvent]:
    """Keep the first event per registry key (5 dp, timeframe included)."""
    seen: set[str] = set()
    unique: list[BreakoutEvent] = []
    for event in events:
        if event.key in seen:
            continue
        seen.add(event.key)
        unique.append(event)
    return unique
