"""Fractal lifecycle — detects new breakouts of ACTIVE fractals against live prices.

Pure functions.  The registry passed in is only read: it is any container
supporting ``key in registry`` (a ``BreakoutRegistry`` in production, a plain
``set`` in tests).  Recording a key is the caller's job, once the event
itself has been stored.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from fractalwatch.models import (
    HIGH,
    TIMEFRAMES,
    BreakoutEvent,
    Fractal,
    FractalSet,
    InstrumentFractals,
    event_key,
)

logger = logging.getLogger("fractalwatch.lifecycle")


def is_breaking(fractal: Fractal, price: float) -> bool:
    """True if *price* invalidates an ACTIVE *fractal*."""
    if not fractal.is_active:
        return False
    if fractal.side == HIGH:
        return price > fractal.price
    return price < fractal.price


def _check_list(
    instrument: str,
    fractals: list[Fractal],
    price: float,
    registry,
    claimed: set[str],
    stamp: str,
    events: list[BreakoutEvent],
) -> list[Fractal]:
    updated: list[Fractal] = []
    for fractal in fractals:
        if not is_breaking(fractal, price):
            updated.append(fractal)
            continue

        key = event_key(instrument, fractal.side, fractal.timeframe, fractal.price)
        if key in registry or key in claimed:
            logger.debug("Breakout %s already recorded", key)
            updated.append(fractal)
            continue

        events.append(
            BreakoutEvent(
                instrument=instrument,
                direction=fractal.side,
                timeframe=fractal.timeframe,
                fractal_price=fractal.price,
                break_price=price,
                timestamp=stamp,
            )
        )
        claimed.add(key)
        updated.append(fractal.mark_broken(stamp))
        logger.info(
            "%s: %s %s BROKEN at %.5f (%s %.5f)",
            instrument,
            fractal.timeframe.upper(),
            fractal.side,
            price,
            ">" if fractal.side == HIGH else "<",
            fractal.price,
        )
    return updated


def check_instrument(
    snapshot: InstrumentFractals,
    price: float,
    registry,
    now: Optional[datetime] = None,
) -> tuple[list[BreakoutEvent], InstrumentFractals]:
    """Check one instrument's fractals against its current *price*.

    Returns the new events and a snapshot with the broken fractals flipped
    to BROKEN.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    stamp = now.isoformat()

    events: list[BreakoutEvent] = []
    claimed: set[str] = set()
    sets: dict[str, FractalSet] = {}
    for tf in TIMEFRAMES:
        fs = snapshot.for_timeframe(tf)
        sets[tf] = FractalSet(
            highs=_check_list(
                snapshot.instrument, fs.highs, price, registry, claimed, stamp, events,
            ),
            lows=_check_list(
                snapshot.instrument, fs.lows, price, registry, claimed, stamp, events,
            ),
        )
    return events, replace(snapshot, **sets)


def check_breakouts(
    fractals: list[InstrumentFractals],
    current_prices: dict[str, Optional[float]],
    registry,
    now: Optional[datetime] = None,
) -> tuple[list[BreakoutEvent], list[InstrumentFractals]]:
    """Emit one ``BreakoutEvent`` per newly broken fractal across all instruments.

    Instruments without a current price are skipped for this cycle.
    Keys already present in *registry* produce no event, so repeated scans
    while price stays beyond a level are idempotent.  *registry* is not
    modified; the caller adds each key after storing its event.

    Returns:
        ``(events, updated_snapshots)``; snapshots keep their input order.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    events: list[BreakoutEvent] = []
    updated: list[InstrumentFractals] = []
    for snapshot in fractals:
        price = current_prices.get(snapshot.instrument)
        if price is None:
            logger.warning(
                "%s: no current price, skipping breakout check", snapshot.instrument,
            )
            updated.append(snapshot)
            continue
        new_events, new_snapshot = check_instrument(snapshot, price, registry, now)
        events.extend(new_events)
        updated.append(new_snapshot)
    return events, updated


def next_reference_levels(
    snapshot: InstrumentFractals,
    current_price: float,
    pip_size: float = 0.0001,
) -> dict[str, dict]:
    """First ACTIVE high and low on each timeframe with distance in pips.

    Returns ``{timeframe: {"high": {...} | None, "low": {...} | None}}``.
    Distances are positive when the level is still ahead of price.
    """
    levels: dict[str, dict] = {}
    for tf in TIMEFRAMES:
        fs = snapshot.for_timeframe(tf)
        high = next((f for f in fs.highs if f.is_active), None)
        low = next((f for f in fs.lows if f.is_active), None)
        levels[tf] = {
            "high": {
                "price": high.price,
                "distance_pips": round((high.price - current_price) / pip_size),
            } if high else None,
            "low": {
                "price": low.price,
                "distance_pips": round((current_price - low.price) / pip_size),
            } if low else None,
        }
    return levels
