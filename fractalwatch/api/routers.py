"""Read-only API routers — /fractals, /breakouts, /reactions, /stats endpoints.

No business logic, no writes. Delegates to the repos and the pure stats
functions.
"""

import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from fractalwatch.analysis.lifecycle import next_reference_levels
from fractalwatch.analysis.sessions import parse_timestamp
from fractalwatch.analysis.stats import (
    filter_reactions,
    summarize_reactions,
    trading_bias,
)
from fractalwatch.models import INSTRUMENT_PIP_SIZES, FilterCriteria

logger = logging.getLogger("fractalwatch")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_fractal_repo = None   # Set via configure_routers()
_event_repo = None     # Set via configure_routers()
_reaction_repo = None  # Set via configure_routers()
_stats_repo = None     # Set via configure_routers()


def configure_routers(
    fractal_repo=None,
    event_repo=None,
    reaction_repo=None,
    stats_repo=None,
) -> None:
    """Inject repositories from the application startup.

    Any argument may be a duck-typed stand-in exposing ``load()`` (tests).
    """
    global _fractal_repo, _event_repo, _reaction_repo, _stats_repo  # noqa: PLW0603
    _fractal_repo = fractal_repo
    _event_repo = event_repo
    _reaction_repo = reaction_repo
    _stats_repo = stats_repo


def _criteria(
    instrument: Optional[str],
    day_of_week: Optional[int],
    session: Optional[str],
    time_bucket: Optional[str],
    min_atr: Optional[float],
    max_atr: Optional[float],
    start: Optional[str],
    end: Optional[str],
) -> FilterCriteria:
    atr_range = None
    if min_atr is not None or max_atr is not None:
        atr_range = (
            min_atr if min_atr is not None else float("-inf"),
            max_atr if max_atr is not None else float("inf"),
        )
    date_range = None
    if start is not None or end is not None:
        if end is not None and len(end) == 10:
            end = f"{end}T23:59:59.999999"  # bare date: include the whole day
        date_range = (start or "0001-01-01", end or "9999-12-31")
        for bound in date_range:
            try:
                parse_timestamp(bound)
            except ValueError as exc:
                raise HTTPException(
                    status_code=422, detail=f"Invalid date: {bound}",
                ) from exc
    return FilterCriteria(
        instrument=instrument,
        day_of_week=day_of_week,
        session=session.upper() if session else None,
        time_bucket=time_bucket,
        atr_range=atr_range,
        date_range=date_range,
    )


def _load_reactions(criteria: FilterCriteria) -> list:
    if _reaction_repo is None:
        return []
    return filter_reactions(_reaction_repo.load(), criteria)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/fractals")
async def get_fractals():
    """Return the latest fractal snapshot for every instrument."""
    if _fractal_repo is None:
        return {"fractals": []}
    return {"fractals": [dataclasses.asdict(s) for s in _fractal_repo.load()]}


@router.get("/fractals/{instrument}")
async def get_instrument_fractals(
    instrument: str,
    price: Optional[float] = Query(default=None, gt=0),
):
    """Return one instrument's snapshot.

    With ``?price=`` the nearest ACTIVE level per timeframe and its pip
    distance are included as ``next_levels``.
    """
    snapshot = _fractal_repo.get(instrument) if _fractal_repo is not None else None
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Unknown instrument: {instrument}")

    body = dataclasses.asdict(snapshot)
    if price is not None:
        pip_size = INSTRUMENT_PIP_SIZES.get(instrument, 0.0001)
        body["next_levels"] = next_reference_levels(snapshot, price, pip_size)
    return body


@router.get("/breakouts")
async def get_breakouts(
    instrument: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
):
    """Return the most recent breakout events, newest first."""
    if _event_repo is None:
        return {"breakouts": [], "total": 0}
    events = _event_repo.load()
    if instrument:
        events = [e for e in events if e.instrument == instrument]
    recent = events[-limit:]
    recent.reverse()
    return {
        "breakouts": [dataclasses.asdict(e) for e in recent],
        "total": len(events),
    }


@router.get("/reactions")
async def get_reactions(
    instrument: Optional[str] = Query(default=None),
    day_of_week: Optional[int] = Query(default=None, ge=0, le=6),
    session: Optional[str] = Query(default=None),
    time_bucket: Optional[str] = Query(default=None),
    min_atr: Optional[float] = Query(default=None),
    max_atr: Optional[float] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
):
    """Return reaction records matching every supplied filter."""
    criteria = _criteria(
        instrument, day_of_week, session, time_bucket, min_atr, max_atr, start, end,
    )
    records = _load_reactions(criteria)
    return {
        "reactions": [dataclasses.asdict(r) for r in records],
        "total": len(records),
    }


@router.get("/reactions/summary")
async def get_reaction_summary(
    instrument: Optional[str] = Query(default=None),
    day_of_week: Optional[int] = Query(default=None, ge=0, le=6),
    session: Optional[str] = Query(default=None),
    time_bucket: Optional[str] = Query(default=None),
    min_atr: Optional[float] = Query(default=None),
    max_atr: Optional[float] = Query(default=None),
    start: Optional[str] = Query(default=None),
    end: Optional[str] = Query(default=None),
):
    """Return averages over the filtered reactions (``null`` when none match)."""
    criteria = _criteria(
        instrument, day_of_week, session, time_bucket, min_atr, max_atr, start, end,
    )
    return {"summary": summarize_reactions(_load_reactions(criteria))}


@router.get("/stats")
async def get_stats():
    """Return per-instrument outcome statistics with their bias label."""
    if _stats_repo is None:
        return {"stats": []}
    return {
        "stats": [
            {**dataclasses.asdict(s), "bias": trading_bias(s)}
            for s in _stats_repo.load()
        ]
    }
