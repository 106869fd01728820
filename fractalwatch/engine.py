"""FractalWatch — scan engine (orchestration loop).

Connects the providers, the pure analysis functions and the repositories:
bars → fractal snapshots, live prices → breakout events → reaction records
→ outcome resolution → trading stats.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fractalwatch.analysis.fractals import detect_multi_timeframe
from fractalwatch.analysis.lifecycle import check_breakouts
from fractalwatch.analysis.reactions import build_reaction_record
from fractalwatch.analysis.stats import (
    dedup_events,
    dedup_records,
    recompute_stats,
    resolve_outcomes,
    trading_bias,
)
from fractalwatch.config import Config
from fractalwatch.models import (
    TIMEFRAMES,
    Bar,
    BreakoutEvent,
    FractalSet,
    InstrumentFractals,
    TradingStats,
    event_key,
)
from fractalwatch.providers import BarProvider, PriceProvider
from fractalwatch.repos.event_repo import BreakoutEventRepo
from fractalwatch.repos.fractal_repo import FractalRepo
from fractalwatch.repos.reaction_repo import ReactionRepo
from fractalwatch.repos.registry_repo import BreakoutRegistry
from fractalwatch.repos.stats_repo import StatsRepo

logger = logging.getLogger("fractalwatch.engine")


def dedup_logs(
    event_repo: BreakoutEventRepo,
    reaction_repo: ReactionRepo,
    stats_repo: StatsRepo,
    dry_run: bool = False,
    utc_now: Optional[datetime] = None,
) -> dict:
    """Dedup both logs (first seen wins) and rebuild stats from what remains.

    Shared by :meth:`FractalEngine.repair_logs` and the cleanup script.
    Returns before/after row counts; with *dry_run* nothing is written.
    """
    events = event_repo.load()
    records = reaction_repo.load()
    unique_events = dedup_events(events)
    unique_records = dedup_records(records)

    counts = {
        "events_before": len(events),
        "events_after": len(unique_events),
        "reactions_before": len(records),
        "reactions_after": len(unique_records),
    }
    if dry_run:
        logger.info("Dedup dry run, nothing written: %s", counts)
        return counts

    event_repo.save(unique_events)
    reaction_repo.save(unique_records)
    stats_repo.save(list(recompute_stats(unique_records, utc_now).values()))
    logger.info(
        "Dedup repair removed %d event(s) and %d reaction(s)",
        counts["events_before"] - counts["events_after"],
        counts["reactions_before"] - counts["reactions_after"],
    )
    return counts


class FractalEngine:
    """Runs fractal refreshes and breakout scans for the configured instruments.

    Args:
        config: Application configuration.
        bar_provider: Source of OHLC bars (``BarProvider``).
        price_provider: Source of live prices and post-break paths
                        (``PriceProvider``).
        fractal_repo: Fractal snapshot store.
        event_repo: Breakout event log.
        reaction_repo: Reaction record log.
        stats_repo: Derived statistics store.
        registry: Durable set of breakout keys already recorded.
    """

    def __init__(
        self,
        config: Config,
        bar_provider: BarProvider,
        price_provider: PriceProvider,
        fractal_repo: FractalRepo,
        event_repo: BreakoutEventRepo,
        reaction_repo: ReactionRepo,
        stats_repo: StatsRepo,
        registry: BreakoutRegistry,
    ) -> None:
        self._config = config
        self._bars = bar_provider
        self._prices = price_provider
        self._fractal_repo = fractal_repo
        self._event_repo = event_repo
        self._reaction_repo = reaction_repo
        self._stats_repo = stats_repo
        self._registry = registry
        self._write_lock = asyncio.Lock()
        self._running: bool = False
        self._cycle_count: int = 0
        self._registry.load()

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    # ── Provider calls ───────────────────────────────────────────────────

    async def _fetch_bars(self, instrument: str) -> dict[str, list[Bar]]:
        bars: dict[str, list[Bar]] = {}
        for tf in TIMEFRAMES:
            try:
                bars[tf] = await self._bars.get_bars(instrument, tf) or []
            except Exception as exc:
                logger.warning("%s: %s bars unavailable: %s", instrument, tf, exc)
                bars[tf] = []
        return bars

    async def _fetch_price(self, instrument: str) -> Optional[float]:
        try:
            return await self._prices.get_current_price(instrument)
        except Exception as exc:
            logger.warning("%s: current price unavailable: %s", instrument, exc)
            return None

    async def _fetch_path(self, instrument: str) -> list[float]:
        try:
            return list(await self._prices.get_price_path(instrument) or [])
        except Exception as exc:
            logger.warning("%s: price path unavailable: %s", instrument, exc)
            return []

    async def _fetch_prices(self, instruments: list[str]) -> dict[str, Optional[float]]:
        prices = await asyncio.gather(*(self._fetch_price(i) for i in instruments))
        return dict(zip(instruments, prices))

    # ── Fractal refresh ──────────────────────────────────────────────────

    def _apply_registry(
        self, snapshot: InstrumentFractals, broken_at: dict[str, str], stamp: str,
    ) -> InstrumentFractals:
        """Keep levels already broken by live price BROKEN after re-detection."""
        sets: dict[str, FractalSet] = {}
        for tf in TIMEFRAMES:
            fs = snapshot.for_timeframe(tf)
            sides = []
            for fractals in (fs.highs, fs.lows):
                kept = []
                for f in fractals:
                    key = event_key(snapshot.instrument, f.side, tf, f.price)
                    if f.is_active and key in self._registry:
                        f = f.mark_broken(broken_at.get(key, stamp))
                    kept.append(f)
                sides.append(kept)
            sets[tf] = FractalSet(highs=sides[0], lows=sides[1])
        return InstrumentFractals(
            instrument=snapshot.instrument,
            last_updated=snapshot.last_updated,
            **sets,
        )

    async def _refresh_instrument(
        self,
        instrument: str,
        now: datetime,
        broken_at: dict[str, str],
    ) -> Optional[InstrumentFractals]:
        bars = await self._fetch_bars(instrument)
        if not any(bars.values()):
            logger.warning("%s: no bar data available, keeping previous snapshot", instrument)
            return None

        snapshot = detect_multi_timeframe(
            instrument,
            bars,
            lookback=self._config.lookback,
            max_per_list=self._config.max_per_list,
            now=now,
        )
        snapshot = self._apply_registry(snapshot, broken_at, now.isoformat())
        async with self._write_lock:
            self._fractal_repo.append(snapshot)

        for tf in TIMEFRAMES:
            fs = snapshot.for_timeframe(tf)
            logger.info(
                "%s %s: highs [%s] lows [%s]",
                instrument,
                tf,
                ", ".join(f"{f.price:.5f} ({f.status})" for f in fs.highs),
                ", ".join(f"{f.price:.5f} ({f.status})" for f in fs.lows),
            )
        return snapshot

    async def refresh_fractals(
        self, utc_now: Optional[datetime] = None,
    ) -> list[InstrumentFractals]:
        """Re-detect fractals for every configured instrument and store them.

        Instruments whose bars are unavailable keep their previous snapshot.

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        broken_at = {e.key: e.timestamp for e in self._event_repo.load()}
        results = await asyncio.gather(
            *(
                self._refresh_instrument(i, utc_now, broken_at)
                for i in self._config.instruments
            )
        )
        refreshed = [s for s in results if s is not None]
        logger.info(
            "Fractal refresh: %d/%d instrument(s) updated",
            len(refreshed), len(self._config.instruments),
        )
        return refreshed

    # ── Breakout scan ────────────────────────────────────────────────────

    async def _record(self, event: BreakoutEvent) -> bool:
        """Persist one breakout and its reaction.  Returns ``False`` on a duplicate.

        The reaction goes in first and the registry key last.  A write that
        fails part way leaves the key unclaimed, so the next scan emits the
        breakout again; the reaction log ignores the repeated key.
        """
        path = await self._fetch_path(event.instrument)
        record = build_reaction_record(event, path)

        async with self._write_lock:
            self._reaction_repo.append(record)
            appended = self._event_repo.append(event)
            self._registry.add(event.key)
            self._registry.persist()

        if not appended:
            logger.debug("Breakout %s already recorded", event.key)
            return False
        logger.info(
            "Reaction recorded: %s %s %s at %.5f (follow-through=%s)",
            event.instrument, event.timeframe, event.direction,
            event.break_price, record.follow_through,
        )
        return True

    async def check_breakouts(self, utc_now: Optional[datetime] = None) -> dict:
        """Check stored ACTIVE fractals against live prices.

        Breakouts whose writes fail are logged and counted under ``failed``;
        their levels stay ACTIVE and are retried on the next scan.

        Returns:
            ``{"events": [BreakoutEvent, ...], "already_recorded": int,
            "failed": int, "skipped": [instrument, ...]}``
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        snapshots = self._fractal_repo.load()
        if not snapshots:
            return {"events": [], "already_recorded": 0, "failed": 0, "skipped": []}

        prices = await self._fetch_prices([s.instrument for s in snapshots])
        skipped = [i for i, p in prices.items() if p is None]

        events, _ = check_breakouts(snapshots, prices, self._registry, utc_now)

        recorded: list[BreakoutEvent] = []
        duplicates = 0
        failed = 0
        for event in events:
            try:
                stored = await self._record(event)
            except Exception as exc:
                failed += 1
                logger.error("Breakout %s not recorded, retrying next scan: %s", event.key, exc)
                continue
            if stored:
                recorded.append(event)
            else:
                duplicates += 1

        if events:
            # Only levels whose key made it into the registry flip to BROKEN
            changed = {e.instrument for e in events}
            broken_at = {e.key: e.timestamp for e in recorded}
            stamp = utc_now.isoformat()
            async with self._write_lock:
                for snapshot in snapshots:
                    if snapshot.instrument in changed:
                        self._fractal_repo.append(
                            self._apply_registry(snapshot, broken_at, stamp)
                        )

        return {
            "events": recorded,
            "already_recorded": duplicates,
            "failed": failed,
            "skipped": skipped,
        }

    # ── Outcomes & stats ─────────────────────────────────────────────────

    def recompute_stats(self, utc_now: Optional[datetime] = None) -> list[TradingStats]:
        """Rebuild stats from the full reaction log and replace the stored set."""
        stats = list(recompute_stats(self._reaction_repo.load(), utc_now).values())
        self._stats_repo.save(stats)
        return stats

    async def update_outcomes(self, utc_now: Optional[datetime] = None) -> list[TradingStats]:
        """Resolve pending outcomes; recompute stats when anything changed.

        Returns the stats written, or ``[]`` when nothing resolved.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        records = self._reaction_repo.load()
        pending = sorted({r.instrument for r in records if r.is_pending})
        if not pending:
            return []

        prices = await self._fetch_prices(pending)
        updated, changed = resolve_outcomes(records, prices, utc_now)
        if not changed:
            return []

        async with self._write_lock:
            self._reaction_repo.save(updated)
            stats = list(recompute_stats(updated, utc_now).values())
            self._stats_repo.save(stats)
        logger.info("Outcomes resolved; stats recomputed for %d instrument(s)", len(stats))
        return stats

    def trading_context(self) -> list[dict]:
        """Stored stats with their bias label, one dict per instrument."""
        return [
            {
                "instrument": s.instrument,
                "total_breakouts": s.total_breakouts,
                "long_probability": round(s.long_probability, 1),
                "short_probability": round(s.short_probability, 1),
                "bias": trading_bias(s),
            }
            for s in self._stats_repo.load()
        ]

    def repair_logs(self) -> dict:
        """Collapse duplicate events and reactions (first seen wins).

        Returns the number of rows removed from each log.
        """
        counts = dedup_logs(self._event_repo, self._reaction_repo, self._stats_repo)
        return {
            "events": counts["events_before"] - counts["events_after"],
            "reactions": counts["reactions_before"] - counts["reactions_after"],
        }

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one scan cycle: breakout check, then outcome resolution.

        Args:
            utc_now: Current UTC datetime.  Accepting it as a parameter makes
                     the engine testable without mocking ``datetime``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        scan = await self.check_breakouts(utc_now)
        stats = await self.update_outcomes(utc_now)
        return {
            "new_breakouts": len(scan["events"]),
            "already_recorded": scan["already_recorded"],
            "failed": scan["failed"],
            "skipped": scan["skipped"],
            "stats_updated": len(stats),
            "evaluated_at": utc_now.isoformat(),
        }

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
        refresh_interval: int | None = None,
    ) -> list[dict]:
        """Scan until stopped, re-detecting fractals on a slower cadence.

        Fractals are refreshed before the first cycle and again whenever
        *refresh_interval* seconds have passed since the last successful
        refresh, so new swings and fallback levels replace broken ones.

        Args:
            poll_interval: Seconds between cycles.  Defaults to
                           ``config.scan_interval_seconds``.
            max_cycles: Stop after this many cycles (0 = unlimited).
            refresh_interval: Seconds between fractal refreshes.  Defaults to
                              ``config.refresh_interval_seconds``; 0 refreshes
                              before every cycle.

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.scan_interval_seconds
        if refresh_interval is None:
            refresh_interval = self._config.refresh_interval_seconds

        self._running = True
        loop = asyncio.get_running_loop()
        last_refresh: Optional[float] = None

        results: list[dict] = []
        cycle = 0
        while self._running:
            cycle += 1
            self._cycle_count += 1
            try:
                started = loop.time()
                if last_refresh is None or started - last_refresh >= refresh_interval:
                    await self.refresh_fractals()
                    last_refresh = started
                result = await self.run_once()
                results.append(result)
                logger.info(
                    "Cycle %d: %d new breakout(s)", cycle, result["new_breakouts"],
                )
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                results.append({"error": str(exc)})

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep: checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        return results
