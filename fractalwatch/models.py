"""FractalWatch data models — typed representations of bars, fractals and breakouts."""

from dataclasses import dataclass, field, replace
from typing import Optional


# ── Enumerated values ────────────────────────────────────────────────────

TIMEFRAMES: tuple[str, ...] = ("daily", "weekly", "monthly")

HIGH = "HIGH"
LOW = "LOW"

ACTIVE = "ACTIVE"
BROKEN = "BROKEN"

PENDING = "PENDING"
BULLISH = "BULLISH"
BEARISH = "BEARISH"
NEUTRAL = "NEUTRAL"

# Price tolerance used for event keys (5 dp) and strict dedup passes (10 dp).
EVENT_KEY_PLACES = 5
STRICT_DEDUP_PLACES = 10


@dataclass(frozen=True)
class Bar:
    """A single OHLC bar for one period."""

    date: str  # YYYY-MM-DD
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Fractal:
    """A swing high or swing low on one timeframe."""

    price: float
    timeframe: str  # "daily", "weekly" or "monthly"
    side: str  # "HIGH" or "LOW"
    occurred_at: str
    days_ago: int
    status: str = ACTIVE
    broken_at: Optional[str] = None
    synthetic: bool = False  # fallback level, not a confirmed swing

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def mark_broken(self, broken_at: str) -> "Fractal":
        """Return a BROKEN copy of this fractal.

        A fractal that is already BROKEN is returned unchanged so the
        original ``broken_at`` is never overwritten.
        """
        if self.status == BROKEN:
            return self
        return replace(self, status=BROKEN, broken_at=broken_at)


@dataclass(frozen=True)
class FractalSet:
    """Swing highs and lows detected on a single timeframe."""

    highs: list[Fractal] = field(default_factory=list)
    lows: list[Fractal] = field(default_factory=list)


@dataclass(frozen=True)
class InstrumentFractals:
    """Fractal snapshot for one instrument across all timeframes."""

    instrument: str
    daily: FractalSet = field(default_factory=FractalSet)
    weekly: FractalSet = field(default_factory=FractalSet)
    monthly: FractalSet = field(default_factory=FractalSet)
    last_updated: str = ""

    def for_timeframe(self, timeframe: str) -> FractalSet:
        if timeframe not in TIMEFRAMES:
            raise KeyError(f"Unknown timeframe '{timeframe}'")
        return getattr(self, timeframe)

    def all_fractals(self) -> list[Fractal]:
        """Every fractal in the snapshot, daily → monthly, highs before lows."""
        result: list[Fractal] = []
        for tf in TIMEFRAMES:
            fs = self.for_timeframe(tf)
            result.extend(fs.highs)
            result.extend(fs.lows)
        return result


def event_key(
    instrument: str,
    direction: str,
    timeframe: str,
    price: float,
) -> str:
    """Registry key for a breakout: ``instrument|direction|timeframe|price``."""
    return f"{instrument}|{direction}|{timeframe}|{round(price, EVENT_KEY_PLACES):.{EVENT_KEY_PLACES}f}"


@dataclass(frozen=True)
class BreakoutEvent:
    """Price crossing an ACTIVE fractal in its invalidating direction."""

    instrument: str
    direction: str  # "HIGH" or "LOW"
    timeframe: str
    fractal_price: float
    break_price: float
    timestamp: str  # ISO-8601, UTC

    @property
    def key(self) -> str:
        return event_key(
            self.instrument, self.direction, self.timeframe, self.fractal_price,
        )


@dataclass(frozen=True)
class ReactionMetrics:
    """Post-breakout reaction measurements over a forward price path."""

    impulse_15m: float
    impulse_1h: float
    impulse_4h: float
    retrace_15m: float
    retrace_1h: float
    max_drawdown: float
    time_to_reverse: Optional[int]
    follow_through: bool
    atr: float = 0.0  # volatility context at break time


@dataclass(frozen=True)
class ReactionRecord:
    """A breakout event enriched with reaction analytics and its outcome."""

    instrument: str
    direction: str
    timeframe: str
    fractal_price: float
    break_price: float
    timestamp: str
    impulse_15m: float
    impulse_1h: float
    impulse_4h: float
    retrace_15m: float
    retrace_1h: float
    max_drawdown: float
    time_to_reverse: Optional[int]
    follow_through: bool
    day_of_week: int  # 0 = Sunday
    session: str  # "ASIA", "LONDON", "OVERLAP" or "NY"
    time_bucket: str  # e.g. "8-12"
    atr: float
    price_after_1h: Optional[float] = None
    price_after_4h: Optional[float] = None
    outcome: str = PENDING

    @property
    def key(self) -> str:
        return event_key(
            self.instrument, self.direction, self.timeframe, self.fractal_price,
        )

    @property
    def is_pending(self) -> bool:
        return self.outcome == PENDING


@dataclass(frozen=True)
class TradingStats:
    """Aggregate breakout outcome counters for one instrument."""

    instrument: str
    total_breakouts: int
    high_breakouts: int
    low_breakouts: int
    bullish_outcomes: int
    bearish_outcomes: int
    long_probability: float
    short_probability: float
    last_updated: str = ""


@dataclass(frozen=True)
class FilterCriteria:
    """Conjunctive filter over reaction records.  ``None`` means unconstrained."""

    instrument: Optional[str] = None
    day_of_week: Optional[int] = None
    session: Optional[str] = None
    time_bucket: Optional[str] = None
    atr_range: Optional[tuple[float, float]] = None
    date_range: Optional[tuple[str, str]] = None


# ── Instrument metadata ──────────────────────────────────────────────────

INSTRUMENT_PIP_SIZES: dict[str, float] = {
    "EURUSD": 0.0001,
    "GBPUSD": 0.0001,
    "USDJPY": 0.01,
    "AUDUSD": 0.0001,
    "USDCAD": 0.0001,
    "NZDUSD": 0.0001,
    "XAUUSD": 0.1,
    "DX-Y.NYB": 0.01,
}
