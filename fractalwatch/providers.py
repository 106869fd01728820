"""Market data provider protocols.

The engine never fetches data itself; callers inject objects satisfying
these interfaces.  Failures surface as empty results (or raised exceptions,
which the engine treats the same way per instrument).
"""

from typing import Optional, Protocol, runtime_checkable

from fractalwatch.models import Bar


@runtime_checkable
class BarProvider(Protocol):
    """Source of historical OHLC bars."""

    async def get_bars(self, instrument: str, timeframe: str) -> list[Bar]:
        """Return bars for *timeframe* ascending by date, or ``[]``."""
        ...


@runtime_checkable
class PriceProvider(Protocol):
    """Source of live prices."""

    async def get_current_price(self, instrument: str) -> Optional[float]:
        """Return the latest price, or ``None`` if unavailable."""
        ...

    async def get_price_path(self, instrument: str) -> list[float]:
        """Return one-minute prices following the most recent break, or ``[]``."""
        ...
