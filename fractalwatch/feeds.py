"""Local JSON file feed — bars and prices read from ``{feed_dir}/{instrument}.json``.

Document layout::

    {
      "daily":   [{"date": "2024-01-02", "open": 1.1, "high": 1.2,
                   "low": 1.0, "close": 1.15}, ...],
      "weekly":  [...],
      "monthly": [...],
      "price":   1.1042,
      "path":    [1.1042, 1.1045, ...]
    }

An external collector keeps these files current; the feed only reads them.
"""

import json
import logging
import pathlib
from typing import Optional

from fractalwatch.models import TIMEFRAMES, Bar

logger = logging.getLogger("fractalwatch.feeds")


class JsonFileFeed:
    """Satisfies ``BarProvider`` and ``PriceProvider`` from local JSON files.

    Args:
        feed_dir: Directory holding one ``<instrument>.json`` per instrument.
    """

    def __init__(self, feed_dir: str | pathlib.Path) -> None:
        self._feed_dir = pathlib.Path(feed_dir)

    def _read(self, instrument: str) -> dict:
        path = self._feed_dir / f"{instrument}.json"
        if not path.exists():
            logger.info("No feed file for %s at %s", instrument, path)
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Feed file %s unreadable: %s", path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    async def get_bars(self, instrument: str, timeframe: str) -> list[Bar]:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe '{timeframe}'")
        bars: list[Bar] = []
        for raw in self._read(instrument).get(timeframe, []):
            try:
                bars.append(
                    Bar(
                        date=str(raw["date"])[:10],
                        open=float(raw["open"]),
                        high=float(raw["high"]),
                        low=float(raw["low"]),
                        close=float(raw["close"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("%s %s: skipping malformed bar: %s", instrument, timeframe, exc)
        bars.sort(key=lambda b: b.date)
        return bars

    async def get_current_price(self, instrument: str) -> Optional[float]:
        price = self._read(instrument).get("price")
        if price is None:
            return None
        try:
            return float(price)
        except (TypeError, ValueError):
            logger.warning("%s: malformed price %r", instrument, price)
            return None

    async def get_price_path(self, instrument: str) -> list[float]:
        try:
            return [float(p) for p in self._read(instrument).get("path", [])]
        except (TypeError, ValueError):
            logger.warning("%s: malformed price path", instrument)
            return []
