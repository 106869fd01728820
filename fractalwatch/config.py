"""FractalWatch — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "FRACTAL_INSTRUMENTS",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    instruments: tuple[str, ...]
    lookback: int
    max_per_list: int  # cap on each highs/lows list, 3–5
    scan_interval_seconds: int
    refresh_interval_seconds: int  # fractal re-detection cadence in run()
    db_path: str
    log_level: str
    api_port: int
    feed_dir: str


def _parse_instruments(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the offending variable when a
    value is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    instruments = _parse_instruments(os.environ["FRACTAL_INSTRUMENTS"])
    if not instruments:
        raise ValueError("FRACTAL_INSTRUMENTS must list at least one instrument")

    lookback = int(os.environ.get("FRACTAL_LOOKBACK", "5"))
    if lookback < 1:
        raise ValueError(f"FRACTAL_LOOKBACK must be >= 1, got {lookback}")

    max_per_list = int(os.environ.get("FRACTAL_MAX_PER_LIST", "5"))
    if not 3 <= max_per_list <= 5:
        raise ValueError(
            f"FRACTAL_MAX_PER_LIST must be between 3 and 5, got {max_per_list}"
        )

    refresh_interval = int(os.environ.get("FRACTAL_REFRESH_SECONDS", "14400"))
    if refresh_interval < 1:
        raise ValueError(
            f"FRACTAL_REFRESH_SECONDS must be >= 1, got {refresh_interval}"
        )

    return Config(
        instruments=instruments,
        lookback=lookback,
        max_per_list=max_per_list,
        scan_interval_seconds=int(os.environ.get("SCAN_INTERVAL_SECONDS", "30")),
        refresh_interval_seconds=refresh_interval,
        db_path=os.environ.get("DB_PATH", "data/fractalwatch.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        feed_dir=os.environ.get("FEED_DIR", "data/feeds"),
    )
