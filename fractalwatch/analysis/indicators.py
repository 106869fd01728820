"""Volatility indicators for reaction records. Pure functions, no I/O."""


def calculate_path_atr(prices: list[float], period: int = 14) -> float:
    """Average absolute step between consecutive samples of a price path.

    Uses the absolute close-to-close move as a simplified true range:
        step = |price[i] - price[i-1]|

    Averages the first *period* steps (fewer if the path is shorter than
    ``period + 1``).  Returns ``0.0`` when fewer than *period* prices are
    available so a reaction record always carries a number.
    """
    if len(prices) < period:
        return 0.0
    steps = [
        abs(prices[i] - prices[i - 1])
        for i in range(1, min(period + 1, len(prices)))
    ]
    if not steps:
        return 0.0
    return sum(steps) / len(steps)
