"""
QQQ price-history technicals

Turns a series of daily closes into the QQQ momentum indicators:
- 1-day return and consecutive >1% down days
- Proximity to the 20/50/200-day averages and the lower Bollinger band
  (0 = at a safe distance above, 100 = at or below)
- Death cross (50-day average below 200-day average)
- ATR proxy from close-to-close moves

Fields that need a longer window than the history provides are omitted, so
the snapshot falls back to the registry default for them.
"""

from typing import Optional

import numpy as np
import pandas as pd

DOWN_DAY_THRESHOLD = -1.0  # percent

# window -> distance (percent above) at which proximity reaches 0
SMA_SAFE_DISTANCE = {
    20: 5.0,
    50: 8.0,
    200: 10.0,
}
BOLLINGER_WINDOW = 20
BOLLINGER_STDDEV = 2.0
BOLLINGER_SAFE_DISTANCE = 3.0
ATR_WINDOW = 14


def proximity(price: float, level: float, safe_distance: float) -> float:
    """0 when price is safe_distance% or more above level, 100 at or below it"""
    distance = (price - level) / level * 100
    if distance <= 0:
        return 100.0
    if distance < safe_distance:
        return round(100 - distance / safe_distance * 100, 1)
    return 0.0


def consecutive_down_days(closes: pd.Series, threshold: float = DOWN_DAY_THRESHOLD) -> int:
    changes = closes.pct_change().dropna() * 100
    count = 0
    for change in reversed(changes.tolist()):
        if change < threshold:
            count += 1
        else:
            break
    return count


def bollinger_lower(closes: pd.Series) -> Optional[float]:
    if len(closes) < BOLLINGER_WINDOW:
        return None
    window = closes.iloc[-BOLLINGER_WINDOW:].to_numpy(dtype=float)
    # population deviation over the window
    return float(window.mean() - BOLLINGER_STDDEV * window.std())


def compute_qqq_technicals(closes: pd.Series) -> dict:
    """
    Compute QQQ snapshot fields from daily closes (oldest first).

    Returns a partial indicator mapping; keys are only present when there is
    enough history to compute them.
    """
    closes = pd.Series(closes, dtype=float).dropna()
    result: dict = {}
    if len(closes) < 2:
        return result

    price = float(closes.iloc[-1])
    prev_close = float(closes.iloc[-2])
    result['qqq_daily_return'] = round((price - prev_close) / prev_close * 100, 2)
    result['qqq_consec_down'] = consecutive_down_days(closes)

    smas = {}
    for window, safe_distance in SMA_SAFE_DISTANCE.items():
        if len(closes) < window:
            continue
        sma = float(closes.iloc[-window:].mean())
        smas[window] = sma
        result[f'qqq_below_sma{window}'] = price < sma
        result[f'qqq_sma{window}_proximity'] = proximity(price, sma, safe_distance)

    lower = bollinger_lower(closes)
    if lower is not None and lower > 0:
        result['qqq_below_bollinger'] = price < lower
        result['qqq_bollinger_proximity'] = proximity(price, lower, BOLLINGER_SAFE_DISTANCE)

    if 50 in smas and 200 in smas:
        result['qqq_death_cross'] = smas[50] < smas[200]

    if len(closes) > ATR_WINDOW:
        moves = np.abs(closes.diff().dropna().iloc[-ATR_WINDOW:])
        result['atr'] = round(float(moves.mean()), 2)

    return result


def momentum_score(closes: pd.Series, window: int = 20) -> Optional[float]:
    """0-100 momentum score: 50 + 2.5 x the window return in percent, clamped"""
    closes = pd.Series(closes, dtype=float).dropna()
    if len(closes) <= window:
        return None
    change = (closes.iloc[-1] / closes.iloc[-1 - window] - 1.0) * 100
    return round(float(min(100.0, max(0.0, 50 + 2.5 * change))), 1)
