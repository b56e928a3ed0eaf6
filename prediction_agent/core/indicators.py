"""
Technical indicators used by the signal composer.

All functions are pure and safe to call on overlapping sliding windows.
"""
from typing import Sequence

import numpy as np


def ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average seeded with the SMA of the first ``period`` values.

    With fewer than ``period`` prices the last price is returned unchanged.
    """
    if len(prices) < period:
        return float(prices[-1])

    arr = np.asarray(prices, dtype=np.float64)
    multiplier = 2.0 / (period + 1)
    value = float(np.mean(arr[:period]))
    for price in arr[period:]:
        value = (float(price) - value) * multiplier + value
    return value


def rsi(prices: Sequence[float], period: int = 14) -> float:
    """Relative Strength Index with Wilder smoothing. Neutral 50 on short input."""
    if len(prices) < period + 1:
        return 50.0

    deltas = np.diff(np.asarray(prices, dtype=np.float64))
    gains = np.where(deltas >= 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.sum(gains[:period])) / period
    avg_loss = float(np.sum(losses[:period])) / period

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + float(gain)) / period
        avg_loss = (avg_loss * (period - 1) + float(loss)) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def volume_ratio(volumes: Sequence[float], period: int = 15) -> float:
    """Mean of the last ``period`` volumes over the mean of everything before them."""
    arr = np.asarray(volumes, dtype=np.float64)
    historical = arr[:-period] if len(arr) > period else arr[:0]
    if historical.size == 0:
        return 1.0
    historical_avg = float(np.mean(historical))
    if historical_avg == 0:
        return 1.0
    return float(np.mean(arr[-period:])) / historical_avg
