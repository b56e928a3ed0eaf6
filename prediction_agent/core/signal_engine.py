from dataclasses import dataclass
from typing import Sequence

import numpy as np

from prediction_agent.constants import Direction, EmaSignal, RsiSignal, VolumeSignal
from prediction_agent.core.indicators import ema, rsi, volume_ratio
from prediction_agent.errors import InsufficientData
from prediction_agent.utils.candle import Candle

MIN_CANDLES = 60

# Component weights. They are not normalised: the maximum raw score is 100 and
# the confidence is clipped there.
EMA_WEIGHT = 30.0
RSI_WEIGHT = 25.0
VOLUME_SPIKE_WEIGHT = 20.0
VOLUME_ELEVATED_WEIGHT = 10.0
MOMENTUM_WEIGHT = 25.0

RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
VOLUME_SPIKE = 1.5
VOLUME_ELEVATED = 1.2
MOMENTUM_WINDOW = 15


@dataclass(frozen=True)
class SubSignals:
    ema_signal: EmaSignal
    rsi: float
    rsi_signal: RsiSignal
    volume_ratio: float
    volume_signal: VolumeSignal


@dataclass(frozen=True)
class SignalResult:
    confidence: float          # 0-100
    direction: Direction       # UP / DOWN
    rationale: str
    sub_signals: SubSignals
    score: float               # signed raw score
    ema_fast: float
    ema_slow: float
    current_price: float


def compute_signal(candles: Sequence[Candle], action_threshold: float = 60.0) -> SignalResult:
    """Score a trailing window of candles into a direction and a 0-100 confidence.

    ``action_threshold`` only shapes the rationale text (``BET UP`` vs ``SKIP``);
    the caller decides whether to actually bet.
    """
    if len(candles) < MIN_CANDLES:
        raise InsufficientData(
            f"Signal needs at least {MIN_CANDLES} candles, got {len(candles)}"
        )

    closes = np.array([c.close for c in candles], dtype=np.float64)
    volumes = np.array([c.volume for c in candles], dtype=np.float64)
    current_price = float(closes[-1])

    ema_fast = ema(closes, 5)
    ema_slow = ema(closes, 15)
    rsi_value = rsi(closes, 14)
    vol_ratio = volume_ratio(volumes, 15)

    ema_signal = EmaSignal.BULLISH if ema_fast > ema_slow else EmaSignal.BEARISH
    if rsi_value < RSI_OVERSOLD:
        rsi_signal = RsiSignal.OVERSOLD
    elif rsi_value > RSI_OVERBOUGHT:
        rsi_signal = RsiSignal.OVERBOUGHT
    else:
        rsi_signal = RsiSignal.NEUTRAL
    volume_signal = VolumeSignal.SPIKE if vol_ratio > VOLUME_SPIKE else VolumeSignal.NORMAL

    trend = 1.0 if ema_signal == EmaSignal.BULLISH else -1.0
    score = 0.0

    # ── 1. EMA crossover ──
    score += EMA_WEIGHT * trend

    # ── 2. RSI (mean reversion) ──
    if rsi_signal == RsiSignal.OVERSOLD:
        score += RSI_WEIGHT
    elif rsi_signal == RsiSignal.OVERBOUGHT:
        score -= RSI_WEIGHT
    else:
        score += ((50.0 - rsi_value) / 50.0) * RSI_WEIGHT

    # ── 3. Volume amplifies the EMA direction ──
    if volume_signal == VolumeSignal.SPIKE:
        score += VOLUME_SPIKE_WEIGHT * trend
    elif vol_ratio > VOLUME_ELEVATED:
        score += VOLUME_ELEVATED_WEIGHT * trend

    # ── 4. Price vs recent average ──
    recent_avg = float(np.mean(closes[-MOMENTUM_WINDOW:]))
    score += MOMENTUM_WEIGHT if current_price > recent_avg else -MOMENTUM_WEIGHT

    confidence = min(100.0, abs(score))
    direction = Direction.UP if score >= 0 else Direction.DOWN

    parts = []
    if rsi_signal != RsiSignal.NEUTRAL:
        parts.append(f"RSI {rsi_value:.0f} ({rsi_signal.value.lower()})")
    else:
        parts.append(f"RSI {rsi_value:.0f}")
    parts.append(f"EMA {ema_signal.value.lower()} crossover")
    if volume_signal == VolumeSignal.SPIKE:
        parts.append(f"volume spike {vol_ratio:.1f}x")
    action = f"BET {direction.value}" if confidence >= action_threshold else "SKIP"

    return SignalResult(
        confidence=confidence,
        direction=direction,
        rationale=f"{' + '.join(parts)} → {action}",
        sub_signals=SubSignals(
            ema_signal=ema_signal,
            rsi=rsi_value,
            rsi_signal=rsi_signal,
            volume_ratio=vol_ratio,
            volume_signal=volume_signal,
        ),
        score=score,
        ema_fast=ema_fast,
        ema_slow=ema_slow,
        current_price=current_price,
    )
