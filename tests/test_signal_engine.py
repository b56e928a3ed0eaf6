# tests/test_signal_engine.py

from __future__ import annotations

import pytest

from prediction_agent.constants import Direction, EmaSignal, RsiSignal, VolumeSignal
from prediction_agent.core.signal_engine import compute_signal
from prediction_agent.data.price_service import generate_synthetic_candles
from prediction_agent.errors import InsufficientData


def test_requires_sixty_candles(rising_candles) -> None:
    with pytest.raises(InsufficientData):
        compute_signal(rising_candles[:59])


def test_rising_series_bets_up(rising_candles) -> None:
    sig = compute_signal(rising_candles, action_threshold=50)
    assert sig.direction == Direction.UP
    assert sig.confidence == pytest.approx(50.0)
    assert sig.current_price == 159.0
    assert sig.sub_signals.ema_signal == EmaSignal.BULLISH
    assert sig.sub_signals.rsi_signal == RsiSignal.OVERBOUGHT
    assert sig.sub_signals.volume_signal == VolumeSignal.SPIKE
    assert sig.ema_fast > sig.ema_slow


def test_rationale_format(rising_candles) -> None:
    sig = compute_signal(rising_candles, action_threshold=50)
    assert sig.rationale.startswith("RSI 100 (overbought) + EMA bullish crossover + volume spike ")
    assert sig.rationale.endswith("→ BET UP")


def test_rationale_says_skip_below_threshold(rising_candles) -> None:
    sig = compute_signal(rising_candles, action_threshold=60)
    assert sig.rationale.endswith("→ SKIP")


def test_falling_series_bets_down(falling_candles) -> None:
    sig = compute_signal(falling_candles)
    assert sig.direction == Direction.DOWN
    assert sig.confidence == pytest.approx(50.0)
    assert sig.score == pytest.approx(-50.0)
    assert sig.sub_signals.rsi_signal == RsiSignal.OVERSOLD


def test_no_volume_spike_lowers_confidence(flat_volume_candles) -> None:
    sig = compute_signal(flat_volume_candles)
    assert sig.confidence == pytest.approx(30.0)
    assert "volume spike" not in sig.rationale


def test_confidence_bounded_on_market_like_data() -> None:
    candles = generate_synthetic_candles("ETHUSDT", 7, 1_700_000_000_000)
    for i in range(60, len(candles), 37):
        sig = compute_signal(candles[i - 60:i])
        assert 0.0 <= sig.confidence <= 100.0
        assert sig.direction in (Direction.UP, Direction.DOWN)
