# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from prediction_agent.config import StrategyProfile
from prediction_agent.data.price_service import PriceSource
from prediction_agent.errors import PriceSourceUnavailable
from prediction_agent.utils.candle import Candle

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def build_candles(closes, volumes=None, start: datetime = T0,
                  step: timedelta = timedelta(minutes=1)) -> list[Candle]:
    volumes = volumes if volumes is not None else [1.0] * len(closes)
    return [
        Candle(
            open_time=start + step * i,
            open=c,
            high=c + 0.5,
            low=c - 0.5,
            close=c,
            volume=v,
        )
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


class ScriptedPriceSource(PriceSource):
    """Returns fixed candles and a queue of exit prices."""

    def __init__(self, candles: list[Candle], prices=(), fail_candles: bool = False,
                 fail_price: bool = False):
        self.candles = candles
        self.prices = list(prices)
        self.fail_candles = fail_candles
        self.fail_price = fail_price
        self.candle_calls = 0

    async def get_candles(self, interval: str, limit: int) -> list[Candle]:
        if self.fail_candles:
            raise PriceSourceUnavailable("candles down")
        self.candle_calls += 1
        return self.candles[-limit:]

    async def get_current_price(self) -> float:
        if self.fail_price:
            raise PriceSourceUnavailable("ticker down")
        if self.prices:
            return self.prices.pop(0)
        return self.candles[-1].close


@pytest.fixture
def candle_factory():
    return build_candles


@pytest.fixture
def rising_candles() -> list[Candle]:
    """Closes 100..159 with growing volume: UP at exactly 50 % confidence."""
    return build_candles([100.0 + i for i in range(60)], [1.05 ** i for i in range(60)])


@pytest.fixture
def falling_candles() -> list[Candle]:
    """Closes 200..141 with growing volume: DOWN at exactly 50 % confidence."""
    return build_candles([200.0 - i for i in range(60)], [1.05 ** i for i in range(60)])


@pytest.fixture
def flat_volume_candles() -> list[Candle]:
    """Rising closes without a volume spike: confidence 30, below any test threshold."""
    return build_candles([100.0 + i for i in range(60)])


@pytest.fixture
def profile() -> StrategyProfile:
    return StrategyProfile(
        bet_percent=0.02,
        loss_limit_percent=0.10,
        profit_target_percent=0.05,
        confidence_threshold=50.0,
    )


@pytest.fixture
def scripted_source():
    return ScriptedPriceSource
