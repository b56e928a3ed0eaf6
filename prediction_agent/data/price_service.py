"""Price sources for the live loop and historical candles for the backtest.

Only public Binance endpoints are used, so no API keys are required. When
Binance is unreachable a deterministic synthetic series stands in.
"""
import asyncio
import os
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional

import numpy as np
import requests

from prediction_agent.errors import InvalidParameter, PriceSourceUnavailable
from prediction_agent.utils.candle import Candle, parse_candle, to_utc
from prediction_agent.utils.clock import Clock, SystemClock
from prediction_agent.utils.logger import log

BINANCE_BASE = os.getenv("BINANCE_BASE", "https://api.binance.com")
MARKETS = {"BTC": "BTCUSDT", "ETH": "ETHUSDT", "SOL": "SOLUSDT"}
BASE_PRICES = {"BTCUSDT": 65000.0, "ETHUSDT": 3400.0, "SOLUSDT": 145.0}
INTERVAL_MS = {
    "1m": 60_000,
    "5m": 300_000,
    "15m": 900_000,
    "1h": 3_600_000,
}
MAX_KLINES_PER_CALL = 1000


def market_symbol(market: str) -> str:
    try:
        return MARKETS[market.upper()]
    except KeyError:
        raise InvalidParameter(
            f"Invalid market: {market}. Use {', '.join(MARKETS)}."
        ) from None


def interval_ms(interval: str) -> int:
    try:
        return INTERVAL_MS[interval]
    except KeyError:
        raise InvalidParameter(f"Unsupported candle interval: {interval}") from None


class PriceSource(ABC):
    @abstractmethod
    async def get_current_price(self) -> float:
        pass

    @abstractmethod
    async def get_candles(self, interval: str, limit: int) -> list[Candle]:
        """Most recent ``limit`` candles, oldest first."""


class BinancePriceSource(PriceSource):
    def __init__(self, symbol: str = "BTCUSDT", base: str = BINANCE_BASE,
                 timeout: float = 5.0):
        self.symbol = symbol
        self.base = base.rstrip("/")
        self.timeout = timeout

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        try:
            r = requests.get(f"{self.base}{path}", params=params, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except (requests.RequestException, ValueError) as e:
            raise PriceSourceUnavailable(f"Binance {path} failed: {e}") from e

    def current_price(self) -> float:
        data = self._get("/api/v3/ticker/price", {"symbol": self.symbol})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise PriceSourceUnavailable(f"Malformed ticker payload: {data!r}") from e

    def candles(self, interval: str, limit: int) -> list[Candle]:
        rows = self._get("/api/v3/klines",
                         {"symbol": self.symbol, "interval": interval, "limit": limit})
        return [parse_candle(r) for r in rows]

    def fetch_history(self, interval: str, start_ms: int, end_ms: int,
                      polite_sleep_sec: float = 0.2) -> list[Candle]:
        """Page through klines in [start_ms, end_ms]; oldest first."""
        out: list[Candle] = []
        cursor = start_ms
        while cursor < end_ms:
            batch = self._get("/api/v3/klines", {
                "symbol": self.symbol,
                "interval": interval,
                "startTime": cursor,
                "endTime": end_ms,
                "limit": MAX_KLINES_PER_CALL,
            })
            if not batch:
                break
            out.extend(parse_candle(r) for r in batch)
            cursor = int(batch[-1][0]) + 1
            if len(batch) < MAX_KLINES_PER_CALL:
                break
            time.sleep(polite_sleep_sec)
        return out

    async def get_current_price(self) -> float:
        return await asyncio.to_thread(self.current_price)

    async def get_candles(self, interval: str, limit: int) -> list[Candle]:
        return await asyncio.to_thread(self.candles, interval, limit)


class SyntheticPriceSource(PriceSource):
    """Seeded random walk with a slight upward drift. Never fails."""

    def __init__(self, symbol: str = "BTCUSDT", base_price: Optional[float] = None,
                 seed: Optional[int] = None, clock: Optional[Clock] = None):
        self.symbol = symbol
        self.base_price = base_price or BASE_PRICES.get(symbol, 100.0)
        self.clock = clock or SystemClock()
        self._rng = np.random.default_rng(seed)
        self._price = self.base_price
        self._step = self.base_price * 0.0005

    def next_price(self) -> float:
        self._price += (self._rng.random() - 0.495) * self._step
        return round(self._price, 2)

    async def get_current_price(self) -> float:
        return self.next_price()

    async def get_candles(self, interval: str, limit: int) -> list[Candle]:
        step = timedelta(milliseconds=interval_ms(interval))
        now = self.clock.now()
        price = self._price - limit * self._step * 0.2
        candles = []
        for i in range(limit):
            change = (self._rng.random() - 0.495) * self._step * 1.6
            open_, close = price, price + change
            wick = self._step * 0.6
            candles.append(Candle(
                open_time=now - step * (limit - i),
                open=round(open_, 2),
                high=round(max(open_, close) + self._rng.random() * wick, 2),
                low=round(min(open_, close) - self._rng.random() * wick, 2),
                close=round(close, 2),
                volume=round(10 + self._rng.random() * 50, 4),
            ))
            price = close
        self._price = price
        return candles


def generate_synthetic_candles(symbol: str, days: int, start_ms: int,
                               interval: str = "15m") -> list[Candle]:
    """Deterministic mean-reverting series used when history can't be fetched.

    Same (symbol, days) always yields the same prices (Park-Miller LCG).
    """
    base = BASE_PRICES.get(symbol, 100.0)
    step_ms = interval_ms(interval)
    total = days * (86_400_000 // step_ms)
    seed = days * 1000 + ord(symbol[0])

    def rand() -> float:
        nonlocal seed
        seed = (seed * 16807) % 2147483647
        return seed / 2147483647

    candles: list[Candle] = []
    price = base
    volatility = base * 0.003
    for i in range(total):
        drift = (base - price) * 0.0002
        change = drift + (rand() - 0.5) * volatility
        open_, close = price, price + change
        high = max(open_, close) + rand() * volatility * 0.3
        low = min(open_, close) - rand() * volatility * 0.3
        volume = (500 + rand() * 2000) * (base / 65000)
        candles.append(Candle(
            open_time=to_utc(start_ms + i * step_ms),
            open=round(open_, 2),
            high=round(high, 2),
            low=round(low, 2),
            close=round(close, 2),
            volume=round(volume, 4),
        ))
        price = close
    return candles


class FallbackPriceSource(PriceSource):
    """Try ``primary``; on PriceSourceUnavailable use ``fallback`` for that call."""

    def __init__(self, primary: PriceSource, fallback: PriceSource):
        self.primary = primary
        self.fallback = fallback

    async def get_current_price(self) -> float:
        try:
            return await self.primary.get_current_price()
        except PriceSourceUnavailable as e:
            log.warning("Price feed unavailable (%s) — using fallback price", e)
            return await self.fallback.get_current_price()

    async def get_candles(self, interval: str, limit: int) -> list[Candle]:
        try:
            return await self.primary.get_candles(interval, limit)
        except PriceSourceUnavailable as e:
            log.warning("Candle feed unavailable (%s) — using fallback candles", e)
            return await self.fallback.get_candles(interval, limit)


def default_price_source(market: str = "BTC", clock: Optional[Clock] = None) -> PriceSource:
    symbol = market_symbol(market)
    return FallbackPriceSource(
        BinancePriceSource(symbol),
        SyntheticPriceSource(symbol, clock=clock),
    )


def fetch_historical_candles(market: str, days: int, interval: str = "15m",
                             source: Optional[BinancePriceSource] = None,
                             end_ms: Optional[int] = None) -> list[Candle]:
    """History for the backtest, falling back to synthetic data if Binance fails."""
    symbol = market_symbol(market)
    end_ms = end_ms if end_ms is not None else int(time.time() * 1000)
    start_ms = end_ms - days * 86_400_000
    source = source or BinancePriceSource(symbol, timeout=8.0)
    try:
        candles = source.fetch_history(interval, start_ms, end_ms)
        if candles:
            log.info("Fetched %d %s candles for %s (%dd)", len(candles), interval, symbol, days)
            return candles
        log.warning("Binance returned no history for %s — using synthetic candles", symbol)
    except PriceSourceUnavailable as e:
        log.warning("History fetch failed (%s) — using synthetic candles", e)
    return generate_synthetic_candles(symbol, days, start_ms, interval)
