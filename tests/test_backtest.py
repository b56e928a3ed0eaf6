# tests/test_backtest.py

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from prediction_agent.config import BacktestParams
from prediction_agent.constants import Direction, RoundResult
from prediction_agent.data.price_service import generate_synthetic_candles
from prediction_agent.errors import InsufficientData, InvalidParameter, PriceSourceUnavailable
from prediction_agent.trading.backtest import run_backtest, run_market_backtest
from prediction_agent.trading.journal import TradeJournal

START_MS = 1_704_067_200_000


def _rising(candle_factory, n: int, step=timedelta(minutes=1)):
    return candle_factory([100.0 + i for i in range(n)], [1.05 ** i for i in range(n)], step=step)


def _flat(candle_factory, n: int = 200):
    # unchanged closes: every window reads DOWN at 100 % and every exit ties, so every bet loses
    return candle_factory([100.0] * n, [1.05 ** i for i in range(n)], step=timedelta(minutes=15))


def test_rising_market_only_wins(candle_factory) -> None:
    candles = _rising(candle_factory, 200)
    params = BacktestParams(bet_percent=0.01, skip_threshold_confidence=50,
                            take_profit_percent=0.15)
    bt = run_backtest(candles, params)

    assert bt.total_rounds == 200 - 61
    assert bt.bets_placed + bt.skipped == bt.total_rounds
    assert bt.losses == 0
    assert bt.win_rate == 100.0
    assert bt.max_drawdown_percent == 0.0
    assert math.isinf(bt.profit_factor)
    assert bt.total_pnl >= 15.0
    assert bt.skipped > 0  # take-profit halted the day
    assert all(b.direction == Direction.UP and b.result == RoundResult.WIN for b in bt.all_bets)


def test_equity_curve_tracks_bets(candle_factory) -> None:
    bt = run_backtest(_rising(candle_factory, 120),
                      BacktestParams(skip_threshold_confidence=50, take_profit_percent=0.15))
    assert len(bt.equity_curve) == bt.bets_placed + 1
    assert bt.equity_curve[0].bankroll == 100.0
    assert bt.equity_curve[-1].bankroll == bt.ending_bankroll
    assert len(bt.all_bets) == bt.bets_placed


def test_high_threshold_skips_everything(candle_factory) -> None:
    bt = run_backtest(_rising(candle_factory, 100), BacktestParams(skip_threshold_confidence=80))
    assert bt.bets_placed == 0
    assert bt.skip_rate == 100.0
    assert bt.ending_bankroll == 100.0
    assert bt.profit_factor == 0.0
    assert len(bt.equity_curve) == 1


def test_days_are_isolated(candle_factory) -> None:
    # 15-minute candles: day one's take-profit must not block day two
    candles = _rising(candle_factory, 200, step=timedelta(minutes=15))
    params = BacktestParams(bet_percent=0.01, skip_threshold_confidence=50,
                            take_profit_percent=0.03)
    bt = run_backtest(candles, params)

    day1, day2 = bt.daily_returns[0], bt.daily_returns[1]
    assert day1.date == "2024-01-01" and day2.date == "2024-01-02"
    assert day1.wins == 3 and day1.skipped > 0
    assert day2.wins == 3 and day2.skipped > 0
    assert day2.pnl_percent >= 3.0


def test_invalid_params_rejected(candle_factory) -> None:
    candles = _rising(candle_factory, 100)
    for bad in (BacktestParams(bet_percent=0.5),
                BacktestParams(skip_threshold_confidence=90),
                BacktestParams(stop_loss_percent=0.01),
                BacktestParams(take_profit_percent=0.5),
                BacktestParams(starting_bankroll=0.5),
                BacktestParams(starting_bankroll=float("nan")),
                BacktestParams(starting_bankroll=float("inf"))):
        with pytest.raises(InvalidParameter):
            run_backtest(candles, bad)


def test_too_few_candles(candle_factory) -> None:
    with pytest.raises(InsufficientData):
        run_backtest(_rising(candle_factory, 60), BacktestParams())


def test_random_baseline_is_seeded(candle_factory) -> None:
    candles = _rising(candle_factory, 150)
    params = BacktestParams(compare_random=True, random_seed=7)
    a = run_backtest(candles, params).random_baseline
    b = run_backtest(candles, params).random_baseline
    assert a is not None
    assert a == b
    assert len(a.equity_curve) == a.bets_placed + 1
    assert 0 < a.bets_placed < 150 - 61


def test_market_backtest_is_cached() -> None:
    journal = TradeJournal(":memory:")
    candles = generate_synthetic_candles("BTCUSDT", 7, START_MS)
    params = BacktestParams()

    first = run_market_backtest("BTC", 7, params, journal=journal, candles=candles)
    # second call has no candles; it must come from the cache, not the network
    second = run_market_backtest("BTC", 7, params, journal=journal, candles=None)

    assert first["market"] == "BTCUSDT"
    assert first["days"] == 7
    assert first["total_rounds"] == len(candles) - 61
    assert second == first
    journal.close()


def test_market_backtest_validation() -> None:
    candles = generate_synthetic_candles("BTCUSDT", 7, START_MS)
    with pytest.raises(InvalidParameter):
        run_market_backtest("BTC", 10, BacktestParams(), candles=candles)
    with pytest.raises(InvalidParameter):
        run_market_backtest("DOGE", 7, BacktestParams(), candles=candles)


def test_market_backtest_falls_back_to_synthetic_history() -> None:
    class OfflineSource:
        def fetch_history(self, interval, start_ms, end_ms):
            raise PriceSourceUnavailable("offline")

    result = run_market_backtest("SOL", 7, BacktestParams(), source=OfflineSource())
    assert result["market"] == "SOLUSDT"
    assert result["total_rounds"] == 7 * 96 - 61
    assert result["bets_placed"] + result["skipped"] == result["total_rounds"]


def test_stop_loss_halts_the_day_only(candle_factory) -> None:
    bt = run_backtest(_flat(candle_factory), BacktestParams(stop_loss_percent=0.05))

    day1, day2 = bt.daily_returns[0], bt.daily_returns[1]
    # 2.00 + 1.96 + 1.92 = 5.88 crosses the 5 % limit on the third loss
    assert day1.losses == 3 and day1.wins == 0
    assert day1.pnl == pytest.approx(-5.88)
    assert day1.skipped == 36 - 3
    assert day2.losses == 3
    assert day2.skipped == 96 - 3


def test_loss_streak_stop_resets_next_day(candle_factory) -> None:
    bt = run_backtest(_flat(candle_factory), BacktestParams(stop_loss_percent=0.20))

    day1, day2, day3 = bt.daily_returns
    assert day1.losses == 4 and day1.skipped == 36 - 4
    assert day2.losses == 4 and day2.skipped == 96 - 4
    assert day3.losses == 4
    assert bt.wins == 0
    assert bt.longest_loss_streak == 12


def test_market_backtest_cache_separates_loss_caps(candle_factory) -> None:
    journal = TradeJournal(":memory:")
    candles = _flat(candle_factory)

    cap4 = run_market_backtest("BTC", 7, BacktestParams(stop_loss_percent=0.20),
                               journal=journal, candles=candles)
    cap1 = run_market_backtest("BTC", 7,
                               BacktestParams(stop_loss_percent=0.20, consecutive_loss_cap=1),
                               journal=journal, candles=candles)

    assert cap4["losses"] == 12
    assert cap1["losses"] == 3
    assert (BacktestParams(consecutive_loss_cap=1).cache_key("BTCUSDT", 7)
            != BacktestParams().cache_key("BTCUSDT", 7))
    journal.close()
