"""
Deterministic replay of the signal → discipline → resolve pipeline over candles.

Candle ``i`` is the entry (its close), candle ``i + 1`` the exit. The first
decision needs ``LOOKBACK`` candles of history before it.
"""
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from prediction_agent.config import BacktestParams
from prediction_agent.constants import Direction, RoundResult
from prediction_agent.core.signal_engine import MIN_CANDLES, compute_signal
from prediction_agent.data.price_service import (
    BinancePriceSource,
    fetch_historical_candles,
    market_symbol,
)
from prediction_agent.errors import InsufficientData, InvalidParameter
from prediction_agent.trading.journal import TradeJournal
from prediction_agent.trading.money_manager import MIN_BET, MoneyManager
from prediction_agent.trading.performance import PerformanceTracker
from prediction_agent.trading.trade import RoundRecord, resolve, round_pnl
from prediction_agent.utils.candle import Candle
from prediction_agent.utils.logger import log

LOOKBACK = MIN_CANDLES
VALID_DAYS = (7, 14, 30, 60, 90)
RANDOM_SKIP_PROBABILITY = 0.4


@dataclass(frozen=True)
class EquityPoint:
    index: int
    bankroll: float
    pnl: float = 0.0


@dataclass
class DailyReturn:
    date: str
    pnl: float = 0.0
    pnl_percent: float = 0.0
    bankroll: float = 0.0
    wins: int = 0
    losses: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class BaselineResult:
    ending_bankroll: float
    total_pnl: float
    bets_placed: int
    equity_curve: list[EquityPoint]


@dataclass(frozen=True)
class BacktestResult:
    total_rounds: int
    bets_placed: int
    wins: int
    losses: int
    skipped: int
    win_rate: float                 # percent
    skip_rate: float                # percent
    starting_bankroll: float
    ending_bankroll: float
    total_pnl: float
    total_pnl_percent: float
    max_drawdown_percent: float
    max_drawdown_dollar: float
    sharpe_ratio: float
    sortino_ratio: float
    longest_win_streak: int
    longest_loss_streak: int
    avg_win_amount: float
    avg_loss_amount: float
    profit_factor: float
    daily_returns: list[DailyReturn]
    equity_curve: list[EquityPoint]
    all_bets: list[RoundRecord]
    random_baseline: Optional[BaselineResult] = None

    def to_dict(self) -> dict:
        return _plain(asdict(self))


def _plain(obj):
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def _valid_price(p: float) -> bool:
    return math.isfinite(p) and p > 0


def run_backtest(candles: Sequence[Candle], params: BacktestParams) -> BacktestResult:
    params.validate()
    if len(candles) < LOOKBACK + 1:
        raise InsufficientData(
            f"Backtest needs at least {LOOKBACK + 1} candles, got {len(candles)}"
        )

    start = params.starting_bankroll
    threshold = params.skip_threshold_confidence
    mm = MoneyManager(params.to_profile(), with_streak_bonus=params.with_streak_bonus)
    perf = PerformanceTracker(start)

    bankroll = start
    all_bets: list[RoundRecord] = []
    equity_curve = [EquityPoint(0, start, 0.0)]
    daily: dict[str, DailyReturn] = {}
    day_stopped = False

    def skip(day_stats: DailyReturn):
        perf.record_skip()
        mm.record_skip()
        day_stats.skipped += 1

    for i in range(LOOKBACK, len(candles) - 1):
        candle = candles[i]
        day = candle.day

        # ── 1. Day rollover ──
        if day != mm.state.day:
            mm.start_day(day, bankroll)
            day_stopped = False
            if day not in daily:
                daily[day] = DailyReturn(date=day, bankroll=round(bankroll, 2))
        today = daily[day]

        # ── 2/3. Discipline ──
        if day_stopped:
            skip(today)
            continue
        check = mm.check(now=candle.open_time)
        if check.stop:
            log.debug("%s stopped at %s: %s", day, candle.open_time, check.reason.value)
            day_stopped = True
            skip(today)
            continue

        entry_price = candle.close
        exit_price = candles[i + 1].close
        if not (_valid_price(entry_price) and _valid_price(exit_price)):
            log.debug("Bad price at candle %d (%s → %s) — skipped", i, entry_price, exit_price)
            skip(today)
            continue

        # ── 4. Signal ──
        signal = compute_signal(candles[i - LOOKBACK:i + 1], threshold)
        if not math.isfinite(signal.score) or signal.confidence < threshold:
            skip(today)
            continue

        # ── 5. Size & resolve ──
        stake = mm.compute_stake(bankroll)
        if bankroll <= 0 or not mm.can_afford(stake):
            skip(today)
            continue

        result = resolve(signal.direction, entry_price, exit_price)
        pnl = round_pnl(result, stake)
        bankroll += pnl
        mm.record_outcome(result, pnl)
        perf.record(result, pnl, bankroll)

        today.pnl += pnl
        today.bankroll = round(bankroll, 2)
        if result == RoundResult.WIN:
            today.wins += 1
        else:
            today.losses += 1
        if mm.state.day_start_bankroll > 0:
            today.pnl_percent = today.pnl / mm.state.day_start_bankroll * 100

        all_bets.append(RoundRecord(
            id=f"bt-{perf.bets}",
            timestamp=candle.open_time,
            direction=signal.direction,
            confidence=round(signal.confidence, 1),
            amount=stake,
            entry_price=entry_price,
            exit_price=exit_price,
            result=result,
            pnl=round(pnl, 2),
            bankroll_after=round(bankroll, 2),
            rationale=signal.rationale,
        ))
        equity_curve.append(EquityPoint(perf.bets, round(bankroll, 2), round(pnl, 2)))

    # ── 6. Aggregates ──
    total_rounds = len(candles) - LOOKBACK - 1
    total_pnl = bankroll - start
    pf = perf.profit_factor
    for d in daily.values():
        d.pnl = round(d.pnl, 2)
        d.pnl_percent = round(d.pnl_percent, 2)

    bt = BacktestResult(
        total_rounds=total_rounds,
        bets_placed=perf.bets,
        wins=perf.wins,
        losses=perf.losses,
        skipped=perf.skips,
        win_rate=round(perf.win_rate, 1),
        skip_rate=round(perf.skips / total_rounds * 100, 1) if total_rounds > 0 else 0.0,
        starting_bankroll=start,
        ending_bankroll=round(bankroll, 2),
        total_pnl=round(total_pnl, 2),
        total_pnl_percent=round(total_pnl / start * 100, 1),
        max_drawdown_percent=round(perf.max_drawdown_pct, 1),
        max_drawdown_dollar=round(perf.max_drawdown_dollar, 2),
        sharpe_ratio=round(perf.sharpe, 2),
        sortino_ratio=round(perf.sortino, 2),
        longest_win_streak=perf.longest_win_streak,
        longest_loss_streak=perf.longest_loss_streak,
        avg_win_amount=round(perf.total_win_amount / perf.wins, 2) if perf.wins else 0.0,
        avg_loss_amount=round(perf.total_loss_amount / perf.losses, 2) if perf.losses else 0.0,
        profit_factor=pf if math.isinf(pf) else round(pf, 2),
        daily_returns=sorted(daily.values(), key=lambda d: d.date),
        equity_curve=equity_curve,
        all_bets=all_bets,
        random_baseline=(run_random_baseline(candles, params, params.random_seed)
                         if params.compare_random else None),
    )
    log.info("📊 Backtest: %s | ending $%.2f", perf.summary(), bt.ending_bankroll)
    return bt


def run_random_baseline(candles: Sequence[Candle], params: BacktestParams,
                        seed: Optional[int] = None) -> BaselineResult:
    """Coin-flip direction, 40 % skip rate, same sizing. Shares no state with the main run."""
    rng = np.random.default_rng(seed)
    start = params.starting_bankroll
    bankroll = start
    bets = 0
    equity_curve = [EquityPoint(0, start, 0.0)]

    for i in range(LOOKBACK, len(candles) - 1):
        if rng.random() < RANDOM_SKIP_PROBABILITY:
            continue
        stake = round(bankroll * params.bet_percent, 2)
        if stake < MIN_BET or bankroll <= 0:
            continue
        entry_price = candles[i].close
        exit_price = candles[i + 1].close
        if not (_valid_price(entry_price) and _valid_price(exit_price)):
            continue
        direction = Direction.UP if rng.random() > 0.5 else Direction.DOWN
        pnl = round_pnl(resolve(direction, entry_price, exit_price), stake)
        bankroll += pnl
        bets += 1
        equity_curve.append(EquityPoint(bets, round(bankroll, 2), round(pnl, 2)))

    return BaselineResult(
        ending_bankroll=round(bankroll, 2),
        total_pnl=round(bankroll - start, 2),
        bets_placed=bets,
        equity_curve=equity_curve,
    )


def run_market_backtest(market: str, days: int, params: BacktestParams,
                        journal: Optional[TradeJournal] = None,
                        candles: Optional[Sequence[Candle]] = None,
                        source: Optional[BinancePriceSource] = None,
                        cache_max_age: float = 3600.0) -> dict:
    """Backtest a named market over the last ``days`` of 15-minute candles.

    Returns the JSON-ready result dict; identical requests are served from the
    journal cache for ``cache_max_age`` seconds.
    """
    symbol = market_symbol(market)
    if days not in VALID_DAYS:
        raise InvalidParameter(
            f"Invalid days: {days}. Use {', '.join(str(d) for d in VALID_DAYS)}."
        )
    params.validate()

    key = params.cache_key(symbol, days)
    if journal is not None and not params.compare_random:
        cached = journal.load_backtest(key, max_age=cache_max_age)
        if cached is not None:
            log.info("Backtest cache hit: %s", key)
            return cached

    if candles is None:
        candles = fetch_historical_candles(market, days, source=source)
    payload = run_backtest(candles, params).to_dict()
    payload["market"] = symbol
    payload["days"] = days

    if journal is not None and not params.compare_random:
        journal.save_backtest(key, payload)
    return payload
