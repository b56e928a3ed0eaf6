import math
from typing import Sequence

import numpy as np

from prediction_agent.constants import RoundResult

TRADING_DAYS = 252


def sharpe_ratio(pnls: Sequence[float]) -> float:
    """Per-round mean P&L over its sample std, scaled by √252. 0 when undefined."""
    arr = np.asarray(pnls, dtype=np.float64)
    if arr.size < 2:
        return 0.0
    std = float(np.std(arr, ddof=1))
    if std == 0:
        return 0.0
    return float(np.mean(arr)) / std * math.sqrt(TRADING_DAYS)


def sortino_ratio(pnls: Sequence[float]) -> float:
    """Like Sharpe, but the deviation only counts losing rounds (measured from the overall mean)."""
    arr = np.asarray(pnls, dtype=np.float64)
    if arr.size == 0:
        return 0.0
    mean = float(np.mean(arr))
    negative = arr[arr < 0]
    if negative.size < 2:
        return 0.0
    down_dev = math.sqrt(float(np.sum((negative - mean) ** 2)) / (negative.size - 1))
    if down_dev == 0:
        return 0.0
    return mean / down_dev * math.sqrt(TRADING_DAYS)


def profit_factor(total_win_amount: float, total_loss_amount: float) -> float:
    if total_loss_amount > 0:
        return total_win_amount / total_loss_amount
    return math.inf if total_win_amount > 0 else 0.0


class PerformanceTracker:
    def __init__(self, starting_bankroll: float = 0.0):
        self.wins = 0
        self.losses = 0
        self.skips = 0
        self.total_profit = 0.0
        self.consec_wins = 0
        self.consec_losses = 0
        self.longest_win_streak = 0
        self.longest_loss_streak = 0
        self.total_win_amount = 0.0
        self.total_loss_amount = 0.0
        self.pnls: list[float] = []
        self.max_drawdown_pct = 0.0
        self.max_drawdown_dollar = 0.0
        self._peak = starting_bankroll

    @property
    def bets(self):
        return self.wins + self.losses

    @property
    def win_rate(self):
        """Win rate in percent (0 before the first bet)."""
        return self.wins / self.bets * 100 if self.bets > 0 else 0.0

    @property
    def profit_factor(self):
        return profit_factor(self.total_win_amount, self.total_loss_amount)

    @property
    def sharpe(self):
        return sharpe_ratio(self.pnls)

    @property
    def sortino(self):
        return sortino_ratio(self.pnls)

    def record_skip(self):
        self.skips += 1

    def record(self, result: RoundResult, pnl: float, bankroll: float):
        self.total_profit += pnl
        self.pnls.append(round(pnl, 2))
        if result == RoundResult.WIN:
            self.wins += 1
            self.total_win_amount += pnl
            self.consec_wins += 1
            self.consec_losses = 0
            self.longest_win_streak = max(self.longest_win_streak, self.consec_wins)
        elif result == RoundResult.LOSS:
            self.losses += 1
            self.total_loss_amount += -pnl
            self.consec_losses += 1
            self.consec_wins = 0
            self.longest_loss_streak = max(self.longest_loss_streak, self.consec_losses)

        # Drawdown
        if bankroll > self._peak:
            self._peak = bankroll
        if self._peak > 0:
            dd_pct = (self._peak - bankroll) / self._peak * 100
            if dd_pct > self.max_drawdown_pct:
                self.max_drawdown_pct = dd_pct
        dd = self._peak - bankroll
        if dd > self.max_drawdown_dollar:
            self.max_drawdown_dollar = dd

    def summary(self) -> str:
        streak = (f"W{self.consec_wins}" if self.consec_wins
                  else f"L{self.consec_losses}" if self.consec_losses else "-")
        return (
            f"W:{self.wins} L:{self.losses} S:{self.skips} "
            f"WR:{self.win_rate:.1f}% "
            f"P&L:${self.total_profit:+.2f} "
            f"MaxDD:{self.max_drawdown_pct:.1f}% (${self.max_drawdown_dollar:.2f}) "
            f"Streak:{streak}"
        )
