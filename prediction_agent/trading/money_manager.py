import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from prediction_agent.config import StrategyProfile
from prediction_agent.constants import RoundResult, StopReason
from prediction_agent.utils.logger import log

MIN_BET = 0.01


@dataclass
class DisciplineState:
    """Per-session, per-day risk counters. Reset at every day boundary."""

    day: str = ""                           # YYYY-MM-DD (UTC)
    day_start_bankroll: float = 0.0
    cumulative_pnl_today: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    is_paused: bool = False
    pause_until: Optional[datetime] = None
    total_bets: int = 0
    wins: int = 0
    losses: int = 0
    skips: int = 0


@dataclass(frozen=True)
class StopCheck:
    stop: bool
    reason: Optional[StopReason] = None
    pause_for_ms: Optional[int] = None


def should_stop(state: DisciplineState, profile: StrategyProfile,
                now: Optional[datetime] = None) -> StopCheck:
    """First matching rule wins: paused, loss limit, profit target, loss streak."""
    now = now or datetime.now(timezone.utc)

    if state.is_paused and state.pause_until is not None and now < state.pause_until:
        return StopCheck(True, StopReason.PAUSED)

    if state.day_start_bankroll > 0:
        if state.cumulative_pnl_today <= -state.day_start_bankroll * abs(profile.loss_limit_percent):
            return StopCheck(True, StopReason.DAILY_LOSS_LIMIT)
        if state.cumulative_pnl_today >= state.day_start_bankroll * profile.profit_target_percent:
            return StopCheck(True, StopReason.DAILY_PROFIT_TARGET)

    if state.consecutive_losses >= profile.consecutive_loss_cap:
        return StopCheck(True, StopReason.CONSECUTIVE_LOSSES, profile.pause_duration_ms)

    return StopCheck(False)


def bet_size(bankroll: float, consecutive_wins: int, profile: StrategyProfile,
             with_streak_bonus: bool = True) -> float:
    """Fixed-fraction stake, one tier higher on a win streak. Rounded to cents."""
    if bankroll <= 0 or not math.isfinite(bankroll):
        return 0.0
    pct = profile.bet_percent
    if with_streak_bonus and consecutive_wins >= profile.streak_bonus_after:
        pct += profile.streak_bonus_percent
    return round(bankroll * pct, 2)


class MoneyManager:
    """Owns a DisciplineState and applies the profile to it.

    Shared by the live loop and the backtest so both follow identical rules.
    """

    def __init__(self, profile: StrategyProfile, with_streak_bonus: bool = True,
                 state: Optional[DisciplineState] = None):
        self.profile = profile
        self.with_streak_bonus = with_streak_bonus
        self.state = state or DisciplineState()

    def start_day(self, day: str, bankroll: float) -> DisciplineState:
        """Begin a new trading day. Returns the finished day's state."""
        previous = self.state
        self.state = DisciplineState(day=day, day_start_bankroll=bankroll)
        return previous

    def reset_if_new_day(self, day: str, bankroll: float) -> Optional[DisciplineState]:
        if day == self.state.day:
            return None
        if self.state.day:
            log.info("New day %s — resetting daily discipline counters", day)
        return self.start_day(day, bankroll)

    def check(self, now: Optional[datetime] = None) -> StopCheck:
        return should_stop(self.state, self.profile, now)

    def compute_stake(self, bankroll: float) -> float:
        return bet_size(bankroll, self.state.consecutive_wins, self.profile,
                        self.with_streak_bonus)

    def can_afford(self, stake: float) -> bool:
        return stake >= MIN_BET

    def record_outcome(self, result: RoundResult, pnl: float):
        s = self.state
        s.cumulative_pnl_today += pnl
        s.total_bets += 1
        if result == RoundResult.WIN:
            s.wins += 1
            s.consecutive_wins += 1
            s.consecutive_losses = 0
        elif result == RoundResult.LOSS:
            s.losses += 1
            s.consecutive_losses += 1
            s.consecutive_wins = 0

    def record_skip(self):
        self.state.skips += 1

    def pause(self, now: datetime, pause_for_ms: int) -> datetime:
        self.state.is_paused = True
        self.state.pause_until = now + timedelta(milliseconds=pause_for_ms)
        return self.state.pause_until

    def resume_if_elapsed(self, now: datetime) -> bool:
        """Lift an expired pause. The loss streak that caused it is cleared too."""
        s = self.state
        if not s.is_paused or (s.pause_until is not None and now < s.pause_until):
            return False
        s.is_paused = False
        s.pause_until = None
        s.consecutive_losses = 0
        return True
