import math
from dataclasses import dataclass
from typing import Optional

from prediction_agent.errors import InvalidParameter


@dataclass(frozen=True)
class StrategyProfile:
    """Risk discipline knobs. Percentages are fractions (0.02 == 2 %)."""

    bet_percent: float = 0.02
    loss_limit_percent: float = 0.10          # sign ignored: 0.10 and -0.10 both mean -10 %
    profit_target_percent: float = 0.05
    confidence_threshold: float = 60.0        # 0-100
    consecutive_loss_cap: int = 4
    pause_duration_ms: int = 3_600_000        # 1 h
    streak_bonus_percent: float = 0.01        # +1 pt once on a win streak
    streak_bonus_after: int = 3

    def validate(self) -> "StrategyProfile":
        if not 0 < self.bet_percent < 1:
            raise InvalidParameter(f"bet_percent must be in (0, 1), got {self.bet_percent}")
        if not 0 < abs(self.loss_limit_percent) <= 1:
            raise InvalidParameter(f"loss_limit_percent must be in (0, 1], got {self.loss_limit_percent}")
        if self.profit_target_percent <= 0:
            raise InvalidParameter(f"profit_target_percent must be > 0, got {self.profit_target_percent}")
        if not 0 <= self.confidence_threshold <= 100:
            raise InvalidParameter(f"confidence_threshold must be 0-100, got {self.confidence_threshold}")
        if self.consecutive_loss_cap < 1:
            raise InvalidParameter("consecutive_loss_cap must be >= 1")
        if self.pause_duration_ms < 0:
            raise InvalidParameter("pause_duration_ms must be >= 0")
        return self


PROFILES: dict[str, StrategyProfile] = {
    "conservative": StrategyProfile(0.02, 0.10, 0.05, 65),
    "balanced":     StrategyProfile(0.03, 0.15, 0.08, 60),
    "aggressive":   StrategyProfile(0.05, 0.20, 0.12, 55),
}


def get_profile(name: str) -> StrategyProfile:
    try:
        return PROFILES[name.lower()]
    except KeyError:
        raise InvalidParameter(
            f"Unknown strategy profile '{name}'. Use one of: {', '.join(PROFILES)}"
        ) from None


@dataclass
class AgentConfig:
    """All tuneable knobs of the live/paper loop in one place."""

    # --- market ---
    market: str = "BTC"                     # BTC / ETH / SOL
    candle_interval: str = "1m"             # signal candles
    lookback: int = 60                      # candles fed to the signal composer

    # --- timing ---
    round_interval: float = 60.0            # seconds between rounds
    resolution_delay: float = 30.0          # seconds between entry and exit price

    # --- strategy ---
    profile: str = "conservative"
    with_streak_bonus: bool = True          # backtest runs without it
    stop_on_pause: bool = True              # CONSECUTIVE_LOSSES stops instead of pausing
    payout: float = 1.0                     # win pays payout × stake

    # --- bookkeeping ---
    activity_log_capacity: int = 200
    session_id: str = "default"
    db_path: Optional[str] = None           # None = no journal


@dataclass(frozen=True)
class BacktestParams:
    """Backtest knobs. Percentages are fractions (0.02 == 2 %)."""

    bet_percent: float = 0.02
    skip_threshold_confidence: float = 60.0
    stop_loss_percent: float = 0.10
    take_profit_percent: float = 0.05
    starting_bankroll: float = 100.0
    consecutive_loss_cap: int = 4
    with_streak_bonus: bool = False
    compare_random: bool = False
    random_seed: Optional[int] = None

    BET_PERCENT_RANGE = (0.01, 0.10)
    SKIP_THRESHOLD_RANGE = (50.0, 80.0)
    STOP_LOSS_RANGE = (0.05, 0.20)
    TAKE_PROFIT_RANGE = (0.03, 0.15)
    MIN_BANKROLL = 1.0

    def validate(self) -> "BacktestParams":
        checks = (
            ("bet_percent", self.bet_percent, self.BET_PERCENT_RANGE),
            ("skip_threshold_confidence", self.skip_threshold_confidence, self.SKIP_THRESHOLD_RANGE),
            ("stop_loss_percent", self.stop_loss_percent, self.STOP_LOSS_RANGE),
            ("take_profit_percent", self.take_profit_percent, self.TAKE_PROFIT_RANGE),
        )
        for name, value, (lo, hi) in checks:
            if not lo <= value <= hi:
                raise InvalidParameter(f"{name} must be {lo}-{hi}, got {value}")
        if not math.isfinite(self.starting_bankroll) or self.starting_bankroll < self.MIN_BANKROLL:
            raise InvalidParameter(f"starting_bankroll must be >= {self.MIN_BANKROLL}")
        if self.consecutive_loss_cap < 1:
            raise InvalidParameter("consecutive_loss_cap must be >= 1")
        return self

    def to_profile(self) -> StrategyProfile:
        return StrategyProfile(
            bet_percent=self.bet_percent,
            loss_limit_percent=self.stop_loss_percent,
            profit_target_percent=self.take_profit_percent,
            confidence_threshold=self.skip_threshold_confidence,
            consecutive_loss_cap=self.consecutive_loss_cap,
        )

    def cache_key(self, market: str, days: int) -> str:
        return (f"{market}_{days}_{self.bet_percent}_{self.skip_threshold_confidence}_"
                f"{self.stop_loss_percent}_{self.take_profit_percent}_{self.starting_bankroll}_"
                f"{self.consecutive_loss_cap}_{int(self.with_streak_bonus)}")
