import asyncio
import math
from datetime import datetime
from typing import Optional

from prediction_agent.config import AgentConfig, StrategyProfile, get_profile
from prediction_agent.constants import AgentStatus, LogType, RoundResult, StopReason
from prediction_agent.core.signal_engine import compute_signal
from prediction_agent.data.price_service import PriceSource, market_symbol
from prediction_agent.errors import InvalidParameter, PriceSourceUnavailable
from prediction_agent.trading.activity import ActivityLog
from prediction_agent.trading.journal import TradeJournal
from prediction_agent.trading.money_manager import DisciplineState, MoneyManager, StopCheck
from prediction_agent.trading.performance import PerformanceTracker
from prediction_agent.trading.trade import RoundRecord, new_round_id
from prediction_agent.utils.clock import Clock, SystemClock, Timer
from prediction_agent.utils.logger import log


def _day(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d")


class PredictionAgent:
    """Paper-trading loop: one directional bet (or skip) per round.

    IDLE → ACTIVE ⇄ PAUSED → STOPPED, and WITHDRAWN from anywhere.
    """

    def __init__(self, cfg: AgentConfig, prices: PriceSource,
                 clock: Optional[Clock] = None,
                 profile: Optional[StrategyProfile] = None,
                 journal: Optional[TradeJournal] = None):
        self.cfg = cfg
        self.symbol = market_symbol(cfg.market)
        self.prices = prices
        self.clock = clock or SystemClock()
        self.profile = (profile or get_profile(cfg.profile)).validate()
        self.journal = journal
        self.money_mgr = MoneyManager(self.profile, with_streak_bonus=cfg.with_streak_bonus)
        self.perf = PerformanceTracker()
        self.activity_log = ActivityLog(cfg.activity_log_capacity)

        self.status = AgentStatus.IDLE
        self.stop_reason: Optional[StopReason] = None
        self.bankroll = 0.0
        self.total_deposited = 0.0
        self.rounds: list[RoundRecord] = []                 # today's rounds
        self.archive: dict[str, list[RoundRecord]] = {}     # day → rounds
        self.day_stats: dict[str, DisciplineState] = {}     # day → final state

        self._pending: Optional[RoundRecord] = None
        self._round_running = False
        self._round_task: Optional[asyncio.Task] = None
        self._ticker: Optional[Timer] = None
        self._done: Optional[asyncio.Event] = None

        if journal is not None:
            self._restore()

    @property
    def state(self) -> DisciplineState:
        return self.money_mgr.state

    # ------------------------------------------------------------------
    def deposit(self, amount: float):
        if not math.isfinite(amount) or amount <= 0:
            raise InvalidParameter(f"Deposit must be a positive amount, got {amount}")
        self.bankroll += amount
        self.total_deposited += amount
        self._roll_day_if_needed()
        if self.state.day_start_bankroll == 0:
            self.state.day_start_bankroll = self.bankroll
        if self.status in (AgentStatus.IDLE, AgentStatus.STOPPED, AgentStatus.WITHDRAWN):
            self.status = AgentStatus.IDLE
            self.stop_reason = None
        self._log(LogType.DEPOSIT,
                  f"Deposited ${amount:.2f} → bankroll ${self.bankroll:.2f}")
        self._persist()

    def start(self) -> bool:
        """IDLE/STOPPED → ACTIVE. A no-op (False) with an empty bankroll."""
        if self.bankroll <= 0:
            log.warning("Cannot start with an empty bankroll")
            return False
        if self.status in (AgentStatus.ACTIVE, AgentStatus.PAUSED):
            return True
        self._roll_day_if_needed()
        if self.state.day_start_bankroll == 0:
            self.state.day_start_bankroll = self.bankroll
        self.status = AgentStatus.ACTIVE
        self.stop_reason = None
        self._log(LogType.START, f"Agent started on {self.symbol} — scanning for signals...")
        self._persist()
        return True

    def stop(self, reason: StopReason = StopReason.USER_STOPPED):
        if self.status not in (AgentStatus.ACTIVE, AgentStatus.PAUSED):
            return
        self._halt(AgentStatus.STOPPED, reason)
        self._log(LogType.STOP, f"Agent stopped: {self._reason_label(reason)}")
        self._persist()

    def withdraw(self) -> float:
        """Remove the whole bankroll. Terminal until the next deposit."""
        self._halt(AgentStatus.WITHDRAWN, StopReason.WITHDRAWN)
        amount = self.bankroll
        self.bankroll = 0.0
        self._log(LogType.WITHDRAW, f"Withdrew ${amount:.2f}")
        self._persist()
        return amount

    def reset(self):
        self._halt(AgentStatus.IDLE, None)
        self.stop_reason = None
        self.bankroll = 0.0
        self.total_deposited = 0.0
        self.rounds = []
        self.archive.clear()
        self.day_stats.clear()
        self.money_mgr.state = DisciplineState()
        self.perf = PerformanceTracker()
        self.activity_log.clear()
        self._persist()

    # ------------------------------------------------------------------
    async def run(self):
        """Drive ``step`` every ``round_interval`` until the agent leaves ACTIVE/PAUSED."""
        if self.status not in (AgentStatus.ACTIVE, AgentStatus.PAUSED) and not self.start():
            return
        self._done = asyncio.Event()
        self._ticker = self.clock.schedule_repeating(self.cfg.round_interval, self._on_tick)
        self._on_tick()  # first round right away
        try:
            await self._done.wait()
        except asyncio.CancelledError:
            self.stop()
            raise
        finally:
            if self._ticker is not None:
                self._ticker.cancel()
                self._ticker = None
            task = self._round_task
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)

    def _on_tick(self):
        if self.status not in (AgentStatus.ACTIVE, AgentStatus.PAUSED):
            return
        if self._round_running or (self._round_task is not None and not self._round_task.done()):
            log.debug("⏭ Tick dropped — round still in flight")
            return
        self._round_task = asyncio.ensure_future(self._guarded_step())

    async def _guarded_step(self):
        try:
            await self.step()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Round error: %s", e, exc_info=True)
            self._log(LogType.ERROR, f"Round error: {e}")

    # ------------------------------------------------------------------
    async def step(self) -> Optional[RoundRecord]:
        """Run one round. Returns the round record, or None when nothing was attempted."""
        if self._round_running:
            log.debug("⏭ Step ignored — round still in flight")
            return None
        if self.status not in (AgentStatus.ACTIVE, AgentStatus.PAUSED):
            return None

        self._round_running = True
        try:
            return await self._run_round()
        except PriceSourceUnavailable as e:
            self._log(LogType.ERROR, f"Round aborted — price feed unavailable: {e}")
            return None
        finally:
            self._round_running = False
            self._persist()

    async def _run_round(self) -> Optional[RoundRecord]:
        now = self.clock.now()
        self._roll_day_if_needed()

        # --- pause window ---
        if self.money_mgr.resume_if_elapsed(now):
            self._log(LogType.RESUME, "Pause elapsed — resuming")
        if self.status == AgentStatus.PAUSED:
            if self.state.is_paused:
                return None
            self.status = AgentStatus.ACTIVE

        # --- discipline pre-check ---
        check = self.money_mgr.check(now)
        if check.stop:
            self._apply_stop(check, now)
            return None

        # --- signal ---
        candles = await self.prices.get_candles(self.cfg.candle_interval, self.cfg.lookback)
        threshold = self.profile.confidence_threshold
        signal = compute_signal(candles, threshold)
        entry_price = signal.current_price
        self._log(LogType.SIGNAL,
                  f"{signal.direction.value} ({signal.confidence:.1f}% confidence) — {signal.rationale}")

        if signal.confidence < threshold:
            rec = RoundRecord.skip(now, signal.confidence, entry_price, self.bankroll,
                                   signal.rationale)
            self._record_skip(rec)
            self._log(LogType.SKIP,
                      f"Skipped — confidence {signal.confidence:.1f}% < {threshold:.0f}% threshold")
            return rec

        # --- stake sizing ---
        stake = self.money_mgr.compute_stake(self.bankroll)
        if not self.money_mgr.can_afford(stake):
            rec = RoundRecord.skip(now, signal.confidence, entry_price, self.bankroll,
                                   "Bankroll too low for minimum bet")
            self._record_skip(rec)
            self._log(LogType.SKIP, "Bankroll too low for minimum bet")
            return rec

        rec = RoundRecord(
            id=new_round_id(),
            timestamp=now,
            direction=signal.direction,
            confidence=signal.confidence,
            amount=stake,
            entry_price=entry_price,
            bankroll_after=self.bankroll,
            rationale=signal.rationale,
        )
        self._pending = rec
        self.rounds.append(rec)
        self._save_round(rec)
        self._log(LogType.BET,
                  f"{rec.direction.value} ${stake:.2f} at {self.symbol} ${entry_price:,.2f} "
                  f"({signal.confidence:.1f}%)")

        # --- wait for resolution ---
        try:
            await self.clock.sleep(self.cfg.resolution_delay)
            if not rec.is_open:
                return rec  # voided by stop/withdraw while waiting
            exit_price = await self.prices.get_current_price()
        except asyncio.CancelledError:
            if rec.is_open:
                self._void(rec, "agent stopped")
            raise
        except PriceSourceUnavailable as e:
            self._void(rec, f"exit price unavailable ({e})")
            return rec
        if not rec.is_open:
            return rec

        result = rec.settle(exit_price, self.bankroll, self.cfg.payout)
        self._pending = None
        self.bankroll = rec.bankroll_after
        self.money_mgr.record_outcome(result, rec.pnl)
        self.perf.record(result, rec.pnl, self.bankroll)
        self._save_round(rec)

        pnl_str = f"+${rec.pnl:.2f}" if rec.pnl >= 0 else f"-${abs(rec.pnl):.2f}"
        icon = "✅" if result == RoundResult.WIN else "❌"
        self._log(LogType.WIN if result == RoundResult.WIN else LogType.LOSS,
                  f"{icon} {result.value} {pnl_str} | {self.symbol} ${entry_price:.2f} → "
                  f"${exit_price:.2f} | Bankroll: ${self.bankroll:.2f}")
        log.info("📊 %s", self.perf.summary())

        # --- discipline post-check ---
        post = self.money_mgr.check(self.clock.now())
        if post.stop:
            self._apply_stop(post, self.clock.now())
        return rec

    # ------------------------------------------------------------------
    def _apply_stop(self, check: StopCheck, now: datetime):
        if check.reason == StopReason.PAUSED:
            if self.status != AgentStatus.PAUSED:
                self.status = AgentStatus.PAUSED
                self._persist()
            return

        if check.reason == StopReason.CONSECUTIVE_LOSSES and check.pause_for_ms is not None:
            until = self.money_mgr.pause(now, check.pause_for_ms)
            if not self.cfg.stop_on_pause:
                self.status = AgentStatus.PAUSED
                self._log(LogType.PAUSE,
                          f"{self.state.consecutive_losses} consecutive losses — "
                          f"paused until {until:%H:%M} UTC")
                self._persist()
                return

        self._halt(AgentStatus.STOPPED, check.reason)
        self._log(LogType.AUTO_STOP, f"Agent stopped: {self._reason_label(check.reason)}")
        self._persist()

    def _halt(self, status: AgentStatus, reason: Optional[StopReason]):
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._pending is not None:
            self._void(self._pending, "agent stopped")
        self.status = status
        self.stop_reason = reason

        task = self._round_task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        if self._done is not None:
            self._done.set()

    def _void(self, rec: RoundRecord, why: str):
        rec.void(self.bankroll)
        if self._pending is rec:
            self._pending = None
        self._save_round(rec)
        self._log(LogType.VOID, f"Round {rec.id} voided — {why}")

    def _record_skip(self, rec: RoundRecord):
        self.rounds.append(rec)
        self.money_mgr.record_skip()
        self.perf.record_skip()
        self._save_round(rec)

    def _roll_day_if_needed(self) -> bool:
        """Archive yesterday and reset discipline counters on a date change."""
        today = _day(self.clock.now())
        previous_day = self.state.day
        if previous_day == today:
            return False
        finished = self.money_mgr.start_day(today, self.bankroll)
        if previous_day:
            self.archive[previous_day] = self.rounds
            self.day_stats[previous_day] = finished
            self.rounds = []
            if self.journal is not None:
                self.journal.save_daily_stats(self.cfg.session_id, finished)
            if self.status == AgentStatus.PAUSED:
                self.status = AgentStatus.ACTIVE
            self._log(LogType.NEW_DAY,
                      f"New day {today} — counters reset, bankroll ${self.bankroll:.2f} carried forward")
        return True

    def _reason_label(self, reason: Optional[StopReason]) -> str:
        p = self.profile
        labels = {
            StopReason.DAILY_LOSS_LIMIT: f"Hit -{abs(p.loss_limit_percent) * 100:.0f}% daily loss limit",
            StopReason.DAILY_PROFIT_TARGET: f"Hit +{p.profit_target_percent * 100:.0f}% profit target",
            StopReason.CONSECUTIVE_LOSSES: f"{p.consecutive_loss_cap} consecutive losses",
            StopReason.USER_STOPPED: "Stopped by user",
            StopReason.WITHDRAWN: "Funds withdrawn",
        }
        return labels.get(reason, reason.value if reason else "unknown")

    def _log(self, type_: LogType, message: str):
        self.activity_log.add(self.clock.now(), type_, message)

    # ------------------------------------------------------------------
    def dashboard(self) -> dict:
        s = self.state
        return {
            "bankroll": round(self.bankroll, 2),
            "pnl": round(s.cumulative_pnl_today, 2),
            "pnl_percent": (s.cumulative_pnl_today / s.day_start_bankroll * 100
                            if s.day_start_bankroll > 0 else 0.0),
            "win_rate": (s.wins / (s.wins + s.losses) * 100
                         if s.wins + s.losses > 0 else 0.0),
            "total_bets": s.total_bets + s.skips,
            "wins": s.wins,
            "losses": s.losses,
            "skips": s.skips,
            "agent_status": self.status.value,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "total_deposited": round(self.total_deposited, 2),
            "consecutive_wins": s.consecutive_wins,
            "consecutive_losses": s.consecutive_losses,
            "active_bets": sum(1 for r in self.rounds if r.is_open),
            "paused_until": s.pause_until.isoformat() if s.pause_until else None,
        }

    def activity(self, n: int = 50) -> list[dict]:
        """Newest first."""
        return [
            {"timestamp": e.timestamp.isoformat(), "type": e.type.value, "message": e.message}
            for e in self.activity_log.recent(n)
        ]

    # ------------------------------------------------------------------
    def _save_round(self, rec: RoundRecord):
        if self.journal is not None:
            self.journal.save_round(self.cfg.session_id, rec)

    def _persist(self):
        if self.journal is None:
            return
        self.journal.save_session(
            self.cfg.session_id,
            self.status.value,
            self.stop_reason.value if self.stop_reason else None,
            self.bankroll,
            self.total_deposited,
        )
        if self.state.day:
            self.journal.save_daily_stats(self.cfg.session_id, self.state)

    def _restore(self):
        """Reload bankroll, status and today's counters; void rounds a crash left PENDING."""
        sid = self.cfg.session_id
        saved = self.journal.load_session(sid)
        if saved is None:
            return

        self.bankroll = saved["bankroll"] or 0.0
        self.total_deposited = saved["total_deposited"] or 0.0
        self.status = AgentStatus(saved["status"])
        self.stop_reason = StopReason(saved["stop_reason"]) if saved["stop_reason"] else None

        for rec in self.journal.pending_rounds(sid):
            rec.void(rec.bankroll_after)
            self.journal.save_round(sid, rec)
            log.warning("Voided round %s left PENDING by a previous run", rec.id)

        today = _day(self.clock.now())
        state = self.journal.load_daily_stats(sid, today)
        if state is not None:
            self.money_mgr.state = state
        self.rounds = [r for r in self.journal.load_rounds(sid, limit=1000)
                       if _day(r.timestamp) == today]
        log.info("🔄 Restored session %s: %s, bankroll $%.2f, %d rounds today",
                 sid, self.status.value, self.bankroll, len(self.rounds))
