import json
import math
import sqlite3
import time
from datetime import datetime
from typing import Optional

from prediction_agent.constants import Direction, RoundResult
from prediction_agent.trading.money_manager import DisciplineState
from prediction_agent.trading.trade import RoundRecord


def _json_default(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"Not JSON serialisable: {type(obj)}")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TradeJournal:
    """SQLite store for sessions, rounds, daily discipline state and cached backtests."""

    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path)
        self._init_db()

    def _init_db(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id              TEXT PRIMARY KEY,
                status          TEXT,
                stop_reason     TEXT,
                bankroll        REAL,
                total_deposited REAL,
                updated_at      REAL
            );
            CREATE TABLE IF NOT EXISTS rounds (
                id              TEXT PRIMARY KEY,
                session_id      TEXT,
                timestamp       TEXT,
                direction       TEXT,
                confidence      REAL,
                amount          REAL,
                entry_price     REAL,
                exit_price      REAL,
                result          TEXT,
                pnl             REAL,
                bankroll_after  REAL,
                rationale       TEXT
            );
            CREATE TABLE IF NOT EXISTS daily_stats (
                session_id          TEXT,
                date                TEXT,
                start_bankroll      REAL,
                current_pnl         REAL,
                total_bets          INTEGER,
                wins                INTEGER,
                losses              INTEGER,
                skips               INTEGER,
                consecutive_wins    INTEGER,
                consecutive_losses  INTEGER,
                is_paused           INTEGER,
                pause_until         TEXT,
                PRIMARY KEY (session_id, date)
            );
            CREATE TABLE IF NOT EXISTS backtest_cache (
                key         TEXT PRIMARY KEY,
                created_at  REAL,
                payload     TEXT
            );
        """)
        self.conn.commit()

    # -- sessions --
    def save_session(self, session_id: str, status: str, stop_reason: Optional[str],
                     bankroll: float, total_deposited: float):
        self.conn.execute(
            "INSERT OR REPLACE INTO sessions VALUES (?,?,?,?,?,?)",
            (session_id, status, stop_reason, bankroll, total_deposited, time.time()),
        )
        self.conn.commit()

    def load_session(self, session_id: str) -> Optional[dict]:
        cur = self.conn.execute(
            "SELECT status, stop_reason, bankroll, total_deposited FROM sessions WHERE id = ?",
            (session_id,),
        )
        row = cur.fetchone()
        if row is None:
            return None
        status, stop_reason, bankroll, total_deposited = row
        return {
            "status": status,
            "stop_reason": stop_reason,
            "bankroll": bankroll,
            "total_deposited": total_deposited,
        }

    # -- rounds --
    def save_round(self, session_id: str, r: RoundRecord):
        self.conn.execute(
            "INSERT OR REPLACE INTO rounds VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
            (r.id, session_id, r.timestamp.isoformat(), r.direction.value, r.confidence,
             r.amount, r.entry_price, r.exit_price, r.result.value, r.pnl,
             r.bankroll_after, r.rationale),
        )
        self.conn.commit()

    def load_rounds(self, session_id: str, limit: int = 50) -> list[RoundRecord]:
        """Most recent ``limit`` rounds, oldest first."""
        cur = self.conn.execute(
            "SELECT id, timestamp, direction, confidence, amount, entry_price, exit_price, "
            "result, pnl, bankroll_after, rationale FROM rounds WHERE session_id = ? "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (session_id, limit),
        )
        rounds = []
        for (rid, ts, direction, conf, amount, entry, exit_, result, pnl,
             bankroll_after, rationale) in cur.fetchall():
            rounds.append(RoundRecord(
                id=rid,
                timestamp=_dt(ts),
                direction=Direction(direction),
                confidence=conf,
                amount=amount,
                entry_price=entry,
                exit_price=exit_,
                result=RoundResult(result),
                pnl=pnl,
                bankroll_after=bankroll_after,
                rationale=rationale or "",
            ))
        rounds.reverse()
        return rounds

    def pending_rounds(self, session_id: str) -> list[RoundRecord]:
        return [r for r in self.load_rounds(session_id, limit=1_000_000) if r.is_open]

    # -- daily discipline state --
    def save_daily_stats(self, session_id: str, s: DisciplineState):
        self.conn.execute(
            "INSERT OR REPLACE INTO daily_stats VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
            (session_id, s.day, s.day_start_bankroll, s.cumulative_pnl_today,
             s.total_bets, s.wins, s.losses, s.skips, s.consecutive_wins,
             s.consecutive_losses, int(s.is_paused),
             s.pause_until.isoformat() if s.pause_until else None),
        )
        self.conn.commit()

    def load_daily_stats(self, session_id: str, day: str) -> Optional[DisciplineState]:
        cur = self.conn.execute(
            "SELECT start_bankroll, current_pnl, total_bets, wins, losses, skips, "
            "consecutive_wins, consecutive_losses, is_paused, pause_until "
            "FROM daily_stats WHERE session_id = ? AND date = ?",
            (session_id, day),
        )
        row = cur.fetchone()
        if row is None:
            return None
        (start, pnl, total, wins, losses, skips, cw, cl, paused, pause_until) = row
        return DisciplineState(
            day=day,
            day_start_bankroll=start,
            cumulative_pnl_today=pnl,
            consecutive_wins=cw,
            consecutive_losses=cl,
            is_paused=bool(paused),
            pause_until=_dt(pause_until),
            total_bets=total,
            wins=wins,
            losses=losses,
            skips=skips,
        )

    # -- backtest cache --
    def save_backtest(self, key: str, payload: dict):
        self.conn.execute(
            "INSERT OR REPLACE INTO backtest_cache VALUES (?,?,?)",
            (key, time.time(), json.dumps(payload, default=_json_default)),
        )
        self.conn.commit()

    def load_backtest(self, key: str, max_age: float = math.inf) -> Optional[dict]:
        cur = self.conn.execute(
            "SELECT created_at, payload FROM backtest_cache WHERE key = ?", (key,)
        )
        row = cur.fetchone()
        if row is None or time.time() - row[0] > max_age:
            return None
        return json.loads(row[1])

    def close(self):
        self.conn.close()
