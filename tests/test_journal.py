# tests/test_journal.py

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from prediction_agent.constants import Direction, RoundResult
from prediction_agent.trading.journal import TradeJournal
from prediction_agent.trading.money_manager import DisciplineState
from prediction_agent.trading.trade import RoundRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def journal():
    j = TradeJournal(":memory:")
    yield j
    j.close()


def _round(rid: str, offset: int, result=RoundResult.WIN) -> RoundRecord:
    return RoundRecord(
        id=rid,
        timestamp=T0 + timedelta(minutes=offset),
        direction=Direction.UP,
        confidence=66.5,
        amount=2.0,
        entry_price=100.0,
        exit_price=None if result == RoundResult.PENDING else 101.0,
        result=result,
        pnl=2.0 if result == RoundResult.WIN else 0.0,
        bankroll_after=102.0,
        rationale="RSI 50 + EMA bullish crossover → BET UP",
    )


def test_session_roundtrip(journal) -> None:
    assert journal.load_session("s1") is None
    journal.save_session("s1", "active", None, 102.5, 100.0)
    journal.save_session("s1", "stopped", "user_stopped", 101.0, 100.0)
    saved = journal.load_session("s1")
    assert saved == {
        "status": "stopped",
        "stop_reason": "user_stopped",
        "bankroll": 101.0,
        "total_deposited": 100.0,
    }


def test_rounds_oldest_first_and_updated_in_place(journal) -> None:
    journal.save_round("s1", _round("a", 0))
    journal.save_round("s1", _round("b", 1, RoundResult.PENDING))
    journal.save_round("s1", _round("c", 2))
    journal.save_round("other", _round("d", 3))

    rounds = journal.load_rounds("s1")
    assert [r.id for r in rounds] == ["a", "b", "c"]
    assert rounds[0].timestamp == T0
    assert rounds[0].direction == Direction.UP

    assert [r.id for r in journal.pending_rounds("s1")] == ["b"]
    journal.save_round("s1", _round("b", 1, RoundResult.LOSS))
    assert journal.pending_rounds("s1") == []
    assert len(journal.load_rounds("s1", limit=2)) == 2


def test_daily_stats_roundtrip(journal) -> None:
    state = DisciplineState(
        day="2024-01-01",
        day_start_bankroll=100.0,
        cumulative_pnl_today=-4.0,
        consecutive_losses=2,
        is_paused=True,
        pause_until=T0 + timedelta(hours=1),
        total_bets=3,
        wins=1,
        losses=2,
        skips=4,
    )
    journal.save_daily_stats("s1", state)
    assert journal.load_daily_stats("s1", "2024-01-01") == state
    assert journal.load_daily_stats("s1", "2024-01-02") is None


def test_backtest_cache(journal) -> None:
    payload = {"win_rate": 55.0, "profit_factor": math.inf, "market": "BTCUSDT"}
    journal.save_backtest("k", payload)
    assert journal.load_backtest("k") == payload
    assert journal.load_backtest("k", max_age=-1) is None
    assert journal.load_backtest("missing") is None
