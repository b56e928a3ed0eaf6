# tests/test_trade.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from prediction_agent.constants import Direction, RoundResult
from prediction_agent.trading.trade import RoundRecord, resolve, round_pnl

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _pending(direction=Direction.UP, amount=2.0, entry=100.0) -> RoundRecord:
    return RoundRecord(
        id="r1",
        timestamp=T0,
        direction=direction,
        confidence=70.0,
        amount=amount,
        entry_price=entry,
        bankroll_after=100.0,
    )


def test_up_and_down_resolution() -> None:
    assert resolve(Direction.UP, 100.0, 101.0) == RoundResult.WIN
    assert resolve(Direction.UP, 100.0, 99.0) == RoundResult.LOSS
    assert resolve(Direction.DOWN, 100.0, 99.0) == RoundResult.WIN
    assert resolve(Direction.DOWN, 100.0, 101.0) == RoundResult.LOSS


def test_unchanged_price_is_a_loss() -> None:
    assert resolve(Direction.UP, 100.0, 100.0) == RoundResult.LOSS
    assert resolve(Direction.DOWN, 100.0, 100.0) == RoundResult.LOSS


def test_skip_cannot_be_resolved() -> None:
    with pytest.raises(ValueError):
        resolve(Direction.SKIP, 100.0, 101.0)


def test_round_pnl() -> None:
    assert round_pnl(RoundResult.WIN, 2.0) == 2.0
    assert round_pnl(RoundResult.WIN, 2.0, payout=0.85) == pytest.approx(1.7)
    assert round_pnl(RoundResult.LOSS, 2.0) == -2.0
    assert round_pnl(RoundResult.VOID, 2.0) == 0.0


def test_settle_win_updates_bankroll() -> None:
    rec = _pending()
    assert rec.settle(101.0, bankroll_before=100.0) == RoundResult.WIN
    assert rec.pnl == 2.0
    assert rec.bankroll_after == 102.0
    assert rec.exit_price == 101.0
    assert not rec.is_open


def test_settle_only_once() -> None:
    rec = _pending()
    rec.settle(99.0, bankroll_before=100.0)
    with pytest.raises(ValueError):
        rec.settle(101.0, bankroll_before=98.0)
    assert rec.result == RoundResult.LOSS


def test_void_has_no_pnl() -> None:
    rec = _pending()
    rec.void(100.0)
    assert rec.result == RoundResult.VOID
    assert rec.pnl == 0.0
    assert rec.bankroll_after == 100.0


def test_void_after_settle_is_noop() -> None:
    rec = _pending()
    rec.settle(101.0, bankroll_before=100.0)
    rec.void(100.0)
    assert rec.result == RoundResult.WIN


def test_skip_record() -> None:
    rec = RoundRecord.skip(T0, 40.0, 100.0, 250.0, "low confidence")
    assert rec.direction == Direction.SKIP
    assert rec.result == RoundResult.SKIP
    assert rec.amount == 0.0
    assert rec.bankroll_after == 250.0
