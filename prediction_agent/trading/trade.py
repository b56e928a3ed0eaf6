import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from prediction_agent.constants import Direction, RoundResult


def resolve(direction: Direction, entry_price: float, exit_price: float) -> RoundResult:
    """WIN when price moved the way we bet. An unchanged price is a LOSS, not a push."""
    if exit_price == entry_price:
        return RoundResult.LOSS
    if direction == Direction.UP:
        return RoundResult.WIN if exit_price > entry_price else RoundResult.LOSS
    if direction == Direction.DOWN:
        return RoundResult.WIN if exit_price < entry_price else RoundResult.LOSS
    raise ValueError(f"Cannot resolve a {direction.value} round")


def round_pnl(result: RoundResult, amount: float, payout: float = 1.0) -> float:
    if result == RoundResult.WIN:
        return amount * payout
    if result == RoundResult.LOSS:
        return -amount
    return 0.0


def new_round_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RoundRecord:
    id: str
    timestamp: datetime
    direction: Direction
    confidence: float
    amount: float
    entry_price: float
    bankroll_after: float
    rationale: str = ""
    exit_price: Optional[float] = None
    result: RoundResult = RoundResult.PENDING
    pnl: float = 0.0

    @classmethod
    def skip(cls, timestamp: datetime, confidence: float, price: float,
             bankroll: float, rationale: str = "", round_id: Optional[str] = None) -> "RoundRecord":
        return cls(
            id=round_id or new_round_id(),
            timestamp=timestamp,
            direction=Direction.SKIP,
            confidence=confidence,
            amount=0.0,
            entry_price=price,
            bankroll_after=bankroll,
            rationale=rationale,
            result=RoundResult.SKIP,
        )

    @property
    def is_open(self) -> bool:
        return self.result == RoundResult.PENDING

    def settle(self, exit_price: float, bankroll_before: float, payout: float = 1.0) -> RoundResult:
        """Resolve a PENDING round once. Returns the terminal result."""
        if not self.is_open:
            raise ValueError(f"Round {self.id} already settled as {self.result.value}")
        self.exit_price = exit_price
        self.result = resolve(self.direction, self.entry_price, exit_price)
        self.pnl = round_pnl(self.result, self.amount, payout)
        self.bankroll_after = bankroll_before + self.pnl
        return self.result

    def void(self, bankroll: float):
        """Cancel an in-flight round without P&L."""
        if not self.is_open:
            return
        self.result = RoundResult.VOID
        self.pnl = 0.0
        self.bankroll_after = bankroll
