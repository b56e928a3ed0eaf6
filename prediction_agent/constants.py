from enum import Enum

class Direction(Enum):
    UP = "UP"
    DOWN = "DOWN"
    SKIP = "SKIP"

class RoundResult(Enum):
    PENDING = "PENDING"
    WIN = "WIN"
    LOSS = "LOSS"
    SKIP = "SKIP"
    VOID = "VOID"          # cancelled in flight, no P&L

class EmaSignal(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"

class RsiSignal(Enum):
    OVERSOLD = "OVERSOLD"
    NEUTRAL = "NEUTRAL"
    OVERBOUGHT = "OVERBOUGHT"

class VolumeSignal(Enum):
    SPIKE = "SPIKE"
    NORMAL = "NORMAL"

class StopReason(Enum):
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    DAILY_PROFIT_TARGET = "DAILY_PROFIT_TARGET"
    CONSECUTIVE_LOSSES = "CONSECUTIVE_LOSSES"
    PAUSED = "PAUSED"
    USER_STOPPED = "USER_STOPPED"
    WITHDRAWN = "WITHDRAWN"

class AgentStatus(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    WITHDRAWN = "withdrawn"

class LogType(Enum):
    START = "START"
    STOP = "STOP"
    AUTO_STOP = "AUTO_STOP"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    SIGNAL = "SIGNAL"
    SKIP = "SKIP"
    BET = "BET"
    WIN = "WIN"
    LOSS = "LOSS"
    VOID = "VOID"
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    NEW_DAY = "NEW_DAY"
    ERROR = "ERROR"
