from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Candle:
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def day(self) -> str:
        """UTC calendar date (YYYY-MM-DD) the candle opened on."""
        return self.open_time.strftime("%Y-%m-%d")


def to_utc(ts) -> datetime:
    """Epoch seconds/milliseconds or datetime → aware UTC datetime."""
    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    ts = float(ts)
    if ts > 3_000_000_000:  # milliseconds (Binance)
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def parse_candle(raw) -> Candle:
    """Flexible candle parser — handles Binance kline rows, dicts or objects."""
    if isinstance(raw, Candle):
        return raw
    if isinstance(raw, dict):
        return Candle(
            open_time=to_utc(raw.get("open_time", raw.get("openTime", raw.get("timestamp", 0))) or 0),
            open=float(raw.get("open", 0) or 0),
            high=float(raw.get("high", 0) or 0),
            low=float(raw.get("low", 0) or 0),
            close=float(raw.get("close", 0) or 0),
            volume=float(raw.get("volume", 0) or 0),
        )
    elif isinstance(raw, (list, tuple)):
        # [openTime, open, high, low, close, volume, closeTime, ...]
        return Candle(
            open_time=to_utc(raw[0]),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
            volume=float(raw[5]) if len(raw) > 5 else 0.0,
        )
    else:
        return Candle(
            open_time=to_utc(getattr(raw, "open_time", getattr(raw, "timestamp", 0)) or 0),
            open=float(getattr(raw, "open", 0) or 0),
            high=float(getattr(raw, "high", 0) or 0),
            low=float(getattr(raw, "low", 0) or 0),
            close=float(getattr(raw, "close", 0) or 0),
            volume=float(getattr(raw, "volume", 0) or 0),
        )
