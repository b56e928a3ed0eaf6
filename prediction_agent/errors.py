class PredictionAgentError(Exception):
    """Base class for errors raised by the agent core."""

    pass


class InsufficientData(PredictionAgentError):
    """Not enough candles for the lookback window."""

    pass


class InvalidParameter(PredictionAgentError):
    """A parameter is outside its configured bounds or unknown."""

    pass


class PriceSourceUnavailable(PredictionAgentError):
    """The price feed failed or timed out."""

    pass
