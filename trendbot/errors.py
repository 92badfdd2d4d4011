"""Exceptions raised by the signal engine and the position lifecycle."""


class TradingBotError(Exception):
    """Base class for every error raised by the bot."""


class InvalidSignalError(TradingBotError, ValueError):
    """Stop-loss/take-profit levels do not bracket the entry for the signal side."""


class InvalidCandleError(TradingBotError, ValueError):
    """Candle is malformed or out of timestamp order."""


class ExchangeError(TradingBotError):
    """The venue could not be reached or answered with garbage."""


class ExitOrderError(TradingBotError):
    """The exit order was not acknowledged, so the position stays OPEN."""


class PositionNotFoundError(TradingBotError, KeyError):
    pass
