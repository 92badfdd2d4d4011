"""Trend filter: one incrementally updated EMA per symbol."""

from __future__ import annotations

from typing import Dict, Optional

from .config import EMA_PERIOD
from .models import BEARISH, BULLISH, NEUTRAL, Candle, Trend, TrendState


class TrendFilter:
    """
    Keeps an exponential moving average of closes for every symbol.

    The first ``period`` closes are summed; the arithmetic mean of those closes
    seeds the EMA, after which every close moves it by ``2 / (period + 1)``.
    """

    def __init__(self, period: int = EMA_PERIOD) -> None:
        if period < 1:
            raise ValueError("EMA period must be positive")
        self.period = int(period)
        self.multiplier = 2.0 / (self.period + 1)
        self._states: Dict[str, TrendState] = {}

    def state(self, symbol: str) -> TrendState:
        return self._states.setdefault(symbol, TrendState())

    def update(self, symbol: str, candle: Candle) -> TrendState:
        state = self.state(symbol)
        close = float(candle.close)

        if state.seen_count < self.period:
            state.seed_sum += close
            state.seen_count += 1
            if state.seen_count == self.period:
                state.ema_value = state.seed_sum / self.period
            return state

        state.seen_count += 1
        state.ema_value = (close - state.ema_value) * self.multiplier + state.ema_value
        return state

    def ema(self, symbol: str) -> Optional[float]:
        state = self._states.get(symbol)
        return state.ema_value if state else None

    def trend_of(self, symbol: str, mark_price: float) -> Trend:
        ema = self.ema(symbol)
        if ema is None:
            return NEUTRAL
        if mark_price > ema:
            return BULLISH
        if mark_price < ema:
            return BEARISH
        return NEUTRAL
