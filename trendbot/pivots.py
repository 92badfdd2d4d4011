"""Swing point detection over a streaming candle history."""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .config import SWING_WINDOW, TRENDLINE_POINTS
from .models import Candle, SwingPoint


class SwingDetector:
    """
    Confirms swing highs and lows with a symmetric look-back/look-ahead window.

    A candle is a swing high when its high is strictly above the highs of the
    ``window`` candles before and after it (swing low: strictly below the lows).
    A candidate can only be judged once ``window`` later candles exist, so every
    confirmation lags its anchor by ``window`` candles.

    Only the newest ``keep`` swing points of each kind are retained; the
    trendline fitter uses them and older points are dropped.
    """

    def __init__(self, window: int = SWING_WINDOW, keep: int = TRENDLINE_POINTS) -> None:
        if window < 1:
            raise ValueError("Swing window must be at least one candle")
        self.window = int(window)
        self.keep = max(int(keep), 2)
        self._buffers: Dict[str, Deque[Tuple[int, Candle]]] = {}
        self._highs: Dict[str, Deque[SwingPoint]] = {}
        self._lows: Dict[str, Deque[SwingPoint]] = {}

    def update(self, symbol: str, candle: Candle, position: int) -> List[SwingPoint]:
        """Add the candle at ``position`` and return the swing points it confirms."""

        buffer = self._buffers.setdefault(symbol, deque(maxlen=2 * self.window + 1))
        buffer.append((position, candle))
        if len(buffer) < buffer.maxlen:
            return []

        anchor_pos, anchor = buffer[self.window]
        neighbors = [c for i, (_, c) in enumerate(buffer) if i != self.window]

        confirmed: List[SwingPoint] = []
        if all(anchor.high > c.high for c in neighbors):
            point = SwingPoint(symbol, "HIGH", float(anchor.high), anchor.timestamp, anchor_pos)
            self._highs.setdefault(symbol, deque(maxlen=self.keep)).append(point)
            confirmed.append(point)
        if all(anchor.low < c.low for c in neighbors):
            point = SwingPoint(symbol, "LOW", float(anchor.low), anchor.timestamp, anchor_pos)
            self._lows.setdefault(symbol, deque(maxlen=self.keep)).append(point)
            confirmed.append(point)
        return confirmed

    def highs(self, symbol: str) -> List[SwingPoint]:
        return list(self._highs.get(symbol, ()))

    def lows(self, symbol: str) -> List[SwingPoint]:
        return list(self._lows.get(symbol, ()))

    def latest_high(self, symbol: str) -> Optional[SwingPoint]:
        highs = self._highs.get(symbol)
        return highs[-1] if highs else None

    def latest_low(self, symbol: str) -> Optional[SwingPoint]:
        lows = self._lows.get(symbol)
        return lows[-1] if lows else None
