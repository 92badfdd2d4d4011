"""Support/resistance lines fitted through recent swing points."""

from __future__ import annotations

from typing import Dict, Literal, Optional, Sequence, Tuple

import numpy as np

from .config import TRENDLINE_MAX_AGE
from .models import SwingPoint, Trendline

Role = Literal["SUPPORT", "RESISTANCE"]


def fit_trendline(points: Sequence[SwingPoint], role: Role) -> Optional[Trendline]:
    """
    Fit a straight line through ``points`` in (position, price) space.

    Two points give the exact line through both; more points give the least
    squares fit. Returns None with fewer than two points.
    """
    if len(points) < 2:
        return None

    ordered = sorted(points, key=lambda p: p.position)
    x = np.array([p.position for p in ordered], dtype=float)
    y = np.array([p.price for p in ordered], dtype=float)
    if np.ptp(x) == 0:
        return None

    slope, intercept = np.polyfit(x, y, 1)
    newest = ordered[-1]
    return Trendline(
        symbol=newest.symbol,
        role=role,
        slope=float(slope),
        intercept=float(intercept),
        anchors=tuple(ordered),
        defined_at=newest.timestamp,
        defined_at_position=newest.position,
    )


class TrendlineFitter:
    """
    Holds the current resistance and support line of every symbol.

    A line is replaced whenever a new swing point of its kind is confirmed.
    Lines older than ``max_age`` candles since their newest anchor are stale:
    ``active`` hides them, but they stay stored until replaced.
    """

    def __init__(self, max_age: int = TRENDLINE_MAX_AGE) -> None:
        self.max_age = int(max_age)
        self._lines: Dict[Tuple[str, Role], Trendline] = {}

    def refit(self, symbol: str, role: Role, points: Sequence[SwingPoint]) -> Optional[Trendline]:
        line = fit_trendline(points, role)
        if line is not None:
            self._lines[(symbol, role)] = line
        return line

    def line(self, symbol: str, role: Role) -> Optional[Trendline]:
        return self._lines.get((symbol, role))

    def active(self, symbol: str, role: Role, position: int) -> Optional[Trendline]:
        line = self._lines.get((symbol, role))
        if line is None or line.is_stale(position, self.max_age):
            return None
        return line
