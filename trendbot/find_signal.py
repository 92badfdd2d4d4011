from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

from .config import (
    CANDLE_RESOLUTION,
    COOLDOWN_CANDLES,
    EMA_PERIOD,
    PULLBACK_TOLERANCE,
    PULLBACK_WINDOW,
    RISK_REWARD_RATIO,
    STOP_LOSS_PERCENTAGE,
    SWING_WINDOW,
    TRADING_FREQUENCY_MS,
    TRENDLINE_MAX_AGE,
    TRENDLINE_POINTS,
)
from .errors import InvalidCandleError, InvalidSignalError
from .logger import get_logger
from .models import BULLISH, NEUTRAL, Candle, Signal, Trendline
from .pivots import SwingDetector
from .trend import TrendFilter
from .trendlines import TrendlineFitter
from .utils import validate_candle

logger = get_logger(__name__)


@dataclass
class Breakout:
    line: Trendline
    side: str
    position: int
    pullback_taken: bool = False


@dataclass
class SymbolState:
    position: int = -1
    last_timestamp: int = 0
    last_close: Optional[float] = None
    prev_close: Optional[float] = None
    breakout: Optional[Breakout] = None
    fired: Set[Tuple[str, int]] = field(default_factory=set)


class SignalGenerator:
    """
    Streams candles per symbol through the trend filter, swing detector and
    trendline fitter, and turns close-based trendline breakouts into signals.

    BUY needs a BULLISH trend and a close crossing above the live resistance line;
    SELL needs a BEARISH trend and a close crossing below the live support line.
    After a breakout, one pullback entry is allowed within ``pullback_window``
    candles if a close lands within ``pullback_tolerance`` of the broken line.

    ``position_book`` (normally the PositionManager) is asked before a signal
    leaves the generator; symbols with an OPEN position, or still inside the
    post-exit cooldown, get no signal.
    """

    def __init__(
        self,
        position_book: Any = None,
        *,
        ema_period: int = EMA_PERIOD,
        swing_window: int = SWING_WINDOW,
        trendline_points: int = TRENDLINE_POINTS,
        trendline_max_age: int = TRENDLINE_MAX_AGE,
        stop_loss_pct: float = STOP_LOSS_PERCENTAGE,
        risk_reward_ratio: float = RISK_REWARD_RATIO,
        pullback_tolerance: float = PULLBACK_TOLERANCE,
        pullback_window: int = PULLBACK_WINDOW,
        cooldown_candles: int = COOLDOWN_CANDLES,
        candle_interval_ms: int = TRADING_FREQUENCY_MS,
    ) -> None:
        if stop_loss_pct <= 0 or risk_reward_ratio <= 0:
            raise ValueError("Stop-loss percentage and risk-reward ratio must be positive")
        self.position_book = position_book
        self.trend = TrendFilter(ema_period)
        self.swings = SwingDetector(swing_window, keep=trendline_points)
        self.trendlines = TrendlineFitter(trendline_max_age)
        self.stop_loss_pct = float(stop_loss_pct)
        self.risk_reward_ratio = float(risk_reward_ratio)
        self.pullback_tolerance = float(pullback_tolerance)
        self.pullback_window = int(pullback_window)
        self.cooldown_candles = int(cooldown_candles)
        self.candle_interval_ms = int(candle_interval_ms)
        self._states: Dict[str, SymbolState] = {}

    def state(self, symbol: str) -> SymbolState:
        return self._states.setdefault(symbol, SymbolState())

    def last_timestamp(self, symbol: str) -> int:
        return self.state(symbol).last_timestamp

    def ingest(self, symbol: str, candle: Candle) -> bool:
        """Update the streaming state with ``candle`` without evaluating it.

        Returns False when the candle is malformed or not newer than the last one.
        """
        try:
            validate_candle(candle)
        except InvalidCandleError as exc:
            logger.warning(f"Skipping candle for {symbol}: {exc}")
            return False

        state = self.state(symbol)
        if candle.timestamp <= state.last_timestamp:
            logger.warning(
                f"Skipping out-of-order candle for {symbol}: {candle.timestamp} <= {state.last_timestamp}"
            )
            return False

        state.position += 1
        state.last_timestamp = candle.timestamp
        state.prev_close, state.last_close = state.last_close, float(candle.close)

        self.trend.update(symbol, candle)
        for point in self.swings.update(symbol, candle, state.position):
            if point.kind == "HIGH":
                line = self.trendlines.refit(symbol, "RESISTANCE", self.swings.highs(symbol))
            else:
                line = self.trendlines.refit(symbol, "SUPPORT", self.swings.lows(symbol))
            if line is not None:
                # keys of replaced lines can never match again
                state.fired = {key for key in state.fired if key[0] != line.role}
                logger.info(
                    f"{symbol} {line.role.lower()} line refit from {len(line.anchors)} swing points: "
                    f"slope={line.slope:.6f}, intercept={line.intercept:.2f}"
                )
        return True

    def on_candle(self, symbol: str, candle: Candle, mark_price: Optional[float] = None) -> Optional[Signal]:
        """Ingest ``candle`` and evaluate it. Returns at most one signal."""

        if not self.ingest(symbol, candle):
            return None
        price = float(candle.close) if mark_price is None else float(mark_price)
        return self.evaluate(symbol, candle, price)

    def evaluate(self, symbol: str, candle: Candle, mark_price: float) -> Optional[Signal]:
        trend = self.trend.trend_of(symbol, mark_price)
        if trend == NEUTRAL:
            return None

        if trend == BULLISH:
            side, role = "BUY", "RESISTANCE"
        else:
            side, role = "SELL", "SUPPORT"

        signal = self._breakout(symbol, candle, side, role) or self._pullback(symbol, candle, side)
        if signal is None or self._suppressed(symbol, candle):
            return None

        logger.info(
            f"{symbol} {signal.side} signal: entry={signal.entry_price:.2f}, "
            f"SL={signal.stop_loss:.2f}, TP={signal.take_profit:.2f} ({signal.reason})"
        )
        return signal

    def _breakout(self, symbol: str, candle: Candle, side: str, role: str) -> Optional[Signal]:
        state = self.state(symbol)
        line = self.trendlines.active(symbol, role, state.position)
        if line is None or state.prev_close is None:
            return None

        key = (role, line.defined_at_position)
        if key in state.fired:
            return None

        close = float(candle.close)
        level = line.value_at(state.position)
        previous_level = line.value_at(state.position - 1)
        if side == "BUY":
            crossed = state.prev_close <= previous_level and close > level
        else:
            crossed = state.prev_close >= previous_level and close < level
        if not crossed:
            return None

        state.fired.add(key)
        state.breakout = Breakout(line=line, side=side, position=state.position)
        ema = self.trend.ema(symbol)
        direction = "above" if side == "BUY" else "below"
        return self._build_signal(
            symbol,
            side,
            candle,
            f"{side}: close {close:.2f} broke {direction} {role.lower()} {level:.2f}, EMA {ema:.2f}",
        )

    def _pullback(self, symbol: str, candle: Candle, side: str) -> Optional[Signal]:
        state = self.state(symbol)
        breakout = state.breakout
        if breakout is None or breakout.side != side or breakout.pullback_taken:
            return None

        elapsed = state.position - breakout.position
        if elapsed > self.pullback_window:
            state.breakout = None
            return None
        if elapsed <= 0:
            return None

        close = float(candle.close)
        level = breakout.line.value_at(state.position)
        if level <= 0:
            return None
        if side == "BUY" and close < level:
            return None
        if side == "SELL" and close > level:
            return None
        if abs(close - level) / level > self.pullback_tolerance:
            return None

        breakout.pullback_taken = True
        return self._build_signal(
            symbol,
            side,
            candle,
            f"{side}: pullback to broken {breakout.line.role.lower()} {level:.2f} at close {close:.2f}",
        )

    def _build_signal(self, symbol: str, side: str, candle: Candle, reason: str) -> Optional[Signal]:
        entry = float(candle.close)
        if side == "BUY":
            stop_loss = entry * (1 - self.stop_loss_pct)
            take_profit = entry + (entry - stop_loss) * self.risk_reward_ratio
        else:
            stop_loss = entry * (1 + self.stop_loss_pct)
            take_profit = entry - (stop_loss - entry) * self.risk_reward_ratio
        try:
            return Signal(
                symbol=symbol,
                side=side,
                entry_price=entry,
                stop_loss=stop_loss,
                take_profit=take_profit,
                reason=reason,
                generated_at=candle.timestamp,
            )
        except InvalidSignalError as exc:
            logger.warning(f"Discarding {symbol} {side} signal: {exc}")
            return None

    def _suppressed(self, symbol: str, candle: Candle) -> bool:
        book = self.position_book
        if book is None:
            return False

        if book.has_open_position(symbol):
            logger.info(f"{symbol} - open position exists, signal suppressed")
            return True

        last_exit = book.last_exit_time(symbol)
        if last_exit is not None and self.cooldown_candles > 0:
            candles_since_exit = (candle.timestamp - last_exit) // self.candle_interval_ms
            if candles_since_exit < self.cooldown_candles:
                logger.info(
                    f"{symbol} - cooldown active, signal suppressed "
                    f"(candles: {max(candles_since_exit, 0)}/{self.cooldown_candles})"
                )
                return True
        return False


def find_signal(
    symbol: str,
    execute_time: int,
    generator: SignalGenerator,
    feed: Any,
    manager: Any,
    notifier: Any = None,
    *,
    resolution: str = CANDLE_RESOLUTION,
    candle_interval_ms: int = TRADING_FREQUENCY_MS,
) -> Optional[Signal]:
    """
    Run one signal-detection cycle for ``symbol``.

    Fetches the closed candles the generator has not seen, replays all but the
    newest as history, evaluates the newest against the current mark price and
    hands a resulting signal to the position manager.
    """
    last_seen = generator.last_timestamp(symbol)
    if last_seen:
        start_ms = last_seen + 1
    else:
        warmup = generator.trend.period + generator.trendlines.max_age + 2 * generator.swings.window
        start_ms = execute_time - warmup * candle_interval_ms

    candles = feed.get_candles(symbol, resolution, start_ms, execute_time)
    fresh = [
        c for c in candles
        if c.timestamp > last_seen and c.timestamp + candle_interval_ms <= execute_time
    ]
    if not fresh:
        logger.info(f"No new closed candles for {symbol}")
        return None

    for candle in fresh[:-1]:
        generator.ingest(symbol, candle)

    latest = fresh[-1]
    mark_price = feed.get_mark_price(symbol)
    if mark_price is None or mark_price <= 0:
        generator.ingest(symbol, latest)
        logger.warning(f"Cannot get current mark price for {symbol}, skipping signal evaluation")
        return None

    signal = generator.on_candle(symbol, latest, mark_price)
    if signal is None:
        return None

    if notifier is not None:
        try:
            notifier.signal_found(signal)
        except Exception as e:
            logger.error(f"Signal notification for {symbol} failed: {e}")
    manager.open(signal)
    return signal
